import logging
import sqlite3

from flask import Flask, jsonify, request

app = Flask(__name__)
logger = logging.getLogger(__name__)

# Database written by backend/run_city.py
DATABASE = 'sample_data/citysim_starter.db'


def get_db_conn():
    """Establishes a connection to the SQLite database."""
    conn = sqlite3.connect(DATABASE)
    # Return rows as dictionaries instead of tuples
    conn.row_factory = sqlite3.Row
    return conn


@app.route("/api/latest_stats")
def latest_stats():
    """Provides the most recent city KPI row."""
    conn = None
    try:
        conn = get_db_conn()
        latest_row = conn.execute("SELECT * FROM city_kpis ORDER BY day DESC LIMIT 1").fetchone()

        if latest_row:
            return jsonify(dict(latest_row))
        return jsonify({"error": "No data found in city_kpis table"}), 404

    except sqlite3.Error as e:
        logger.error("Database error: %s", e)
        return jsonify({"error": "Database error occurred"}), 500
    finally:
        if conn:
            conn.close()


@app.route("/api/history")
def history():
    """Provides KPI rows in day order, optionally only the last ?limit=N."""
    limit = request.args.get("limit", type=int)
    if limit is not None and limit <= 0:
        return jsonify({"error": "limit must be positive"}), 400

    conn = None
    try:
        conn = get_db_conn()
        if limit is None:
            rows = conn.execute("SELECT * FROM city_kpis ORDER BY day").fetchall()
        else:
            rows = conn.execute(
                "SELECT * FROM (SELECT * FROM city_kpis ORDER BY day DESC LIMIT ?) ORDER BY day", (limit,)
            ).fetchall()
        return jsonify([dict(row) for row in rows])

    except sqlite3.Error as e:
        logger.error("Database error: %s", e)
        return jsonify({"error": "Database error occurred"}), 500
    finally:
        if conn:
            conn.close()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    logger.info("Starting Flask server at http://127.0.0.1:5000/api/latest_stats")
    app.run(debug=True, port=5000)
