"""
Tests for the KPI read API.
"""

import sqlite3

import pytest

import api


@pytest.fixture
def db_path(tmp_path, monkeypatch):
    path = tmp_path / "kpis.db"
    conn = sqlite3.connect(str(path))
    conn.execute("CREATE TABLE city_kpis (day INTEGER PRIMARY KEY, population REAL, funds REAL)")
    conn.executemany(
        "INSERT INTO city_kpis VALUES (?, ?, ?)",
        [(10, 120.0, 9000.0), (20, 180.5, 9400.0), (30, 240.0, 9900.0)],
    )
    conn.commit()
    conn.close()

    monkeypatch.setattr(api, "DATABASE", str(path))
    return path


@pytest.fixture
def client():
    api.app.config["TESTING"] = True
    return api.app.test_client()


def test_latest_stats(db_path, client):
    response = client.get("/api/latest_stats")

    assert response.status_code == 200
    assert response.get_json() == {"day": 30, "population": 240.0, "funds": 9900.0}


def test_latest_stats_empty_table(tmp_path, monkeypatch, client):
    path = tmp_path / "empty.db"
    conn = sqlite3.connect(str(path))
    conn.execute("CREATE TABLE city_kpis (day INTEGER PRIMARY KEY)")
    conn.close()
    monkeypatch.setattr(api, "DATABASE", str(path))

    assert client.get("/api/latest_stats").status_code == 404


def test_missing_table_is_server_error(tmp_path, monkeypatch, client):
    monkeypatch.setattr(api, "DATABASE", str(tmp_path / "blank.db"))
    assert client.get("/api/latest_stats").status_code == 500


def test_history(db_path, client):
    days = [row["day"] for row in client.get("/api/history").get_json()]
    assert days == [10, 20, 30]


def test_history_limit(db_path, client):
    days = [row["day"] for row in client.get("/api/history?limit=2").get_json()]
    assert days == [20, 30]

    assert client.get("/api/history?limit=0").status_code == 400
