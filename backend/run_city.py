"""
Run a CitySim city headless for a number of simulated days.

Builds a starter town (a road spine with residential, commercial and
industrial blocks), advances it day by day and exports city KPIs to SQLite
every few days. Progress is printed every 10 days.
"""

import argparse
import json
import logging
import sqlite3
import time
from pathlib import Path
from typing import Any, Dict, Optional

from config import CONFIG, SimulationConfig
from economy import EconomySimulator
from grid import TileGrid
from tiles import make_tile, placement_blacklist

logger = logging.getLogger(__name__)

KPI_COLUMNS = (
    "day",
    "population",
    "homeless",
    "unemployed",
    "housed",
    "employed",
    "funds",
    "earnings",
    "commercial_revenue",
    "industrial_revenue",
    "stored_goods",
    "raw_resources",
    "districts",
)


def _build(simulator: EconomySimulator, start, end, name: str, force: bool = False) -> int:
    """Lay tiles of the given catalogue name over a rectangle, free of charge."""
    tile = make_tile(name, simulator.config.catalogue)
    is_blacklisted = (lambda tile_type: False) if force else placement_blacklist(tile)
    simulator.grid.select(start, end, is_blacklisted)
    count = simulator.bulldoze(tile)
    simulator.grid.clear_selected()
    return count


def create_starter_city(
    width: int = 50,
    height: int = 50,
    seed: Optional[int] = None,
    config: Optional[SimulationConfig] = None,
) -> EconomySimulator:
    """
    Create a generated map with a small starter town near its west edge.

    The town is a horizontal road with one cross street, homes and shops
    north of the road and industry south of it. Blocks that fall outside
    the map are clipped by the selection.

    Args:
        width: Map width in cells
        height: Map height in cells
        seed: Seed for both map generation and the simulator

    Returns:
        EconomySimulator with the town's starting funds
    """
    config = config or CONFIG
    grid = TileGrid.new_generated(width, height, rng_seed=seed, map_config=config.map, catalogue=config.catalogue)
    simulator = EconomySimulator(grid, seed=seed, config=config)

    mid = height // 2
    # Clear forest and water off the town site
    _build(simulator, (1, mid - 3), (12, mid + 3), "grass", force=True)
    _build(simulator, (1, mid), (12, mid), "road")
    _build(simulator, (6, mid - 3), (6, mid + 3), "road")
    _build(simulator, (1, mid - 3), (5, mid - 1), "residential")
    _build(simulator, (7, mid - 3), (12, mid - 1), "commercial")
    _build(simulator, (1, mid + 1), (12, mid + 3), "industrial")

    simulator.on_tiles_changed()
    simulator.funds = config.economy.starting_funds

    metrics = simulator.get_city_metrics()
    logger.info(
        "Starter city %dx%d: %d homes, %d shops, %d industries, %d road tiles",
        width, height, metrics["residential_tiles"], metrics["commercial_tiles"],
        metrics["industrial_tiles"], metrics["road_tiles"],
    )
    return simulator


def init_database(db_path: str):
    """Initialize SQLite database with the city KPI table."""
    conn = sqlite3.connect(db_path)
    cursor = conn.cursor()

    cursor.execute("""
        CREATE TABLE IF NOT EXISTS city_kpis (
            day INTEGER PRIMARY KEY,
            population REAL,
            homeless REAL,
            unemployed REAL,
            housed REAL,
            employed REAL,
            funds REAL,
            earnings REAL,
            commercial_revenue REAL,
            industrial_revenue REAL,
            stored_goods INTEGER,
            raw_resources INTEGER,
            districts INTEGER,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        )
    """)

    conn.commit()
    conn.close()


def export_day_data(simulator: EconomySimulator, conn: sqlite3.Connection, metrics: Optional[Dict[str, Any]] = None):
    """Export the current day's KPIs using an open database connection."""
    metrics = metrics or simulator.get_city_metrics()
    placeholders = ",".join("?" for _ in KPI_COLUMNS)
    conn.execute(
        f"INSERT OR REPLACE INTO city_kpis ({','.join(KPI_COLUMNS)}) VALUES ({placeholders})",
        tuple(metrics[column] for column in KPI_COLUMNS),
    )
    conn.commit()


def main(
    num_days: int = 365,
    width: int = 50,
    height: int = 50,
    seed: Optional[int] = None,
    export_every: int = 30,
    output_tag: str = "starter",
    save_path: Optional[str] = None,
    output_dir: str = "sample_data",
) -> Dict[str, Any]:
    """Run a starter city for num_days and export its KPIs."""
    if num_days <= 0:
        raise ValueError("num_days must be positive")
    if export_every <= 0:
        raise ValueError("export_every must be positive")

    print("=" * 72)
    print(f"CITYSIM ({width}x{height} map, {num_days} days)")
    print("=" * 72)
    print()

    out = Path(output_dir)
    out.mkdir(parents=True, exist_ok=True)

    start_time = time.time()
    simulator = create_starter_city(width, height, seed)

    # Start from a fresh database
    db_path = out / f"citysim_{output_tag}.db"
    if db_path.exists():
        db_path.unlink()
        print(f"Removed existing database: {db_path}")
    init_database(str(db_path))
    db_conn = sqlite3.connect(str(db_path))

    print(f"Running for {num_days} days (exporting every {export_every} days)")
    print()
    print(" Day | Population | Homeless | Unemployed |      Funds | Districts")
    print("-" * 72)

    for _ in range(num_days):
        simulator.tick(simulator.tick_period)
        day = simulator.day

        if day % export_every == 0 or day == num_days:
            export_day_data(simulator, db_conn)

        if day % 10 == 0 or day == num_days:
            metrics = simulator.get_city_metrics()
            print(f"{day:4d} | {metrics['population']:10.1f} | {metrics['homeless']:8.1f} | "
                  f"{metrics['unemployed']:10.1f} | ${metrics['funds']:9.0f} | {metrics['districts']:9d}")

    db_conn.close()
    total_time = time.time() - start_time

    if save_path:
        simulator.save(save_path)
        print(f"City saved to: {save_path}")

    conn = sqlite3.connect(str(db_path))
    exported_rows = conn.execute("SELECT COUNT(*) FROM city_kpis").fetchone()[0]
    conn.close()

    summary = {
        "simulation_info": {
            "num_days": num_days,
            "width": width,
            "height": height,
            "seed": seed,
            "total_simulation_time_seconds": total_time,
        },
        "final_state": simulator.get_city_metrics(),
        "database": {
            "path": str(db_path),
            "city_kpis_rows": exported_rows,
        },
    }

    summary_path = out / f"citysim_{output_tag}_summary.json"
    with open(summary_path, "w") as f:
        json.dump(summary, f, indent=2)

    print()
    print("✓ Simulation complete!")
    print(f"  Total time: {total_time:.2f} seconds")
    print(f"  Database saved to: {db_path}")
    print(f"  Summary saved to: {summary_path}")
    return summary


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Run a CitySim starter city headless.")
    parser.add_argument("--days", type=int, default=365, help="Number of simulated days")
    parser.add_argument("--width", type=int, default=CONFIG.map.width, help="Map width in cells")
    parser.add_argument("--height", type=int, default=CONFIG.map.height, help="Map height in cells")
    parser.add_argument("--seed", type=int, default=None, help="Random seed for map and simulation")
    parser.add_argument("--export-every", type=int, default=30, help="Export KPIs every N days")
    parser.add_argument("--tag", type=str, default="starter", help="Tag used in output filenames")
    parser.add_argument("--save", type=str, default=None, help="Save the final city to this path")
    parser.add_argument("--output-dir", type=str, default="sample_data", help="Directory for the database and summary")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO)
    main(
        num_days=args.days,
        width=args.width,
        height=args.height,
        seed=args.seed,
        export_every=args.export_every,
        output_tag=args.tag,
        save_path=args.save,
        output_dir=args.output_dir,
    )
