"""
City Economy Simulation Engine

This module implements the simulator that advances the city one day at a
time: people move between pooled (homeless/unemployed) counts and zoned
tiles, industry produces and stores goods, shops sell them within their
road-connected district, and taxes accrue into the town's funds.

All randomness goes through the injected generator so a seeded run is
reproducible.
"""

import logging
import math
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

import numpy as np

from config import CONFIG, SimulationConfig
from grid import TileGrid
from persistence import PersistenceError, PersistenceErrorKind, load_city, save_city
from tiles import IndustrialZone, Tile, TileKind, is_district_member

logger = logging.getLogger(__name__)

REGION_CHANNEL = 0


def distribute_pool(
    pool: float,
    population: float,
    max_pop: float,
    growth_rate: float,
    max_move: float = 4.0,
) -> Tuple[float, float]:
    """
    Move people from a city-wide pool into one tile, then grow the tile.

    At most max_move units move per call. Growth that pushes the tile past
    max_pop overflows back into the pool, so with growth_rate == 0 the sum
    pool + population is conserved.

    Returns:
        (new_pool, new_population)
    """
    if pool > 0:
        moving = min(max_pop - population, max_move, pool)
        pool -= moving
        population += moving

    population += population * growth_rate

    if population > max_pop:
        pool += population - max_pop
        population = max_pop

    return pool, population


@dataclass
class DayReport:
    """Aggregates gathered while processing one simulated day."""
    day: int
    population: float = 0.0
    empty_homes: float = 0.0
    free_jobs: float = 0.0
    stores: int = 0
    industries: int = 0
    commercial_revenue: float = 0.0
    industrial_revenue: float = 0.0
    immigrants: float = 0.0
    emigrants: float = 0.0
    settled: bool = False  # Monthly settlement happened this day


class EconomySimulator:
    """
    Owns the tile grid and the city-wide pools.

    An external driver calls tick(dt) every frame; a simulated day is
    processed once the accumulated time reaches the tick period. After an
    edit that changes tile types the driver calls on_tiles_changed(). If it
    does not, the next tick relabels the districts itself before trading.
    """

    def __init__(
        self,
        grid: TileGrid,
        rng=None,
        seed: Optional[int] = None,
        config: Optional[SimulationConfig] = None,
    ):
        """
        Args:
            grid: Fresh or loaded grid; the simulator is its only writer
            rng: Random source with random() and permutation(n)
            seed: Seed for the default NumPy generator when rng is not given
            config: Simulation parameters (defaults to CONFIG)
        """
        self.config = config or CONFIG
        self.grid = grid
        self.rng = rng if rng is not None else np.random.default_rng(seed)

        # Tick accumulator
        self.elapsed = 0.0
        self.tick_period = self.config.time.tick_period

        # City-wide pools
        self.homeless_pool = 0.0
        self.unemployed_pool = 0.0
        self.prop_can_work = self.config.population.prop_can_work

        self.birth_rate = self.config.population.birth_rate
        self.death_rate = self.config.population.death_rate

        # Reported totals
        self.population = 0.0
        self.employable = 0.0

        self.residential_tax = self.config.taxes.residential
        self.commercial_tax = self.config.taxes.commercial
        self.industrial_tax = self.config.taxes.industrial

        self.earnings = 0.0
        self.funds = 0.0

        self.day = 0
        self.last_report: Optional[DayReport] = None
        # Districts are labeled before the first day unless the driver does it
        self.regions_stale = True
        self._labeled = False

    @property
    def homeless(self) -> float:
        return self.homeless_pool

    @property
    def unemployed(self) -> float:
        return self.unemployed_pool

    @property
    def growth_rate(self) -> float:
        """Net daily growth of every population count."""
        return self.birth_rate - self.death_rate

    # Editing

    def bulldoze(self, new_tile: Tile) -> int:
        """
        Replace every selected tile with a copy of new_tile.

        People living or working in a replaced zone go back to the homeless
        or unemployed pool. Raw resources stay with the cell.

        Returns:
            Number of tiles replaced
        """
        # Snapshot the selection before replacing anything
        selected = list(self.grid.selected())

        for index, tile in selected:
            if tile.kind == TileKind.RESIDENTIAL:
                self.homeless_pool += tile.tile_type.population
            elif tile.kind in (TileKind.COMMERCIAL, TileKind.INDUSTRIAL):
                self.unemployed_pool += tile.tile_type.population

            self.grid.replace_tile(index, new_tile.fresh_copy())

        if selected:
            self.regions_stale = True
            logger.debug("Bulldozed %d tiles to %s", len(selected), new_tile.kind)
        return len(selected)

    def place(self, new_tile: Tile) -> bool:
        """
        Build new_tile on the current selection if the city can afford it.

        Total cost is the tile's build cost times the number of selected
        cells. The selection is cleared either way.

        Returns:
            True if the tiles were placed
        """
        total_cost = float(new_tile.build_cost * self.grid.num_selected)
        placed = False

        if self.grid.num_selected > 0 and self.funds >= total_cost:
            self.bulldoze(new_tile)
            self.funds -= total_cost
            self.on_tiles_changed()
            placed = True
            logger.info("Placed %d x %s for $%.0f", self.grid.num_selected, new_tile.kind, total_cost)
        elif self.grid.num_selected > 0:
            logger.info("Cannot afford %d x %s ($%.0f, funds $%.0f)",
                        self.grid.num_selected, new_tile.kind, total_cost, self.funds)

        self.grid.clear_selected()
        return placed

    def on_tiles_changed(self) -> None:
        """Recompute road sprite variants and the trade districts."""
        self.grid.update_direction(TileKind.ROAD)
        self.grid.find_connected_regions(is_district_member, REGION_CHANNEL)
        self.regions_stale = False
        self._labeled = True

    # Simulation

    def tick(self, dt: float) -> Optional[DayReport]:
        """
        Advance the clock by dt and process a day once a tick period has
        accumulated.

        Follows strict phase ordering:
        1. Monthly settlement of earnings into funds
        2. Population/employment distribution, production and level-ups
        3. Manufacture: industry pulls production from its district
        4. Goods distribution: shops buy stored goods and serve residents
        5. Homeless pool growth
        6. Migration in and out
        7. Totals and labor pool update
        8. Tax earnings

        Returns:
            The day's report, or None if no day was processed
        """
        self.elapsed += dt
        if self.elapsed < self.tick_period:
            return None

        self.day += 1
        self.elapsed = 0.0

        if self.regions_stale:
            if self._labeled:
                logger.warning("Tiles changed without on_tiles_changed(); relabeling districts before day %d", self.day)
            self.on_tiles_changed()

        report = DayReport(day=self.day)

        if self.day % self.config.time.days_per_month == 0:
            logger.info("Day %d: settling $%.2f of earnings", self.day, self.earnings)
            self.funds += self.earnings
            self.earnings = 0.0
            report.settled = True

        order = self.grid.shuffled_order(self.rng)
        pop_total = self._distribute_and_grow(order, report)

        members = self.grid.region_members(REGION_CHANNEL)
        self._manufacture(order, members)
        self._distribute_goods(order, members, report)

        self.homeless_pool += self.homeless_pool * self.growth_rate

        self._migrate(report)

        pop_total += self.homeless_pool

        new_workers = abs(pop_total - self.population) * self.prop_can_work
        self.unemployed_pool = max(self.unemployed_pool + new_workers, 0.0)
        self.employable = max(self.employable + new_workers, 0.0)
        self.population = pop_total
        report.population = pop_total

        taxes = self.config.taxes
        self.earnings += (self.population - self.homeless_pool) * taxes.residential_income_per_head * self.residential_tax
        self.earnings += report.commercial_revenue * self.commercial_tax
        self.earnings += report.industrial_revenue * self.industrial_tax

        self.last_report = report
        return report

    def _distribute_and_grow(self, order: List[int], report: DayReport) -> float:
        """Distribution & growth pass. Returns the population housed in tiles."""
        growth_rate = self.growth_rate
        max_move = self.config.population.max_move_per_tick
        zones_config = self.config.zones
        pop_total = 0.0

        for index in order:
            tile = self.grid.tiles[index]
            zone = tile.zone
            if zone is None:
                continue

            max_pop = tile.capacity()

            if tile.kind == TileKind.RESIDENTIAL:
                self.homeless_pool, zone.population = distribute_pool(
                    self.homeless_pool, zone.population, max_pop, growth_rate, max_move
                )
                report.empty_homes += max_pop - zone.population
                pop_total += zone.population

            elif tile.kind == TileKind.COMMERCIAL:
                if self.rng.random() < (1.0 - self.commercial_tax) * zones_config.job_seek_chance:
                    self.unemployed_pool, zone.population = distribute_pool(
                        self.unemployed_pool, zone.population, max_pop, 0.0, max_move
                    )
                report.stores += 1
                report.free_jobs += max_pop - zone.population

            elif tile.kind == TileKind.INDUSTRIAL:
                if (
                    self.grid.raw_resources[index] > 0
                    and self.rng.random() < zone.population * zones_config.production_chance_per_worker
                ):
                    zone.production += 1
                    self.grid.raw_resources[index] -= 1

                if self.rng.random() < (1.0 - self.industrial_tax) * zones_config.job_seek_chance:
                    self.unemployed_pool, zone.population = distribute_pool(
                        self.unemployed_pool, zone.population, max_pop, 0.0, max_move
                    )
                report.industries += 1
                report.free_jobs += max_pop - zone.population

            tile.maybe_level_up(self.rng, zones_config.level_up_chance)

        return pop_total

    def _district_of(self, index: int, members: Dict[int, List[int]]) -> List[int]:
        region = self.grid.tiles[index].region_ids[REGION_CHANNEL]
        if region == 0:
            return [index]
        return members.get(region, [index])

    def _manufacture(self, order: List[int], members: Dict[int, List[int]]) -> None:
        """
        Each industry collects up to (level + 1) units of production from the
        industries in its district, at most one unit per donor, and turns
        them into stored goods.
        """
        for index in order:
            tile = self.grid.tiles[index]
            if tile.kind != TileKind.INDUSTRIAL:
                continue

            demand = tile.level + 1
            received = 0
            for other in self._district_of(index, members):
                donor = self.grid.tiles[other].zone
                if not isinstance(donor, IndustrialZone):
                    continue
                if donor.production > 0:
                    received += 1
                    donor.production -= 1
                if received >= demand:
                    break

            zone = tile.zone
            zone.stored_goods += (received + zone.production) * demand

    def _distribute_goods(self, order: List[int], members: Dict[int, List[int]], report: DayReport) -> None:
        """
        Each shop buys up to (level + 1) units of stored goods from its
        district and sells them to the district's residents.
        """
        trade = self.config.trade

        for index in order:
            tile = self.grid.tiles[index]
            if tile.kind != TileKind.COMMERCIAL:
                continue

            demand = tile.level + 1
            received = 0
            max_customers = 0.0

            for other in self._district_of(index, members):
                other_tile = self.grid.tiles[other]
                if other_tile.kind == TileKind.INDUSTRIAL:
                    supplier = other_tile.zone
                    while supplier.stored_goods > 0 and received < demand:
                        supplier.stored_goods -= 1
                        received += 1
                        report.industrial_revenue += trade.goods_unit_price * (1.0 - self.industrial_tax)
                elif other_tile.kind == TileKind.RESIDENTIAL:
                    max_customers += other_tile.zone.population

            batch_value = (received * trade.goods_unit_price + trade.price_noise * self.rng.random()) * (1.0 - self.commercial_tax)
            report.commercial_revenue += batch_value * max_customers * tile.zone.population / trade.customer_divisor

    def _migrate(self, report: DayReport) -> None:
        migration = self.config.migration

        excess_capacity = (
            max(report.empty_homes - self.homeless_pool, 0.0)
            * max(report.free_jobs - self.unemployed_pool, 0.0)
            * (1.0 - self.residential_tax)
        )
        immigrants = 1.0 + excess_capacity * migration.immigrant_scale
        immigration_chance = excess_capacity * migration.immigration_chance_scale

        if report.stores > 0 and report.industries > 0 and self.rng.random() < immigration_chance:
            self.homeless_pool += immigrants
            report.immigrants = immigrants

        crowded = self.homeless_pool > report.empty_homes or self.unemployed_pool > report.free_jobs
        if crowded and self.rng.random() < (self.homeless_pool + self.unemployed_pool) * migration.emigration_chance_scale:
            leaving = (self.homeless_pool + self.unemployed_pool) * migration.emigration_fraction + 1.0
            report.emigrants = min(leaving, self.homeless_pool)
            self.homeless_pool = max(self.homeless_pool - leaving, 0.0)

    # Reporting

    def get_city_metrics(self) -> Dict[str, float]:
        """
        Snapshot of city-wide indicators for display and export.
        """
        metrics: Dict[str, float] = {
            "day": self.day,
            "population": self.population,
            "employable": self.employable,
            "homeless": self.homeless_pool,
            "unemployed": self.unemployed_pool,
            "funds": self.funds,
            "earnings": self.earnings,
            "residential_tax": self.residential_tax,
            "commercial_tax": self.commercial_tax,
            "industrial_tax": self.industrial_tax,
        }

        counts = {kind: 0 for kind in (TileKind.RESIDENTIAL, TileKind.COMMERCIAL, TileKind.INDUSTRIAL, TileKind.ROAD)}
        residents = workers = 0.0
        stored_goods = production = 0
        for tile in self.grid.tiles:
            if tile.kind in counts:
                counts[tile.kind] += 1
            zone = tile.zone
            if zone is None:
                continue
            if tile.kind == TileKind.RESIDENTIAL:
                residents += zone.population
            else:
                workers += zone.population
            if isinstance(zone, IndustrialZone):
                stored_goods += zone.stored_goods
                production += zone.production

        metrics["residential_tiles"] = counts[TileKind.RESIDENTIAL]
        metrics["commercial_tiles"] = counts[TileKind.COMMERCIAL]
        metrics["industrial_tiles"] = counts[TileKind.INDUSTRIAL]
        metrics["road_tiles"] = counts[TileKind.ROAD]
        metrics["housed"] = residents
        metrics["employed"] = workers
        metrics["stored_goods"] = stored_goods
        metrics["production"] = production
        metrics["raw_resources"] = int(self.grid.raw_resources.sum())
        metrics["districts"] = self.grid.num_regions[REGION_CHANNEL]

        if self.last_report is not None:
            metrics["commercial_revenue"] = self.last_report.commercial_revenue
            metrics["industrial_revenue"] = self.last_report.industrial_revenue
        else:
            metrics["commercial_revenue"] = 0.0
            metrics["industrial_revenue"] = 0.0

        return metrics

    # State snapshot (used by persistence)

    def state_dict(self) -> Dict[str, float]:
        return {
            "elapsed": self.elapsed,
            "homeless_pool": self.homeless_pool,
            "unemployed_pool": self.unemployed_pool,
            "population": self.population,
            "employable": self.employable,
            "residential_tax": self.residential_tax,
            "commercial_tax": self.commercial_tax,
            "industrial_tax": self.industrial_tax,
            "earnings": self.earnings,
            "funds": self.funds,
            "day": self.day,
        }

    def load_state_dict(self, state: Dict[str, float]) -> None:
        """Apply a saved state. Raises ValueError without changing anything."""
        values = {}
        for key in ("elapsed", "homeless_pool", "unemployed_pool", "population", "employable",
                    "residential_tax", "commercial_tax", "industrial_tax", "earnings", "funds"):
            if key in state:
                value = float(state[key])
                if not math.isfinite(value):
                    raise ValueError(f"{key} must be finite")
                values[key] = value
        for key in ("residential_tax", "commercial_tax", "industrial_tax"):
            if key in values and not (0.0 <= values[key] <= 1.0):
                raise ValueError(f"{key} must be in [0, 1]")
        if "day" in state:
            values["day"] = int(state["day"])

        for key, value in values.items():
            setattr(self, key, value)

    def save(self, path: Union[str, Path]) -> None:
        save_city(self, path)

    def load(self, path: Union[str, Path]) -> None:
        """Replace grid and state from a save; nothing changes if loading fails."""
        grid, state = load_city(path)
        try:
            self.load_state_dict(state)
        except (TypeError, ValueError) as e:
            raise PersistenceError(PersistenceErrorKind.INVALID_FORMAT, f"{path}: {e}") from e
        self.grid = grid
        self.last_report = None
        self.on_tiles_changed()


def report_to_dict(report: Optional[DayReport]) -> Dict[str, float]:
    return asdict(report) if report is not None else {}
