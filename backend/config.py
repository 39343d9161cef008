"""
Simulation Configuration

Centralizes all tunable parameters for the city simulation.
The tile catalogue (build costs, capacities) lives here as well so the
core never hard-codes it.
"""

from dataclasses import dataclass, field
from typing import Dict


@dataclass
class TimeConfig:
    """Time-related constants."""
    tick_period: float = 1.0  # Driver seconds per simulated day
    days_per_month: int = 30  # Earnings are settled into funds every month


@dataclass
class PopulationConfig:
    """Population growth and labor force parameters."""
    birth_rate: float = 0.00055
    death_rate: float = 0.00023
    prop_can_work: float = 0.5  # Share of population change that joins the labor pool
    max_move_per_tick: float = 4.0  # Max units moved from a pool into one tile per tick


@dataclass
class TaxConfig:
    """Starting tax rates (all in [0, 1])."""
    residential: float = 0.05
    commercial: float = 0.05
    industrial: float = 0.05
    residential_income_per_head: float = 15.0


@dataclass
class ZoneBehaviorConfig:
    """Per-tile stochastic behavior of zoned tiles."""
    job_seek_chance: float = 0.15  # Scaled by (1 - tax) for commercial/industrial hiring
    production_chance_per_worker: float = 0.01  # Industrial: chance = population * this
    level_up_chance: float = 0.01  # Divided by (level + 1)


@dataclass
class TradeConfig:
    """Goods pricing for the goods-distribution pass."""
    goods_unit_price: float = 100.0
    price_noise: float = 20.0  # Uniform noise added to each commercial batch
    customer_divisor: float = 100.0


@dataclass
class MigrationConfig:
    """People moving into and out of the city."""
    immigrant_scale: float = 1e-4  # immigrants = 1 + excess_capacity * scale
    immigration_chance_scale: float = 1e-5
    emigration_chance_scale: float = 0.01
    emigration_fraction: float = 0.05


@dataclass
class MapConfig:
    """Generated map parameters."""
    width: int = 50
    height: int = 50
    forest_chance: float = 0.2
    water_chance: float = 0.02  # Rolled only when the forest roll fails
    initial_raw_resources: int = 255


@dataclass(frozen=True)
class TileSpec:
    """Immutable catalogue entry used when a tile is created."""
    kind: str
    build_cost: int
    capacity_per_level: int = 0
    max_level: int = 0


def _default_tile_specs() -> Dict[str, TileSpec]:
    return {
        "void": TileSpec(kind="void", build_cost=0),
        "grass": TileSpec(kind="grass", build_cost=50),
        "forest": TileSpec(kind="forest", build_cost=100),
        "water": TileSpec(kind="water", build_cost=0),
        "residential": TileSpec(kind="residential", build_cost=300, capacity_per_level=50, max_level=6),
        "commercial": TileSpec(kind="commercial", build_cost=300, capacity_per_level=50, max_level=6),
        "industrial": TileSpec(kind="industrial", build_cost=300, capacity_per_level=50, max_level=6),
        "road": TileSpec(kind="road", build_cost=100),
    }


@dataclass
class CatalogueConfig:
    """Tile catalogue keyed by tile name."""
    tiles: Dict[str, TileSpec] = field(default_factory=_default_tile_specs)


@dataclass
class EconomyConfig:
    """City-wide starting state."""
    starting_funds: float = 10_000.0


KNOWN_TILE_KINDS = ("void", "grass", "forest", "water", "residential", "commercial", "industrial", "road")


@dataclass
class SimulationConfig:
    """Master configuration for the entire simulation."""

    time: TimeConfig = field(default_factory=TimeConfig)
    population: PopulationConfig = field(default_factory=PopulationConfig)
    taxes: TaxConfig = field(default_factory=TaxConfig)
    zones: ZoneBehaviorConfig = field(default_factory=ZoneBehaviorConfig)
    trade: TradeConfig = field(default_factory=TradeConfig)
    migration: MigrationConfig = field(default_factory=MigrationConfig)
    map: MapConfig = field(default_factory=MapConfig)
    catalogue: CatalogueConfig = field(default_factory=CatalogueConfig)
    economy: EconomyConfig = field(default_factory=EconomyConfig)

    def __post_init__(self):
        """Validation."""
        if self.time.tick_period <= 0:
            raise ValueError("tick_period must be positive")
        if self.time.days_per_month <= 0:
            raise ValueError("days_per_month must be positive")

        for name in ("residential", "commercial", "industrial"):
            rate = getattr(self.taxes, name)
            if not (0.0 <= rate <= 1.0):
                raise ValueError(f"{name} tax must be in [0, 1]")

        if self.population.birth_rate < 0 or self.population.death_rate < 0:
            raise ValueError("birth_rate and death_rate must be non-negative")
        if not (0.0 <= self.population.prop_can_work <= 1.0):
            raise ValueError("prop_can_work must be in [0, 1]")
        if self.population.max_move_per_tick <= 0:
            raise ValueError("max_move_per_tick must be positive")

        for name in ("job_seek_chance", "production_chance_per_worker", "level_up_chance"):
            if not (0.0 <= getattr(self.zones, name) <= 1.0):
                raise ValueError(f"{name} must be in [0, 1]")

        if self.map.width <= 0 or self.map.height <= 0:
            raise ValueError("map dimensions must be positive")
        if not (0 <= self.map.initial_raw_resources <= 255):
            raise ValueError("initial_raw_resources must fit in a byte")

        for name, spec in self.catalogue.tiles.items():
            if spec.kind not in KNOWN_TILE_KINDS:
                raise ValueError(f"catalogue entry {name!r} has unknown kind {spec.kind!r}")
            if spec.build_cost < 0:
                raise ValueError(f"catalogue entry {name!r} has a negative build cost")


# Global configuration instance
CONFIG = SimulationConfig()
