"""
Tile types and per-tile state.

A tile's land use is a TileKind tag plus, for the three zoned kinds, a Zone
payload holding the fields they share (population, capacity, max level).
Industrial zones extend the payload with their production counters.
"""

import copy
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Callable, List, Optional

from config import CONFIG, CatalogueConfig


class TileKind(IntEnum):
    """Land use tag. Values double as the tile kind byte in saved grids."""
    VOID = 0
    GRASS = 1
    FOREST = 2
    WATER = 3
    RESIDENTIAL = 4
    COMMERCIAL = 5
    INDUSTRIAL = 6
    ROAD = 7

    def __str__(self) -> str:
        return _DISPLAY_NAMES[self]


_DISPLAY_NAMES = {
    TileKind.VOID: "Void",
    TileKind.GRASS: "Grass",
    TileKind.FOREST: "Forest",
    TileKind.WATER: "Water",
    TileKind.RESIDENTIAL: "Residential Zone",
    TileKind.COMMERCIAL: "Commercial Zone",
    TileKind.INDUSTRIAL: "Industrial Zone",
    TileKind.ROAD: "Road",
}

ZONED_KINDS = frozenset({TileKind.RESIDENTIAL, TileKind.COMMERCIAL, TileKind.INDUSTRIAL})

# Kinds that form connected districts for trade
DISTRICT_KINDS = frozenset({TileKind.ROAD, TileKind.RESIDENTIAL, TileKind.COMMERCIAL, TileKind.INDUSTRIAL})


class Selection(IntEnum):
    DESELECTED = 0
    SELECTED = 1
    INVALID = 2


@dataclass(slots=True)
class Zone:
    """Fields shared by residential, commercial and industrial tiles."""
    population: float = 0.0
    capacity_per_level: int = 0
    max_level: int = 0


@dataclass(slots=True)
class IndustrialZone(Zone):
    production: int = 0
    stored_goods: int = 0


@dataclass(slots=True)
class TileType:
    """
    Land use of a tile.

    Equality (==) compares the payload as well; use similar_to() for the
    tag-only comparison needed by adjacency and blacklist checks.
    """

    kind: TileKind
    zone: Optional[Zone] = None

    @classmethod
    def residential(cls, capacity_per_level: int, max_level: int) -> "TileType":
        return cls(TileKind.RESIDENTIAL, Zone(0.0, capacity_per_level, max_level))

    @classmethod
    def commercial(cls, capacity_per_level: int, max_level: int) -> "TileType":
        return cls(TileKind.COMMERCIAL, Zone(0.0, capacity_per_level, max_level))

    @classmethod
    def industrial(cls, capacity_per_level: int, max_level: int) -> "TileType":
        return cls(TileKind.INDUSTRIAL, IndustrialZone(0.0, capacity_per_level, max_level))

    @classmethod
    def plain(cls, kind: TileKind) -> "TileType":
        if kind in ZONED_KINDS:
            raise ValueError(f"{kind!s} needs a zone payload")
        return cls(kind)

    def similar_to(self, other: "TileType") -> bool:
        return self.kind == other.kind

    @property
    def population(self) -> float:
        return self.zone.population if self.zone is not None else 0.0

    def __str__(self) -> str:
        return str(self.kind)


@dataclass(slots=True)
class Tile:
    """A placed tile: land use plus level (sprite variant) and region labels."""

    tile_type: TileType
    level: int = 0
    region_ids: List[int] = field(default_factory=lambda: [0])
    build_cost: int = 0

    @property
    def kind(self) -> TileKind:
        return self.tile_type.kind

    @property
    def zone(self) -> Optional[Zone]:
        return self.tile_type.zone

    def capacity(self) -> float:
        """Population capacity at the current level (0 for unzoned tiles)."""
        zone = self.tile_type.zone
        if zone is None:
            return 0.0
        return float(zone.capacity_per_level * (self.level + 1))

    def set_population(self, population: float) -> None:
        if self.tile_type.zone is not None:
            self.tile_type.zone.population = population

    def set_production(self, production: int) -> None:
        if isinstance(self.tile_type.zone, IndustrialZone):
            self.tile_type.zone.production = production

    def set_stored_goods(self, stored_goods: int) -> None:
        if isinstance(self.tile_type.zone, IndustrialZone):
            self.tile_type.zone.stored_goods = stored_goods

    def maybe_level_up(self, rng, chance: float) -> bool:
        """
        Roll for a level increase.

        Only a tile whose population exactly fills the current level and that
        is below its max level may grow; the roll succeeds with probability
        chance / (level + 1).
        """
        zone = self.tile_type.zone
        if zone is None:
            return False
        if int(zone.population) != zone.capacity_per_level * (self.level + 1):
            return False
        if self.level >= zone.max_level:
            return False
        if rng.random() < chance / (self.level + 1):
            self.level += 1
            return True
        return False

    def fresh_copy(self) -> "Tile":
        """Independent copy used when stamping a template onto the grid."""
        return copy.deepcopy(self)


def make_tile(name: str, catalogue: Optional[CatalogueConfig] = None) -> Tile:
    """Build a fresh tile from a catalogue entry (KeyError for unknown names)."""
    catalogue = catalogue or CONFIG.catalogue
    spec = catalogue.tiles[name]
    kind = TileKind[spec.kind.upper()]

    if kind == TileKind.RESIDENTIAL:
        tile_type = TileType.residential(spec.capacity_per_level, spec.max_level)
    elif kind == TileKind.COMMERCIAL:
        tile_type = TileType.commercial(spec.capacity_per_level, spec.max_level)
    elif kind == TileKind.INDUSTRIAL:
        tile_type = TileType.industrial(spec.capacity_per_level, spec.max_level)
    else:
        tile_type = TileType.plain(kind)

    return Tile(tile_type=tile_type, build_cost=spec.build_cost)


def make_tile_for_kind(kind: TileKind, catalogue: Optional[CatalogueConfig] = None) -> Tile:
    """Build a fresh tile for a kind, using the first catalogue entry of that kind."""
    catalogue = catalogue or CONFIG.catalogue
    wanted = kind.name.lower()
    for name, spec in catalogue.tiles.items():
        if spec.kind == wanted:
            return make_tile(name, catalogue)
    # Kinds missing from the catalogue still need a usable tile (e.g. in old saves)
    if kind in ZONED_KINDS:
        raise KeyError(f"no catalogue entry for {kind!s}")
    return Tile(tile_type=TileType.plain(kind))


def placement_blacklist(new_tile: Tile) -> Callable[[TileType], bool]:
    """
    Predicate for cells the given tile may not be placed on.

    Flattening to grass is allowed everywhere except water; anything else
    may only be built on open land (grass or void).
    """
    if new_tile.kind == TileKind.GRASS:
        blocked = {TileKind.WATER}
    else:
        blocked = {
            new_tile.kind,
            TileKind.WATER,
            TileKind.FOREST,
            TileKind.ROAD,
            TileKind.RESIDENTIAL,
            TileKind.COMMERCIAL,
            TileKind.INDUSTRIAL,
        }

    def is_blacklisted(tile_type: TileType) -> bool:
        return tile_type.kind in blocked

    return is_blacklisted


def is_district_member(tile_type: TileType) -> bool:
    return tile_type.kind in DISTRICT_KINDS
