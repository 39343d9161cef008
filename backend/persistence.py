"""
Binary grid files and city snapshots.

Grid file layout (big-endian):

    u32 width
    u32 height
    width*height cells, row-major:
        u8  tile kind (TileKind value)
        f64 population                      residential/commercial/industrial
        u32 production, u32 stored_goods    industrial only
        u32 level
        u32 region channel count
        u32 region id per channel
    optional trailer: width*height u8 raw resource counters

Files without the trailer load with full raw resources. The simulator's
scalar state (pools, taxes, funds, day) goes into a JSON file next to the
grid file.
"""

import json
import logging
import math
import struct
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional, Tuple, Union

import numpy as np

from config import CONFIG, CatalogueConfig
from grid import TileGrid
from tiles import IndustrialZone, TileKind, ZONED_KINDS, make_tile_for_kind

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

# kind byte + level + region channel count
_MIN_CELL_BYTES = 1 + 4 + 4


class PersistenceErrorKind(Enum):
    IO_FAILURE = "io_failure"
    INVALID_FORMAT = "invalid_format"


class PersistenceError(Exception):
    """Saving or loading a city failed; nothing was changed."""

    def __init__(
        self,
        kind: PersistenceErrorKind,
        message: str,
        offset: Optional[int] = None,
        value: Optional[int] = None,
    ):
        super().__init__(message)
        self.kind = kind
        self.offset = offset
        self.value = value

    @classmethod
    def io_failure(cls, path: PathLike, error: OSError) -> "PersistenceError":
        return cls(PersistenceErrorKind.IO_FAILURE, f"{path}: {error}")

    @classmethod
    def invalid_format(cls, message: str, offset: int, value: Optional[int] = None) -> "PersistenceError":
        return cls(PersistenceErrorKind.INVALID_FORMAT, f"{message} at byte {offset}", offset, value)


class _Reader:
    """Big-endian reader over a byte buffer that tracks its offset."""

    def __init__(self, data: bytes):
        self.data = data
        self.offset = 0

    @property
    def remaining(self) -> int:
        return len(self.data) - self.offset

    def read(self, fmt: str) -> Tuple[Any, ...]:
        size = struct.calcsize(fmt)
        if self.remaining < size:
            raise PersistenceError.invalid_format("unexpected end of file", self.offset)
        values = struct.unpack_from(fmt, self.data, self.offset)
        self.offset += size
        return values

    def read_u8(self) -> int:
        return self.read(">B")[0]

    def read_u32(self) -> int:
        return self.read(">I")[0]

    def read_f64(self) -> float:
        return self.read(">d")[0]


def encode_grid(grid: TileGrid) -> bytes:
    parts = [struct.pack(">II", grid.width, grid.height)]

    for tile in grid.tiles:
        parts.append(struct.pack(">B", int(tile.kind)))
        zone = tile.zone
        if zone is not None:
            parts.append(struct.pack(">d", zone.population))
        if isinstance(zone, IndustrialZone):
            parts.append(struct.pack(">II", zone.production, zone.stored_goods))
        parts.append(struct.pack(">II", tile.level, len(tile.region_ids)))
        parts.append(struct.pack(f">{len(tile.region_ids)}I", *tile.region_ids))

    parts.append(grid.raw_resources.astype(np.uint8).tobytes())
    return b"".join(parts)


def _check_zone(tile, population_offset: int, level_offset: int) -> None:
    """Reject zoned cells whose level or population a running city could never reach."""
    zone = tile.zone
    if tile.level > zone.max_level:
        raise PersistenceError.invalid_format(
            f"level {tile.level} above max level {zone.max_level}", level_offset, tile.level
        )
    population = zone.population
    if not math.isfinite(population) or not 0.0 <= population <= tile.capacity():
        raise PersistenceError.invalid_format(
            f"population {population} outside [0, {tile.capacity()}]", population_offset
        )


def decode_grid(data: bytes, catalogue: Optional[CatalogueConfig] = None) -> TileGrid:
    catalogue = catalogue or CONFIG.catalogue
    reader = _Reader(data)

    width = reader.read_u32()
    height = reader.read_u32()
    count = width * height
    if count == 0:
        raise PersistenceError.invalid_format("empty grid", 0)
    if reader.remaining < count * _MIN_CELL_BYTES:
        raise PersistenceError.invalid_format("file too short for grid size", reader.offset)

    tiles = []
    channels = 1
    for _ in range(count):
        kind_offset = reader.offset
        kind_value = reader.read_u8()
        try:
            kind = TileKind(kind_value)
        except ValueError:
            raise PersistenceError.invalid_format(
                f"invalid tile kind {kind_value}", kind_offset, kind_value
            ) from None

        tile = make_tile_for_kind(kind, catalogue)
        population_offset = reader.offset
        if kind in ZONED_KINDS:
            tile.set_population(reader.read_f64())
        if kind == TileKind.INDUSTRIAL:
            tile.set_production(reader.read_u32())
            tile.set_stored_goods(reader.read_u32())

        level_offset = reader.offset
        tile.level = reader.read_u32()
        if tile.zone is not None:
            _check_zone(tile, population_offset, level_offset)
        num_regions = reader.read_u32()
        if reader.remaining < num_regions * 4:
            raise PersistenceError.invalid_format("unexpected end of file", reader.offset)
        tile.region_ids = list(reader.read(f">{num_regions}I")) if num_regions else []
        channels = max(channels, num_regions)
        tiles.append(tile)

    # Older saves carry no region channel for some tiles
    for tile in tiles:
        if len(tile.region_ids) < channels:
            tile.region_ids.extend([0] * (channels - len(tile.region_ids)))

    raw_resources = None
    if reader.remaining == count:
        raw_resources = np.frombuffer(data, dtype=np.uint8, count=count, offset=reader.offset)
    elif reader.remaining != 0:
        raise PersistenceError.invalid_format(f"{reader.remaining} unexpected trailing bytes", reader.offset)

    grid = TileGrid(width, height, tiles, raw_resources, num_region_channels=channels)
    for channel in range(channels):
        grid.num_regions[channel] = max((tile.region_ids[channel] for tile in tiles), default=0)
    return grid


def save_grid(grid: TileGrid, path: PathLike) -> None:
    data = encode_grid(grid)
    try:
        Path(path).write_bytes(data)
    except OSError as e:
        raise PersistenceError.io_failure(path, e) from e
    logger.info("Saved %dx%d grid to %s (%d bytes)", grid.width, grid.height, path, len(data))


def load_grid(path: PathLike, catalogue: Optional[CatalogueConfig] = None) -> TileGrid:
    try:
        data = Path(path).read_bytes()
    except OSError as e:
        raise PersistenceError.io_failure(path, e) from e

    grid = decode_grid(data, catalogue)
    logger.info("Loaded %dx%d grid from %s", grid.width, grid.height, path)
    return grid


def state_path(path: PathLike) -> Path:
    path = Path(path)
    return path.with_name(path.name + ".json")


def save_city(simulator, path: PathLike) -> None:
    """Write the simulator's grid to path and its scalar state beside it."""
    save_grid(simulator.grid, path)
    try:
        state_path(path).write_text(json.dumps(simulator.state_dict(), indent=2))
    except OSError as e:
        raise PersistenceError.io_failure(state_path(path), e) from e


def load_city(path: PathLike, catalogue: Optional[CatalogueConfig] = None) -> Tuple[TileGrid, Dict[str, Any]]:
    """
    Read a grid and, if present, its state file.

    Returns:
        (grid, state) where state is empty for a bare grid file
    """
    grid = load_grid(path, catalogue)

    sidecar = state_path(path)
    if not sidecar.exists():
        return grid, {}

    try:
        text = sidecar.read_text()
    except OSError as e:
        raise PersistenceError.io_failure(sidecar, e) from e

    try:
        state = json.loads(text)
    except json.JSONDecodeError as e:
        raise PersistenceError.invalid_format(f"{sidecar}: {e.msg}", e.pos) from e
    if not isinstance(state, dict):
        raise PersistenceError.invalid_format(f"{sidecar}: expected an object", 0)
    return grid, state
