"""
Tile grid with selection, shuffled iteration and region labeling.

Cells are stored row-major. Each cell is a Tile plus a raw resource counter
and a selection flag; the counters and flags live in NumPy arrays alongside
the tile list.
"""

import logging
from typing import Callable, Dict, Iterator, List, NamedTuple, Optional, Sequence, Tuple

import numpy as np

from config import CONFIG, CatalogueConfig, MapConfig
from tiles import Selection, Tile, TileKind, TileType, make_tile_for_kind

logger = logging.getLogger(__name__)

TilePredicate = Callable[[TileType], bool]

# N, E, S, W
_NEIGHBOR_OFFSETS = ((0, -1), (1, 0), (0, 1), (-1, 0))


class Point(NamedTuple):
    x: int
    y: int


class TileGrid:
    """
    Fixed width x height grid of tiles.

    The grid owns region labeling: find_connected_regions() partitions the
    cells matching a predicate into 4-connected components labeled 1, 2, ...
    in raster discovery order. Label 0 means "not in any component".
    """

    def __init__(
        self,
        width: int,
        height: int,
        tiles: Sequence[Tile],
        raw_resources: Optional[np.ndarray] = None,
        num_region_channels: int = 1,
    ):
        if width <= 0 or height <= 0:
            raise ValueError("grid dimensions must be positive")
        if len(tiles) != width * height:
            raise ValueError(f"expected {width * height} tiles, got {len(tiles)}")

        self.width = width
        self.height = height
        self.tiles: List[Tile] = list(tiles)

        if raw_resources is None:
            raw_resources = np.full(width * height, CONFIG.map.initial_raw_resources, dtype=np.uint8)
        else:
            raw_resources = np.asarray(raw_resources, dtype=np.uint8).copy()
            if raw_resources.shape != (width * height,):
                raise ValueError("raw_resources must have one entry per cell")
        self.raw_resources: np.ndarray = raw_resources

        self.selection: np.ndarray = np.full(width * height, Selection.DESELECTED, dtype=np.int8)
        self.num_selected = 0
        self.num_regions: List[int] = [0] * num_region_channels

    @classmethod
    def new_generated(
        cls,
        width: Optional[int] = None,
        height: Optional[int] = None,
        rng_seed: Optional[int] = None,
        map_config: Optional[MapConfig] = None,
        catalogue: Optional[CatalogueConfig] = None,
    ) -> "TileGrid":
        """
        Fill a new grid by weighted random draw: forest, then water, else grass.

        Both draws are taken for every cell so the terrain depends only on
        the seed and the grid size.
        """
        map_config = map_config or CONFIG.map
        width = width if width is not None else map_config.width
        height = height if height is not None else map_config.height

        rng = np.random.default_rng(rng_seed)
        draws = rng.random((width * height, 2))
        is_forest = draws[:, 0] < map_config.forest_chance
        is_water = ~is_forest & (draws[:, 1] < map_config.water_chance)

        templates = {
            kind: make_tile_for_kind(kind, catalogue)
            for kind in (TileKind.GRASS, TileKind.FOREST, TileKind.WATER)
        }
        tiles = []
        for forest, water in zip(is_forest, is_water):
            if forest:
                kind = TileKind.FOREST
            elif water:
                kind = TileKind.WATER
            else:
                kind = TileKind.GRASS
            tiles.append(templates[kind].fresh_copy())

        raw_resources = np.full(width * height, map_config.initial_raw_resources, dtype=np.uint8)
        logger.debug("Generated %dx%d map (%d forest, %d water)",
                     width, height, int(is_forest.sum()), int(is_water.sum()))
        return cls(width, height, tiles, raw_resources)

    @classmethod
    def filled(cls, width: int, height: int, template: Tile) -> "TileGrid":
        """Grid where every cell is a copy of template."""
        return cls(width, height, [template.fresh_copy() for _ in range(width * height)])

    def size(self) -> Tuple[int, int]:
        return (self.width, self.height)

    # Cell access

    def index(self, x: int, y: int) -> int:
        return y * self.width + x

    def position(self, index: int) -> Point:
        return Point(index % self.width, index // self.width)

    def in_bounds(self, x: int, y: int) -> bool:
        return 0 <= x < self.width and 0 <= y < self.height

    def tile_at(self, point: Tuple[int, int]) -> Optional[Tile]:
        x, y = point
        if not self.in_bounds(x, y):
            return None
        return self.tiles[self.index(x, y)]

    def replace_tile(self, index: int, tile: Tile) -> None:
        """Put a new tile in a cell. The cell's raw resources are kept."""
        old = self.tiles[index]
        if len(tile.region_ids) < len(old.region_ids):
            tile.region_ids = tile.region_ids + [0] * (len(old.region_ids) - len(tile.region_ids))
        self.tiles[index] = tile

    # Selection

    def clear_selected(self) -> None:
        self.selection.fill(Selection.DESELECTED)
        self.num_selected = 0

    def select(self, start: Tuple[int, int], end: Tuple[int, int], is_blacklisted: TilePredicate) -> None:
        """
        Mark the rectangle between two corners.

        Corners are normalized and clamped to the grid, so out-of-bounds
        coordinates select the in-bounds intersection. Blacklisted cells are
        marked INVALID and not counted.
        """
        x0, x1 = sorted((start[0], end[0]))
        y0, y1 = sorted((start[1], end[1]))

        x0 = min(max(x0, 0), self.width - 1)
        x1 = min(max(x1, 0), self.width - 1)
        y0 = min(max(y0, 0), self.height - 1)
        y1 = min(max(y1, 0), self.height - 1)

        for y in range(y0, y1 + 1):
            for x in range(x0, x1 + 1):
                index = self.index(x, y)
                if is_blacklisted(self.tiles[index].tile_type):
                    self.selection[index] = Selection.INVALID
                else:
                    # Re-selecting an already selected cell still counts, as
                    # callers clear the selection before each drag update
                    self.selection[index] = Selection.SELECTED
                    self.num_selected += 1

    def selected(self) -> Iterator[Tuple[int, Tile]]:
        """(index, tile) for every SELECTED cell, in raster order."""
        for index in np.flatnonzero(self.selection == Selection.SELECTED):
            index = int(index)
            yield index, self.tiles[index]

    # Iteration

    def shuffled_order(self, rng) -> List[int]:
        """Fresh uniformly random permutation of all cell indices."""
        return [int(i) for i in rng.permutation(len(self.tiles))]

    # Regions

    def find_connected_regions(self, is_member: TilePredicate, channel: int = 0) -> int:
        """
        Label the 4-connected components of member cells on one channel.

        Labels start at 1 and are assigned in raster order of each
        component's first cell. Uses an explicit stack; a cell is labeled
        when it is pushed, so no cell is visited twice.

        Returns:
            Number of components found
        """
        self._ensure_channel(channel)
        for tile in self.tiles:
            tile.region_ids[channel] = 0

        member = [is_member(tile.tile_type) for tile in self.tiles]
        label = 0

        for start in range(len(self.tiles)):
            if not member[start] or self.tiles[start].region_ids[channel] != 0:
                continue

            label += 1
            self.tiles[start].region_ids[channel] = label
            stack = [start]
            while stack:
                index = stack.pop()
                x, y = index % self.width, index // self.width
                for dx, dy in _NEIGHBOR_OFFSETS:
                    nx, ny = x + dx, y + dy
                    if not (0 <= nx < self.width and 0 <= ny < self.height):
                        continue
                    neighbor = ny * self.width + nx
                    if member[neighbor] and self.tiles[neighbor].region_ids[channel] == 0:
                        self.tiles[neighbor].region_ids[channel] = label
                        stack.append(neighbor)

        self.num_regions[channel] = label
        logger.debug("Labeled %d regions on channel %d", label, channel)
        return label

    def region_members(self, channel: int = 0) -> Dict[int, List[int]]:
        """Cell indices per positive region label, each list in raster order."""
        members: Dict[int, List[int]] = {}
        for index, tile in enumerate(self.tiles):
            region = tile.region_ids[channel] if channel < len(tile.region_ids) else 0
            if region:
                members.setdefault(region, []).append(index)
        return members

    def _ensure_channel(self, channel: int) -> None:
        if channel < 0:
            raise ValueError("region channel must be non-negative")
        while len(self.num_regions) <= channel:
            self.num_regions.append(0)
        for tile in self.tiles:
            if len(tile.region_ids) <= channel:
                tile.region_ids.extend([0] * (channel + 1 - len(tile.region_ids)))

    # Cosmetic

    def update_direction(self, kind: TileKind = TileKind.ROAD) -> None:
        """
        Pick the sprite variant of each tile of an unzoned kind from its
        neighbors (roads bend, join and cross). Only the tile's level is
        written, which unzoned tiles never use in the simulation.
        """
        if kind in (TileKind.RESIDENTIAL, TileKind.COMMERCIAL, TileKind.INDUSTRIAL):
            raise ValueError("direction variants only apply to unzoned tiles")

        def same(x: int, y: int) -> bool:
            return self.in_bounds(x, y) and self.tiles[self.index(x, y)].kind == kind

        for y in range(self.height):
            for x in range(self.width):
                tile = self.tiles[self.index(x, y)]
                if tile.kind != kind:
                    continue

                west, east = same(x - 1, y), same(x + 1, y)
                north, south = same(x, y - 1), same(x, y + 1)
                tile.level = _direction_variant(west, east, north, south, tile.level)


def _direction_variant(west: bool, east: bool, north: bool, south: bool, current: int) -> int:
    if west and east and north and south:
        return 2
    if west and east and north:
        return 7
    if west and east and south:
        return 8
    if north and south and west:
        return 9
    if north and south and east:
        return 10
    if west and east:
        return 0
    if north and south:
        return 1
    if south and west:
        return 3
    if north and east:
        return 4
    if west and north:
        return 5
    if south and east:
        return 6
    if west or east:
        return 0
    if north or south:
        return 1
    # Isolated tiles keep whatever variant they had
    return current
