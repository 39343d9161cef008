"""
Unit tests for grid files and city snapshots

Tests cover:
- Save/load round trip of tiles, zones, levels and region ids
- Raw resource trailer and files without it
- Malformed files (bad tile kind, truncation, trailing bytes)
- I/O failures and loading into a running simulator
"""

import json
import struct

import numpy as np
import pytest

from economy import EconomySimulator
from grid import TileGrid
from persistence import (
    PersistenceError,
    PersistenceErrorKind,
    decode_grid,
    encode_grid,
    load_city,
    load_grid,
    save_grid,
    state_path,
)
from tiles import TileKind, is_district_member, make_tile


def sample_grid():
    names = ["residential", "road", "commercial", "water", "industrial", "forest", "void", "grass"]
    tiles = [make_tile(name) for name in names]
    grid = TileGrid(4, 2, tiles)

    tiles[0].set_population(37.25)
    tiles[0].level = 2
    tiles[2].set_population(12.0)
    tiles[4].set_population(8.5)
    tiles[4].set_production(3)
    tiles[4].set_stored_goods(41)
    tiles[4].level = 1
    grid.raw_resources[4] = 17
    grid.find_connected_regions(is_district_member, 0)
    return grid


def cell_snapshot(grid):
    snapshot = []
    for tile in grid.tiles:
        zone = tile.zone
        snapshot.append((
            tile.kind,
            zone.population if zone is not None else None,
            getattr(zone, "production", None),
            getattr(zone, "stored_goods", None),
            tile.level,
            list(tile.region_ids),
        ))
    return snapshot


def legacy_bytes():
    """A 2x1 file written without the raw resource trailer."""
    data = struct.pack(">II", 2, 1)
    data += struct.pack(">B", int(TileKind.ROAD)) + struct.pack(">II", 0, 1) + struct.pack(">I", 1)
    data += struct.pack(">B", int(TileKind.RESIDENTIAL)) + struct.pack(">d", 5.0)
    data += struct.pack(">II", 0, 1) + struct.pack(">I", 1)
    return data


def residential_cell_bytes(population, level=0):
    """A 1x1 file holding one residential cell."""
    data = struct.pack(">II", 1, 1)
    data += struct.pack(">B", int(TileKind.RESIDENTIAL)) + struct.pack(">d", population)
    data += struct.pack(">II", level, 1) + struct.pack(">I", 0)
    return data


class TestRoundTrip:
    """Test suite for save followed by load"""

    def test_round_trip(self, tmp_path):
        grid = sample_grid()
        path = tmp_path / "city.map"

        save_grid(grid, path)
        loaded = load_grid(path)

        assert loaded.size() == (4, 2)
        assert cell_snapshot(loaded) == cell_snapshot(grid)
        assert np.array_equal(loaded.raw_resources, grid.raw_resources)
        assert loaded.num_regions == grid.num_regions

    def test_header_is_big_endian(self):
        data = encode_grid(sample_grid())
        assert data[:8] == b"\x00\x00\x00\x04\x00\x00\x00\x02"
        assert data[8] == int(TileKind.RESIDENTIAL)
        assert struct.unpack(">d", data[9:17])[0] == 37.25

    def test_loaded_raw_resources_are_writable(self):
        loaded = decode_grid(encode_grid(sample_grid()))
        loaded.raw_resources[0] -= 1
        assert loaded.raw_resources[0] == 254

    def test_legacy_file_without_trailer(self):
        grid = decode_grid(legacy_bytes())

        assert [t.kind for t in grid.tiles] == [TileKind.ROAD, TileKind.RESIDENTIAL]
        assert grid.tiles[1].zone.population == 5.0
        assert np.all(grid.raw_resources == 255)


class TestMalformedFiles:
    """Test suite for invalid grid files"""

    def test_invalid_tile_kind(self):
        data = bytearray(legacy_bytes())
        data[8] = 9

        with pytest.raises(PersistenceError) as excinfo:
            decode_grid(bytes(data))

        error = excinfo.value
        assert error.kind == PersistenceErrorKind.INVALID_FORMAT
        assert error.offset == 8
        assert error.value == 9

    def test_truncated_file(self):
        data = legacy_bytes()[:-3]

        with pytest.raises(PersistenceError) as excinfo:
            decode_grid(data)

        assert excinfo.value.kind == PersistenceErrorKind.INVALID_FORMAT
        assert excinfo.value.value is None

    def test_grid_size_larger_than_file(self):
        data = struct.pack(">II", 1000, 1000) + b"\x01"
        with pytest.raises(PersistenceError):
            decode_grid(data)

    def test_unexpected_trailing_bytes(self):
        with pytest.raises(PersistenceError):
            decode_grid(legacy_bytes() + b"\x01")

    @pytest.mark.parametrize("population", [float("nan"), float("inf"), -1.0, 50.5])
    def test_population_out_of_range(self, population):
        with pytest.raises(PersistenceError) as excinfo:
            decode_grid(residential_cell_bytes(population))

        assert excinfo.value.kind == PersistenceErrorKind.INVALID_FORMAT
        assert excinfo.value.offset == 9

    def test_population_limit_follows_level(self):
        grid = decode_grid(residential_cell_bytes(60.0, level=1))
        assert grid.tiles[0].zone.population == 60.0

    def test_level_above_max_level(self):
        with pytest.raises(PersistenceError) as excinfo:
            decode_grid(residential_cell_bytes(10.0, level=7))

        assert excinfo.value.offset == 17
        assert excinfo.value.value == 7

    def test_rejected_cell_never_reaches_the_simulator(self, tmp_path):
        path = tmp_path / "nan.map"
        path.write_bytes(residential_cell_bytes(float("nan")))
        sim = EconomySimulator(TileGrid.filled(2, 2, make_tile("residential")), seed=0)

        with pytest.raises(PersistenceError):
            sim.load(path)

        assert sim.tick(1.0) is not None
        assert sim.grid.size() == (2, 2)

    def test_empty_grid(self):
        with pytest.raises(PersistenceError):
            decode_grid(struct.pack(">II", 0, 5))

    def test_missing_file_is_io_failure(self, tmp_path):
        with pytest.raises(PersistenceError) as excinfo:
            load_grid(tmp_path / "nope.map")
        assert excinfo.value.kind == PersistenceErrorKind.IO_FAILURE

    def test_unwritable_path_is_io_failure(self, tmp_path):
        with pytest.raises(PersistenceError) as excinfo:
            save_grid(sample_grid(), tmp_path / "missing-dir" / "city.map")
        assert excinfo.value.kind == PersistenceErrorKind.IO_FAILURE


class TestCitySnapshots:
    """Test suite for saving and loading a whole simulator"""

    def test_simulator_round_trip(self, tmp_path):
        sim = EconomySimulator(sample_grid(), seed=4)
        sim.homeless_pool = 12.5
        sim.unemployed_pool = 3.0
        sim.funds = 4321.0
        sim.residential_tax = 0.1
        for _ in range(5):
            sim.tick(1.0)

        path = tmp_path / "city.map"
        sim.save(path)
        assert state_path(path).exists()

        restored = EconomySimulator(TileGrid.filled(2, 2, make_tile("grass")), seed=4)
        restored.load(path)

        assert restored.grid.size() == (4, 2)
        assert restored.day == 5
        assert restored.funds == sim.funds
        assert restored.homeless_pool == sim.homeless_pool
        assert restored.residential_tax == 0.1
        assert cell_snapshot(restored.grid) == cell_snapshot(sim.grid)

    def test_bare_grid_file_has_empty_state(self, tmp_path):
        path = tmp_path / "city.map"
        save_grid(sample_grid(), path)

        grid, state = load_city(path)
        assert state == {}
        assert grid.size() == (4, 2)

    def test_failed_load_leaves_city_untouched(self, tmp_path):
        path = tmp_path / "broken.map"
        path.write_bytes(struct.pack(">II", 1, 1) + b"\x2a" + b"\x00" * 8)

        grid = TileGrid.filled(3, 3, make_tile("grass"))
        sim = EconomySimulator(grid, seed=0)
        sim.funds = 99.0

        with pytest.raises(PersistenceError):
            sim.load(path)

        assert sim.grid is grid
        assert sim.funds == 99.0

    def test_bad_state_file_leaves_city_untouched(self, tmp_path):
        path = tmp_path / "city.map"
        save_grid(sample_grid(), path)
        state_path(path).write_text(json.dumps({"funds": 10.0, "commercial_tax": 7.0}))

        grid = TileGrid.filled(3, 3, make_tile("grass"))
        sim = EconomySimulator(grid, seed=0)

        with pytest.raises(PersistenceError) as excinfo:
            sim.load(path)

        assert excinfo.value.kind == PersistenceErrorKind.INVALID_FORMAT
        assert sim.grid is grid
        assert sim.funds == 0.0

    def test_corrupt_state_json(self, tmp_path):
        path = tmp_path / "city.map"
        save_grid(sample_grid(), path)
        state_path(path).write_text("{not json")

        with pytest.raises(PersistenceError) as excinfo:
            load_city(path)
        assert excinfo.value.kind == PersistenceErrorKind.INVALID_FORMAT
