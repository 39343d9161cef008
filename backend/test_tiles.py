"""
Unit tests for tile types and the tile catalogue

Tests cover:
- Tag-only comparison of tile types
- Capacity and level-up rules of zoned tiles
- Catalogue-driven tile creation
- Placement blacklists
"""

import pytest

from config import CONFIG, SimulationConfig, TaxConfig, TimeConfig
from tiles import (
    IndustrialZone,
    Tile,
    TileKind,
    TileType,
    is_district_member,
    make_tile,
    make_tile_for_kind,
    placement_blacklist,
)


class FixedRng:
    """Returns the same uniform draw every time."""

    def __init__(self, value: float):
        self.value = value

    def random(self) -> float:
        return self.value


class TestTileType:
    """Test suite for TileType"""

    def test_similar_to_ignores_payload(self):
        """Two residential zones with different populations are still similar"""
        small = TileType.residential(10, 2)
        big = TileType.residential(50, 6)
        big.zone.population = 42.0

        assert small.similar_to(big)
        assert small != big

    def test_similar_to_distinguishes_kinds(self):
        assert not TileType.commercial(50, 6).similar_to(TileType.industrial(50, 6))
        assert not TileType.plain(TileKind.ROAD).similar_to(TileType.plain(TileKind.GRASS))

    def test_industrial_payload_carries_production(self):
        tile_type = TileType.industrial(50, 6)
        assert isinstance(tile_type.zone, IndustrialZone)
        assert tile_type.zone.production == 0
        assert tile_type.zone.stored_goods == 0

    def test_plain_refuses_zoned_kinds(self):
        with pytest.raises(ValueError):
            TileType.plain(TileKind.RESIDENTIAL)

    def test_display_names(self):
        assert str(TileType.plain(TileKind.ROAD)) == "Road"
        assert str(TileType.residential(1, 1)) == "Residential Zone"


class TestTile:
    """Test suite for Tile capacity and growth"""

    def test_capacity_scales_with_level(self):
        tile = Tile(TileType.residential(50, 6))
        assert tile.capacity() == 50.0
        tile.level = 2
        assert tile.capacity() == 150.0

    def test_unzoned_tile_has_no_capacity(self):
        assert Tile(TileType.plain(TileKind.GRASS)).capacity() == 0.0

    def test_level_up_requires_full_tile(self):
        tile = Tile(TileType.residential(50, 6))
        tile.set_population(49.5)

        assert not tile.maybe_level_up(FixedRng(0.0), 0.01)
        assert tile.level == 0

    def test_level_up_when_full_and_roll_succeeds(self):
        tile = Tile(TileType.commercial(50, 6))
        tile.set_population(50.0)

        assert tile.maybe_level_up(FixedRng(0.0), 0.01)
        assert tile.level == 1

    def test_level_up_chance_shrinks_with_level(self):
        """At level 1 the chance is halved: a draw of 0.007 fails 0.01 / 2"""
        tile = Tile(TileType.residential(50, 6), level=1)
        tile.set_population(100.0)

        assert not tile.maybe_level_up(FixedRng(0.007), 0.01)
        assert tile.maybe_level_up(FixedRng(0.004), 0.01)
        assert tile.level == 2

    def test_no_level_up_past_max_level(self):
        tile = Tile(TileType.industrial(10, 1), level=1)
        tile.set_population(20.0)

        assert not tile.maybe_level_up(FixedRng(0.0), 1.0)
        assert tile.level == 1

    def test_setters_ignore_unsupported_tiles(self):
        road = Tile(TileType.plain(TileKind.ROAD))
        road.set_population(10.0)
        road.set_production(3)
        assert road.tile_type.population == 0.0

        shop = Tile(TileType.commercial(50, 6))
        shop.set_stored_goods(7)
        assert not hasattr(shop.zone, "stored_goods")

    def test_fresh_copy_is_independent(self):
        template = make_tile("industrial")
        copy = template.fresh_copy()
        copy.set_production(5)
        copy.region_ids[0] = 3

        assert template.zone.production == 0
        assert template.region_ids == [0]


class TestCatalogue:
    """Test suite for catalogue-driven tile creation"""

    def test_make_tile_uses_catalogue(self):
        tile = make_tile("residential")
        spec = CONFIG.catalogue.tiles["residential"]

        assert tile.kind == TileKind.RESIDENTIAL
        assert tile.build_cost == spec.build_cost
        assert tile.zone.capacity_per_level == spec.capacity_per_level
        assert tile.zone.max_level == spec.max_level
        assert tile.region_ids == [0]

    def test_make_tile_unknown_name(self):
        with pytest.raises(KeyError):
            make_tile("airport")

    def test_make_tile_for_kind(self):
        assert make_tile_for_kind(TileKind.ROAD).build_cost == CONFIG.catalogue.tiles["road"].build_cost
        assert make_tile_for_kind(TileKind.VOID).kind == TileKind.VOID

    def test_district_membership(self):
        assert is_district_member(make_tile("road").tile_type)
        assert is_district_member(make_tile("commercial").tile_type)
        assert not is_district_member(make_tile("grass").tile_type)
        assert not is_district_member(make_tile("water").tile_type)


class TestPlacementBlacklist:
    """Test suite for placement rules"""

    def test_grass_only_refuses_water(self):
        blocked = placement_blacklist(make_tile("grass"))
        assert blocked(make_tile("water").tile_type)
        assert not blocked(make_tile("forest").tile_type)
        assert not blocked(make_tile("residential").tile_type)
        assert not blocked(make_tile("road").tile_type)

    def test_zones_need_open_land(self):
        blocked = placement_blacklist(make_tile("residential"))
        assert not blocked(make_tile("grass").tile_type)
        for name in ("water", "forest", "road", "residential", "commercial", "industrial"):
            assert blocked(make_tile(name).tile_type), name


class TestConfigValidation:
    """Test suite for configuration validation"""

    def test_defaults_are_valid(self):
        config = SimulationConfig()
        assert config.time.tick_period == 1.0
        assert config.population.birth_rate - config.population.death_rate == pytest.approx(0.00032)

    def test_rejects_tax_out_of_range(self):
        with pytest.raises(ValueError):
            SimulationConfig(taxes=TaxConfig(commercial=1.5))

    def test_rejects_non_positive_tick_period(self):
        with pytest.raises(ValueError):
            SimulationConfig(time=TimeConfig(tick_period=0.0))
