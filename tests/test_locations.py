"""Tests for monster/resource location registries."""
from unittest.mock import AsyncMock

import pytest

from artifacts.client import GameAPIError
from artifacts.config import Position
from artifacts.locations import LocationRegistry, load_locations


TILES = [
    {"name": "Forest", "skin": "forest_chicken1", "x": 0, "y": 1, "content": {"type": "monster", "code": "chicken"}},
    {"name": "Forest", "skin": "forest_chicken2", "x": 1, "y": 1, "content": {"type": "monster", "code": "chicken"}},
    {"name": "Plains", "skin": "cow1", "x": 0, "y": 2, "content": {"type": "monster", "code": "cow"}},
    {"name": "Empty", "skin": "grass", "x": 5, "y": 5, "content": None},
]


class TestRegistry:
    def test_first_location_without_skin(self):
        registry = LocationRegistry("monster")
        registry.load(TILES)
        assert registry.resolve("chicken") == Position(x=0, y=1)

    def test_skin_disambiguates(self):
        registry = LocationRegistry("monster")
        registry.load(TILES)
        assert registry.resolve("chicken", "forest_chicken2") == Position(x=1, y=1)
        assert registry.resolve("chicken", "no_such_skin") is None

    def test_unknown_code(self):
        registry = LocationRegistry("monster")
        registry.load(TILES)
        assert registry.resolve("dragon") is None
        assert registry.locations("dragon") == []

    def test_tiles_without_content_skipped(self):
        registry = LocationRegistry("monster")
        registry.load(TILES)
        assert len(registry) == 2

    def test_listing(self):
        registry = LocationRegistry("monster")
        registry.load(TILES)
        listing = {entry["code"]: entry["locations"] for entry in registry.all()}
        assert len(listing["chicken"]) == 2
        assert listing["cow"][0] == {
            "code": "cow", "skin": "cow1", "name": "Plains", "position": {"x": 0, "y": 2},
        }

    def test_reload_replaces(self):
        registry = LocationRegistry("monster")
        registry.load(TILES)
        registry.load(TILES[2:3])
        assert registry.resolve("chicken") is None


class TestLoadLocations:
    @pytest.mark.asyncio
    async def test_loads_both_registries(self):
        client = AsyncMock()
        client.list_maps.side_effect = [
            TILES[:3],
            [{"name": "Mine", "skin": "iron1", "x": 1, "y": 7, "content": {"type": "resource", "code": "iron_rocks"}}],
        ]
        resolver = await load_locations(client)
        assert [c.args[0] for c in client.list_maps.call_args_list] == ["monster", "resource"]
        assert resolver.resolve_monster("cow") == Position(x=0, y=2)
        assert resolver.resolve_resource("iron_rocks") == Position(x=1, y=7)

    @pytest.mark.asyncio
    async def test_failure_propagates(self):
        client = AsyncMock()
        client.list_maps.side_effect = GameAPIError("Failed to fetch monster data", 500)
        with pytest.raises(GameAPIError):
            await load_locations(client)
