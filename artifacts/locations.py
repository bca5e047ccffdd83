"""
Monster and resource location registries. Loaded once at startup from the
game's map tiles, read-only afterwards and shared by every agent.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field

from artifacts.client import GameClient
from artifacts.config import Position

logger = logging.getLogger("artifacts.locations")


@dataclass(frozen=True)
class Location:
    code: str
    skin: str | None
    position: Position
    name: str = ""

    def to_dict(self) -> dict:
        return {
            "code": self.code,
            "skin": self.skin,
            "name": self.name,
            "position": self.position.model_dump(),
        }


@dataclass
class LocationRegistry:
    """code -> every known location, in map order."""
    kind: str
    _by_code: dict[str, list[Location]] = field(default_factory=dict)

    def load(self, tiles: list[dict]) -> None:
        """Replace registry contents from raw map tiles."""
        by_code: dict[str, list[Location]] = {}
        for tile in tiles:
            content = tile.get("content") or {}
            code = content.get("code")
            if not code:
                continue
            by_code.setdefault(code, []).append(Location(
                code=code,
                skin=tile.get("skin"),
                position=Position(x=tile["x"], y=tile["y"]),
                name=tile.get("name") or "",
            ))
        self._by_code = by_code
        logger.info("Loaded %d %s codes (%d locations)",
                    len(by_code), self.kind, sum(len(v) for v in by_code.values()))

    def resolve(self, code: str, skin: str | None = None) -> Position | None:
        """First location for `code`, or the one matching `skin` if given."""
        locations = self._by_code.get(code)
        if not locations:
            return None
        if skin:
            for loc in locations:
                if loc.skin == skin:
                    return loc.position
            return None
        return locations[0].position

    def locations(self, code: str) -> list[Location]:
        return list(self._by_code.get(code, []))

    def all(self) -> list[dict]:
        return [
            {"code": code, "locations": [loc.to_dict() for loc in locs]}
            for code, locs in self._by_code.items()
        ]

    def __len__(self) -> int:
        return len(self._by_code)


@dataclass
class LocationResolver:
    monsters: LocationRegistry = field(default_factory=lambda: LocationRegistry("monster"))
    resources: LocationRegistry = field(default_factory=lambda: LocationRegistry("resource"))

    def resolve_monster(self, code: str, skin: str | None = None) -> Position | None:
        return self.monsters.resolve(code, skin)

    def resolve_resource(self, code: str, skin: str | None = None) -> Position | None:
        return self.resources.resolve(code, skin)


async def load_locations(client: GameClient) -> LocationResolver:
    """Bulk-load both registries. Any failure propagates and aborts startup."""
    resolver = LocationResolver()
    resolver.monsters.load(await client.list_maps("monster"))
    resolver.resources.load(await client.list_maps("resource"))
    return resolver
