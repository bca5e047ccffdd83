"""Shared fakes: a virtual clock and an in-memory game API."""
from __future__ import annotations

import asyncio
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Callable

import pytest

from artifacts.agent import Agent
from artifacts.client import ActionResult
from artifacts.config import AgentConfig, FleetConfig, Position
from artifacts.locations import LocationResolver
from artifacts.status import Character, InventorySlot, Item


class FakeClock:
    """Virtual time. sleep() advances it instead of waiting."""

    def __init__(self) -> None:
        self.now = datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)
        self.sleeps: list[float] = []

    def __call__(self) -> datetime:
        return self.now

    def later(self, seconds: float) -> datetime:
        return self.now + timedelta(seconds=seconds)

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += timedelta(seconds=seconds)
        await asyncio.sleep(0)


class FakeGame:
    """Stands in for GameClient. Records every call with the virtual time
    it was issued at; per-action queues script results or failures."""

    def __init__(self, clock: FakeClock) -> None:
        self.clock = clock
        self.characters: dict[str, Character] = {}
        self.calls: list[tuple] = []
        self.call_times: list[tuple[str, datetime]] = []
        self._queued: dict[str, list] = {}
        self._hooks: dict[str, list[Callable[[], None]]] = {}

    # -- scripting --------------------------------------------------------

    def add_character(
        self,
        name: str,
        hp: int = 100,
        max_hp: int = 100,
        x: int = 0,
        y: int = 0,
        inventory: list[tuple[str, int]] | None = None,
    ) -> Character:
        slots = tuple(InventorySlot(code=c, quantity=q) for c, q in inventory or [])
        character = Character(name=name, hp=hp, max_hp=max_hp, x=x, y=y, inventory=slots)
        self.characters[name] = character
        return character

    def queue(self, action: str, *outcomes) -> None:
        """Queue ActionResults, exceptions, or zero-arg factories of either
        for the next `action` calls."""
        self._queued.setdefault(action, []).extend(outcomes)

    def after(self, action: str, hook: Callable[[], None]) -> None:
        self._hooks.setdefault(action, []).append(hook)

    def names(self) -> list[str]:
        return [c[0] for c in self.calls]

    def actions(self) -> list[str]:
        return [n for n in self.names() if n != "list_characters"]

    # -- plumbing ---------------------------------------------------------

    async def _record(self, action: str, *args):
        self.calls.append((action, *args))
        self.call_times.append((action, self.clock.now))
        await asyncio.sleep(0)
        queued = self._queued.get(action)
        outcome = queued.pop(0) if queued else ActionResult()
        if callable(outcome):
            outcome = outcome()
        for hook in self._hooks.get(action, []):
            hook()
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    def _replace(self, name: str, **changes) -> None:
        c = self.characters.get(name)
        if c is not None:
            self.characters[name] = replace(c, **changes)

    # -- GameClient surface -----------------------------------------------

    async def list_characters(self) -> list[Character]:
        outcome = await self._record("list_characters")
        if isinstance(outcome, list):
            return outcome
        return list(self.characters.values())

    async def move(self, name: str, position: Position) -> ActionResult:
        result = await self._record("move", name, position)
        self._replace(name, x=position.x, y=position.y)
        return result

    async def fight(self, name: str) -> ActionResult:
        return await self._record("fight", name)

    async def gather(self, name: str) -> ActionResult:
        return await self._record("gather", name)

    async def rest(self, name: str) -> ActionResult:
        return await self._record("rest", name)

    async def deposit(self, name: str, item: str, quantity: int) -> ActionResult:
        return await self._record("deposit", name, item, quantity)

    async def withdraw(self, name: str, item: str, quantity: int) -> ActionResult:
        return await self._record("withdraw", name, item, quantity)

    async def craft(self, name: str, item: str, quantity: int) -> ActionResult:
        return await self._record("craft", name, item, quantity)

    async def deposit_all(self, name: str, items: list[Item]) -> list[ActionResult]:
        result = await self._record("deposit_all", name, list(items))
        self._replace(name, inventory=())
        return [result]

    async def withdraw_all(self, name: str, items: list[Item]) -> list[ActionResult]:
        return [await self._record("withdraw_all", name, list(items))]


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def game(clock: FakeClock) -> FakeGame:
    return FakeGame(clock)


@pytest.fixture
def locations() -> LocationResolver:
    resolver = LocationResolver()
    resolver.monsters.load([
        {"x": 0, "y": 1, "skin": "chicken1", "content": {"type": "monster", "code": "chicken"}},
        {"x": 0, "y": -1, "skin": "chicken2", "content": {"type": "monster", "code": "chicken"}},
        {"x": 2, "y": -1, "skin": "cow1", "content": {"type": "monster", "code": "cow"}},
    ])
    resolver.resources.load([
        {"x": 6, "y": 1, "skin": "coal1", "name": "Coal rocks", "content": {"type": "resource", "code": "coal"}},
    ])
    return resolver


@pytest.fixture
def fleet() -> FleetConfig:
    return FleetConfig()


@pytest.fixture
def make_agent(game: FakeGame, clock: FakeClock, locations: LocationResolver, fleet: FleetConfig):
    def factory(character_name: str = "Atlas", **fields) -> Agent:
        fields.setdefault("action", "gather")
        config = AgentConfig(character_name=character_name, api_token="token", **fields)
        return Agent(config, game, locations, fleet=fleet, clock=clock, sleep=clock.sleep)

    return factory
