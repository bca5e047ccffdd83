"""
Per-character control loop. Each iteration:
  1. fetch the character (never reused across an awaited action)
  2. publish HP/position
  3. rest if HP is under the action's threshold
  4. bank a full inventory, else fight/gather, or hand over to the
     crafting-cycle interpreter

Any failure is logged, waited out, and the loop carries on. Only stop()
ends it; stop is cooperative and checked at iteration and step boundaries
and after each move cooldown, before the action the move was for.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from datetime import datetime, timezone
from typing import Awaitable, Callable

from artifacts.client import ActionResult, GameClient
from artifacts.config import AgentConfig, FleetConfig, Position, Timings
from artifacts.crafting import CraftingCycleRunner, MisconfiguredCraftingCycleError
from artifacts.events import Handler, LogMessage, Publisher, StatusChanged
from artifacts.locations import LocationResolver
from artifacts.status import AgentStatus, Character, add_quantities

logger = logging.getLogger("artifacts.agent")

Clock = Callable[[], datetime]
Sleep = Callable[[float], Awaitable[None]]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AgentError(RuntimeError):
    pass


class UnresolvedTargetError(AgentError):
    """Monster/resource code has no known location."""


class Agent:
    """Owns one character's behavior for the lifetime of one AgentConfig."""

    def __init__(
        self,
        config: AgentConfig,
        client: GameClient,
        locations: LocationResolver,
        fleet: FleetConfig | None = None,
        clock: Clock | None = None,
        sleep: Sleep | None = None,
    ) -> None:
        self.config = config
        self.client = client
        self.locations = locations
        self.fleet = fleet or FleetConfig()
        self.events = Publisher(name=config.character_name)
        self._clock = clock or utcnow
        self._sleep = sleep or asyncio.sleep
        self._running = False
        self._task: asyncio.Task | None = None
        self._status = AgentStatus()
        self._crafting: CraftingCycleRunner | None = None

    @property
    def name(self) -> str:
        return self.config.character_name

    @property
    def running(self) -> bool:
        return self._running

    @property
    def timings(self) -> Timings:
        return self.fleet.timings

    @property
    def status(self) -> AgentStatus:
        return self._status

    def get_status(self) -> AgentStatus:
        return self._status

    def subscribe(self, handler: Handler) -> Callable[[], None]:
        return self.events.subscribe(handler)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        if self._running:
            return
        self._running = True
        self.update_status(is_running=True)
        self.log(f"Bot started ({self.config.action})")
        # A loop that has not yet observed a previous stop() just keeps going.
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run(), name=f"agent-{self.name}")
            self._task.add_done_callback(self._on_task_done)

    def stop(self) -> None:
        if not self._running:
            return
        self._running = False
        self.update_status(is_running=False)
        self.log("Bot stopped")

    async def wait_closed(self) -> None:
        """Wait for the loop to observe stop() and exit."""
        if self._task is not None:
            await asyncio.shield(self._task)

    def _on_task_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc:
            logger.error("[%s] agent loop crashed: %s", self.name, exc, exc_info=exc)
            self.log(f"Fatal error: {exc}")
            self._running = False
            self.update_status(is_running=False, last_error=str(exc))

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def log(self, message: str) -> None:
        logger.info("[%s] %s", self.name, message)
        self.events.publish(LogMessage(message=message, timestamp=self._clock()))

    def update_status(self, **changes) -> None:
        self._status = replace(self._status, **changes)
        self.events.publish(StatusChanged(status=self._status))

    async def sleep(self, seconds: float) -> None:
        await self._sleep(seconds)

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------

    async def run(self) -> None:
        while self._running:
            try:
                await self.run_iteration()
            except Exception as exc:
                logger.warning("[%s] iteration failed: %s", self.name, exc)
                self.update_status(last_error=str(exc))
                self.log(f"Error: {exc}")
                await self._sleep(self.timings.error_retry_delay)

    async def run_iteration(self) -> None:
        character = await self.fetch_character()
        if character is None:
            self.log("Character not found")
            await self._sleep(self.timings.character_missing_delay)
            return

        self.update_status(
            current_hp=character.hp, max_hp=character.max_hp, position=character.position,
        )

        if self.needs_rest(character):
            await self.rest()
            return

        if self.config.action == "craft":
            await self.crafting_runner().run()
            return

        if character.inventory_total >= self.fleet.inventory_threshold:
            self.log("Inventory full, depositing items...")
            await self.deposit_inventory(character)
            return

        try:
            target = self.resolve_target()
        except UnresolvedTargetError as exc:
            self.log(f"{exc}; skipping this round")
            await self._sleep(self.timings.error_retry_delay)
            return

        if target is not None:
            await self.move_to(character.position, target)
            if not self._running:
                return

        if self.config.action == "fight":
            result = await self.client.fight(self.name)
            self.process_fight(result)
        else:
            result = await self.client.gather(self.name)
            self.process_gather(result)
        await self.wait_for_cooldown(result.cooldown_expiration)

    async def fetch_character(self) -> Character | None:
        characters = await self.client.list_characters()
        return next((c for c in characters if c.name == self.name), None)

    def crafting_runner(self) -> CraftingCycleRunner:
        cycle = self.config.crafting_cycle
        if cycle is None:
            raise MisconfiguredCraftingCycleError("No crafting cycle configured")
        if self._crafting is None:
            self._crafting = CraftingCycleRunner(self, cycle)
        return self._crafting

    # ------------------------------------------------------------------
    # Policies
    # ------------------------------------------------------------------

    def needs_rest(self, character: Character) -> bool:
        threshold = self.fleet.rest_thresholds.get(self.config.action)
        if threshold is None:
            return False
        return character.hp_percent < threshold

    def resolve_target(self) -> Position | None:
        """Where the main action happens. None means act in place."""
        cfg = self.config
        if cfg.action == "fight":
            if not cfg.monster:
                return None
            position = self.locations.resolve_monster(cfg.monster, cfg.monster_skin)
            if position is None:
                raise UnresolvedTargetError(f"No known location for monster {cfg.monster}")
            return position

        if not cfg.resource:
            return None
        position = None
        if not cfg.resource_skin:
            position = self.fleet.resource_positions.get(cfg.resource)
        if position is None:
            position = self.locations.resolve_resource(cfg.resource, cfg.resource_skin)
        if position is None:
            raise UnresolvedTargetError(f"No known location for resource {cfg.resource}")
        return position

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    async def wait_for_cooldown(self, expiration: datetime | None) -> None:
        if expiration is None:
            return
        wait = (expiration - self._clock()).total_seconds() + self.timings.cooldown_margin
        if wait > 0:
            self.log(f"Waiting for cooldown: {wait:.1f}s")
            await self._sleep(wait)

    async def rest(self) -> None:
        self.log("HP low, resting...")
        result = await self.client.rest(self.name)
        self.update_status(last_action="rest")
        await self.wait_for_cooldown(result.cooldown_expiration)

    async def move_to(self, current: Position, target: Position) -> bool:
        """Move unless already there. Returns True if a move was issued."""
        if current == target:
            return False
        result = await self.client.move(self.name, target)
        self.update_status(last_action=f"move to {target}", position=target)
        await self.wait_for_cooldown(result.cooldown_expiration)
        return True

    async def deposit_inventory(self, character: Character) -> None:
        await self.move_to(character.position, self.fleet.bank)
        if not self._running:
            return
        items = character.inventory_items()
        if not items:
            return
        results = await self.client.deposit_all(self.name, items)
        for item in items:
            self.log(f"Deposited {item.quantity}x {item.code}")
        self.update_status(last_action="deposit all")
        if results:
            await self.wait_for_cooldown(results[-1].cooldown_expiration)

    # ------------------------------------------------------------------
    # Results
    # ------------------------------------------------------------------

    def process_fight(self, result: ActionResult) -> None:
        s = self._status
        self.update_status(
            last_action=f"fight {self.config.monster or ''}".strip(),
            total_actions=s.total_actions + 1,
            total_xp=s.total_xp + result.xp,
            total_gold=s.total_gold + result.gold,
            items_collected=add_quantities(s.items_collected, result.items),
            last_error=None,
        )
        self.log(f"Fight: +{result.xp} xp, +{result.gold} gold"
                 + "".join(f", {i.quantity}x {i.code}" for i in result.items))

    def process_gather(self, result: ActionResult) -> None:
        s = self._status
        self.update_status(
            last_action=f"gather {self.config.resource or ''}".strip(),
            total_actions=s.total_actions + 1,
            total_xp=s.total_xp + result.xp,
            items_collected=add_quantities(s.items_collected, result.items),
            last_error=None,
        )
        self.log(f"Gathered: +{result.xp} xp"
                 + "".join(f", {i.quantity}x {i.code}" for i in result.items))
