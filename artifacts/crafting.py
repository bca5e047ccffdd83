"""
Crafting-cycle interpreter. Walks a cycle's steps in order, forever,
while the owning agent is running:

  - withdraw: move to bank, withdraw, record material consumed
  - deposit:  move to bank, deposit, record finished output
  - craft:    craft in place (a previous move step reaches the station)
  - move:     go to a named station or an explicit position

A failed step is counted, waited out, and retried without advancing.
A full inventory preempts the current step without losing cycle position.
"""
from __future__ import annotations

import logging
from dataclasses import replace
from typing import TYPE_CHECKING

from artifacts.client import ActionResult
from artifacts.config import CraftingCycle, CraftingStep, Position
from artifacts.status import Character, CraftingStats

if TYPE_CHECKING:
    from artifacts.agent import Agent

logger = logging.getLogger("artifacts.crafting")


class CraftingStepError(RuntimeError):
    """A single step cannot be executed as configured."""


class UnknownCraftingStepError(CraftingStepError):
    """Step type is not one of withdraw/deposit/craft/move."""


class MisconfiguredCraftingCycleError(RuntimeError):
    """Craft agent has no usable cycle."""


class CraftingCycleRunner:
    def __init__(self, agent: Agent, cycle: CraftingCycle) -> None:
        self.agent = agent
        self.cycle = cycle
        self.current_step = 0
        self.stats = CraftingStats(current_cycle=cycle.name)

    @property
    def total_steps(self) -> int:
        return len(self.cycle.steps)

    @property
    def progress(self) -> int:
        return self.current_step * 100 // self.total_steps

    async def run(self) -> None:
        """Execute steps until the agent stops. Returns only on stop."""
        if not self.cycle.steps:
            raise MisconfiguredCraftingCycleError(f"Crafting cycle {self.cycle.name!r} has no steps")

        agent = self.agent
        agent.log(f"Running crafting cycle {self.cycle.name} from step {self.current_step + 1}/{self.total_steps}")
        agent.update_status(crafting_stats=self.stats)

        while agent.running:
            character = await agent.fetch_character()
            if character is None:
                agent.log("Character not found")
                await agent.sleep(agent.timings.character_missing_delay)
                continue

            agent.update_status(
                current_hp=character.hp, max_hp=character.max_hp, position=character.position,
            )

            if character.inventory_total >= agent.fleet.inventory_threshold:
                agent.log("Inventory full, depositing before next step...")
                await agent.deposit_inventory(character)
                continue

            step = self.cycle.steps[self.current_step]
            try:
                completed = await self.execute_step(step, character)
            except Exception as exc:
                self.stats = replace(self.stats, failed_crafts=self.stats.failed_crafts + 1)
                agent.update_status(crafting_stats=self.stats, last_error=str(exc))
                agent.log(
                    f"Step {self.current_step + 1}/{self.total_steps} ({step.describe()}) failed: {exc}"
                )
                await agent.sleep(agent.timings.error_retry_delay)
                continue

            if completed:
                self._advance()

    async def execute_step(self, step: CraftingStep, character: Character) -> bool:
        """Run one step. Returns False if the agent was stopped before the
        step's action was issued; the step then stays current."""
        agent = self.agent
        client = agent.client
        result: ActionResult | None = None

        if step.type == "withdraw":
            item, quantity = _item_and_quantity(step)
            await agent.move_to(character.position, agent.fleet.bank)
            if not agent.running:
                return False
            result = await client.withdraw(agent.name, item, quantity)
            self.stats = self.stats.record_materials(item, quantity)
            agent.log(f"Withdrew {quantity}x {item}")
        elif step.type == "deposit":
            item, quantity = _item_and_quantity(step)
            await agent.move_to(character.position, agent.fleet.bank)
            if not agent.running:
                return False
            result = await client.deposit(agent.name, item, quantity)
            self.stats = self.stats.record_crafted(item, quantity)
            agent.log(f"Deposited {quantity}x {item}")
        elif step.type == "craft":
            item, quantity = _item_and_quantity(step)
            result = await client.craft(agent.name, item, quantity)
            self.stats = replace(self.stats, total_crafts=self.stats.total_crafts + 1)
            agent.log(f"Crafted {quantity}x {item}")
        elif step.type == "move":
            await agent.move_to(character.position, self.resolve_position(step))
        else:
            raise UnknownCraftingStepError(f"Unknown crafting step type: {step.type!r}")

        agent.update_status(last_action=step.describe(), crafting_stats=self.stats, last_error=None)
        if result is not None:
            await agent.wait_for_cooldown(result.cooldown_expiration)
        return True

    def resolve_position(self, step: CraftingStep) -> Position:
        if step.position is not None:
            return step.position
        if step.location:
            station = self.agent.fleet.stations.get(step.location.lower())
            if station is not None:
                return station
            raise CraftingStepError(f"Unknown station: {step.location!r}")
        raise CraftingStepError("Move step needs a location or a position")

    def _advance(self) -> None:
        self.current_step += 1
        if self.current_step >= self.total_steps:
            self.current_step = 0
            self.agent.log(f"Completed crafting cycle {self.cycle.name}")
        self.stats = replace(self.stats, cycle_progress=self.progress)
        self.agent.update_status(crafting_stats=self.stats)


def _item_and_quantity(step: CraftingStep) -> tuple[str, int]:
    if not step.item or not step.quantity:
        raise CraftingStepError(f"{step.type} step needs an item and a quantity")
    return step.item, step.quantity
