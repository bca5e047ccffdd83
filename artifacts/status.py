"""
Runtime value types: character snapshots from the game API and the
status/log values agents publish. All frozen; every update builds a new one.
"""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Mapping

from artifacts.config import Position


def _frozen(mapping: Mapping[str, int] | None = None) -> Mapping[str, int]:
    return MappingProxyType(dict(mapping or {}))


def add_quantities(current: Mapping[str, int], items: list[Item] | tuple[Item, ...]) -> Mapping[str, int]:
    """Fold (code, quantity) pairs into a fresh read-only mapping."""
    updated = dict(current)
    for item in items:
        updated[item.code] = updated.get(item.code, 0) + item.quantity
    return _frozen(updated)


# ---------------------------------------------------------------------------
# Game-side snapshots
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Item:
    code: str
    quantity: int

    @classmethod
    def from_api(cls, raw: dict) -> Item:
        return cls(code=raw["code"], quantity=int(raw.get("quantity", 0)))

    def to_dict(self) -> dict:
        return {"code": self.code, "quantity": self.quantity}


@dataclass(frozen=True)
class InventorySlot:
    code: str | None
    quantity: int


@dataclass(frozen=True)
class Character:
    name: str
    hp: int
    max_hp: int
    x: int
    y: int
    inventory: tuple[InventorySlot, ...] = ()

    @classmethod
    def from_api(cls, raw: dict) -> Character:
        slots = tuple(
            InventorySlot(code=slot.get("code") or None, quantity=int(slot.get("quantity", 0)))
            for slot in raw.get("inventory") or []
        )
        return cls(
            name=raw["name"],
            hp=int(raw.get("hp", 0)),
            max_hp=int(raw.get("max_hp", 0)),
            x=int(raw.get("x", 0)),
            y=int(raw.get("y", 0)),
            inventory=slots,
        )

    @property
    def position(self) -> Position:
        return Position(x=self.x, y=self.y)

    @property
    def hp_percent(self) -> float:
        if self.max_hp <= 0:
            return 100.0
        return self.hp / self.max_hp * 100

    @property
    def inventory_total(self) -> int:
        return sum(slot.quantity for slot in self.inventory)

    def inventory_items(self) -> list[Item]:
        """Occupied slots as items, in slot order."""
        return [
            Item(code=slot.code, quantity=slot.quantity)
            for slot in self.inventory
            if slot.code and slot.quantity > 0
        ]


# ---------------------------------------------------------------------------
# Agent-side values
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class CraftingStats:
    items_crafted: Mapping[str, int] = field(default_factory=_frozen)
    materials_used: Mapping[str, int] = field(default_factory=_frozen)
    total_crafts: int = 0
    failed_crafts: int = 0
    current_cycle: str | None = None
    cycle_progress: int = 0

    def record_crafted(self, item: str, quantity: int) -> CraftingStats:
        return replace(self, items_crafted=add_quantities(self.items_crafted, [Item(item, quantity)]))

    def record_materials(self, item: str, quantity: int) -> CraftingStats:
        return replace(self, materials_used=add_quantities(self.materials_used, [Item(item, quantity)]))

    def to_dict(self) -> dict:
        return {
            "items_crafted": dict(self.items_crafted),
            "materials_used": dict(self.materials_used),
            "total_crafts": self.total_crafts,
            "failed_crafts": self.failed_crafts,
            "current_cycle": self.current_cycle,
            "cycle_progress": self.cycle_progress,
        }


@dataclass(frozen=True)
class AgentStatus:
    is_running: bool = False
    last_action: str = ""
    total_actions: int = 0
    total_xp: int = 0
    total_gold: int = 0
    items_collected: Mapping[str, int] = field(default_factory=_frozen)
    current_hp: int = 0
    max_hp: int = 0
    position: Position | None = None
    last_error: str | None = None
    crafting_stats: CraftingStats | None = None

    def to_dict(self) -> dict:
        return {
            "is_running": self.is_running,
            "last_action": self.last_action,
            "total_actions": self.total_actions,
            "total_xp": self.total_xp,
            "total_gold": self.total_gold,
            "items_collected": dict(self.items_collected),
            "current_hp": self.current_hp,
            "max_hp": self.max_hp,
            "position": self.position.model_dump() if self.position else None,
            "last_error": self.last_error,
            "crafting_stats": self.crafting_stats.to_dict() if self.crafting_stats else None,
        }


@dataclass(frozen=True)
class LogEntry:
    character_name: str
    message: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict:
        return {
            "character_name": self.character_name,
            "message": self.message,
            "timestamp": self.timestamp.isoformat(),
        }
