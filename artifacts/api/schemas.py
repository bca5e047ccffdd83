from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel

from artifacts.config import ActionKind, CraftingCycle


class HealthResponse(BaseModel):
    status: Literal["ok"]
    bots: int
    running: int
    websocket_host: str
    websocket_port: int


class BotConfigPatch(BaseModel):
    """Partial AgentConfig. Only fields that were sent are applied."""
    action: ActionKind | None = None
    monster: str | None = None
    monster_skin: str | None = None
    resource: str | None = None
    resource_skin: str | None = None
    crafting_cycle: CraftingCycle | None = None

    def changes(self) -> dict[str, Any]:
        return self.model_dump(exclude_unset=True)


class BotActionResponse(BaseModel):
    character_name: str
    is_running: bool


class BotDetail(BaseModel):
    character_name: str
    status: dict
    config: dict
