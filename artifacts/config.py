"""
Configuration models. Loaded from config.yaml, validated via Pydantic.
Nothing is hardcoded anywhere else.
"""
from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator

ActionKind = Literal["fight", "gather", "craft"]

STEP_TYPES = ("withdraw", "deposit", "craft", "move")


class Position(BaseModel):
    model_config = ConfigDict(frozen=True)

    x: int
    y: int

    def as_tuple(self) -> tuple[int, int]:
        return (self.x, self.y)

    def __str__(self) -> str:
        return f"({self.x}, {self.y})"


class CraftingStep(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: str                          # withdraw | deposit | craft | move
    item: str | None = None
    quantity: int | None = None
    location: str | None = None        # station name, for move
    position: Position | None = None   # explicit target, for move

    @field_validator("quantity")
    @classmethod
    def quantity_positive(cls, v: int | None) -> int | None:
        if v is not None and v < 1:
            raise ValueError(f"quantity must be >= 1, got {v}")
        return v

    def describe(self) -> str:
        if self.type == "move":
            return f"move to {self.location or self.position}"
        return f"{self.type} {self.quantity}x {self.item}"


class CraftingCycle(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    description: str | None = None
    steps: list[CraftingStep]


class AgentConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    character_name: str
    action: ActionKind
    monster: str | None = None
    monster_skin: str | None = None
    resource: str | None = None
    resource_skin: str | None = None
    crafting_cycle: CraftingCycle | None = None
    api_token: str = Field(default="", repr=False)

    def merged(self, changes: dict[str, Any], api_token: str) -> AgentConfig:
        """Return a new config with `changes` laid over this one."""
        data = self.model_dump()
        data.update(changes)
        data["api_token"] = api_token
        return AgentConfig.model_validate(data)

    def to_public_dict(self) -> dict:
        """Serializable form for observers. Never carries the token."""
        return self.model_dump(mode="json", exclude={"api_token"})


class Timings(BaseModel):
    """Policy delays, in seconds."""
    error_retry_delay: float = 5.0
    character_missing_delay: float = 5.0
    bank_batch_spacing: float = 3.5
    cooldown_margin: float = 0.5
    request_timeout: float = 30.0


def _default_stations() -> dict[str, Position]:
    return {
        "bank": Position(x=4, y=1),
        "woodcutting": Position(x=-2, y=-3),
        "mining": Position(x=1, y=5),
        "jewelry": Position(x=1, y=3),
        "gearcrafting": Position(x=3, y=1),
        "weaponcrafting": Position(x=2, y=1),
        "cooking": Position(x=1, y=1),
        "alchemy": Position(x=2, y=3),
    }


def _default_resource_positions() -> dict[str, Position]:
    return {
        "copper": Position(x=2, y=0),
        "ash_tree": Position(x=-1, y=0),
        "sunflower": Position(x=2, y=2),
        "gudgeon": Position(x=4, y=2),
        "iron": Position(x=1, y=7),
        "spruce_tree": Position(x=2, y=6),
        "shrimp": Position(x=5, y=2),
    }


class FleetConfig(BaseModel):
    base_url: str = "https://api.artifactsmmo.com"
    max_logs: int = 1000
    recent_logs: int = 50
    inventory_threshold: int = 100
    rest_thresholds: dict[str, float] = Field(
        default_factory=lambda: {"fight": 50.0, "gather": 30.0}
    )
    timings: Timings = Field(default_factory=Timings)
    stations: dict[str, Position] = Field(default_factory=_default_stations)
    resource_positions: dict[str, Position] = Field(default_factory=_default_resource_positions)
    roster: list[AgentConfig] = Field(default_factory=list)

    @field_validator("max_logs")
    @classmethod
    def max_logs_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"max_logs must be >= 1, got {v}")
        return v

    @field_validator("rest_thresholds")
    @classmethod
    def thresholds_in_range(cls, v: dict[str, float]) -> dict[str, float]:
        for kind, pct in v.items():
            if not 0.0 <= pct <= 100.0:
                raise ValueError(f"rest threshold for {kind} must be 0-100, got {pct}")
        return v

    @field_validator("stations", "resource_positions")
    @classmethod
    def lowercase_keys(cls, v: dict[str, Position]) -> dict[str, Position]:
        return {k.lower(): pos for k, pos in v.items()}

    @field_validator("roster")
    @classmethod
    def unique_names(cls, v: list[AgentConfig]) -> list[AgentConfig]:
        names = [c.character_name for c in v]
        if len(names) != len(set(names)):
            raise ValueError("roster character names must be unique")
        return v

    @property
    def bank(self) -> Position:
        return self.stations["bank"]


# ---------------------------------------------------------------------------
# Loader
# ---------------------------------------------------------------------------

_PROJECT_ROOT = Path(__file__).resolve().parent.parent


def load_fleet_config(path: Path | str | None = None) -> FleetConfig:
    """Load and validate FleetConfig from a YAML file."""
    if path is None:
        path = os.getenv("ARTIFACTS_CONFIG") or _PROJECT_ROOT / "config.yaml"
    path = Path(path)
    with open(path) as f:
        raw = yaml.safe_load(f) or {}
    return FleetConfig(**raw)
