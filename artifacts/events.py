"""
Explicit publish/subscribe. Components own a Publisher and expose
subscribe(); handlers run synchronously in publish order.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable

from artifacts.config import AgentConfig
from artifacts.status import AgentStatus, LogEntry

logger = logging.getLogger("artifacts.events")

Handler = Callable[[Any], None]


# ---------------------------------------------------------------------------
# Event types
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class StatusChanged:
    """Agent -> manager."""
    status: AgentStatus


@dataclass(frozen=True)
class LogMessage:
    """Agent -> manager."""
    message: str
    timestamp: datetime | None = None


@dataclass(frozen=True)
class StatusUpdate:
    character_name: str
    status: AgentStatus

    def to_dict(self) -> dict:
        return {
            "type": "bot_status",
            "character_name": self.character_name,
            "status": self.status.to_dict(),
        }


@dataclass(frozen=True)
class LogPublished:
    entry: LogEntry

    def to_dict(self) -> dict:
        return {"type": "bot_log", "log": self.entry.to_dict()}


@dataclass(frozen=True)
class ConfigUpdate:
    character_name: str
    config: AgentConfig

    def to_dict(self) -> dict:
        return {
            "type": "bot_config_update",
            "character_name": self.character_name,
            "config": self.config.to_public_dict(),
        }


# ---------------------------------------------------------------------------
# Publisher
# ---------------------------------------------------------------------------

@dataclass
class Publisher:
    name: str = ""
    _handlers: list[Handler] = field(default_factory=list)

    def subscribe(self, handler: Handler) -> Callable[[], None]:
        """Register a handler. Returns a callable that removes it again."""
        self._handlers.append(handler)

        def unsubscribe() -> None:
            if handler in self._handlers:
                self._handlers.remove(handler)

        return unsubscribe

    @property
    def subscriber_count(self) -> int:
        return len(self._handlers)

    def publish(self, event: Any) -> None:
        # No subscribers: the event is simply dropped.
        for handler in list(self._handlers):
            try:
                handler(event)
            except Exception:
                logger.exception("[%s] subscriber failed on %s", self.name, type(event).__name__)
