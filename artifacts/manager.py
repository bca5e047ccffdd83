"""
Agent manager. Owns the roster (one Agent per character), replaces agents
wholesale on reconfiguration, keeps a bounded most-recent-first activity
log and re-publishes every agent's events under one stream.

Methods are meant to be called from a single control-plane task.
"""
from __future__ import annotations

import logging
from collections import deque
from datetime import datetime, timezone
from typing import Any, Callable

from artifacts.agent import Agent
from artifacts.client import GameClient
from artifacts.config import AgentConfig, CraftingCycle, FleetConfig
from artifacts.events import (
    ConfigUpdate,
    Handler,
    LogMessage,
    LogPublished,
    Publisher,
    StatusChanged,
    StatusUpdate,
)
from artifacts.locations import LocationResolver
from artifacts.status import AgentStatus, LogEntry

logger = logging.getLogger("artifacts.manager")

AgentFactory = Callable[[AgentConfig], Agent]


class AgentManager:
    def __init__(
        self,
        api_token: str,
        client: GameClient,
        locations: LocationResolver,
        fleet: FleetConfig | None = None,
        agent_factory: AgentFactory | None = None,
    ) -> None:
        self.api_token = api_token
        self.client = client
        self.locations = locations
        self.fleet = fleet or FleetConfig()
        self.events = Publisher(name="manager")
        self._agent_factory = agent_factory or self._default_factory
        self._agents: dict[str, Agent] = {}
        self._configs: dict[str, AgentConfig] = {}
        self._statuses: dict[str, AgentStatus] = {}
        self._unsubscribers: dict[str, list[Callable[[], None]]] = {}
        self._logs: deque[LogEntry] = deque(maxlen=self.fleet.max_logs)

        for cfg in self.fleet.roster:
            self._create_agent(cfg.merged({}, api_token=self.api_token))

    def subscribe(self, handler: Handler) -> Callable[[], None]:
        return self.events.subscribe(handler)

    # ------------------------------------------------------------------
    # Agent wiring
    # ------------------------------------------------------------------

    def _default_factory(self, config: AgentConfig) -> Agent:
        return Agent(config, self.client, self.locations, fleet=self.fleet)

    def _create_agent(self, config: AgentConfig) -> Agent:
        name = config.character_name
        agent = self._agent_factory(config)

        def on_agent_event(event: Any) -> None:
            if isinstance(event, StatusChanged):
                self._statuses[name] = event.status
                self.events.publish(StatusUpdate(character_name=name, status=event.status))
            elif isinstance(event, LogMessage):
                entry = LogEntry(
                    character_name=name,
                    message=event.message,
                    timestamp=event.timestamp or datetime.now(timezone.utc),
                )
                self.add_log(entry)
                self.events.publish(LogPublished(entry=entry))

        self._unsubscribers[name] = [agent.subscribe(on_agent_event)]
        self._agents[name] = agent
        self._configs[name] = config
        self._statuses[name] = agent.get_status()
        return agent

    def _remove_agent(self, name: str) -> None:
        for unsubscribe in self._unsubscribers.pop(name, []):
            unsubscribe()
        self._agents.pop(name, None)

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    def update_bot_config(self, character_name: str, changes: dict[str, Any]) -> AgentConfig | None:
        """Replace the agent for `character_name` with one built from the
        merged config. In-flight action and cycle position are discarded."""
        current = self._configs.get(character_name)
        if current is None:
            return None

        changes = {k: v for k, v in changes.items() if k != "character_name"}
        updated = current.merged(changes, api_token=self.api_token)

        agent = self._agents.get(character_name)
        was_running = bool(agent and agent.running)
        if was_running:
            self.stop_bot(character_name)

        self._remove_agent(character_name)
        self._create_agent(updated)

        if was_running:
            self.start_bot(character_name)

        logger.info("[%s] config updated: %s", character_name, updated.to_public_dict())
        self.events.publish(ConfigUpdate(character_name=character_name, config=updated))
        return updated

    def update_crafting_cycle(self, character_name: str, cycle: CraftingCycle | dict) -> AgentConfig | None:
        return self.update_bot_config(character_name, {"action": "craft", "crafting_cycle": cycle})

    def remove_crafting_cycle(self, character_name: str) -> AgentConfig | None:
        return self.update_bot_config(character_name, {"crafting_cycle": None})

    def get_bot_config(self, character_name: str) -> AgentConfig | None:
        return self._configs.get(character_name)

    def get_all_configs(self) -> dict[str, AgentConfig]:
        return dict(self._configs)

    # ------------------------------------------------------------------
    # Start / stop
    # ------------------------------------------------------------------

    def start_bot(self, character_name: str) -> bool:
        agent = self._agents.get(character_name)
        if agent is None:
            return False
        agent.start()
        self.add_log(LogEntry(character_name=character_name, message="Bot started"))
        return True

    def stop_bot(self, character_name: str) -> bool:
        agent = self._agents.get(character_name)
        if agent is None:
            return False
        agent.stop()
        self.add_log(LogEntry(character_name=character_name, message="Bot stopped"))
        return True

    def start_all_bots(self) -> None:
        for name, agent in self._agents.items():
            agent.start()
            self.add_log(LogEntry(character_name=name, message="Bot started (mass start)"))

    def stop_all_bots(self) -> None:
        for name, agent in self._agents.items():
            agent.stop()
            self.add_log(LogEntry(character_name=name, message="Bot stopped (mass stop)"))

    async def shutdown(self) -> None:
        """Stop every agent and wait for their loops to exit."""
        self.stop_all_bots()
        for agent in list(self._agents.values()):
            await agent.wait_closed()

    # ------------------------------------------------------------------
    # Logs
    # ------------------------------------------------------------------

    def add_log(self, entry: LogEntry) -> None:
        # deque(maxlen) drops from the right, i.e. the oldest entry
        self._logs.appendleft(entry)

    def get_recent_logs(self, count: int | None = None) -> list[LogEntry]:
        if count is None:
            count = self.fleet.recent_logs
        return list(self._logs)[:max(count, 0)]

    def get_all_logs(self) -> list[LogEntry]:
        return list(self._logs)

    def clear_logs(self) -> None:
        self._logs.clear()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_agent(self, character_name: str) -> Agent | None:
        return self._agents.get(character_name)

    def get_bot_status(self, character_name: str) -> AgentStatus | None:
        return self._statuses.get(character_name)

    def get_bots_status(self) -> dict[str, AgentStatus]:
        return dict(self._statuses)

    def get_running_bots(self) -> list[str]:
        return [name for name, status in self._statuses.items() if status.is_running]

    def get_bot_count(self) -> int:
        return len(self._agents)

    def get_running_bot_count(self) -> int:
        return len(self.get_running_bots())
