"""
WebSocket server. Pushes manager events (status, log, config) to every
connected observer and turns inbound JSON commands into manager calls.
"""
from __future__ import annotations

import asyncio
import json
import logging
import os
from typing import Any
from urllib.parse import parse_qs, urlparse

import websockets
from pydantic import ValidationError
from websockets.asyncio.server import ServerConnection, serve

from artifacts.locations import LocationResolver
from artifacts.manager import AgentManager

logger = logging.getLogger("artifacts.server")

QUEUE_SIZE = 1000


# ---------------------------------------------------------------------------
# Command dispatch
# ---------------------------------------------------------------------------

class CommandError(ValueError):
    """Raised for malformed or unknown inbound commands."""


def build_initial_state(manager: AgentManager, locations: LocationResolver | None = None) -> dict:
    return {
        "type": "initial_state",
        "bots_status": {name: s.to_dict() for name, s in manager.get_bots_status().items()},
        "bots_config": {name: c.to_public_dict() for name, c in manager.get_all_configs().items()},
        "recent_logs": [e.to_dict() for e in manager.get_recent_logs()],
        "monsters": locations.monsters.all() if locations else [],
    }


def _name(message: dict) -> str:
    name = message.get("character_name")
    if not isinstance(name, str) or not name:
        raise CommandError("character_name is required")
    return name


def _config_reply(manager: AgentManager, name: str) -> dict:
    config = manager.get_bot_config(name)
    return {
        "type": "bot_config",
        "character_name": name,
        "config": config.to_public_dict() if config else None,
    }


def handle_command(
    manager: AgentManager,
    message: dict,
    locations: LocationResolver | None = None,
) -> dict | None:
    """Apply one inbound command. Returns a reply for the sender, if any.
    State changes reach every observer through the manager's own events."""
    command = message.get("type")

    if command == "start_bot":
        manager.start_bot(_name(message))
        return None
    if command == "stop_bot":
        manager.stop_bot(_name(message))
        return None
    if command == "start_all_bots":
        manager.start_all_bots()
        return None
    if command == "stop_all_bots":
        manager.stop_all_bots()
        return None

    if command == "update_bot_config":
        config = message.get("config")
        if not isinstance(config, dict):
            raise CommandError("config must be an object")
        manager.update_bot_config(_name(message), config)
        return None
    if command == "update_crafting_cycle":
        cycle = message.get("cycle")
        if not isinstance(cycle, dict):
            raise CommandError("cycle must be an object")
        manager.update_crafting_cycle(_name(message), cycle)
        return None
    if command == "remove_crafting_cycle":
        manager.remove_crafting_cycle(_name(message))
        return None

    if command == "get_bot_config":
        return _config_reply(manager, _name(message))
    if command == "get_all_configs":
        return {
            "type": "all_configs",
            "configs": {n: c.to_public_dict() for n, c in manager.get_all_configs().items()},
        }
    if command == "get_bots_status":
        return {
            "type": "bots_status",
            "status": {n: s.to_dict() for n, s in manager.get_bots_status().items()},
        }
    if command == "get_recent_logs":
        count = message.get("count", manager.fleet.recent_logs)
        if not isinstance(count, int):
            raise CommandError("count must be an integer")
        return {"type": "recent_logs", "logs": [e.to_dict() for e in manager.get_recent_logs(count)]}

    if command in ("get_monster_locations", "get_resource_locations"):
        code = message.get("code")
        if not isinstance(code, str):
            raise CommandError("code is required")
        registry = None
        if locations is not None:
            registry = locations.monsters if command == "get_monster_locations" else locations.resources
        return {
            "type": "monster_locations" if command == "get_monster_locations" else "resource_locations",
            "code": code,
            "locations": [loc.to_dict() for loc in registry.locations(code)] if registry else [],
        }

    raise CommandError(f"unknown command: {command!r}")


# ---------------------------------------------------------------------------
# Broadcaster
# ---------------------------------------------------------------------------

class FleetBroadcaster:
    """Manages WebSocket connections, relays manager events, accepts commands."""

    def __init__(
        self,
        manager: AgentManager,
        locations: LocationResolver | None = None,
        host: str = "0.0.0.0",
        port: int = 8765,
        token: str | None = None,
    ) -> None:
        self.manager = manager
        self.locations = locations
        self.host = host
        self.port = port
        self.token = token or os.getenv("ARTIFACTS_WS_TOKEN")
        self.clients: set[ServerConnection] = set()
        self._server: Any = None
        self._queue: asyncio.Queue[dict] = asyncio.Queue(maxsize=QUEUE_SIZE)
        self._pump: asyncio.Task | None = None
        self._unsubscribe = None

    async def start(self) -> None:
        self._unsubscribe = self.manager.subscribe(self._on_manager_event)
        self._pump = asyncio.create_task(self._pump_events(), name="fleet-broadcast")
        self._server = await serve(self._handle_client, self.host, self.port)
        logger.info("WebSocket server started on ws://%s:%d", self.host, self.port)

    async def stop(self) -> None:
        if self._unsubscribe:
            self._unsubscribe()
            self._unsubscribe = None
        if self._pump:
            self._pump.cancel()
            try:
                await self._pump
            except asyncio.CancelledError:
                pass
            self._pump = None
        if self._server:
            self._server.close()
            await self._server.wait_closed()
            logger.info("WebSocket server stopped")

    # ------------------------------------------------------------------
    # Manager -> observers
    # ------------------------------------------------------------------

    def _on_manager_event(self, event: Any) -> None:
        if not self.clients:
            return
        try:
            self._queue.put_nowait(event.to_dict())
        except asyncio.QueueFull:
            logger.warning("Broadcast queue full, dropping %s", type(event).__name__)

    async def _pump_events(self) -> None:
        while True:
            data = await self._queue.get()
            await self.broadcast(data)

    async def broadcast(self, data: dict) -> None:
        if not self.clients:
            return
        payload = json.dumps(data, default=str)
        await asyncio.gather(
            *[self._safe_send(client, payload) for client in list(self.clients)],
            return_exceptions=True,
        )

    async def _safe_send(self, client: ServerConnection, payload: str) -> None:
        try:
            await client.send(payload)
        except websockets.exceptions.ConnectionClosed:
            self.clients.discard(client)

    # ------------------------------------------------------------------
    # Observers -> manager
    # ------------------------------------------------------------------

    async def _handle_client(self, websocket: ServerConnection) -> None:
        request_path = getattr(getattr(websocket, "request", None), "path", "/")
        token = parse_qs(urlparse(request_path).query).get("token", [None])[0]
        if self.token and token != self.token:
            logger.warning("Rejecting websocket client due to token mismatch")
            await websocket.close(code=4401, reason="Unauthorized")
            return

        self.clients.add(websocket)
        logger.info("Client connected (%d total)", len(self.clients))
        await self._safe_send(
            websocket, json.dumps(build_initial_state(self.manager, self.locations), default=str),
        )

        try:
            async for raw in websocket:
                reply = self.dispatch(raw)
                if reply is not None:
                    await self._safe_send(websocket, json.dumps(reply, default=str))
        except websockets.exceptions.ConnectionClosed:
            pass
        finally:
            self.clients.discard(websocket)
            logger.info("Client disconnected (%d total)", len(self.clients))

    def dispatch(self, raw: str | bytes) -> dict | None:
        """Parse and apply one frame. Errors become an error reply."""
        try:
            message = json.loads(raw)
            if not isinstance(message, dict):
                raise CommandError("command must be a JSON object")
            return handle_command(self.manager, message, self.locations)
        except (json.JSONDecodeError, CommandError, ValidationError) as exc:
            logger.warning("Rejected command: %s", exc)
            return {"type": "error", "message": str(exc)}
