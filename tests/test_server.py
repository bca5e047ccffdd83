"""Tests for command dispatch and event relaying on the WebSocket transport."""
import json
from unittest.mock import AsyncMock

import pytest

from artifacts.agent import Agent
from artifacts.config import AgentConfig, FleetConfig
from artifacts.manager import AgentManager
from artifacts.server import CommandError, FleetBroadcaster, build_initial_state, handle_command
from artifacts.status import LogEntry


@pytest.fixture
def manager(game, clock, locations) -> AgentManager:
    fleet = FleetConfig(roster=[
        AgentConfig(character_name="Psy", action="fight"),
        AgentConfig(character_name="Atlas", action="gather", resource="iron"),
    ])

    def make(config: AgentConfig) -> Agent:
        return Agent(config, game, locations, fleet=fleet, clock=clock, sleep=clock.sleep)

    return AgentManager("secret", game, locations, fleet=fleet, agent_factory=make)


# ---------------------------------------------------------------------------
# handle_command
# ---------------------------------------------------------------------------

class TestCommands:
    @pytest.mark.asyncio
    async def test_start_and_stop(self, manager):
        assert handle_command(manager, {"type": "start_bot", "character_name": "Psy"}) is None
        assert manager.get_running_bots() == ["Psy"]
        handle_command(manager, {"type": "stop_all_bots"})
        assert manager.get_running_bots() == []
        await manager.shutdown()

    def test_update_config(self, manager):
        handle_command(manager, {
            "type": "update_bot_config",
            "character_name": "Psy",
            "config": {"monster": "cow"},
        })
        assert manager.get_bot_config("Psy").monster == "cow"

    def test_crafting_cycle_commands(self, manager):
        handle_command(manager, {
            "type": "update_crafting_cycle",
            "character_name": "Atlas",
            "cycle": {"id": "c", "name": "C", "steps": [{"type": "move", "location": "mining"}]},
        })
        assert manager.get_bot_config("Atlas").action == "craft"
        handle_command(manager, {"type": "remove_crafting_cycle", "character_name": "Atlas"})
        assert manager.get_bot_config("Atlas").crafting_cycle is None

    def test_config_queries_hide_token(self, manager):
        reply = handle_command(manager, {"type": "get_bot_config", "character_name": "Psy"})
        assert reply["type"] == "bot_config"
        assert reply["config"]["action"] == "fight"
        assert "api_token" not in reply["config"]

        reply = handle_command(manager, {"type": "get_all_configs"})
        assert set(reply["configs"]) == {"Psy", "Atlas"}

    def test_unknown_bot_config_is_null(self, manager):
        reply = handle_command(manager, {"type": "get_bot_config", "character_name": "Nobody"})
        assert reply["config"] is None

    def test_recent_logs(self, manager):
        for i in range(5):
            manager.add_log(LogEntry(character_name="Psy", message=str(i)))
        reply = handle_command(manager, {"type": "get_recent_logs", "count": 2})
        assert [e["message"] for e in reply["logs"]] == ["4", "3"]

    def test_location_queries(self, manager, locations):
        reply = handle_command(manager, {"type": "get_monster_locations", "code": "chicken"}, locations)
        assert reply["type"] == "monster_locations"
        assert len(reply["locations"]) == 2
        reply = handle_command(manager, {"type": "get_resource_locations", "code": "coal"}, locations)
        assert reply["locations"][0]["position"] == {"x": 6, "y": 1}

    def test_missing_name(self, manager):
        with pytest.raises(CommandError):
            handle_command(manager, {"type": "start_bot"})

    def test_unknown_command(self, manager):
        with pytest.raises(CommandError, match="unknown command"):
            handle_command(manager, {"type": "self_destruct"})

    def test_initial_state(self, manager, locations):
        state = build_initial_state(manager, locations)
        assert state["type"] == "initial_state"
        assert set(state["bots_status"]) == {"Psy", "Atlas"}
        assert "api_token" not in state["bots_config"]["Psy"]
        assert {m["code"] for m in state["monsters"]} == {"chicken", "cow"}


# ---------------------------------------------------------------------------
# FleetBroadcaster
# ---------------------------------------------------------------------------

class TestBroadcaster:
    @pytest.mark.asyncio
    async def test_dispatch_errors_become_replies(self, manager):
        broadcaster = FleetBroadcaster(manager)
        assert broadcaster.dispatch("not json")["type"] == "error"
        assert broadcaster.dispatch("[1, 2]")["type"] == "error"
        assert broadcaster.dispatch(json.dumps({"type": "nope"}))["type"] == "error"
        reply = broadcaster.dispatch(json.dumps({
            "type": "update_bot_config", "character_name": "Psy", "config": {"action": "dance"},
        }))
        assert reply["type"] == "error"
        assert manager.get_bot_config("Psy").action == "fight"

    @pytest.mark.asyncio
    async def test_dispatch_query(self, manager):
        broadcaster = FleetBroadcaster(manager)
        reply = broadcaster.dispatch(json.dumps({"type": "get_bots_status"}))
        assert reply["type"] == "bots_status"
        assert reply["status"]["Psy"]["is_running"] is False

    @pytest.mark.asyncio
    async def test_events_dropped_without_clients(self, manager):
        broadcaster = FleetBroadcaster(manager)
        manager.subscribe(broadcaster._on_manager_event)
        manager.get_agent("Psy").log("hello")
        assert broadcaster._queue.empty()

    @pytest.mark.asyncio
    async def test_events_queued_and_sent(self, manager):
        broadcaster = FleetBroadcaster(manager)
        manager.subscribe(broadcaster._on_manager_event)
        client = AsyncMock()
        broadcaster.clients.add(client)

        manager.get_agent("Psy").log("hello")
        data = broadcaster._queue.get_nowait()
        assert data["type"] == "bot_log"

        await broadcaster.broadcast(data)
        sent = json.loads(client.send.await_args.args[0])
        assert sent["log"]["message"] == "hello"
        assert sent["log"]["character_name"] == "Psy"
