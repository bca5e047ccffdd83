from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from artifacts.api.schemas import BotActionResponse, BotConfigPatch, BotDetail, HealthResponse
from artifacts.client import GameClient
from artifacts.config import CraftingCycle, load_fleet_config
from artifacts.locations import LocationResolver, load_locations
from artifacts.manager import AgentManager
from artifacts.server import FleetBroadcaster

load_dotenv()

logger = logging.getLogger("artifacts.api")

WS_HOST = os.getenv("ARTIFACTS_WS_HOST", "0.0.0.0")
WS_PORT = int(os.getenv("ARTIFACTS_WS_PORT", "8765"))
WS_PUBLIC_URL = os.getenv("ARTIFACTS_WS_PUBLIC_URL", f"ws://localhost:{WS_PORT}")

manager: AgentManager | None = None
locations: LocationResolver | None = None


@asynccontextmanager
async def lifespan(_app: FastAPI):
    global manager, locations
    api_token = os.getenv("API_TOKEN")
    if not api_token:
        raise RuntimeError("API_TOKEN is not set")

    fleet = load_fleet_config()
    client = GameClient(
        api_token,
        base_url=fleet.base_url,
        timeout=fleet.timings.request_timeout,
        batch_spacing=fleet.timings.bank_batch_spacing,
    )
    logger.info("Loading monster and resource locations...")
    locations = await load_locations(client)
    manager = AgentManager(api_token, client, locations, fleet=fleet)
    broadcaster = FleetBroadcaster(manager, locations, host=WS_HOST, port=WS_PORT)
    await broadcaster.start()
    try:
        yield
    finally:
        logger.info("Shutting down: stopping all bots")
        await manager.shutdown()
        await broadcaster.stop()
        client.close()


app = FastAPI(title="Artifacts Fleet API", version="1.0.0", lifespan=lifespan)

cors_origins = os.getenv("ARTIFACTS_CORS_ORIGINS", "http://localhost:3000").split(",")
app.add_middleware(
    CORSMiddleware,
    allow_origins=[origin.strip() for origin in cors_origins if origin.strip()],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _manager() -> AgentManager:
    if not manager:
        raise RuntimeError("Agent manager unavailable")
    return manager


def _require_bot(name: str) -> AgentManager:
    mgr = _manager()
    if mgr.get_bot_config(name) is None:
        raise HTTPException(status_code=404, detail="Bot not found")
    return mgr


def _detail(mgr: AgentManager, name: str) -> BotDetail:
    return BotDetail(
        character_name=name,
        status=mgr.get_bot_status(name).to_dict(),
        config=mgr.get_bot_config(name).to_public_dict(),
    )


@app.get("/health", response_model=HealthResponse)
async def health() -> HealthResponse:
    mgr = _manager()
    return HealthResponse(
        status="ok",
        bots=mgr.get_bot_count(),
        running=mgr.get_running_bot_count(),
        websocket_host=WS_HOST,
        websocket_port=WS_PORT,
    )


@app.get("/api/config")
async def api_config() -> dict:
    return {
        "ws_url": WS_PUBLIC_URL,
        "ws_token_required": bool(os.getenv("ARTIFACTS_WS_TOKEN")),
    }


@app.get("/api/bots")
async def list_bots() -> dict:
    return {name: s.to_dict() for name, s in _manager().get_bots_status().items()}


@app.post("/api/bots/start-all")
async def start_all() -> dict:
    mgr = _manager()
    mgr.start_all_bots()
    return {"running": mgr.get_running_bots()}


@app.post("/api/bots/stop-all")
async def stop_all() -> dict:
    mgr = _manager()
    mgr.stop_all_bots()
    return {"running": mgr.get_running_bots()}


@app.get("/api/bots/{name}", response_model=BotDetail)
async def get_bot(name: str) -> BotDetail:
    return _detail(_require_bot(name), name)


@app.post("/api/bots/{name}/start", response_model=BotActionResponse)
async def start_bot(name: str) -> BotActionResponse:
    mgr = _require_bot(name)
    mgr.start_bot(name)
    return BotActionResponse(character_name=name, is_running=mgr.get_bot_status(name).is_running)


@app.post("/api/bots/{name}/stop", response_model=BotActionResponse)
async def stop_bot(name: str) -> BotActionResponse:
    mgr = _require_bot(name)
    mgr.stop_bot(name)
    return BotActionResponse(character_name=name, is_running=mgr.get_bot_status(name).is_running)


@app.patch("/api/bots/{name}/config", response_model=BotDetail)
async def update_config(name: str, patch: BotConfigPatch) -> BotDetail:
    mgr = _require_bot(name)
    mgr.update_bot_config(name, patch.changes())
    return _detail(mgr, name)


@app.put("/api/bots/{name}/crafting-cycle", response_model=BotDetail)
async def put_crafting_cycle(name: str, cycle: CraftingCycle) -> BotDetail:
    mgr = _require_bot(name)
    mgr.update_crafting_cycle(name, cycle)
    return _detail(mgr, name)


@app.delete("/api/bots/{name}/crafting-cycle", response_model=BotDetail)
async def delete_crafting_cycle(name: str) -> BotDetail:
    mgr = _require_bot(name)
    mgr.remove_crafting_cycle(name)
    return _detail(mgr, name)


@app.get("/api/configs")
async def all_configs() -> dict:
    return {name: c.to_public_dict() for name, c in _manager().get_all_configs().items()}


@app.get("/api/logs")
async def recent_logs(count: int = 50) -> list[dict]:
    return [e.to_dict() for e in _manager().get_recent_logs(count)]


@app.get("/api/monsters")
async def monsters() -> list[dict]:
    return locations.monsters.all() if locations else []


@app.get("/api/resources")
async def resources() -> list[dict]:
    return locations.resources.all() if locations else []
