"""
Game API client. One method per game action; each blocking requests call
runs in a worker thread so agent loops never stall the event loop.

Every non-success response or transport fault surfaces as GameAPIError.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Awaitable, Callable

import requests

from artifacts.config import Position
from artifacts.status import Character, Item

logger = logging.getLogger("artifacts.client")

DEFAULT_BASE_URL = "https://api.artifactsmmo.com"
MAP_PAGE_SIZE = 100


# ---------------------------------------------------------------------------
# Errors + results
# ---------------------------------------------------------------------------

class GameAPIError(RuntimeError):
    """Raised when the game API rejects a call or cannot be reached."""

    def __init__(self, message: str, status_code: int | None = None, endpoint: str = "") -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.endpoint = endpoint


def parse_timestamp(value: str) -> datetime:
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


@dataclass(frozen=True)
class ActionResult:
    cooldown_expiration: datetime | None = None
    xp: int = 0
    gold: int = 0
    items: tuple[Item, ...] = ()

    @classmethod
    def from_api(cls, body: dict | None) -> ActionResult:
        """Normalize an action response. Fight results carry drops,
        gathering and crafting results carry items."""
        data = (body or {}).get("data") or {}
        cooldown = data.get("cooldown") or {}
        expiration = cooldown.get("expiration")

        xp = gold = 0
        items: list[Item] = []
        fight = data.get("fight")
        details = data.get("details")
        if fight:
            xp = int(fight.get("xp", 0))
            gold = int(fight.get("gold", 0))
            items = [Item.from_api(d) for d in fight.get("drops") or []]
        elif details:
            xp = int(details.get("xp", 0))
            items = [Item.from_api(i) for i in details.get("items") or []]

        return cls(
            cooldown_expiration=parse_timestamp(expiration) if expiration else None,
            xp=xp,
            gold=gold,
            items=tuple(items),
        )


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------

class GameClient:
    """Thin wrapper over the game's REST API. Shared by every agent."""

    def __init__(
        self,
        api_token: str,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = 30.0,
        batch_spacing: float = 3.5,
        session: requests.Session | None = None,
        sleep: Callable[[float], Awaitable[None]] | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.batch_spacing = batch_spacing
        self._sleep = sleep or asyncio.sleep
        self.session = session or requests.Session()
        self.session.headers.update({
            "Authorization": f"Bearer {api_token}",
            "Accept": "application/json",
            "Content-Type": "application/json",
        })

    def close(self) -> None:
        self.session.close()

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _request_sync(self, method: str, endpoint: str, **kwargs) -> dict:
        url = f"{self.base_url}{endpoint}"
        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as exc:
            raise GameAPIError(f"{type(exc).__name__}: {exc}", endpoint=endpoint) from exc

        if not response.ok:
            raise GameAPIError(
                _error_message(response), status_code=response.status_code, endpoint=endpoint,
            )
        try:
            return response.json()
        except ValueError as exc:
            raise GameAPIError("Invalid JSON in response", response.status_code, endpoint) from exc

    async def _request(self, method: str, endpoint: str, **kwargs) -> dict:
        logger.debug("%s %s", method, endpoint)
        return await asyncio.to_thread(self._request_sync, method, endpoint, **kwargs)

    async def _action(self, name: str, action: str, payload: dict | None = None) -> ActionResult:
        body = await self._request("POST", f"/my/{name}/action/{action}", json=payload)
        return ActionResult.from_api(body)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def list_characters(self) -> list[Character]:
        body = await self._request("GET", "/my/characters")
        return [Character.from_api(raw) for raw in body.get("data") or []]

    async def list_maps(self, content_type: str) -> list[dict]:
        """All map tiles holding `content_type` content, across every page."""
        tiles: list[dict] = []
        page = 1
        while True:
            body = await self._request(
                "GET", "/maps",
                params={"content_type": content_type, "page": page, "size": MAP_PAGE_SIZE},
            )
            tiles.extend(body.get("data") or [])
            pages = body.get("pages") or 1
            if page >= pages:
                return tiles
            page += 1

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    async def move(self, name: str, position: Position) -> ActionResult:
        return await self._action(name, "move", position.model_dump())

    async def gather(self, name: str) -> ActionResult:
        return await self._action(name, "gathering")

    async def fight(self, name: str) -> ActionResult:
        return await self._action(name, "fight")

    async def rest(self, name: str) -> ActionResult:
        return await self._action(name, "rest")

    async def deposit(self, name: str, item: str, quantity: int) -> ActionResult:
        return await self._action(name, "bank/deposit", {"code": item, "quantity": quantity})

    async def withdraw(self, name: str, item: str, quantity: int) -> ActionResult:
        return await self._action(name, "bank/withdraw", {"code": item, "quantity": quantity})

    async def craft(self, name: str, item: str, quantity: int) -> ActionResult:
        return await self._action(name, "crafting", {"code": item, "quantity": quantity})

    async def deposit_all(self, name: str, items: list[Item]) -> list[ActionResult]:
        return await self._batch(self.deposit, name, items)

    async def withdraw_all(self, name: str, items: list[Item]) -> list[ActionResult]:
        return await self._batch(self.withdraw, name, items)

    async def _batch(
        self,
        call: Callable[[str, str, int], Awaitable[ActionResult]],
        name: str,
        items: list[Item],
    ) -> list[ActionResult]:
        results: list[ActionResult] = []
        for i, item in enumerate(items):
            if i:
                # bank calls have their own rate limit on top of cooldowns
                await self._sleep(self.batch_spacing)
            results.append(await call(name, item.code, item.quantity))
        return results


def _error_message(response: requests.Response) -> str:
    fallback = f"HTTP error! status: {response.status_code}"
    try:
        body = response.json()
    except ValueError:
        return fallback
    if not isinstance(body, dict):
        return fallback
    error = body.get("error")
    if isinstance(error, dict) and error.get("message"):
        return str(error["message"])
    return str(body.get("message") or fallback)
