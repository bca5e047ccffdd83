#!/usr/bin/env python3
"""
Run the fleet headless: load locations, start agents, log to the terminal
until interrupted.

Usage:
    python -m scripts.run [--config PATH] [--only NAME ...]
"""
from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys

from dotenv import load_dotenv

from artifacts.client import GameClient
from artifacts.config import load_fleet_config
from artifacts.locations import load_locations
from artifacts.manager import AgentManager

logger = logging.getLogger("artifacts.run")


async def run(config_path: str | None, only: list[str]) -> None:
    api_token = os.getenv("API_TOKEN")
    if not api_token:
        raise SystemExit("API_TOKEN is not set")

    fleet = load_fleet_config(config_path)
    client = GameClient(
        api_token,
        base_url=fleet.base_url,
        timeout=fleet.timings.request_timeout,
        batch_spacing=fleet.timings.bank_batch_spacing,
    )
    locations = await load_locations(client)
    manager = AgentManager(api_token, client, locations, fleet=fleet)

    if only:
        for name in only:
            if not manager.start_bot(name):
                logger.warning("Unknown character %s", name)
    else:
        manager.start_all_bots()

    try:
        await asyncio.Event().wait()
    finally:
        await manager.shutdown()
        client.close()


def main() -> None:
    parser = argparse.ArgumentParser(description="Run the Artifacts fleet without the API")
    parser.add_argument("--config", default=None, help="Path to fleet config YAML")
    parser.add_argument("--only", nargs="*", default=[], help="Start only these characters")
    args = parser.parse_args()

    load_dotenv()
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)-8s [%(name)s] %(message)s",
        datefmt="%H:%M:%S",
    )

    try:
        asyncio.run(run(args.config, args.only))
    except KeyboardInterrupt:
        print("Interrupted, agents stopped.")
    sys.exit(0)


if __name__ == "__main__":
    main()
