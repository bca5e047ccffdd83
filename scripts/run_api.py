#!/usr/bin/env python3
"""Run the fleet API service (HTTP + WebSocket)."""
from __future__ import annotations

import logging
import os

import uvicorn


def main() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)-8s [%(name)s] %(message)s",
        datefmt="%H:%M:%S",
    )
    # Dashboards poll /api/bots constantly
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)

    host = os.getenv("ARTIFACTS_API_HOST", "0.0.0.0")
    port = int(os.getenv("ARTIFACTS_API_PORT", "3021"))
    uvicorn.run("artifacts.api.app:app", host=host, port=port, reload=False)


if __name__ == "__main__":
    main()
