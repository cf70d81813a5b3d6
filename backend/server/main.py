"""
Process entry point.

Loads .env, reads HOST/PORT from the environment and serves the ASGI app
with uvicorn.
"""

from __future__ import annotations

import time

import uvicorn
from dotenv import load_dotenv

from config import AppConfig
from observability.logger import log_event


def main() -> None:
    """Run the relay server until interrupted."""
    load_dotenv()
    config = AppConfig.load_from_env()

    log_event({
        "ts_ms": int(time.time() * 1000),
        "event_type": "SERVER_STARTING",
        "env": config.env,
        "host": config.host,
        "port": config.port,
    })

    uvicorn.run(
        "server.asgi:app",
        host=config.host,
        port=config.port,
        log_level=config.log_level.lower(),
        reload=config.env == "dev",
    )


if __name__ == "__main__":
    main()
