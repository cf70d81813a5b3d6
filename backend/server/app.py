"""
FastAPI app factory.

Responsibilities:
- Create and configure FastAPI app
- Set up middleware and logging
- Validate upstream credentials once per process
- Register routes
"""

from __future__ import annotations

from typing import Any, Callable

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from adapters.asr.channel_relay import ChannelRelay
from config import AppConfig
from observability import logger

from server.routes import register_routes


def create_app(
    config: AppConfig | None = None,
    relay_factory: Callable[..., Any] = ChannelRelay,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    This is the app factory pattern that allows:
    - Testing with different configurations / fake relays
    - Environment-specific setup
    - ASGI server compatibility
    """
    if config is None:
        config = AppConfig.load_from_env()

    logger.configure(level=config.log_level, json_lines=config.enable_json_logs)

    # Fail at startup, not on the first connection
    config.upstream()

    app = FastAPI(title="Stereo Transcription Relay")

    app.state.config = config
    app.state.relay_factory = relay_factory

    # Middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # tighten later
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Routes
    register_routes(app)

    return app
