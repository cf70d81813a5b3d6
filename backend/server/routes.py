"""
Route registration for the transcription relay.

Responsibilities:
- Define HTTP and WebSocket endpoints
- Wire a SessionGateway to each downstream WebSocket lifecycle
- Pull dependencies from app.state
"""

from __future__ import annotations

import time

from fastapi import WebSocket, WebSocketDisconnect, FastAPI
from starlette.websockets import WebSocketState

from constants import DOWNSTREAM_WS_PATH
from observability.logger import log_event
from session.gateway import SessionGateway


def register_routes(app: FastAPI) -> None:
    """Register all routes on the FastAPI app."""
    @app.get("/health")
    async def health() -> dict[str, str]: # pyright: ignore[reportUnusedFunction]
        return {"status": "ok"}

    @app.websocket(DOWNSTREAM_WS_PATH)
    async def transcriber_endpoint(ws: WebSocket) -> None: # pyright: ignore[reportUnusedFunction]
        await ws.accept()

        async def send_text(text: str) -> None:
            await ws.send_text(text)

        def is_open() -> bool:
            return (
                ws.client_state is WebSocketState.CONNECTED
                and ws.application_state is WebSocketState.CONNECTED
            )

        gateway = SessionGateway(
            config=app.state.config,
            send_text=send_text,
            is_open=is_open,
            relay_factory=app.state.relay_factory,
        )

        try:
            await gateway.on_ws_connect()

            while True:
                msg = await ws.receive()

                if msg["type"] == "websocket.disconnect":
                    raise WebSocketDisconnect(msg.get("code", 1000))

                if msg.get("text") is not None:
                    await gateway.on_json_message(msg["text"])

                elif msg.get("bytes") is not None:
                    await gateway.on_binary_message(msg["bytes"])

        except WebSocketDisconnect:
            await gateway.on_ws_disconnect(reason="client_disconnect")

        except Exception as exc:  # pylint: disable=broad-exception-caught
            log_event({
                "ts_ms": int(time.time() * 1000),
                "level": "ERROR",
                "event_type": "WS_FATAL_ERROR",
                "session_id": gateway.session.session_id if gateway.session else None,
                "exception": type(exc).__name__,
                "message": str(exc),
            })
            await gateway.on_ws_disconnect(reason="server_error")
