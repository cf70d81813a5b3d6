# backend/protocol/downstream.py
"""
Downstream client wire format.

Client -> server:
    text frames:   control JSON, e.g. {"type": "start", ...} (informational)
    binary frames: interleaved PCM16LE stereo @ 16kHz

Server -> client:
    text frames:   {"type": "transcriber-response",
                    "transcription": "<delta>",
                    "channel": "customer" | "assistant"}
"""

from __future__ import annotations

import json
from typing import Any

from constants import MSG_TYPE_TRANSCRIBER_RESPONSE
from session.channel import Channel


class ControlMessageError(ValueError):
    """
    Raised when a downstream text frame is not a JSON object.

    Never fatal: the gateway logs and ignores the frame.
    """


def parse_control_message(payload: str) -> dict[str, Any]:
    """
    Decode a downstream control frame.

    Only the JSON shape is checked; `type` is interpreted by the caller.
    """
    try:
        data = json.loads(payload)
    except ValueError as e:
        raise ControlMessageError(str(e)) from e

    if not isinstance(data, dict):
        raise ControlMessageError(f"expected JSON object, got {type(data).__name__}")

    return data


def encode_transcriber_response(transcription: str, channel: Channel) -> str:
    """Encode one transcript delta for the downstream client."""
    return json.dumps({
        "type": MSG_TYPE_TRANSCRIBER_RESPONSE,
        "transcription": transcription,
        "channel": channel.value,
    })
