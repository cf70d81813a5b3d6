# backend/protocol/upstream.py
"""
Upstream recognition service wire format.

Client -> service:
    1. One JSON text frame with the stream configuration:
        {api_key, model, audio_format, sample_rate, num_channels, language_hints}
    2. Raw mono PCM16LE binary frames.

Service -> client (JSON text frames), checked in this order:
    {"error_code": ..., "error_message": "..."}    protocol error
    {"finished": true}                              stream finished
    {"tokens": [{"text": "...", "is_final": bool}]} token batch

Usage example:

    await ws.send(build_config_frame(upstream_config))

    msg = parse_upstream_message(raw)
    if msg.kind is UpstreamMessageKind.TOKENS:
        await assembler.ingest(msg.tokens)
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, TYPE_CHECKING

from constants import AUDIO_SAMPLE_RATE_HZ, UPSTREAM_AUDIO_FORMAT, UPSTREAM_CHANNELS

if TYPE_CHECKING:
    from config import UpstreamConfig


# -------------------------
# Exceptions
# -------------------------

class UpstreamProtocolError(Exception):
    """
    Raised when an upstream frame is not valid JSON or has the wrong shape.

    The frame is unsafe to interpret and must be skipped.
    """


# -------------------------
# Message types
# -------------------------

@dataclass(frozen=True)
class Token:
    """One recognition unit. Final tokens will not be revised upstream."""
    text: str
    is_final: bool


class UpstreamMessageKind(str, Enum):
    """Classification of one inbound upstream frame."""
    TOKENS = "tokens"
    FINISHED = "finished"
    ERROR = "error"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class UpstreamMessage:
    """
    Decoded upstream frame.

    tokens is only populated for TOKENS; error_* only for ERROR.
    """
    kind: UpstreamMessageKind
    tokens: tuple[Token, ...] = ()
    error_code: Any = None
    error_message: str | None = None


# -------------------------
# Encoding
# -------------------------

def build_config_frame(config: UpstreamConfig) -> str:
    """
    Encode the first frame sent after the upstream socket opens.
    """
    return json.dumps({
        "api_key": config.api_key,
        "model": config.model,
        "audio_format": UPSTREAM_AUDIO_FORMAT,
        "sample_rate": AUDIO_SAMPLE_RATE_HZ,
        "num_channels": UPSTREAM_CHANNELS,
        "language_hints": [config.language_hint],
    })


# -------------------------
# Decoding
# -------------------------

def _parse_token(raw: Any) -> Token:
    if not isinstance(raw, dict):
        raise UpstreamProtocolError(f"token must be an object, got {type(raw).__name__}")
    text = raw.get("text", "")
    if not isinstance(text, str):
        raise UpstreamProtocolError(f"token text must be a string, got {type(text).__name__}")
    return Token(text=text, is_final=bool(raw.get("is_final", False)))


def parse_upstream_message(raw: str | bytes) -> UpstreamMessage:
    """
    Decode one inbound upstream frame.

    Raises:
        UpstreamProtocolError if the frame is not a JSON object or the
        token list is malformed.
    """
    try:
        data = json.loads(raw)
    except (TypeError, ValueError) as e:
        raise UpstreamProtocolError(f"invalid JSON: {e}") from e

    if not isinstance(data, dict):
        raise UpstreamProtocolError(f"expected JSON object, got {type(data).__name__}")

    if data.get("error_code"):
        return UpstreamMessage(
            kind=UpstreamMessageKind.ERROR,
            error_code=data.get("error_code"),
            error_message=data.get("error_message"),
        )

    if data.get("finished"):
        return UpstreamMessage(kind=UpstreamMessageKind.FINISHED)

    tokens = data.get("tokens")
    if tokens is None:
        return UpstreamMessage(kind=UpstreamMessageKind.UNKNOWN)

    if not isinstance(tokens, list):
        raise UpstreamProtocolError(f"tokens must be a list, got {type(tokens).__name__}")

    return UpstreamMessage(
        kind=UpstreamMessageKind.TOKENS,
        tokens=tuple(_parse_token(t) for t in tokens),
    )
