"""
JSONL event logger.

- Write one JSON object per line
- Output to stdout
- No buffering, no batching
- Events below the configured level are dropped
- No side effects beyond logging
"""

from __future__ import annotations

import json
import sys
from typing import Any, Mapping, Callable


_LEVELS: dict[str, int] = {
    "DEBUG": 10,
    "INFO": 20,
    "WARNING": 30,
    "ERROR": 40,
}

_min_level: int = _LEVELS["INFO"]
_json_lines: bool = True


# ------------------------------------------------------------------
# Explicit output sink (patchable in tests)
# ------------------------------------------------------------------

def _stdout_print(line: str) -> None:
    sys.stdout.write(line + "\n")
    sys.stdout.flush()

_print: Callable[[str], None] = _stdout_print


def configure(*, level: str = "INFO", json_lines: bool = True) -> None:
    """
    Set process-wide logging options.

    Called once at startup from the app factory. Unknown level names
    fall back to INFO.
    """
    global _min_level, _json_lines  # pylint: disable=global-statement
    _min_level = _LEVELS.get(level.upper(), _LEVELS["INFO"])
    _json_lines = json_lines


def _format_plain(event: Mapping[str, Any]) -> str:
    head = f"{event.get('ts_ms', '-')} {event.get('level', 'INFO')} {event.get('event_type', '?')}"
    rest = " ".join(
        f"{k}={v!r}"
        for k, v in event.items()
        if k not in ("ts_ms", "level", "event_type")
    )
    return f"{head} {rest}" if rest else head


def log_event(event: Mapping[str, Any]) -> None:
    """
    Write a single event line to stdout.

    The caller is responsible for:
    - Supplying a fully-formed event dict
    - Including ts_ms, event_type, session_id, channel, etc.
    - Optionally setting "level" (DEBUG/INFO/WARNING/ERROR, default INFO)

    This function:
    - Drops the event if its level is below the configured minimum
    - Serializes to JSON (or key=value text when JSON lines are disabled)
    - Writes exactly one line
    - Never raises
    """
    level = str(event.get("level", "INFO")).upper()
    if _LEVELS.get(level, _LEVELS["INFO"]) < _min_level:
        return

    if not _json_lines:
        _print(_format_plain(event))
        return

    try:
        line = json.dumps(event, ensure_ascii=False, separators=(",", ":"))
    except (TypeError, ValueError) as e:
        # Last-resort fallback: logging must never crash the relay
        fallback: dict[str, Any] = {
            "ts_ms": event.get("ts_ms"),
            "event_type": "LOGGER_SERIALIZATION_ERROR",
            "error": str(e),
            "original_event_repr": repr(event),
        }
        line = json.dumps(fallback, ensure_ascii=False, separators=(",", ":"))

    _print(line)
