# pylint: disable=missing-module-docstring,missing-function-docstring

from typing import Any, Callable

import pytest

from config import AppConfig


def _make_config(**overrides: Any) -> AppConfig:
    fields: dict[str, Any] = {
        "env": "test",
        "log_level": "DEBUG",
        "host": "127.0.0.1",
        "port": 3001,
        "soniox_api_key": "test-key",
        "soniox_ws_url": "wss://upstream.test/stream",
        "soniox_model": "stt-rt-v3",
        "language_hint": "ro",
        "reconnect_delay_ms": 1000,
        "max_reconnect_attempts": None,
        "max_pending_chunks": None,
        "upstream_open_timeout_s": 10.0,
        "transcript_debounce_ms": 3000,
        "enable_json_logs": True,
    }
    fields.update(overrides)
    return AppConfig(**fields)


@pytest.fixture
def make_config() -> Callable[..., AppConfig]:
    return _make_config
