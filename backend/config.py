"""
Application configuration.

Responsibilities:
- Load deployment-specific configuration
- Read environment variables
- Provide typed, immutable config objects

Non-responsibilities:
- No relay or assembly logic
- No protocol constants (see constants.py)
- No runtime mutation
"""

from __future__ import annotations

import os
from dataclasses import dataclass

from constants import (
    DEFAULT_HOST,
    DEFAULT_LANGUAGE_HINT,
    DEFAULT_PORT,
    SONIOX_MODEL,
    SONIOX_WS_URL,
    TRANSCRIPT_DEBOUNCE_MS,
    UPSTREAM_MAX_PENDING_CHUNKS,
    UPSTREAM_MAX_RECONNECT_ATTEMPTS,
    UPSTREAM_OPEN_TIMEOUT_S,
    UPSTREAM_RECONNECT_DELAY_MS,
)


@dataclass(frozen=True)
class UpstreamConfig:
    """
    Everything one ChannelRelay needs to reach the recognition service.

    Passed explicitly to each relay at construction; relays never read
    the environment themselves.
    """

    api_key: str
    url: str = SONIOX_WS_URL
    model: str = SONIOX_MODEL
    language_hint: str = DEFAULT_LANGUAGE_HINT

    reconnect_delay_ms: int = UPSTREAM_RECONNECT_DELAY_MS
    max_reconnect_attempts: int | None = UPSTREAM_MAX_RECONNECT_ATTEMPTS
    max_pending_chunks: int | None = UPSTREAM_MAX_PENDING_CHUNKS
    open_timeout_s: float = UPSTREAM_OPEN_TIMEOUT_S


@dataclass(frozen=True)
class AppConfig:
    """
    Immutable application configuration.

    Constructed once at process startup.
    Passed downward to server routes and the session gateway.
    """

    # ------------------------------------------------------------------
    # Environment
    # ------------------------------------------------------------------

    env: str
    log_level: str

    # ------------------------------------------------------------------
    # Server
    # ------------------------------------------------------------------

    host: str
    port: int

    # ------------------------------------------------------------------
    # Upstream recognition
    # ------------------------------------------------------------------

    soniox_api_key: str | None
    soniox_ws_url: str
    soniox_model: str
    language_hint: str

    reconnect_delay_ms: int
    max_reconnect_attempts: int | None
    max_pending_chunks: int | None
    upstream_open_timeout_s: float

    # ------------------------------------------------------------------
    # Transcript assembly
    # ------------------------------------------------------------------

    transcript_debounce_ms: int

    # ------------------------------------------------------------------
    # Observability
    # ------------------------------------------------------------------

    enable_json_logs: bool

    # ------------------------------------------------------------------
    # Derived
    # ------------------------------------------------------------------

    def upstream(self) -> UpstreamConfig:
        """Build the per-relay upstream config."""
        if not self.soniox_api_key:
            raise RuntimeError("SONIOX_API_KEY environment variable not set")

        return UpstreamConfig(
            api_key=self.soniox_api_key,
            url=self.soniox_ws_url,
            model=self.soniox_model,
            language_hint=self.language_hint,
            reconnect_delay_ms=self.reconnect_delay_ms,
            max_reconnect_attempts=self.max_reconnect_attempts,
            max_pending_chunks=self.max_pending_chunks,
            open_timeout_s=self.upstream_open_timeout_s,
        )

    # ------------------------------------------------------------------
    # Factory
    # ------------------------------------------------------------------

    @staticmethod
    def load_from_env() -> AppConfig:
        """
        Load configuration from environment variables.

        Raises:
            ValueError if a numeric variable cannot be parsed.
        """
        return AppConfig(
            env=os.environ.get("ENV", "prod"),
            log_level=os.environ.get("LOG_LEVEL", "INFO"),

            host=os.environ.get("HOST", DEFAULT_HOST),
            port=int(os.environ.get("PORT", DEFAULT_PORT)),

            soniox_api_key=os.environ.get("SONIOX_API_KEY"),
            soniox_ws_url=os.environ.get("SONIOX_WS_URL", SONIOX_WS_URL),
            soniox_model=os.environ.get("SONIOX_MODEL", SONIOX_MODEL),
            language_hint=os.environ.get("TRANSCRIBER_LANGUAGE", DEFAULT_LANGUAGE_HINT),

            reconnect_delay_ms=int(
                os.environ.get("UPSTREAM_RECONNECT_DELAY_MS", UPSTREAM_RECONNECT_DELAY_MS)
            ),
            max_reconnect_attempts=_optional_limit(
                "UPSTREAM_MAX_RECONNECT_ATTEMPTS", UPSTREAM_MAX_RECONNECT_ATTEMPTS
            ),
            max_pending_chunks=_optional_limit(
                "UPSTREAM_MAX_PENDING_CHUNKS", UPSTREAM_MAX_PENDING_CHUNKS
            ),
            upstream_open_timeout_s=float(
                os.environ.get("UPSTREAM_OPEN_TIMEOUT_S", UPSTREAM_OPEN_TIMEOUT_S)
            ),

            transcript_debounce_ms=int(
                os.environ.get("TRANSCRIPT_DEBOUNCE_MS", TRANSCRIPT_DEBOUNCE_MS)
            ),

            enable_json_logs=os.environ.get("ENABLE_JSON_LOGS", "1") == "1",
        )


def _optional_limit(name: str, default: int | None) -> int | None:
    """Read a ceiling where empty or 0 means "no limit"."""
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    value = int(raw)
    return value if value > 0 else None
