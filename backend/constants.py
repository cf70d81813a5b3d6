"""
BEHAVIOR-AS-CONSTANTS
---------------------
Single source of truth for the relay's behavioral constants.

Rules:
- If changing a value changes runtime behavior, it belongs here.
- No magic numbers elsewhere in the codebase.
- Deployment-specific overrides are read in config.py, defaults live here.
"""

from __future__ import annotations

from typing import Final

# =============================================================================
# Audio Format (PCM16 little-endian @ 16kHz)
# =============================================================================

AUDIO_SAMPLE_RATE_HZ: Final[int] = 16_000
AUDIO_SAMPLE_WIDTH_BYTES: Final[int] = 2  # PCM16 (signed 16-bit)

# Downstream audio is interleaved stereo: [ch0_lo, ch0_hi, ch1_lo, ch1_hi]
STEREO_CHANNELS: Final[int] = 2
STEREO_SAMPLE_PAIR_BYTES: Final[int] = STEREO_CHANNELS * AUDIO_SAMPLE_WIDTH_BYTES

# Upstream audio is one mono sub-stream per channel
UPSTREAM_CHANNELS: Final[int] = 1
UPSTREAM_AUDIO_FORMAT: Final[str] = "pcm_s16le"

# =============================================================================
# Upstream Recognition Service (Soniox real-time)
# =============================================================================

SONIOX_WS_URL: Final[str] = "wss://stt-rt.soniox.com/transcribe-websocket"
SONIOX_MODEL: Final[str] = "stt-rt-v3"
DEFAULT_LANGUAGE_HINT: Final[str] = "ro"

UPSTREAM_MAX_MESSAGE_BYTES: Final[int] = 2**22
UPSTREAM_OPEN_TIMEOUT_S: Final[float] = 10.0

# =============================================================================
# Reconnect Policy
# =============================================================================

# Fixed delay, no exponential backoff
UPSTREAM_RECONNECT_DELAY_MS: Final[int] = 1_000

# None = retry forever; pending queue has no ceiling by default either
UPSTREAM_MAX_RECONNECT_ATTEMPTS: Final[int | None] = None
UPSTREAM_MAX_PENDING_CHUNKS: Final[int | None] = None

# =============================================================================
# Transcript Assembly
# =============================================================================

TRANSCRIPT_DEBOUNCE_MS: Final[int] = 3_000

# =============================================================================
# Downstream Protocol
# =============================================================================

DOWNSTREAM_WS_PATH: Final[str] = "/"
MSG_TYPE_START: Final[str] = "start"
MSG_TYPE_TRANSCRIBER_RESPONSE: Final[str] = "transcriber-response"

# =============================================================================
# Server
# =============================================================================

DEFAULT_HOST: Final[str] = "0.0.0.0"
DEFAULT_PORT: Final[int] = 3001

# =============================================================================
# Observability
# =============================================================================

LOG_PAYLOAD_PREVIEW_CHARS: Final[int] = 100
