"""
Transcription session container.

- One instance per downstream connection
- Owns the two channel pipelines (relay + assembler)
- Owned and mutated by SessionGateway
- Contains no relay or assembly logic
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, TYPE_CHECKING

from session.channel import Channel

if TYPE_CHECKING:
    from adapters.asr.channel_relay import ChannelRelay
    from transcript.assembler import TranscriptAssembler


@dataclass
class ChannelPipeline:
    """Relay and assembler serving one conversation channel."""

    channel: Channel
    relay: ChannelRelay
    assembler: TranscriptAssembler


@dataclass
class TranscriptionSession:
    """Mutable runtime container for a single downstream connection."""

    # ------------------------------------------------------------------
    # Identity / lifecycle
    # ------------------------------------------------------------------

    session_id: str
    created_at: float = field(default_factory=time.time)
    closed: bool = False

    # ------------------------------------------------------------------
    # Channel pipelines
    # ------------------------------------------------------------------

    pipelines: dict[Channel, ChannelPipeline] = field(default_factory=dict)

    # ------------------------------------------------------------------
    # Counters (observability only)
    # ------------------------------------------------------------------

    frames_received: int = 0
    bytes_received: int = 0
    deltas_sent: int = 0
    deltas_dropped: int = 0

    def attach_pipeline(self, pipeline: ChannelPipeline) -> None:
        """Register the pipeline for its channel (one per channel)."""
        self.pipelines[pipeline.channel] = pipeline

    def pipeline(self, channel: Channel) -> ChannelPipeline:
        """Return the pipeline for `channel`."""
        return self.pipelines[channel]

    def log_context(self) -> dict[str, Any]:
        """
        Return standard logging context for this session.
        """
        return {
            "session_id": self.session_id,
            "frames_received": self.frames_received,
            "bytes_received": self.bytes_received,
            "deltas_sent": self.deltas_sent,
            "deltas_dropped": self.deltas_dropped,
        }
