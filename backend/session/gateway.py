"""
Session gateway.

Responsibilities:
- Owns TranscriptionSession lifecycle (one per downstream connection)
- Builds the customer and assistant pipelines (ChannelRelay + TranscriptAssembler)
- Pre-warms both upstream connections on connect
- Routes inbound binary stereo frames -> demultiplexer -> relays
- Routes inbound JSON control messages (informational only)
- Publishes assembler deltas to the downstream socket while it is open

NOT responsible for:
- Upstream connection state (ChannelRelay)
- Transcript assembly (TranscriptAssembler)
- Downstream socket I/O details (server.routes provides send/is_open)
"""

from __future__ import annotations

import time
from typing import Any, Awaitable, Callable, TYPE_CHECKING

from uuid import uuid4

from adapters.asr.channel_relay import ChannelRelay
from audio.demux import split_stereo, usable_length
from constants import LOG_PAYLOAD_PREVIEW_CHARS, MSG_TYPE_START
from observability.logger import log_event
from protocol.downstream import (
    ControlMessageError,
    encode_transcriber_response,
    parse_control_message,
)
from session.channel import Channel
from session.transcription_session import ChannelPipeline, TranscriptionSession
from transcript.assembler import TranscriptAssembler

if TYPE_CHECKING:
    from config import AppConfig

# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------

def _now_ms() -> int:
    return time.time_ns() // 1_000_000


def _new_session_id() -> str:
    return f"sess_{uuid4().hex[:12]}"


# ------------------------------------------------------------------
# SessionGateway
# ------------------------------------------------------------------

class SessionGateway:
    """
    One gateway == one downstream connection == one transcription session.

    Downstream delivery is best-effort: a delta produced while the socket
    is not open is dropped, never queued.
    """

    def __init__(
        self,
        *,
        config: AppConfig,
        send_text: Callable[[str], Awaitable[None]],
        is_open: Callable[[], bool],
        relay_factory: Callable[..., Any] = ChannelRelay,
    ) -> None:
        self._config = config
        self._send_text = send_text
        self._is_open = is_open
        self._relay_factory = relay_factory
        self.session: TranscriptionSession | None = None

    async def on_ws_connect(self) -> None:
        """Called when the downstream connection is established."""
        session_id = _new_session_id()
        self.session = TranscriptionSession(session_id=session_id)

        upstream = self._config.upstream()

        for channel in Channel:
            assembler = TranscriptAssembler(
                channel=channel,
                emit_delta=self._send_transcript,
                debounce_ms=self._config.transcript_debounce_ms,
                session_id=session_id,
            )
            relay = self._relay_factory(
                channel=channel,
                config=upstream,
                on_tokens=assembler.ingest,
                session_id=session_id,
            )
            self.session.attach_pipeline(
                ChannelPipeline(channel=channel, relay=relay, assembler=assembler)
            )

        log_event({
            "ts_ms": _now_ms(),
            "event_type": "SESSION_STARTED",
            "session_id": session_id,
            "channels": [c.value for c in Channel],
        })

        # Pre-warm: do not wait for the first audio frame
        for pipeline in self.session.pipelines.values():
            pipeline.relay.connect()

    async def on_ws_disconnect(self, reason: str | None = None) -> None:
        """Called when the downstream connection closes. Idempotent."""
        if self.session is None:
            log_event({
                "ts_ms": _now_ms(),
                "event_type": "WS_DISCONNECT_WITHOUT_SESSION",
                "reason": reason,
            })
            return

        if self.session.closed:
            return
        self.session.closed = True

        for pipeline in self.session.pipelines.values():
            pipeline.assembler.close()
            await pipeline.relay.close()

        log_event({
            "ts_ms": _now_ms(),
            "event_type": "SESSION_ENDED",
            "reason": reason,
            "duration_s": round(time.time() - self.session.created_at, 3),
            **self.session.log_context(),
        })

    # ------------------------------------------------------------------
    # Inbound
    # ------------------------------------------------------------------

    async def on_json_message(self, payload: str) -> None:
        """Best-effort handling of a downstream control frame. Never raises."""
        if self.session is None:
            log_event({
                "ts_ms": _now_ms(),
                "event_type": "MESSAGE_WITHOUT_SESSION",
                "payload_preview": payload[:LOG_PAYLOAD_PREVIEW_CHARS],
            })
            return

        try:
            data = parse_control_message(payload)
        except ControlMessageError as e:
            log_event({
                "ts_ms": _now_ms(),
                "level": "WARNING",
                "event_type": "JSON_DECODE_ERROR",
                "session_id": self.session.session_id,
                "error": str(e),
                "payload_preview": payload[:LOG_PAYLOAD_PREVIEW_CHARS],
            })
            return

        msg_type = data.get("type")

        if msg_type == MSG_TYPE_START:
            log_event({
                "ts_ms": _now_ms(),
                "event_type": "START_MESSAGE_RECEIVED",
                "session_id": self.session.session_id,
                "message": data,
            })
            return

        log_event({
            "ts_ms": _now_ms(),
            "event_type": "UNKNOWN_MESSAGE_TYPE",
            "msg_type": msg_type,
            "session_id": self.session.session_id,
        })

    async def on_binary_message(self, payload: bytes) -> None:
        """
        Handle one inbound stereo audio frame.

        - Demultiplex into customer/assistant mono chunks
        - Send each half to its relay (which queues if not READY)
        """
        if self.session is None:
            log_event({
                "ts_ms": _now_ms(),
                "event_type": "BINARY_WITHOUT_SESSION",
                "payload_len": len(payload),
            })
            return

        if usable_length(len(payload)) != len(payload):
            log_event({
                "ts_ms": _now_ms(),
                "level": "WARNING",
                "event_type": "STEREO_FRAME_TRUNCATED",
                "session_id": self.session.session_id,
                "payload_len": len(payload),
                "usable_len": usable_length(len(payload)),
            })

        split = split_stereo(payload)
        self.session.frames_received += 1
        self.session.bytes_received += len(payload)

        for channel in Channel:
            chunk = split.for_channel(channel)
            # An empty binary frame tells the upstream service the stream ended
            if not chunk:
                continue
            await self.session.pipeline(channel).relay.send(chunk)

    # ------------------------------------------------------------------
    # Outbound
    # ------------------------------------------------------------------

    async def _send_transcript(self, delta: str, channel: Channel) -> None:
        """Assembler emit sink: publish one delta if the downstream is open."""
        session = self.session
        if session is None:
            return

        if session.closed or not self._is_open():
            session.deltas_dropped += 1
            log_event({
                "ts_ms": _now_ms(),
                "level": "DEBUG",
                "event_type": "TRANSCRIPT_DROPPED",
                "session_id": session.session_id,
                "channel": channel.value,
                "chars": len(delta),
            })
            return

        try:
            await self._send_text(encode_transcriber_response(delta, channel))
        except Exception as e:  # pylint: disable=broad-exception-caught
            session.deltas_dropped += 1
            log_event({
                "ts_ms": _now_ms(),
                "level": "WARNING",
                "event_type": "TRANSCRIPT_SEND_FAILED",
                "session_id": session.session_id,
                "channel": channel.value,
                "error": repr(e),
            })
            return

        session.deltas_sent += 1
        log_event({
            "ts_ms": _now_ms(),
            "event_type": "TRANSCRIPT_SENT",
            "session_id": session.session_id,
            "channel": channel.value,
            "chars": len(delta),
        })
