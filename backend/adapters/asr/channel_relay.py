"""
Per-channel relay to the streaming recognition service.

Core model (IMPORTANT):
- One relay == one conversation channel == at most one upstream socket.
- The socket is opened lazily (first send) or eagerly (connect()), and may be
  reopened many times within one session.
- Audio sent while the socket is not READY is queued and drained FIFO once
  the config frame has gone out. Chunks arriving during the drain queue up
  behind it, so per-channel order is never violated.
- Upstream disconnects are never fatal to the session:
    - transport errors  -> reconnect after the fixed delay, always
    - clean close       -> reconnect after the fixed delay only if audio is queued
- Upstream "finished" and "error_code" messages close the socket (clean close).

Design constraints:
- Relay does not assemble transcripts; token batches go to `on_tokens`.
- Relay does not know about the downstream socket.
- close() is terminal for the session: scheduled reconnects are cancelled and
  none are scheduled afterwards.
"""

from __future__ import annotations

import asyncio
import time
from typing import Any, Awaitable, Callable, Sequence

from websockets.asyncio.client import connect as ws_connect

from adapters.asr.reconnect import (
    DisconnectCause,
    get_reconnect_delay_ms,
    next_attempt,
    reset_attempt,
    should_retry,
    wants_reconnect,
)
from audio.frames import MonoChunk
from audio.queues import PendingAudioQueue
from config import UpstreamConfig
from constants import UPSTREAM_MAX_MESSAGE_BYTES
from observability.logger import log_event
from observability.metrics import start_timer, stop_timer
from protocol.upstream import (
    Token,
    UpstreamMessageKind,
    UpstreamProtocolError,
    build_config_frame,
    parse_upstream_message,
)
from session.channel import Channel
from session.connection_status import ConnectionState


def _now_ms() -> int:
    return int(time.time() * 1000)


class ChannelRelay:
    """
    Reliable logical audio pipe to one upstream recognition session.

    Public interface:
    - send(chunk): transmit now if READY, else queue (+ connect if idle)
    - connect(): idempotent, non-blocking; starts an attempt in the background
    - close(): session teardown

    Connection lifecycle is tracked in `state` (ConnectionState).
    """

    def __init__(
        self,
        *,
        channel: Channel,
        config: UpstreamConfig,
        on_tokens: Callable[[Sequence[Token]], Awaitable[None]],
        session_id: str | None = None,
        connect: Callable[..., Awaitable[Any]] = ws_connect,
    ) -> None:
        self._channel = channel
        self._config = config
        self._on_tokens = on_tokens
        self._session_id = session_id
        self._connect = connect

        self._state = ConnectionState.DISCONNECTED
        self._ws: Any = None  # websockets ClientConnection in practice
        self._queue = PendingAudioQueue(max_chunks=config.max_pending_chunks)
        self._draining: bool = False

        # Bumped on every connect(); stale connection tasks compare against it
        self._generation: int = 0
        self._conn_task: asyncio.Task[None] | None = None
        self._reconnect_task: asyncio.Task[None] | None = None
        self._attempt = reset_attempt()
        self._connect_attempts: int = 0
        # Set once the reconnect cap is hit; send() then only queues
        self._reconnect_abandoned: bool = False

    # -------------------------------------------------------------------------
    # Introspection
    # -------------------------------------------------------------------------

    @property
    def channel(self) -> Channel:
        """Conversation channel this relay carries."""
        return self._channel

    @property
    def state(self) -> ConnectionState:
        """Current upstream connection state."""
        return self._state

    @property
    def pending_count(self) -> int:
        """Number of chunks waiting for a READY socket."""
        return len(self._queue)

    @property
    def connect_attempts(self) -> int:
        """Total connection attempts started over the relay's lifetime."""
        return self._connect_attempts

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    async def send(self, chunk: MonoChunk) -> None:
        """
        Send one mono PCM16LE chunk upstream.

        - READY and no drain in progress: transmit immediately.
        - Otherwise: queue, and start a connection attempt if none is in
          flight (DISCONNECTED or CLOSING) and the reconnect cap has not
          been reached.
        """
        ws = self._ws
        if self._state is ConnectionState.READY and not self._draining and ws is not None:
            try:
                await ws.send(chunk)
                return
            except Exception as e:  # pylint: disable=broad-exception-caught
                # Receive loop sees the same failure and schedules the reconnect;
                # keep the chunk for the next connection.
                self._log("UPSTREAM_SEND_FAILED", level="WARNING", error=repr(e))

        self._enqueue(chunk)

        if self._reconnect_abandoned:
            return

        if self._state in (ConnectionState.DISCONNECTED, ConnectionState.CLOSING):
            self.connect()

    def connect(self) -> None:
        """
        Start a connection attempt in the background.

        No-op while CONNECTING or READY. Must be called from a running loop.
        An explicit call lifts a reached reconnect cap for one more attempt.
        """
        if self._state in (ConnectionState.CONNECTING, ConnectionState.READY):
            return

        self._reconnect_abandoned = False
        self._cancel_reconnect()
        self._state = ConnectionState.CONNECTING
        self._generation += 1
        self._connect_attempts += 1

        self._log(
            "UPSTREAM_CONNECTING",
            attempt=self._attempt.attempt,
            pending_chunks=len(self._queue),
        )
        self._conn_task = asyncio.create_task(self._run_connection(self._generation))

    async def close(self) -> None:
        """
        Tear down for good (session end).

        Closes the socket if present, cancels an in-flight connect or a
        scheduled reconnect, and leaves the relay in CLOSING.
        """
        self._state = ConnectionState.CLOSING
        self._cancel_reconnect()

        ws = self._ws
        conn_task = self._conn_task

        if ws is not None:
            try:
                await ws.close()
            except Exception as e:  # pylint: disable=broad-exception-caught
                self._log("UPSTREAM_CLOSE_FAILED", level="WARNING", error=repr(e))
        elif conn_task is not None and not conn_task.done():
            conn_task.cancel()

        self._log("UPSTREAM_CLOSING", pending_chunks=len(self._queue))

    # -------------------------------------------------------------------------
    # Connection management
    # -------------------------------------------------------------------------

    async def _run_connection(self, generation: int) -> None:
        """
        One connection lifetime: open, configure, drain, receive, disconnect.
        """
        timer_id = start_timer("upstream_connect_ms")
        try:
            ws = await self._connect(
                self._config.url,
                max_size=UPSTREAM_MAX_MESSAGE_BYTES,
                open_timeout=self._config.open_timeout_s,
            )
        except asyncio.CancelledError:
            self._stop_connect_timer(timer_id, ok=False)
            raise
        except Exception as e:  # pylint: disable=broad-exception-caught
            self._stop_connect_timer(timer_id, ok=False)
            self._log("UPSTREAM_CONNECT_FAILED", level="ERROR", error=repr(e))
            self._handle_disconnect(generation, DisconnectCause.TRANSPORT_ERROR)
            return

        self._stop_connect_timer(timer_id, ok=True)

        if generation != self._generation or self._state is ConnectionState.CLOSING:
            await ws.close()
            return

        self._ws = ws
        cause = DisconnectCause.CLEAN_CLOSE
        try:
            await ws.send(build_config_frame(self._config))

            if generation != self._generation or self._state is not ConnectionState.CONNECTING:
                await ws.close()
                return

            self._state = ConnectionState.READY
            self._attempt = reset_attempt()
            self._reconnect_abandoned = False
            self._log("UPSTREAM_READY", pending_chunks=len(self._queue))

            await self._drain_pending(ws)
            await self._receive_loop(ws)

        except asyncio.CancelledError:
            raise
        except Exception as e:  # pylint: disable=broad-exception-caught
            cause = DisconnectCause.TRANSPORT_ERROR
            self._log("UPSTREAM_TRANSPORT_ERROR", level="ERROR", error=repr(e))
        finally:
            if self._ws is ws:
                self._ws = None

        self._handle_disconnect(generation, cause)

    async def _drain_pending(self, ws: Any) -> None:
        """Transmit queued chunks in FIFO order on a freshly READY socket."""
        if self._queue.is_empty():
            return

        drained = 0
        self._draining = True
        try:
            while True:
                chunk = self._queue.dequeue()
                if chunk is None:
                    break
                try:
                    await ws.send(chunk)
                except Exception:
                    self._queue.push_front(chunk)
                    raise
                drained += 1
        finally:
            self._draining = False

        self._log("UPSTREAM_QUEUE_DRAINED", chunks=drained)

    async def _receive_loop(self, ws: Any) -> None:
        """
        Consume upstream frames until the socket closes.

        RULES:
        - error_code -> log, close socket, stop
        - finished   -> close socket, stop
        - tokens     -> hand the batch to on_tokens (arrival order)
        - malformed  -> log and skip
        """
        async for raw in ws:
            try:
                msg = parse_upstream_message(raw)
            except UpstreamProtocolError as e:
                self._log("UPSTREAM_MESSAGE_INVALID", level="WARNING", error=str(e))
                continue

            if msg.kind is UpstreamMessageKind.ERROR:
                self._log(
                    "UPSTREAM_ERROR",
                    level="ERROR",
                    error_code=msg.error_code,
                    error_message=msg.error_message,
                )
                await ws.close()
                return

            if msg.kind is UpstreamMessageKind.FINISHED:
                self._log("UPSTREAM_FINISHED")
                await ws.close()
                return

            if msg.kind is UpstreamMessageKind.TOKENS:
                await self._on_tokens(msg.tokens)

    def _handle_disconnect(self, generation: int, cause: DisconnectCause) -> None:
        if generation != self._generation:
            return

        if self._state is ConnectionState.CLOSING:
            self._log("UPSTREAM_CLOSED", cause=cause.value, closing=True)
            return

        self._state = ConnectionState.DISCONNECTED
        self._log("UPSTREAM_CLOSED", cause=cause.value, pending_chunks=len(self._queue))

        if wants_reconnect(cause=cause, has_pending_audio=not self._queue.is_empty()):
            self._schedule_reconnect()

    # -------------------------------------------------------------------------
    # Reconnect timer
    # -------------------------------------------------------------------------

    def _schedule_reconnect(self) -> None:
        if self._reconnect_task is not None and not self._reconnect_task.done():
            return

        if not should_retry(
            attempt=self._attempt,
            max_attempts=self._config.max_reconnect_attempts,
        ):
            self._reconnect_abandoned = True
            self._log(
                "UPSTREAM_RECONNECT_ABANDONED",
                level="ERROR",
                attempts=self._attempt.attempt,
                pending_chunks=len(self._queue),
            )
            return

        self._attempt = next_attempt(self._attempt)
        delay_ms = get_reconnect_delay_ms(
            base_delay_ms=self._config.reconnect_delay_ms,
            attempt=self._attempt,
        )
        self._log(
            "UPSTREAM_RECONNECT_SCHEDULED",
            attempt=self._attempt.attempt,
            delay_ms=delay_ms,
        )

        async def _reconnect_task() -> None:
            try:
                await asyncio.sleep(delay_ms / 1000.0)
            except asyncio.CancelledError:
                # Cancelled by close() or a direct connect()
                return

            self._reconnect_task = None
            if self._state is ConnectionState.CLOSING:
                return
            self.connect()

        self._reconnect_task = asyncio.create_task(_reconnect_task())

    def _cancel_reconnect(self) -> None:
        task = self._reconnect_task
        self._reconnect_task = None
        if task is not None and not task.done():
            task.cancel()

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _enqueue(self, chunk: MonoChunk) -> None:
        if not self._queue.enqueue(chunk):
            self._log("UPSTREAM_AUDIO_DROPPED", level="WARNING", **self._queue.snapshot())

    def _stop_connect_timer(self, timer_id: str, *, ok: bool) -> None:
        stop_timer(
            timer_id,
            session_id=self._session_id,
            channel=self._channel.value,
            details={"ok": ok, "attempt": self._attempt.attempt},
        )

    def _log(self, event_type: str, *, level: str = "INFO", **fields: Any) -> None:
        log_event({
            "ts_ms": _now_ms(),
            "level": level,
            "event_type": event_type,
            "session_id": self._session_id,
            "channel": self._channel.value,
            **fields,
        })
