"""
Transcript assembly for one channel.

Turns the upstream token stream into minimal, strictly additive text deltas
for real-time display.

Algorithm:
1. Split each batch into final and partial tokens (batch order kept).
2. Group text = token texts concatenated as-is, then normalized
   (whitespace runs -> one space, ends trimmed).
3. Batch with any final token:
       committed = normalize(committed + final_text)
       pending   = partial_text
       cancel debounce, emit delta now
4. Batch with only partial tokens:
       pending = partial_text
       (re)start the debounce timer; emit delta on expiry
5. Delta:
       full  = normalize(committed + pending)
       delta = full[len(last_emitted_snapshot):].strip()
       emit only if non-empty, then last_emitted_snapshot = full

The prefix strip is length-based. It is exact while `full` only grows by
appending; an upstream correction that rewrites already-emitted text is
logged as TRANSCRIPT_DIVERGED and never causes text to be withdrawn.
"""

from __future__ import annotations

import asyncio
import re
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Iterable, Sequence

from constants import TRANSCRIPT_DEBOUNCE_MS
from observability.logger import log_event
from protocol.upstream import Token
from session.channel import Channel


_WHITESPACE_RUN = re.compile(r"\s+")


def _now_ms() -> int:
    return int(time.time() * 1000)


def normalize_text(text: str) -> str:
    """Collapse whitespace runs to one space and trim both ends."""
    return _WHITESPACE_RUN.sub(" ", text).strip()


def build_text(tokens: Iterable[Token]) -> str:
    """Concatenate token texts without separators, then normalize."""
    return normalize_text("".join(t.text for t in tokens))


@dataclass
class ChannelTranscriptState:
    """
    Mutable per-channel transcript bookkeeping.

    committed_text:
        Finalized text; only ever appended to.

    pending_text:
        Current unfinalized hypothesis; replaced wholesale per batch.

    last_emitted_snapshot:
        normalize(committed + pending) as of the last emitted delta.
    """
    committed_text: str = ""
    pending_text: str = ""
    last_emitted_snapshot: str = ""

    def full_text(self) -> str:
        """Normalized committed + pending, without a separator between them."""
        return normalize_text(self.committed_text + self.pending_text)


class TranscriptAssembler:
    """
    Per-channel delta producer.

    Deltas are delivered through the async `emit_delta(delta, channel)`
    callback, in arrival order. Finals emit immediately; partial-only
    batches emit at most once per debounce window.
    """

    def __init__(
        self,
        *,
        channel: Channel,
        emit_delta: Callable[[str, Channel], Awaitable[None]],
        debounce_ms: int = TRANSCRIPT_DEBOUNCE_MS,
        session_id: str | None = None,
    ) -> None:
        self._channel = channel
        self._emit_delta = emit_delta
        self._debounce_ms = debounce_ms
        self._session_id = session_id

        self.state = ChannelTranscriptState()
        self._debounce_task: asyncio.Task[None] | None = None
        self._closed: bool = False

    @property
    def channel(self) -> Channel:
        """Conversation channel this assembler serves."""
        return self._channel

    @property
    def debounce_pending(self) -> bool:
        """True while a debounced emission is scheduled."""
        return self._debounce_task is not None and not self._debounce_task.done()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def ingest(self, tokens: Sequence[Token]) -> None:
        """
        Apply one upstream token batch.

        Empty batches change nothing; so does any batch after close().
        """
        if self._closed:
            return

        final_tokens = [t for t in tokens if t.is_final]
        partial_tokens = [t for t in tokens if not t.is_final]

        if final_tokens:
            self.state.committed_text = normalize_text(
                self.state.committed_text + build_text(final_tokens)
            )
            self.state.pending_text = build_text(partial_tokens)
            self.cancel_debounce()
            await self.flush()
            return

        if partial_tokens:
            self.state.pending_text = build_text(partial_tokens)
            self._restart_debounce()

    def compute_delta(self) -> str | None:
        """
        Compute the next delta and advance the snapshot if there is one.

        Returns None when there is nothing new to show.
        """
        full = self.state.full_text()
        snapshot = self.state.last_emitted_snapshot

        if not full.startswith(snapshot):
            log_event({
                "ts_ms": _now_ms(),
                "level": "WARNING",
                "event_type": "TRANSCRIPT_DIVERGED",
                "session_id": self._session_id,
                "channel": self._channel.value,
                "snapshot_chars": len(snapshot),
                "full_chars": len(full),
            })

        added = full[len(snapshot):].strip()
        if not added:
            return None

        self.state.last_emitted_snapshot = full
        return added

    async def flush(self) -> None:
        """Compute a delta now and emit it if non-empty."""
        delta = self.compute_delta()
        if delta is None:
            return
        await self._emit_delta(delta, self._channel)

    def cancel_debounce(self) -> None:
        """
        Cancel a scheduled debounced emission, if any.

        Idempotent. Committed and pending text are kept.
        """
        task = self._debounce_task
        self._debounce_task = None
        if task is not None and not task.done():
            task.cancel()

    def close(self) -> None:
        """Stop taking batches and cancel any scheduled emission. Idempotent."""
        self._closed = True
        self.cancel_debounce()

    # ------------------------------------------------------------------
    # Debounce timer
    # ------------------------------------------------------------------

    def _restart_debounce(self) -> None:
        self.cancel_debounce()

        async def _debounce_task() -> None:
            try:
                await asyncio.sleep(self._debounce_ms / 1000.0)
            except asyncio.CancelledError:
                # Superseded by a newer batch or a final
                return

            self._debounce_task = None
            await self.flush()

        self._debounce_task = asyncio.create_task(_debounce_task())
