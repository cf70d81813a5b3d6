# backend/audio/queues.py
"""
Pending upstream audio queue.

Holds mono chunks for one channel while its upstream socket is not ready.

Requirements:
- Strict FIFO: a chunk is never transmitted out of enqueue order
- Unbounded unless a ceiling is configured
- With a ceiling, overflow drops the OLDEST chunk and counts it
- Deterministic, synchronous behavior
"""

from __future__ import annotations
from collections import deque
from dataclasses import dataclass
from typing import Deque, Optional

from audio.frames import MonoChunk


@dataclass
class DropCounters:
    """
    Drop counters for observability.
    """
    overflow: int = 0


class PendingAudioQueue:
    """
    FIFO queue of MonoChunk awaiting upstream transmission.

    Drop rules:
    - max_chunks=None: never drops (memory grows while upstream is down)
    - else: drop OLDEST chunk to make room, then enqueue new
    """

    def __init__(self, *, max_chunks: int | None = None) -> None:
        if max_chunks is not None and max_chunks <= 0:
            raise ValueError("max_chunks must be > 0 or None")

        self._max_chunks: int | None = max_chunks
        self._chunks: Deque[MonoChunk] = deque()
        self._bytes: int = 0
        self.drops: DropCounters = DropCounters()

    # -------------------------
    # Core queue operations
    # -------------------------

    def enqueue(self, chunk: MonoChunk) -> bool:
        """
        Append a chunk at the tail.

        Returns:
            True if nothing was dropped
            False if the oldest chunk was evicted to make room
        """
        dropped = False
        if self._max_chunks is not None and len(self._chunks) >= self._max_chunks:
            evicted = self._chunks.popleft()
            self._bytes -= len(evicted)
            self.drops.overflow += 1
            dropped = True

        self._chunks.append(chunk)
        self._bytes += len(chunk)
        return not dropped

    def push_front(self, chunk: MonoChunk) -> None:
        """
        Return a chunk to the head after a failed transmission.

        Ignores the ceiling: the chunk was already admitted once.
        """
        self._chunks.appendleft(chunk)
        self._bytes += len(chunk)

    def dequeue(self) -> Optional[MonoChunk]:
        """
        Dequeue the oldest chunk.

        Returns None if queue is empty.
        """
        if not self._chunks:
            return None
        chunk = self._chunks.popleft()
        self._bytes -= len(chunk)
        return chunk

    # -------------------------
    # Introspection helpers
    # -------------------------

    def __len__(self) -> int:
        return len(self._chunks)

    def is_empty(self) -> bool:
        """Check if the queue is empty."""
        return not self._chunks

    def depth_bytes(self) -> int:
        """Total queued audio bytes."""
        return self._bytes

    def snapshot(self) -> dict[str, int]:
        """
        Lightweight snapshot for logging.
        """
        return {
            "chunks": len(self._chunks),
            "bytes": self._bytes,
            "dropped_overflow": self.drops.overflow,
        }
