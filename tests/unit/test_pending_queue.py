# pylint: disable=missing-module-docstring,missing-function-docstring

import pytest

from audio.queues import PendingAudioQueue


def make_chunk(tag: int) -> bytes:
    return bytes([tag, 0]) * 4


# ---------------------------------------------------------------------
# FIFO order
# ---------------------------------------------------------------------

def test_dequeue_returns_chunks_in_enqueue_order():
    q = PendingAudioQueue()

    for tag in (1, 2, 3):
        assert q.enqueue(make_chunk(tag)) is True

    assert [q.dequeue() for _ in range(3)] == [make_chunk(1), make_chunk(2), make_chunk(3)]
    assert q.dequeue() is None
    assert q.is_empty()


def test_push_front_restores_head():
    q = PendingAudioQueue()
    q.enqueue(make_chunk(1))
    q.enqueue(make_chunk(2))

    head = q.dequeue()
    assert head is not None
    q.push_front(head)

    assert q.dequeue() == make_chunk(1)
    assert q.dequeue() == make_chunk(2)


# ---------------------------------------------------------------------
# Ceiling
# ---------------------------------------------------------------------

def test_unbounded_by_default():
    q = PendingAudioQueue()

    for tag in range(200):
        q.enqueue(make_chunk(tag))

    assert len(q) == 200
    assert q.drops.overflow == 0


def test_ceiling_drops_oldest():
    q = PendingAudioQueue(max_chunks=2)

    q.enqueue(make_chunk(1))
    q.enqueue(make_chunk(2))
    assert q.enqueue(make_chunk(3)) is False

    assert q.drops.overflow == 1
    assert q.dequeue() == make_chunk(2)
    assert q.dequeue() == make_chunk(3)


def test_invalid_ceiling_rejected():
    with pytest.raises(ValueError):
        PendingAudioQueue(max_chunks=0)


# ---------------------------------------------------------------------
# Accounting
# ---------------------------------------------------------------------

def test_depth_bytes_and_snapshot():
    q = PendingAudioQueue()
    q.enqueue(b"\x00" * 10)
    q.enqueue(b"\x00" * 6)
    q.dequeue()

    assert q.depth_bytes() == 6
    assert q.snapshot() == {"chunks": 1, "bytes": 6, "dropped_overflow": 0}

    q.dequeue()
    assert q.depth_bytes() == 0
    assert len(q) == 0
