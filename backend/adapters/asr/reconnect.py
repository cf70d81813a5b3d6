"""
Upstream reconnect policy.

Purpose:
- Centralize the relay's reconnect rules
- Keep ChannelRelay free of counting/limit arithmetic

Policy:
- Fixed delay between attempts (no exponential backoff)
- No attempt cap unless one is configured
- The counter resets whenever a connection reaches READY

This module contains NO timers, NO async, NO side effects.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class DisconnectCause(str, Enum):
    """
    Why an upstream connection ended.

    CLEAN_CLOSE:
        Socket closed normally (including after an upstream "finished"
        or "error_code" message). Reconnect only if audio is queued.

    TRANSPORT_ERROR:
        Connect failed or the socket died abnormally. Reconnect
        regardless of the queue.
    """

    CLEAN_CLOSE = "clean_close"
    TRANSPORT_ERROR = "transport_error"


@dataclass(frozen=True)
class ReconnectAttempt:
    """
    Immutable count of consecutive reconnect attempts.

    attempt == 0 means no reconnect has been scheduled since the last
    successful connection.
    """
    attempt: int


def reset_attempt() -> ReconnectAttempt:
    """Returns a fresh attempt counter."""
    return ReconnectAttempt(attempt=0)


def next_attempt(current: ReconnectAttempt) -> ReconnectAttempt:
    """Returns a new counter incremented by 1."""
    return ReconnectAttempt(attempt=current.attempt + 1)


def wants_reconnect(*, cause: DisconnectCause, has_pending_audio: bool) -> bool:
    """
    Whether a disconnect should lead to a reconnect at all.
    """
    if cause is DisconnectCause.TRANSPORT_ERROR:
        return True
    return has_pending_audio


def should_retry(*, attempt: ReconnectAttempt, max_attempts: int | None) -> bool:
    """
    Returns True if another reconnect is allowed.

    attempt = number of reconnects already scheduled since last READY
    max_attempts = None means unlimited
    """
    if max_attempts is None:
        return True
    return attempt.attempt < max_attempts


def get_reconnect_delay_ms(*, base_delay_ms: int, attempt: ReconnectAttempt) -> int:  # pylint: disable=unused-argument
    """
    Returns the delay before reconnect attempt N.

    Same delay for every attempt.
    """
    return max(0, base_delay_ms)
