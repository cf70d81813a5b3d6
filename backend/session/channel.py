"""
Conversation channel enumeration.

Rules:
- Exactly two fixed sides, one per stereo lane.
- Values are the wire names used in downstream transcript messages.
"""

from __future__ import annotations

from enum import Enum


class Channel(str, Enum):
    """
    One side of the two-party conversation.

    CUSTOMER:
        Stereo channel 0 (first sample of each pair).

    ASSISTANT:
        Stereo channel 1 (second sample of each pair).
    """

    CUSTOMER = "customer"
    ASSISTANT = "assistant"
