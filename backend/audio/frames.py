"""
Audio frame primitives.

Pure data containers only.
No behavior, no queues, no timing logic.
"""

from __future__ import annotations
from dataclasses import dataclass

from session.channel import Channel


# Raw PCM16LE mono bytes for one channel. Produced by the demultiplexer,
# owned by exactly one ChannelRelay afterwards.
MonoChunk = bytes


@dataclass(frozen=True)
class StereoSplit:
    """
    Result of demultiplexing one interleaved stereo frame.

    customer:
        Channel 0 samples, byte order preserved.

    assistant:
        Channel 1 samples, byte order preserved.

    Both chunks always have the same length (half of the usable source
    length).
    """
    customer: MonoChunk
    assistant: MonoChunk

    def for_channel(self, channel: Channel) -> MonoChunk:
        """Return the mono chunk belonging to `channel`."""
        if channel is Channel.CUSTOMER:
            return self.customer
        return self.assistant
