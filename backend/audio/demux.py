"""
Stereo demultiplexing (pure).

Purpose:
- Split one interleaved stereo PCM16LE frame from the downstream client
  into two mono PCM16LE chunks, one per conversation channel.

Invariants:
- Input layout per sample pair: [c0_lo, c0_hi, c1_lo, c1_hi]
- Channel 0 -> customer, channel 1 -> assistant
- Output chunks have equal length, half of the usable input length
- Trailing bytes that do not form a full sample pair are dropped
  (truncation, not an error)
"""

from __future__ import annotations

import numpy as np

from audio.frames import StereoSplit
from constants import AUDIO_SAMPLE_WIDTH_BYTES, STEREO_CHANNELS, STEREO_SAMPLE_PAIR_BYTES


def usable_length(frame_len: int) -> int:
    """Largest prefix length made of whole stereo sample pairs."""
    if frame_len <= 0:
        return 0
    return frame_len - (frame_len % STEREO_SAMPLE_PAIR_BYTES)


def split_stereo(frame: bytes) -> StereoSplit:
    """
    Split an interleaved stereo frame into customer/assistant mono chunks.

    Args:
        frame:
            Raw interleaved PCM16LE stereo bytes. Length is expected to be
            a multiple of 4; any remainder is ignored.

    Returns:
        StereoSplit with both chunks of length usable_length(len(frame)) // 2.

    Notes:
        This function does NOT:
        - resample audio
        - validate sample rate
        - pad trailing audio
    """
    n = usable_length(len(frame))
    if n == 0:
        return StereoSplit(customer=b"", assistant=b"")

    samples = np.frombuffer(
        frame,
        dtype="<i2",  # little-endian int16, bytes copied verbatim
        count=n // AUDIO_SAMPLE_WIDTH_BYTES,
    ).reshape(-1, STEREO_CHANNELS)

    return StereoSplit(
        customer=samples[:, 0].tobytes(),
        assistant=samples[:, 1].tobytes(),
    )
