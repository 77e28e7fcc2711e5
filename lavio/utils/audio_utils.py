"""
Helpers for moving PCM samples between interleaved and per-channel layouts.

The Quicktime backend takes and returns one signed 16-bit buffer per channel,
while callers of a session always deal in interleaved sample frames. These
functions do that conversion, including widening unsigned 8-bit samples.
"""
import sys
from array import array
from typing import List, Sequence

from ..config.audio import SIGN_BIT_16


def host_is_big_endian() -> bool:
    """True when 16-bit words are stored most significant byte first on this host."""
    return sys.byteorder == "big"


def swap16(samples: array) -> array:
    """Swaps the two bytes of every 16-bit word in place and returns the array."""
    samples.byteswap()
    return samples


def deinterleave(buffer, samples: int, channels: int, bits: int) -> List[array]:
    """
    Splits interleaved PCM into one signed 16-bit array per channel.

    16-bit input is taken in host byte order. 8-bit input is unsigned and is
    widened by shifting into the high byte and flipping the sign bit, so 0x80
    (silence) becomes 0.

    Args:
        buffer: Interleaved sample frames.
        samples: Number of sample frames to convert.
        channels: Channels per sample frame.
        bits: 8 or 16.

    Returns:
        A list of `channels` arrays of type 'h', each `samples` long.

    Raises:
        ValueError: For sample sizes other than 8 or 16 bits, or a buffer
            shorter than `samples` frames.
    """
    if bits not in (8, 16):
        raise ValueError(f"Cannot convert {bits}-bit audio")
    frame_bytes = channels * bits // 8
    if len(buffer) < samples * frame_bytes:
        raise ValueError(f"Audio buffer holds {len(buffer)} bytes, {samples * frame_bytes} needed")

    if bits == 16:
        interleaved = array("h")
        interleaved.frombytes(bytes(buffer[:samples * frame_bytes]))
        return [array("h", interleaved[j::channels]) for j in range(channels)]

    out = [array("h", bytes(2 * samples)) for _ in range(channels)]
    for i in range(samples):
        for j in range(channels):
            widened = ((buffer[channels * i + j] << 8) ^ SIGN_BIT_16) & 0xFFFF
            out[j][i] = widened - 0x10000 if widened & SIGN_BIT_16 else widened
    return out


def interleave(channel_data: Sequence[array], samples: int) -> array:
    """
    Merges per-channel 16-bit arrays into one interleaved 'h' array.

    Only the first `samples` entries of each channel are used.
    """
    channels = len(channel_data)
    out = array("h", bytes(2 * samples * channels))
    for j, data in enumerate(channel_data):
        out[j::channels] = array("h", data[:samples])
    return out
