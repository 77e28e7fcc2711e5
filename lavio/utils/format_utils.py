"""
This module contains helper functions for turning ffprobe values into numbers and
numbers into human-readable strings. They are used by the ffmpeg backends when
parsing probe output and throughout the library when logging.
"""

from fractions import Fraction
from typing import Any, Optional, Tuple


def formatted_size(size_bytes: int) -> str:
    """
    Converts a size in bytes to a human-readable string (e.g., B, KB, MB, GB, TB).

    Args:
        size_bytes: The size in bytes.

    Returns:
        A formatted string with the appropriate unit.
        For example, 1536 becomes "1.50 KB", and 2097152 becomes "2 MB".
    """
    if size_bytes < 0:
        size_bytes = 0

    units = ["B", "KB", "MB", "GB", "TB", "PB"]
    factor = 1024.0

    if size_bytes == 0:
        return "0 B"

    for unit in units:
        if size_bytes < factor:
            if unit == "B":
                return f"{size_bytes} {unit}"
            else:
                # Clean up ".00" for whole numbers (e.g., "2.00 MB" -> "2 MB").
                return f"{size_bytes:.2f} {unit}".replace(".00", "")
        size_bytes /= factor

    return f"{size_bytes:.2f} {units[-1]}".replace(".00", "")


def parse_frame_rate(rate_str: Any) -> float:
    """
    Parses an ffprobe frame rate such as "25/1" or "30000/1001".

    Returns:
        The rate in frames per second, or 0.0 for missing or invalid values
        (ffprobe reports "0/0" when it does not know).
    """
    if not rate_str:
        return 0.0
    try:
        return float(Fraction(str(rate_str)))
    except (ValueError, ZeroDivisionError):
        return 0.0


def parse_ratio(ratio_str: Any) -> Optional[Tuple[int, int]]:
    """
    Parses an ffprobe aspect ratio such as "10:11".

    Returns:
        A (width, height) tuple, or None when the ratio is absent or "0:1".
    """
    if not ratio_str or ":" not in str(ratio_str):
        return None
    num_str, den_str = str(ratio_str).split(":", 1)
    try:
        num, den = int(num_str), int(den_str)
    except ValueError:
        return None
    if num <= 0 or den <= 0:
        return None
    return num, den


def parse_int(value: Any, default: int = 0) -> int:
    """Parses an integer field of ffprobe output, returning `default` when absent."""
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def frame_rate_arg(fps: float) -> str:
    """
    Formats a frame rate for the ffmpeg command line.

    Non-integer rates are passed as fractions so the container timebase does
    not drift (30000 / 1001 given as a float comes back as "30000/1001").
    """
    fraction = Fraction(fps).limit_denominator(1001)
    if fraction.denominator == 1:
        return str(fraction.numerator)
    return f"{fraction.numerator}/{fraction.denominator}"
