"""
Utilities Package for lavio.

This package contains helper modules that are not specific to any single
container format.

Modules:
    - ffmpeg_utils.py: Runs external commands with logging, and locates and
      verifies the FFmpeg executables.
    - audio_utils.py: Converts PCM between interleaved and per-channel layouts,
      widens 8-bit samples and swaps byte order.
    - format_utils.py: Parses ffprobe values (frame rates, aspect ratios) and
      formats sizes for display.
"""
