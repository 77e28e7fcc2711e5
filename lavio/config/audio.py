"""
Configuration settings related to audio tracks.

AVI files carry interleaved PCM exactly as the caller hands it over. Quicktime
files carry 'twos' audio, which the backend takes as one signed 16-bit buffer
per channel.
"""

# ffmpeg sample formats for raw PCM files, keyed by bits per sample.
AVI_RAW_FORMATS = {8: "u8", 16: "s16le"}
AVI_PCM_CODECS = {8: "pcm_u8", 16: "pcm_s16le"}

# Quicktime 'twos' is big-endian signed 16-bit PCM.
QUICKTIME_PCM_CODEC = "pcm_s16be"
QUICKTIME_AUDIO_BITS = 16

# Raw scratch format the Quicktime backend uses between ffmpeg and lavio.
PLANAR_RAW_FORMAT = "s16le"
PLANAR_RAW_CODEC = "pcm_s16le"

# 8-bit PCM is unsigned; widening to 16-bit flips the sign bit.
SIGN_BIT_16 = 0x8000

# Codec names accepted as PCM when a file is opened for reading.
PCM_CODEC_PREFIX = "pcm_"
