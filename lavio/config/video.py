"""
Configuration settings related to video containers and JPEG field metadata.

This module defines the marker codes the scanner looks for, the layout of the
two field-tagging conventions, the suffix used for the single JPEG stream's
temporary file, and the sample-aspect table for DV material.
"""

# --- JPEG Marker Codes ---
# Only the markers the scanner needs to record or step over are listed here.
M_SOF0 = 0xC0  # Start of frame, baseline DCT
M_SOF1 = 0xC1  # Start of frame, extended sequential DCT
M_DHT = 0xC4   # Define Huffman table
M_SOI = 0xD8   # Start of image (beginning of datastream)
M_EOI = 0xD9   # End of image (end of datastream)
M_SOS = 0xDA   # Start of scan (begins compressed data)
M_DQT = 0xDB   # Define quantization table
M_APP0 = 0xE0
M_APP1 = 0xE1

# Markers without a length field: the pseudo marker 0x00, TEM and RST0..RST7.
PARAMETERLESS_MARKERS = frozenset([0x00, 0x01, *range(0xD0, 0xD8)])

# --- Convention A (APP0, AVI family and single JPEG stream) ---
AVI_APP0_TAG = b"AVI1"
# Declared APP0 length needed before a field is tagged: 14 payload bytes + 2.
AVI_APP0_MIN_LENGTH = 16
# Minimum declared length for the reader to look at the tag at all.
AVI_APP0_READ_MIN_LENGTH = 5

# --- Convention B (APP1, Quicktime) ---
QUICKTIME_MJPG_TAG = 0x6D6A7067  # 'mjpg'
# Declared APP1 length needed before a field is tagged: 40 payload bytes + 2.
QUICKTIME_APP1_MIN_LENGTH = 42

# --- Per-format payload lengths (bytes after the length word) ---
AVI_APP_LENGTH = 14
QUICKTIME_APP_LENGTH = 40

# Interlaced frames hold at most this many concatenated fields.
MAX_FIELDS_PER_FRAME = 2

# --- Single JPEG stream ---
# Frames are written to '<path>.tmp' and renamed over '<path>' on close.
TMP_EXTENSION = ".tmp"

# --- Container codec tags ---
AVI_VIDEO_TAG = "MJPG"
QUICKTIME_TAG_INTERLACED = "mjpa"
QUICKTIME_TAG_PROGRESSIVE = "jpeg"

# Quicktime 'fiel' detail values written for interlaced MJPEG:
# 9 = top field stored first, 14 = bottom field stored first.
# ffmpeg names them by (coded, displayed) order.
QUICKTIME_FIELD_ORDER_TOP_FIRST = "tb"
QUICKTIME_FIELD_ORDER_BOTTOM_FIRST = "bt"
FIELD_ORDERS_TOP_STORED_FIRST = ("tt", "tb")
FIELD_ORDERS_BOTTOM_STORED_FIRST = ("bb", "bt")

# --- Compressor identifiers (compared case-insensitively as prefixes) ---
COMPRESSOR_YUV420_PREFIX = "yv1"
COMPRESSOR_YUV422_PREFIX = "yuv2"
COMPRESSOR_DV_PREFIX = "dv"
COMPRESSOR_MJPEG_PREFIXES = ("mjp", "jpeg")

# --- DV Sample Aspect Ratios ---
# Keyed by (system, widescreen).
DV_SAMPLE_ASPECT = {
    ("525_60", False): (10, 11),
    ("525_60", True): (40, 33),
    ("625_50", False): (59, 54),
    ("625_50", True): (118, 81),
}
