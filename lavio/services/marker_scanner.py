# --------------------------------------------------------
# |segment name|marker value|has data|description        |
# --------------------------------------------------------
# |SOI         |0xFFD8      |No      | start of image    |
# |EOI         |0xFFD9      |No      | end of image      |
# |DQT         |0xFFDB      |Yes     | quantization table|
# |DHT         |0xFFC4      |Yes     | huffman table     |
# |SOF0/SOF1   |0xFFC0/C1   |Yes     | frame header      |
# |SOS         |0xFFDA      |Yes     | start of scan     |
# |APP0        |0xFFE0      |Yes     | AVI1 field tag    |
# |APP1        |0xFFE1      |Yes     | mjpg field info   |
# --------------------------------------------------------
# Segments with data carry a 2-byte big-endian length right after the marker;
# the length counts itself, so the payload is length - 2 bytes.
"""
Locates structural boundaries inside a JPEG byte stream.

`scan_jpeg` walks the marker segments of one JPEG image without decoding any
entropy-coded data and reports where the interesting segments start. The
result is returned by value on every call, so concurrent scans never interfere.
"""
import struct
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from loguru import logger

from ..config.video import (
    M_APP0,
    M_APP1,
    M_DHT,
    M_DQT,
    M_EOI,
    M_SOF0,
    M_SOF1,
    M_SOI,
    M_SOS,
    PARAMETERLESS_MARKERS,
)
from ..domain.exceptions import MalformedStreamError


def read_uint16(data, offset: int) -> int:
    """Reads a big-endian 16-bit value."""
    return (data[offset] << 8) | data[offset + 1]


def read_uint32(data, offset: int) -> int:
    """Reads a big-endian 32-bit value."""
    return struct.unpack_from(">I", data, offset)[0]


def put_uint32(data, offset: int, value: int) -> None:
    """Stores a big-endian 32-bit value in a writable buffer."""
    struct.pack_into(">I", data, offset, value & 0xFFFFFFFF)


@dataclass(frozen=True)
class MarkerMap:
    """
    Byte offsets found by one scan of a JPEG field.

    Every offset is the position of the segment's 0xFF byte, or 0 when the
    segment was not seen. `data_offset` is the first byte of entropy-coded data
    (just after the SOS length field). `eoi_offset` is where the end-of-image
    marker starts, and `padded_len` extends the field over any filler bytes up
    to the next start-of-image marker or the end of the buffer. Both stay 0
    after a header-only scan.
    """

    quant_offset: int = 0
    huffman_offset: int = 0
    image_offset: int = 0
    scan_offset: int = 0
    data_offset: int = 0
    app0_offset: int = 0
    app1_offset: int = 0
    eoi_offset: int = 0
    padded_len: int = 0

    @property
    def field_size(self) -> int:
        """Length of the field up to and including the EOI marker."""
        return self.eoi_offset + 2 if self.eoi_offset else 0


@dataclass
class FrameHeader:
    """The fields of a SOF segment that the format probe looks at."""

    precision: int = 0
    height: int = 0
    width: int = 0
    # (component id, horizontal sampling, vertical sampling, quantization table)
    components: List[Tuple[int, int, int, int]] = field(default_factory=list)

    @property
    def sampling_factors(self) -> List[Tuple[int, int]]:
        return [(h, v) for _, h, v, _ in self.components]


def scan_jpeg(data, length: Optional[int] = None, header_only: bool = False) -> MarkerMap:
    """
    Scans JPEG data for markers.

    The scan never copies or modifies `data`. When `header_only` is set the scan
    stops at the SOS segment, which keeps it out of the entropy-coded data where
    0xFF bytes could be mistaken for markers.

    Args:
        data: The JPEG bytes (`bytes`, `bytearray` or `memoryview`).
        length: Number of bytes of `data` to consider. Defaults to all of it.
        header_only: Stop after the scan header instead of looking for EOI.

    Returns:
        The offsets of the segments found.

    Raises:
        MalformedStreamError: If the data does not start with SOI, a segment
            length runs past `length`, the buffer ends while looking for a
            marker, or a full scan finds no EOI.
    """
    if length is None or length > len(data):
        length = len(data)

    # The initial marker must be SOI
    if length < 2 or data[0] != 0xFF or data[1] != M_SOI:
        raise MalformedStreamError("JPEG data does not start with an SOI marker")

    offsets = {
        "quant_offset": 0,
        "huffman_offset": 0,
        "image_offset": 0,
        "scan_offset": 0,
        "data_offset": 0,
        "app0_offset": 0,
        "app1_offset": 0,
    }
    first_seen = {
        M_DQT: "quant_offset",
        M_DHT: "huffman_offset",
        M_SOF0: "image_offset",
        M_SOF1: "image_offset",
        M_APP0: "app0_offset",
        M_APP1: "app1_offset",
    }
    eoi_offset = 0

    p = 2
    while p < length:
        # Find 0xFF byte; skip any non-FFs
        while data[p] != 0xFF:
            p += 1
            if p >= length:
                raise MalformedStreamError("Buffer ended while searching for a marker")

        # Get marker code byte, swallowing any duplicate FF bytes
        while data[p] == 0xFF:
            p += 1
            if p >= length:
                raise MalformedStreamError("Buffer ended inside marker fill bytes")

        marker = data[p]
        p += 1

        if marker == M_EOI:
            eoi_offset = p - 2
            break

        if marker in PARAMETERLESS_MARKERS:
            continue

        if p > length - 2:
            raise MalformedStreamError(f"Buffer ended inside the length of segment 0x{marker:02X}")
        segment_length = read_uint16(data, p)
        if p + segment_length > length:
            raise MalformedStreamError(
                f"Segment 0x{marker:02X} at offset {p - 2} declares {segment_length} bytes, "
                f"only {length - p} remain"
            )

        name = first_seen.get(marker)
        if name and not offsets[name]:
            offsets[name] = p - 2
        elif marker == M_SOS:
            offsets["scan_offset"] = p - 2
            offsets["data_offset"] = p + segment_length
            if header_only:
                return MarkerMap(**offsets)

        p += segment_length

    if not eoi_offset:
        raise MalformedStreamError("No EOI marker found in JPEG data")

    # Trailing filler up to the end of the buffer or the next SOI
    while p < length:
        if p < length - 1 and data[p] == 0xFF and data[p + 1] == M_SOI:
            break
        p += 1

    return MarkerMap(eoi_offset=eoi_offset, padded_len=p, **offsets)


def get_field_size(data, length: Optional[int] = None) -> int:
    """
    Returns the padded size of the first field in a buffer of one or two fields.

    Fields keep their filler bytes, so the second field starts where it did in
    the source buffer. If the data cannot be scanned the whole length is returned.
    """
    if length is None or length > len(data):
        length = len(data)
    try:
        return scan_jpeg(data, length).padded_len
    except MalformedStreamError as e:
        logger.debug(f"Field size scan failed ({e}); using the full length {length}")
        return length


def read_frame_header(data, markers: MarkerMap) -> FrameHeader:
    """
    Reads the SOF segment located by a previous scan.

    The SOF segment is laid out as:
    FF C0 len_hi len_lo precision height_hi height_lo width_hi width_lo ncomps,
    then three bytes per component: id, H/V sampling nibbles, quant table.

    Raises:
        MalformedStreamError: If there is no SOF segment or it is truncated.
    """
    p = markers.image_offset
    if not p:
        raise MalformedStreamError("JPEG data has no SOF0/SOF1 frame header")
    if p + 10 > len(data):
        raise MalformedStreamError("JPEG frame header is truncated")

    header = FrameHeader(
        precision=data[p + 4],
        height=read_uint16(data, p + 5),
        width=read_uint16(data, p + 7),
    )
    num_components = data[p + 9]
    if p + 10 + 3 * num_components > len(data):
        raise MalformedStreamError("JPEG frame header component list is truncated")

    for n in range(num_components):
        q = p + 10 + 3 * n
        sampling = data[q + 1]
        header.components.append((data[q], sampling >> 4, sampling & 0x0F, data[q + 2]))
    return header
