"""
Writes and reads field-order metadata inside JPEG marker payloads.

An interlaced frame is stored as two JPEG images (fields) concatenated back to
back. Nothing in a plain JPEG stream says which field is which, so two vendor
conventions carry that information in application segments:

Convention A (AVI family and the single JPEG stream):
    The APP0 payload gets the ASCII tag "AVI1" at offset 4 and a one-based
    field-order byte at offset 8. Fields without a usable APP0 segment are left
    alone.

Convention B (Quicktime "mjpa"):
    The APP1 payload gets ten big-endian 32-bit words starting at offset 4:
    reserved 0, 'mjpg', field size, padded field size, offset of the next field
    (0 for the last), then the offsets of the quantization table, Huffman table,
    frame header, scan header and compressed data. An APP1 segment is mandatory.

Both writers work in place on a caller-owned `bytearray`.
"""
from dataclasses import dataclass
from typing import List, Optional

from loguru import logger

from .marker_scanner import put_uint32, read_uint16, read_uint32, scan_jpeg
from ..config.video import (
    AVI_APP0_MIN_LENGTH,
    AVI_APP0_READ_MIN_LENGTH,
    AVI_APP0_TAG,
    MAX_FIELDS_PER_FRAME,
    QUICKTIME_APP1_MIN_LENGTH,
    QUICKTIME_MJPG_TAG,
)
from ..domain.exceptions import MalformedStreamError
from ..domain.media import ContainerFormat


@dataclass(frozen=True)
class QuicktimeFieldInfo:
    """The ten words of a Convention B APP1 payload."""

    reserved: int
    tag: int
    field_size: int
    padded_size: int
    next_field_offset: int
    quant_offset: int
    huffman_offset: int
    image_offset: int
    scan_offset: int
    data_offset: int


def _frame_length(frame, size: Optional[int]) -> int:
    if size is None or size > len(frame):
        return len(frame)
    return size


def tag_avi_fields(frame: bytearray, size: Optional[int] = None, bottom_first: bool = False) -> int:
    """
    Inserts the "AVI1" field tag into the APP0 segment of each field.

    Tagging is best effort: a field without an APP0 segment, or whose APP0
    segment is shorter than 14 payload bytes, is skipped. The first field gets
    order byte 1 and the second 2; `bottom_first` swaps them.

    Args:
        frame: The frame buffer, modified in place.
        size: Number of valid bytes in `frame`. Defaults to its length.
        bottom_first: Write the bottom-field-first numbering.

    Returns:
        The number of fields that were tagged.

    Raises:
        MalformedStreamError: If a field cannot be scanned.
    """
    remaining = _frame_length(frame, size)
    view = memoryview(frame)
    start = 0
    tagged = 0

    for n in range(MAX_FIELDS_PER_FRAME):
        if remaining <= 0:
            break
        field_view = view[start:start + remaining]
        markers = scan_jpeg(field_view, remaining)
        padded_len = markers.padded_len

        app0 = markers.app0_offset
        if not app0:
            logger.debug(f"Field {n} has no APP0 segment; left untagged")
        elif read_uint16(field_view, app0 + 2) < AVI_APP0_MIN_LENGTH:
            logger.debug(f"Field {n} APP0 segment is too short for the AVI1 tag; left untagged")
        else:
            field_view[app0 + 4:app0 + 8] = AVI_APP0_TAG
            field_view[app0 + 8] = (2 - n) if bottom_first else (n + 1)
            tagged += 1

        # Update offset and length for the second field
        start += padded_len
        remaining -= padded_len

    return tagged


def tag_quicktime_fields(frame: bytearray, size: Optional[int] = None) -> int:
    """
    Fills the APP1 segment of each field with the Quicktime field description.

    Args:
        frame: The frame buffer, modified in place.
        size: Number of valid bytes in `frame`. Defaults to its length.

    Returns:
        The number of fields that were tagged.

    Raises:
        MalformedStreamError: If a field cannot be scanned, has no APP1 segment,
            or its APP1 segment is shorter than 40 payload bytes.
    """
    remaining = _frame_length(frame, size)
    view = memoryview(frame)
    start = 0
    tagged = 0

    for n in range(MAX_FIELDS_PER_FRAME):
        if remaining <= 0:
            break
        field_view = view[start:start + remaining]
        markers = scan_jpeg(field_view, remaining)

        app1 = markers.app1_offset
        if not app1:
            raise MalformedStreamError(f"Field {n} has no APP1 segment for the Quicktime field info")
        if read_uint16(field_view, app1 + 2) < QUICKTIME_APP1_MIN_LENGTH:
            raise MalformedStreamError(f"Field {n} APP1 segment is shorter than {QUICKTIME_APP1_MIN_LENGTH} bytes")

        words = (
            0,
            QUICKTIME_MJPG_TAG,
            markers.field_size,
            markers.padded_len,
            markers.padded_len if n == 0 else 0,
            markers.quant_offset,
            markers.huffman_offset,
            markers.image_offset,
            markers.scan_offset,
            markers.data_offset,
        )
        for i, word in enumerate(words):
            put_uint32(field_view, app1 + 4 + 4 * i, word)
        tagged += 1

        start += markers.padded_len
        remaining -= markers.padded_len

    return tagged


def tag_fields(frame: bytearray, size: Optional[int], fmt: ContainerFormat) -> int:
    """Tags the fields of an interlaced frame with the convention `fmt` uses."""
    fmt = ContainerFormat.from_tag(fmt)
    if fmt is ContainerFormat.QUICKTIME:
        return tag_quicktime_fields(frame, size)
    return tag_avi_fields(frame, size, bottom_first=fmt is ContainerFormat.AVI_BOTTOM_FIRST)


def read_avi_field_tag(field) -> Optional[int]:
    """
    Returns the Convention A field-order byte of a field, or None.

    None means the field has no APP0 segment, the segment is too short, or it
    does not carry the "AVI1" tag. Only the headers are scanned.
    """
    markers = scan_jpeg(field, header_only=True)
    app0 = markers.app0_offset
    if not app0:
        return None
    if read_uint16(field, app0 + 2) < AVI_APP0_READ_MIN_LENGTH:
        return None
    if app0 + 9 > len(field):
        return None
    if bytes(field[app0 + 4:app0 + 8]).upper() != AVI_APP0_TAG:
        return None
    return field[app0 + 8]


def read_quicktime_field_info(field) -> QuicktimeFieldInfo:
    """
    Reads the Convention B field description of a field.

    Raises:
        MalformedStreamError: If the APP1 segment is missing, too short, or does
            not carry the 'mjpg' type tag.
    """
    markers = scan_jpeg(field, header_only=True)
    app1 = markers.app1_offset
    if not app1:
        raise MalformedStreamError("Field has no APP1 segment")
    if read_uint16(field, app1 + 2) < QUICKTIME_APP1_MIN_LENGTH:
        raise MalformedStreamError("APP1 segment is too short for Quicktime field info")

    info = QuicktimeFieldInfo(*(read_uint32(field, app1 + 4 + 4 * i) for i in range(10)))
    if info.tag != QUICKTIME_MJPG_TAG:
        raise MalformedStreamError(f"APP1 segment carries tag 0x{info.tag:08X}, not 'mjpg'")
    return info


def split_fields(frame, size: Optional[int], fmt: ContainerFormat) -> List[memoryview]:
    """
    Splits an interlaced frame buffer into its fields.

    Quicktime frames are split with the embedded next-field offset, so the
    compressed data is never scanned. AVI and JPEG-stream frames carry no
    length, so each field is scanned to find where it ends.

    Returns:
        One view per field, without copying. A frame holding a single field
        yields a list of one.
    """
    fmt = ContainerFormat.from_tag(fmt)
    length = _frame_length(frame, size)
    view = memoryview(frame)[:length]

    if fmt is ContainerFormat.QUICKTIME:
        info = read_quicktime_field_info(view)
        boundary = info.next_field_offset
    else:
        boundary = scan_jpeg(view, length).padded_len

    if not boundary or boundary >= length:
        return [view]
    return [view[:boundary], view[boundary:]]
