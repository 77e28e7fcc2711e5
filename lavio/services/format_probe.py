"""
Classifies a media file when it is opened for reading.

The probe fills in a session's data format, chroma mode, interlacing and
sample aspect ratio. It looks at the container's compressor tag first. For
motion JPEG it then reads the first frame and compares the height in the JPEG
frame header with the container's height: a frame holding half the lines is
two interlaced fields, and the field order comes from the "AVI1" tag of the
first field. DV streams are handed to the DV header parser.
"""
from typing import Optional

from loguru import logger

from .backends import ContainerReader
from .dv_decoder import dv_chroma, dv_sample_aspect, parse_dv_header
from .field_tagger import read_avi_field_tag
from .marker_scanner import FrameHeader, read_frame_header, scan_jpeg
from ..config.video import (
    COMPRESSOR_DV_PREFIX,
    COMPRESSOR_MJPEG_PREFIXES,
    COMPRESSOR_YUV420_PREFIX,
    COMPRESSOR_YUV422_PREFIX,
    FIELD_ORDERS_BOTTOM_STORED_FIRST,
    FIELD_ORDERS_TOP_STORED_FIRST,
)
from ..domain.exceptions import MalformedStreamError, UnsupportedFormatError
from ..domain.media import Chroma, ContainerFormat, DataFormat, Interlacing, SampleAspect


def classify_compressor(name: Optional[str]) -> DataFormat:
    """
    Maps a container's video compressor tag to a data format.

    The tag is matched case-insensitively by prefix, so "MJPG", "mjpa" and
    "jpeg" are all motion JPEG and "dvsd" and "dvc " are DV.

    Raises:
        UnsupportedFormatError: For any other compressor.
    """
    lowered = (name or "").lower()
    if lowered.startswith(COMPRESSOR_YUV420_PREFIX):
        return DataFormat.YUV420
    if lowered.startswith(COMPRESSOR_YUV422_PREFIX):
        return DataFormat.YUV422
    if lowered.startswith(COMPRESSOR_DV_PREFIX):
        return DataFormat.DV
    if lowered.startswith(COMPRESSOR_MJPEG_PREFIXES):
        return DataFormat.MJPG
    raise UnsupportedFormatError(f"Unsupported video compressor: {name!r}")


def classify_chroma(header: FrameHeader) -> Chroma:
    """
    Identifies the chroma subsampling from the JPEG sampling factors.

    Only 4:2:2 and 4:2:0 with 2x horizontal luma sampling are recognized.
    """
    if len(header.components) != 3:
        return Chroma.UNKNOWN
    (hy, vy), (hu, vu), (hv, vv) = header.sampling_factors
    if hy != 2 * hu or hy != 2 * hv:
        return Chroma.UNKNOWN
    if vy == vu and vy == vv:
        return Chroma.C422
    if vy == 2 * vu and vy == 2 * vv:
        return Chroma.C420JPEG
    return Chroma.UNKNOWN


def classify_interlacing(jpeg_height: int, container_height: int) -> bool:
    """
    Tells whether a frame holds two fields.

    Returns:
        False when the JPEG is as tall as the container's frames, True when it
        is exactly half as tall.

    Raises:
        MalformedStreamError: For any other height.
    """
    if jpeg_height == container_height:
        return False
    if jpeg_height == container_height // 2:
        return True
    raise MalformedStreamError(
        f"JPEG height {jpeg_height} fits neither the frame height {container_height} nor half of it"
    )


def interlacing_from_field_order(field_order: Optional[str]) -> Optional[Interlacing]:
    """Maps ffmpeg's field order name to interlacing, or None when it says nothing usable."""
    if not field_order:
        return None
    if field_order == "progressive":
        return Interlacing.NONE
    if field_order in FIELD_ORDERS_TOP_STORED_FIRST:
        return Interlacing.TOP_FIRST
    if field_order in FIELD_ORDERS_BOTTOM_STORED_FIRST:
        return Interlacing.BOTTOM_FIRST
    logger.warning(f"Unknown field order in 'fiel' atom: {field_order}")
    return None


def _read_first_frame(reader: ContainerReader) -> bytes:
    reader.set_video_position(0)
    if reader.frame_size(0) <= 0:
        raise MalformedStreamError("First video frame is empty")
    frame = reader.read_frame()
    reader.set_video_position(0)
    return frame


def _probe_dv(session, reader: ContainerReader) -> None:
    frame = _read_first_frame(reader)
    header = parse_dv_header(frame)
    session.sar = dv_sample_aspect(header)
    session.chroma = dv_chroma(header, frame)
    logger.debug(f"DV stream: system {header.system.value}, sampling {header.sampling.value}, wide={header.wide}")


def _probe_mjpeg(session, reader: ContainerReader) -> None:
    frame = _read_first_frame(reader)
    markers = scan_jpeg(frame, header_only=True)
    header = read_frame_header(frame, markers)

    session.chroma = classify_chroma(header)

    if not classify_interlacing(header.height, reader.video_height()):
        session.interlacing = Interlacing.NONE
        return

    if session.format.is_avi:
        order = read_avi_field_tag(frame)
        if order is None:
            # Depends on the application that produced the file.
            session.interlacing = Interlacing.TOP_FIRST
        elif order == 1:
            session.interlacing = Interlacing.TOP_FIRST
        else:
            session.interlacing = Interlacing.BOTTOM_FIRST
        session.format = (
            ContainerFormat.AVI_BOTTOM_FIRST
            if session.interlacing is Interlacing.BOTTOM_FIRST
            else ContainerFormat.AVI
        )
    elif session.format is ContainerFormat.QUICKTIME:
        session.interlacing = Interlacing.TOP_FIRST


def probe_session(session, reader: ContainerReader) -> None:
    """
    Fills in the format attributes of a session opened for reading.

    Quicktime containers may carry a pixel aspect ('pasp') and field order
    ('fiel'); those are applied first and can be refined by the frame
    inspection. The video position is left at frame 0.

    Raises:
        UnsupportedFormatError: For an unknown compressor or DV system.
        MalformedStreamError: If the first frame cannot be parsed or its height
            does not match the container.
    """
    if session.format is ContainerFormat.QUICKTIME:
        sample_aspect = reader.sample_aspect()
        if sample_aspect:
            session.sar = SampleAspect(*sample_aspect)
        interlacing = interlacing_from_field_order(reader.field_order())
        if interlacing is not None:
            session.interlacing = interlacing

    compressor = reader.video_compressor()
    session.dataformat = classify_compressor(compressor)

    if session.dataformat is DataFormat.YUV420:
        session.chroma = Chroma.C420JPEG
    elif session.dataformat is DataFormat.YUV422:
        session.chroma = Chroma.C422
    elif session.dataformat is DataFormat.DV:
        session.interlacing = Interlacing.BOTTOM_FIRST
        _probe_dv(session, reader)
    else:
        _probe_mjpeg(session, reader)

    logger.info(
        f"Probed {session.path}: compressor {compressor}, format '{session.format.value}', "
        f"interlacing {session.interlacing.name}, chroma {session.chroma.value}, sar {session.sar}"
    )
