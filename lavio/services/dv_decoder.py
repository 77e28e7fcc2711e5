"""
DV frame header inspection.

Only the DIF header and VAUX packs of the first frame are read. They tell the
video system (525/60 or 625/50), the chroma sampling and whether the picture
is widescreen, which together give the session its sample aspect ratio and
chroma mode.

PAL (625/50) DV is natively 4:2:0, but a decoder may hand it out either as
planar 4:2:0 or as packed 4:2:2. Which one the external decoder does is found
out once per process by decoding a frame and caching the answer.
"""
import tempfile
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional

import ffmpeg
from loguru import logger

from ..config.common import TEMP_WORK_DIR, WORK_DIR_PREFIX
from ..config.video import DV_SAMPLE_ASPECT
from ..domain.exceptions import MalformedStreamError, UnsupportedFormatError
from ..domain.media import Chroma, SampleAspect
from ..utils.ffmpeg_utils import Modules

DIF_BLOCK_SIZE = 80
# Offset of the VAUX source pack (0x60) in the first VAUX DIF block.
VAUX_SOURCE_PACK_OFFSET = DIF_BLOCK_SIZE * 5 + 48
VAUX_SOURCE_CONTROL_PACK_ID = 0x61
STYPE_422 = 4
# Smallest buffer that holds the header and the VAUX packs read here.
MIN_DV_HEADER_SIZE = VAUX_SOURCE_PACK_OFFSET + 10


class DVSystem(str, Enum):
    SYSTEM_525_60 = "525_60"
    SYSTEM_625_50 = "625_50"


class DVSampling(str, Enum):
    NONE = "none"
    S411 = "411"
    S420 = "420"
    S422 = "422"


@dataclass(frozen=True)
class DVHeader:
    system: DVSystem
    wide: bool
    sampling: DVSampling


def parse_dv_header(frame) -> DVHeader:
    """
    Reads system, widescreen flag and sampling from the start of a DV frame.

    Raises:
        MalformedStreamError: If the buffer is too short to hold the header.
    """
    if len(frame) < MIN_DV_HEADER_SIZE:
        raise MalformedStreamError(f"DV frame of {len(frame)} bytes is too short for its header")

    # DSF bit of the header DIF block
    system = DVSystem.SYSTEM_625_50 if frame[3] & 0x80 else DVSystem.SYSTEM_525_60
    apt = frame[4] & 0x07
    stype = frame[VAUX_SOURCE_PACK_OFFSET + 3] & 0x1F

    if stype == STYPE_422:
        sampling = DVSampling.S422
    elif system is DVSystem.SYSTEM_625_50 and apt == 0:
        sampling = DVSampling.S420
    else:
        sampling = DVSampling.S411

    vsc = frame[VAUX_SOURCE_PACK_OFFSET + 5:VAUX_SOURCE_PACK_OFFSET + 10]
    aspect_bits = vsc[2] & 0x07
    wide = vsc[0] == VAUX_SOURCE_CONTROL_PACK_ID and (aspect_bits == 0x02 or (apt == 0 and aspect_bits == 0x07))

    return DVHeader(system=system, wide=wide, sampling=sampling)


def dv_sample_aspect(header: DVHeader) -> SampleAspect:
    """Sample aspect ratio of a DV system, normal or widescreen."""
    try:
        return SampleAspect(*DV_SAMPLE_ASPECT[(DVSystem(header.system).value, header.wide)])
    except (KeyError, ValueError):
        raise UnsupportedFormatError(f"DV system {header.system!r} is neither 525/60 nor 625/50") from None


# Cached answer of pal_decoder_chroma(). Written once, read many times without
# a lock; two threads racing here both probe and store the same value.
_pal_decoder_chroma: Optional[Chroma] = None


def _probe_decoder_pix_fmt(frame) -> Optional[str]:
    work_dir = TEMP_WORK_DIR
    if work_dir:
        work_dir.mkdir(parents=True, exist_ok=True)
    with tempfile.NamedTemporaryFile(prefix=WORK_DIR_PREFIX, suffix=".dv", dir=work_dir, delete=False) as f:
        f.write(frame)
        sample_path = Path(f.name)
    try:
        probe = ffmpeg.probe(str(sample_path), cmd=Modules.ffprobe_path(), f="dv")
    finally:
        sample_path.unlink(missing_ok=True)
    video = next((s for s in probe.get("streams", []) if s.get("codec_type") == "video"), {})
    return video.get("pix_fmt")


def pal_decoder_chroma(frame) -> Chroma:
    """
    Tells how the external decoder outputs 625/50 4:2:0 DV.

    The first call decodes `frame` and caches the result for the lifetime of
    the process. If the decoder cannot be asked, packed 4:2:2 is assumed for
    this call and nothing is cached.

    Returns:
        `Chroma.C420PALDV` for planar 4:2:0 output, else `Chroma.C422`.
    """
    global _pal_decoder_chroma
    if _pal_decoder_chroma is not None:
        return _pal_decoder_chroma

    try:
        pix_fmt = _probe_decoder_pix_fmt(frame)
    except (ffmpeg.Error, OSError) as e:
        logger.warning(f"Could not probe the DV decoder output format ({e}); assuming 4:2:2")
        return Chroma.C422

    if pix_fmt == "yuv420p":
        _pal_decoder_chroma = Chroma.C420PALDV
        logger.info("Detected DV decoder PAL output YV12 (4:2:0)")
    else:
        _pal_decoder_chroma = Chroma.C422
        logger.info(f"Detected DV decoder PAL output {pix_fmt or 'packed'} (4:2:2)")
    return _pal_decoder_chroma


def dv_chroma(header: DVHeader, frame) -> Chroma:
    """Chroma mode of the decoded pictures for a DV stream."""
    if header.sampling is DVSampling.S420:
        return pal_decoder_chroma(frame)
    if header.sampling is DVSampling.S411:
        return Chroma.C411
    if header.sampling is DVSampling.S422:
        return Chroma.C422
    return Chroma.UNKNOWN
