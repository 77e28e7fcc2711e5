"""
Interfaces for container backends and the registry that selects them.

A session never touches a container file itself. It drives a writer or reader
handle obtained from a `BackendRegistry`, keyed by container family ("avi" or
"quicktime"). The single JPEG stream is handled by the session directly and
has no backend.

Optional features are expressed by returning None ("not available") rather
than raising, so a session can degrade gracefully on a backend that cannot,
for example, report a sample aspect ratio.
"""
from array import array
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

from loguru import logger

from ..config.common import DISABLED_BACKENDS
from ..domain.exceptions import UnsupportedFormatError
from ..domain.media import ContainerFormat

AVI_BACKEND = "avi"
QUICKTIME_BACKEND = "quicktime"


def backend_key(fmt: ContainerFormat) -> str:
    """Maps a container format to the registry key of the backend that handles it."""
    fmt = ContainerFormat.from_tag(fmt)
    if fmt.is_avi:
        return AVI_BACKEND
    if fmt is ContainerFormat.QUICKTIME:
        return QUICKTIME_BACKEND
    raise UnsupportedFormatError(f"Format '{fmt.value}' has no container backend")


class ContainerWriter:
    """
    A handle to a container file being written.

    Subclasses set `supports_dup_frame` when they can repeat the previous frame
    without receiving its data again, and `planar_audio` when they take audio
    as one signed 16-bit array per channel instead of interleaved bytes.
    """

    supports_dup_frame: bool = False
    planar_audio: bool = False

    def write_frame(self, data) -> None:
        raise NotImplementedError

    def dup_frame(self) -> None:
        raise NotImplementedError

    def write_audio(self, data) -> None:
        raise NotImplementedError

    def write_audio_planar(self, channels: List[array]) -> None:
        raise NotImplementedError

    def close(self) -> None:
        raise NotImplementedError


class ContainerReader:
    """
    A handle to a container file being read.

    Frame and sample positions are zero-based. `read_frame` returns the frame at
    the current video position and advances it. `read_audio` and
    `read_audio_planar` return fewer samples than requested at the end of the
    track.
    """

    planar_audio: bool = False

    def video_frames(self) -> int:
        raise NotImplementedError

    def video_width(self) -> int:
        raise NotImplementedError

    def video_height(self) -> int:
        raise NotImplementedError

    def frame_rate(self) -> float:
        raise NotImplementedError

    def video_compressor(self) -> Optional[str]:
        raise NotImplementedError

    def frame_size(self, frame: int) -> int:
        raise NotImplementedError

    def set_video_position(self, frame: int) -> None:
        raise NotImplementedError

    def read_frame(self) -> bytes:
        raise NotImplementedError

    def audio_channels(self) -> int:
        raise NotImplementedError

    def audio_bits(self) -> int:
        raise NotImplementedError

    def audio_rate(self) -> int:
        raise NotImplementedError

    def audio_samples(self) -> int:
        raise NotImplementedError

    def set_audio_position(self, sample: int) -> None:
        raise NotImplementedError

    def read_audio(self, samples: int) -> bytes:
        raise NotImplementedError

    def read_audio_planar(self, samples: int) -> List[array]:
        raise NotImplementedError

    def has_pcm_audio(self) -> bool:
        raise NotImplementedError

    def sample_aspect(self) -> Optional[Tuple[int, int]]:
        """The stored pixel aspect ratio, or None when the container has none."""
        return None

    def field_order(self) -> Optional[str]:
        """ffmpeg's field order name ('tt', 'tb', 'bb', 'bt', 'progressive'), or None."""
        return None

    def close(self) -> None:
        raise NotImplementedError


# Writer factory: (path, fmt, width, height, interlaced, fps, audio_bits, audio_channels, audio_rate)
WriterFactory = Callable[..., ContainerWriter]
ReaderFactory = Callable[[Path], ContainerReader]
Identifier = Callable[[Path], str]


class BackendRegistry:
    """
    Maps container families to the factories that open them.

    An `identifier` callable, when registered, tells which family a file on
    disk belongs to. Without it only output files can be opened.
    """

    def __init__(self):
        self._writers: Dict[str, WriterFactory] = {}
        self._readers: Dict[str, ReaderFactory] = {}
        self.identifier: Optional[Identifier] = None

    def register(
        self,
        key: str,
        writer: Optional[WriterFactory] = None,
        reader: Optional[ReaderFactory] = None,
    ) -> None:
        if writer is not None:
            self._writers[key] = writer
        if reader is not None:
            self._readers[key] = reader
        logger.debug(f"Registered container backend '{key}' (writer={writer is not None}, reader={reader is not None})")

    def available(self) -> List[str]:
        return sorted(set(self._writers) | set(self._readers))

    def writer_for(self, fmt: ContainerFormat) -> WriterFactory:
        key = backend_key(fmt)
        try:
            return self._writers[key]
        except KeyError:
            raise UnsupportedFormatError(f"No {key} writer is available in this installation") from None

    def reader_for(self, key: str) -> ReaderFactory:
        try:
            return self._readers[key]
        except KeyError:
            raise UnsupportedFormatError(f"No {key} reader is available in this installation") from None

    def identify(self, path: Path) -> str:
        if self.identifier is None:
            raise UnsupportedFormatError("No container identifier is available in this installation")
        return self.identifier(path)


_default_registry: Optional[BackendRegistry] = None


def default_registry() -> BackendRegistry:
    """
    Returns the registry of ffmpeg-backed containers, building it on first use.

    A backend is registered only when the FFmpeg tools can be found and the
    user has not disabled it in `config.user.yaml`.
    """
    global _default_registry
    if _default_registry is not None:
        return _default_registry

    # ffmpeg_container imports this module.
    from ..utils.ffmpeg_utils import Modules
    from . import ffmpeg_container

    registry = BackendRegistry()
    if not Modules.tools_available():
        logger.warning("FFmpeg was not found; only the single JPEG stream format is available.")
    else:
        registry.identifier = ffmpeg_container.identify_container
        if AVI_BACKEND not in DISABLED_BACKENDS:
            registry.register(AVI_BACKEND, ffmpeg_container.AviWriter, ffmpeg_container.AviReader)
        if QUICKTIME_BACKEND not in DISABLED_BACKENDS:
            registry.register(
                QUICKTIME_BACKEND, ffmpeg_container.QuicktimeWriter, ffmpeg_container.QuicktimeReader
            )
        logger.info(f"Container backends available: {', '.join(registry.available()) or 'none'}")

    _default_registry = registry
    return registry
