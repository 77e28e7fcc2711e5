"""
Core value types describing an open media file.

These enumerations are shared by every layer: the field tagger needs the
container format to pick a tagging convention, the session stores interlacing,
chroma and data format, and the format probe fills them in when a file is
opened for reading.
"""
from enum import Enum, IntEnum
from typing import NamedTuple

from .exceptions import UnsupportedFormatError
from ..config.video import AVI_APP_LENGTH, QUICKTIME_APP_LENGTH


class Interlacing(IntEnum):
    """Field polarity of a video stream, numbered as in yuv4mpeg."""

    UNKNOWN = -1
    NONE = 0
    TOP_FIRST = 1
    BOTTOM_FIRST = 2


class Chroma(str, Enum):
    """Chroma subsampling of the stored pictures."""

    UNKNOWN = "unknown"
    C420JPEG = "420jpeg"
    C420PALDV = "420paldv"
    C422 = "422"
    C411 = "411"


class DataFormat(IntEnum):
    """Raw data format of a single frame."""

    MJPG = 0
    DV = 1
    YUV420 = 2
    YUV422 = 3


class ContainerFormat(str, Enum):
    """
    The container variants a session can be opened with.

    The values are the one-letter tags used on command lines and in error
    reports: 'a' is AVI with the top field first, 'A' is AVI with the bottom
    field first, 'j' is a single file of concatenated JPEG frames and 'q' is
    Quicktime.
    """

    AVI = "a"
    AVI_BOTTOM_FIRST = "A"
    JPEG = "j"
    QUICKTIME = "q"

    @classmethod
    def from_tag(cls, tag: "str | ContainerFormat") -> "ContainerFormat":
        if isinstance(tag, cls):
            return tag
        try:
            return cls(tag)
        except ValueError:
            raise UnsupportedFormatError(f"Unknown container format tag: {tag!r}") from None

    @property
    def is_avi(self) -> bool:
        return self in (ContainerFormat.AVI, ContainerFormat.AVI_BOTTOM_FIRST)

    @property
    def app_marker(self) -> int:
        """The APPn marker that carries field metadata: 0 for AVI/JPEG, 1 for Quicktime."""
        return 1 if self is ContainerFormat.QUICKTIME else 0

    @property
    def app_length(self) -> int:
        """Payload bytes the field metadata occupies in the APPn segment."""
        return QUICKTIME_APP_LENGTH if self is ContainerFormat.QUICKTIME else AVI_APP_LENGTH

    @property
    def polarity(self) -> Interlacing:
        """Field order written for interlaced material. Quicktime is always top first."""
        if self is ContainerFormat.AVI_BOTTOM_FIRST:
            return Interlacing.BOTTOM_FIRST
        return Interlacing.TOP_FIRST


class SampleAspect(NamedTuple):
    """Width:height ratio of one stored pixel."""

    width: int = 1
    height: int = 1

    def __str__(self) -> str:
        return f"{self.width}:{self.height}"
