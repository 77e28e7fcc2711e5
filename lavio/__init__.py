"""
lavio: motion-JPEG video in AVI, Quicktime and plain JPEG stream files.

The names most callers need are importable from the package directly:

    from lavio import open_input_file, strerror

    with open_input_file("clip.avi") as session:
        frame = session.read_frame()
"""
from .domain.exceptions import (
    BackendError,
    LavioException,
    MalformedStreamError,
    NoAudioTrackError,
    OutOfMemoryError,
    UnsupportedFormatError,
    strerror,
)
from .domain.media import Chroma, ContainerFormat, DataFormat, Interlacing, SampleAspect
from .services.field_tagger import (
    read_avi_field_tag,
    read_quicktime_field_info,
    split_fields,
    tag_avi_fields,
    tag_fields,
    tag_quicktime_fields,
)
from .services.marker_scanner import MarkerMap, get_field_size, read_frame_header, scan_jpeg
from .services.session import MediaSession, open_input_file, open_output_file

__version__ = "0.1.0"
