"""
Media sessions: one open motion-JPEG file, for reading or for writing.

A session is created by `open_output_file` or `open_input_file` and picks its
class from the container format once, at open time:

- `AviSession` ('a' and 'A') passes frames and interleaved audio straight to
  the AVI backend and writes repeated frames as duplicate-frame entries.
- `QuicktimeSession` ('q') converts audio between interleaved frames and the
  per-channel 16-bit buffers the Quicktime backend works with.
- `JpegSession` ('j') writes the frames back to back into a single file. It
  has no backend, no audio and cannot be opened for reading.

Interlaced frames are tagged with their field order before they are written
(see `field_tagger`). Sessions opened for reading are classified by the
format probe before they are returned.

Every failure is raised as an exception. A session that raised stays usable
for `close()`, and sessions are context managers:

    with open_output_file("out.avi", "a", 720, 576, True, 25.0) as session:
        session.write_frame(frame)
"""
import os
from array import array
from pathlib import Path
from typing import Optional, Union

from loguru import logger

from .backends import (
    AVI_BACKEND,
    BackendRegistry,
    ContainerReader,
    ContainerWriter,
    default_registry,
)
from .field_tagger import tag_fields
from .format_probe import probe_session
from ..config.audio import QUICKTIME_AUDIO_BITS
from ..config.video import (
    AVI_VIDEO_TAG,
    QUICKTIME_TAG_INTERLACED,
    QUICKTIME_TAG_PROGRESSIVE,
    TMP_EXTENSION,
)
from ..domain.exceptions import BackendError, NoAudioTrackError, OutOfMemoryError
from ..domain.media import Chroma, ContainerFormat, DataFormat, Interlacing, SampleAspect
from ..utils.audio_utils import deinterleave, host_is_big_endian, interleave, swap16

NOT_AVAILABLE = "N/A"


def _byte_view(buffer) -> memoryview:
    """A flat unsigned-byte view of any buffer, so slices count bytes."""
    return memoryview(buffer).cast("B")


class MediaSession:
    """
    Base class of all sessions.

    Attributes:
        path: The file the session reads or writes.
        format: The container format. The probe may turn 'a' into 'A' when an
            AVI file turns out to be bottom field first; it never changes later.
        interlacing: Field order of the frames.
        sar: Sample aspect ratio, 1:1 unless the file says otherwise.
        has_audio: Whether audio can be read or written.
        bps: Bytes per audio sample frame (all channels).
        chroma: Chroma subsampling of the pictures.
        dataformat: Raw data format of the frames.
    """

    # Compressor tag reported for output sessions; None for variants without one.
    output_compressor: Optional[str] = None

    def __init__(self, path: Union[str, Path], fmt: ContainerFormat):
        self.path = Path(path)
        self.format = ContainerFormat.from_tag(fmt)
        self.width = 0
        self.height = 0
        self.fps = 0.0
        self.interlacing = Interlacing.UNKNOWN
        self.sar = SampleAspect()
        self.has_audio = False
        self.bps = 1
        self.chroma = Chroma.UNKNOWN
        self.dataformat = DataFormat.MJPG

        self.audio_bits_out = 0
        self.audio_channels_out = 0
        self.audio_rate_out = 0
        self.frames_written = 0

        self.writer: Optional[ContainerWriter] = None
        self.reader: Optional[ContainerReader] = None
        self._closed = False

    def __repr__(self) -> str:
        mode = "read" if self.reader is not None else "write"
        state = "closed" if self._closed else mode
        return f"<{type(self).__name__} '{self.format.value}' {self.path} ({state})>"

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        if exc_type is not None and not self._closed:
            self._discard()
        self.close()

    @property
    def closed(self) -> bool:
        return self._closed

    # --- Opening ---

    def _open_output(self, registry: BackendRegistry) -> None:
        raise NotImplementedError

    def _attach_reader(self, reader: ContainerReader) -> None:
        self.reader = reader
        self.width = reader.video_width()
        self.height = reader.video_height()
        self.fps = reader.frame_rate()
        self.has_audio = reader.has_pcm_audio()
        self.bps = max(1, (reader.audio_channels() * reader.audio_bits() + 7) // 8)

    # --- Guards ---

    def _check_open(self) -> None:
        if self._closed:
            raise ValueError("I/O operation on closed session")

    def _require_reader(self) -> ContainerReader:
        self._check_open()
        if self.reader is None:
            raise BackendError(f"{self.path.name} was not opened for reading", self.format.value)
        return self.reader

    def _require_writer(self) -> ContainerWriter:
        self._check_open()
        if self.writer is None:
            raise BackendError(f"{self.path.name} was not opened for writing", self.format.value)
        return self.writer

    def _check_writable(self) -> None:
        self._require_writer()

    def _require_audio(self) -> None:
        if not self.has_audio:
            raise NoAudioTrackError()

    # --- Writing ---

    def write_frame(self, buffer, size: Optional[int] = None, count: int = 1) -> None:
        """
        Writes one frame, `count` times.

        Interlaced frames are tagged with their field order first. A
        `bytearray` buffer is tagged in place; other buffers are copied.

        Args:
            buffer: The compressed frame (one JPEG or two concatenated fields).
            size: Number of valid bytes in `buffer`. Defaults to its length.
            count: How many times the frame appears in the output.

        Raises:
            MalformedStreamError: If an interlaced frame cannot be tagged.
            BackendError: If the session is not open for writing, or the
                container backend fails.
        """
        self._check_writable()
        if size is None or size > len(buffer):
            size = len(buffer)
        if self.interlacing not in (Interlacing.NONE, Interlacing.UNKNOWN):
            if not isinstance(buffer, bytearray):
                buffer = bytearray(buffer)
            tag_fields(buffer, size, self.format)
        self._write_frame_data(memoryview(buffer)[:size], count)

    def _write_frame_data(self, data: memoryview, count: int) -> None:
        writer = self._require_writer()
        for n in range(count):
            if n == 0:
                writer.write_frame(data)
            elif writer.supports_dup_frame:
                writer.dup_frame()
            else:
                writer.write_frame(data)
            self.frames_written += 1

    def write_audio(self, buffer, samples: int) -> Optional[int]:
        """
        Writes `samples` interleaved audio sample frames.

        Returns:
            The number of sample frames written, or None when the format has no
            audio support.

        Raises:
            NoAudioTrackError: If the session was opened without audio.
        """
        self._check_open()
        self._require_audio()
        return self._write_audio(buffer, samples)

    def _write_audio(self, buffer, samples: int) -> Optional[int]:
        raise NotImplementedError

    # --- Reading ---

    def read_frame(self) -> bytes:
        """Reads the frame at the current video position and advances it."""
        return self._require_reader().read_frame()

    def read_frame_into(self, buffer) -> int:
        """
        Reads the next frame into a caller-provided writable buffer.

        Returns:
            The number of bytes stored.

        Raises:
            ValueError: If the buffer is too small for the frame.
        """
        data = self.read_frame()
        if len(data) > len(buffer):
            raise ValueError(f"Buffer of {len(buffer)} bytes cannot hold a frame of {len(data)} bytes")
        buffer[:len(data)] = data
        return len(data)

    def read_audio(self, samples: int) -> Optional[bytes]:
        """
        Reads up to `samples` interleaved audio sample frames.

        Fewer frames are returned at the end of the track.

        Raises:
            NoAudioTrackError: If the file has no usable audio track.
        """
        self._require_reader()
        self._require_audio()
        return self._read_audio(samples)

    def _read_audio(self, samples: int) -> Optional[bytes]:
        raise NotImplementedError

    def read_audio_into(self, buffer, samples: int) -> Optional[int]:
        """
        Reads up to `samples` sample frames into a caller-provided buffer.

        Returns:
            The number of sample frames stored.
        """
        data = self.read_audio(samples)
        if data is None:
            return None
        target = _byte_view(buffer)
        if len(data) > len(target):
            raise ValueError(f"Buffer of {len(target)} bytes cannot hold {len(data)} bytes of audio")
        target[:len(data)] = data
        return len(data) // self.bps

    # --- Positioning ---

    def seek_start(self) -> None:
        reader = self._require_reader()
        reader.set_video_position(0)
        if self.has_audio:
            reader.set_audio_position(0)

    def set_video_position(self, frame: int) -> None:
        self._require_reader().set_video_position(frame)

    def set_audio_position(self, sample: int) -> None:
        reader = self._require_reader()
        if self.has_audio:
            reader.set_audio_position(sample)

    # --- Metadata ---

    def video_frames(self) -> int:
        self._check_open()
        return self.reader.video_frames() if self.reader else self.frames_written

    def video_width(self) -> int:
        self._check_open()
        return self.width

    def video_height(self) -> int:
        self._check_open()
        return self.height

    def frame_rate(self) -> float:
        self._check_open()
        return self.fps

    def video_compressor(self) -> str:
        self._check_open()
        if self.reader is not None:
            return self.reader.video_compressor() or NOT_AVAILABLE
        return self.output_compressor or NOT_AVAILABLE

    def frame_size(self, frame: int) -> int:
        return self._require_reader().frame_size(frame)

    def video_interlacing(self) -> Interlacing:
        return self.interlacing

    def video_sampleaspect(self) -> SampleAspect:
        return self.sar

    def video_chroma(self) -> Chroma:
        return self.chroma

    def audio_channels(self) -> int:
        self._check_open()
        if not self.has_audio:
            return 0
        return self.reader.audio_channels() if self.reader else self.audio_channels_out

    def audio_bits(self) -> int:
        self._check_open()
        if not self.has_audio:
            return 0
        return self.reader.audio_bits() if self.reader else self.audio_bits_out

    def audio_rate(self) -> int:
        self._check_open()
        if not self.has_audio:
            return 0
        return self.reader.audio_rate() if self.reader else self.audio_rate_out

    def audio_samples(self) -> int:
        self._check_open()
        if not self.has_audio or self.reader is None:
            return 0
        return self.reader.audio_samples()

    # --- Closing ---

    def close(self) -> None:
        """
        Finalizes the file and releases the backend handle.

        Closing twice is allowed. The handle is released even if finalizing
        fails, in which case the error is raised after the session is marked
        closed.
        """
        if self._closed:
            return
        self._closed = True
        try:
            self._finalize()
        finally:
            self.writer = None
            self.reader = None
        logger.debug(f"Closed {self.path}")

    def _discard(self) -> None:
        """Drops partial output when the session is left by an exception."""

    def _finalize(self) -> None:
        if self.writer is not None:
            self.writer.close()
        if self.reader is not None:
            self.reader.close()


class AviSession(MediaSession):
    """AVI, top field first ('a') or bottom field first ('A')."""

    output_compressor = AVI_VIDEO_TAG

    def _open_output(self, registry: BackendRegistry) -> None:
        self.writer = registry.writer_for(self.format)(
            self.path,
            self.format,
            self.width,
            self.height,
            self.interlacing is not Interlacing.NONE,
            self.fps,
            self.audio_bits_out,
            self.audio_channels_out,
            self.audio_rate_out,
        )

    def _write_audio(self, buffer, samples: int) -> int:
        writer = self._require_writer()
        writer.write_audio(bytes(_byte_view(buffer)[:samples * self.bps]))
        return samples

    def _read_audio(self, samples: int) -> bytes:
        return self.reader.read_audio(samples)


class QuicktimeSession(MediaSession):
    """
    Quicktime ('q').

    Frames repeated with `count` are written again in full, since the format has
    no duplicate-frame entry. Audio crosses the backend boundary as one signed
    16-bit array per channel.
    """

    def _open_output(self, registry: BackendRegistry) -> None:
        writer_factory = registry.writer_for(self.format)
        # The target must not exist when the backend creates it.
        if self.path.exists():
            self.path.unlink()
        self.writer = writer_factory(
            self.path,
            self.format,
            self.width,
            self.height,
            self.interlacing is not Interlacing.NONE,
            self.fps,
            self.audio_bits_out,
            self.audio_channels_out,
            self.audio_rate_out,
        )

    @property
    def output_compressor(self) -> str:
        if self.interlacing is Interlacing.NONE:
            return QUICKTIME_TAG_PROGRESSIVE
        return QUICKTIME_TAG_INTERLACED

    def _write_audio(self, buffer, samples: int) -> int:
        writer = self._require_writer()
        bits = self.audio_bits_out
        channels = self.audio_channels_out
        data = _byte_view(buffer)

        if bits != QUICKTIME_AUDIO_BITS or channels > 1:
            # Deinterleave the channels and/or widen 8-bit samples.
            try:
                channel_data = deinterleave(data, samples, channels, bits)
            except MemoryError:
                raise OutOfMemoryError() from None
            try:
                writer.write_audio_planar(channel_data)
            finally:
                channel_data.clear()
        else:
            mono = array("h")
            mono.frombytes(bytes(data[:samples * 2]))
            writer.write_audio_planar([mono])
        return samples

    def _read_audio(self, samples: int) -> bytes:
        channel_data = self.reader.read_audio_planar(samples)
        read = min((len(c) for c in channel_data), default=0)
        if read <= 0:
            return b""
        interleaved = interleave(channel_data, read)
        # The backend hands out host-order words; callers expect little-endian.
        if host_is_big_endian():
            swap16(interleaved)
        return interleaved.tobytes()


class JpegSession(MediaSession):
    """
    A single file of JPEG frames written back to back ('j').

    The frames go to '<path>.tmp', which replaces '<path>' when the session is
    closed. A session left by an exception removes '<path>.tmp' instead. A frame
    repeated with `count` is stored once.
    """

    def __init__(self, path: Union[str, Path], fmt: ContainerFormat):
        super().__init__(path, fmt)
        self.temp_path = Path(str(self.path) + TMP_EXTENSION)
        self._file = None

    def _open_output(self, registry: BackendRegistry) -> None:
        self._file = self.temp_path.open("wb")

    def _check_writable(self) -> None:
        self._check_open()
        if self._file is None:
            raise BackendError(f"{self.path.name} was not opened for writing", self.format.value)

    def _write_frame_data(self, data: memoryview, count: int) -> None:
        if count > 0:
            self._file.write(data)
        self.frames_written += count

    def _write_audio(self, buffer, samples: int) -> None:
        return None

    def _read_audio(self, samples: int) -> None:
        return None

    def _finalize(self) -> None:
        if self._file is None:
            return
        try:
            self._file.close()
        finally:
            self._file = None
        os.replace(self.temp_path, self.path)
        logger.info(f"Wrote {self.path.name}: {self.frames_written} frames")

    def _discard(self) -> None:
        if self._file is None:
            return
        try:
            self._file.close()
        finally:
            self._file = None
        self.temp_path.unlink(missing_ok=True)
        logger.warning(f"Discarded partial output {self.temp_path.name}")


SESSION_TYPES = {
    ContainerFormat.AVI: AviSession,
    ContainerFormat.AVI_BOTTOM_FIRST: AviSession,
    ContainerFormat.JPEG: JpegSession,
    ContainerFormat.QUICKTIME: QuicktimeSession,
}


def open_output_file(
    path: Union[str, Path],
    fmt: Union[str, ContainerFormat],
    width: int,
    height: int,
    interlaced: bool,
    fps: float,
    audio_bits: int = 0,
    audio_channels: int = 0,
    audio_rate: int = 0,
    registry: Optional[BackendRegistry] = None,
) -> MediaSession:
    """
    Opens a file for writing.

    Sizes are not validated here. An interlaced session writes the field order
    of its format: bottom field first for 'A', top field first otherwise.

    Args:
        path: The output file.
        fmt: 'a', 'A', 'j', 'q' or a `ContainerFormat`.
        width, height: Frame size in pixels.
        interlaced: Whether each frame holds two fields.
        fps: Frame rate.
        audio_bits, audio_channels, audio_rate: Audio layout. No audio track
            is written unless bits and channels are both positive.
        registry: Backends to use. Defaults to the ffmpeg-backed registry.

    Raises:
        UnsupportedFormatError: For an unknown format or one whose backend is
            not available.
        OSError: If the single JPEG stream's temporary file cannot be created.
    """
    fmt = ContainerFormat.from_tag(fmt)
    session = SESSION_TYPES[fmt](path, fmt)
    session.width = width
    session.height = height
    session.fps = fps
    session.interlacing = fmt.polarity if interlaced else Interlacing.NONE
    session.has_audio = audio_bits > 0 and audio_channels > 0
    session.bps = (audio_bits * audio_channels + 7) // 8
    session.audio_bits_out = audio_bits
    session.audio_channels_out = audio_channels
    session.audio_rate_out = audio_rate

    if fmt is ContainerFormat.JPEG:
        session._open_output(registry)
    else:
        session._open_output(registry or default_registry())

    logger.info(
        f"Opened {session.path} for writing: format '{fmt.value}', {width}x{height}, {fps} fps, "
        f"interlacing {session.interlacing.name}"
        + (f", audio {audio_channels}x{audio_bits} bit @ {audio_rate} Hz" if session.has_audio else "")
    )
    return session


def open_input_file(path: Union[str, Path], registry: Optional[BackendRegistry] = None) -> MediaSession:
    """
    Opens an AVI or Quicktime file for reading and classifies its contents.

    Raises:
        UnsupportedFormatError: If the container, its compressor or DV system
            is not supported, or no backend can read it.
        MalformedStreamError: If the first frame cannot be parsed.
        BackendError: If the backend fails to open the file.
    """
    registry = registry or default_registry()
    path = Path(path)
    key = registry.identify(path)
    fmt = ContainerFormat.AVI if key == AVI_BACKEND else ContainerFormat.QUICKTIME

    reader = registry.reader_for(key)(path)
    try:
        session = SESSION_TYPES[fmt](path, fmt)
        session._attach_reader(reader)
        probe_session(session, reader)
    except BaseException:
        reader.close()
        raise
    return session
