"""
AVI and Quicktime container backends driven by the external FFmpeg tools.

The backends never parse or build container boxes themselves. Writers collect
frames as numbered files and audio as raw PCM in a private work directory and
let `ffmpeg` mux them with stream copy when the handle is closed. Readers run
`ffprobe` for the metadata and let `ffmpeg` demux the first video stream packet
by packet (and the first audio stream to raw PCM) into a work directory, which
then serves all frame and sample reads.

Work directories are created under `temp_work_dir` from `config.user.yaml`, or
the system temporary directory, and are removed when the handle is closed or
fails to open.
"""
import shutil
import tempfile
from array import array
from dataclasses import dataclass
from pathlib import Path
from pprint import pformat
from typing import Any, Dict, List, Optional, Tuple

import ffmpeg
from loguru import logger

from .backends import AVI_BACKEND, QUICKTIME_BACKEND, ContainerReader, ContainerWriter
from ..config.audio import (
    AVI_PCM_CODECS,
    AVI_RAW_FORMATS,
    PCM_CODEC_PREFIX,
    PLANAR_RAW_CODEC,
    PLANAR_RAW_FORMAT,
    QUICKTIME_AUDIO_BITS,
    QUICKTIME_PCM_CODEC,
)
from ..config.common import TEMP_WORK_DIR, WORK_DIR_PREFIX
from ..config.video import (
    AVI_VIDEO_TAG,
    QUICKTIME_FIELD_ORDER_BOTTOM_FIRST,
    QUICKTIME_FIELD_ORDER_TOP_FIRST,
    QUICKTIME_TAG_INTERLACED,
    QUICKTIME_TAG_PROGRESSIVE,
)
from ..domain.exceptions import BackendError, UnsupportedFormatError
from ..domain.media import ContainerFormat, Interlacing
from ..utils.audio_utils import host_is_big_endian, interleave, swap16
from ..utils.ffmpeg_utils import Modules, last_stderr_line, run_cmd
from ..utils.format_utils import (
    formatted_size,
    frame_rate_arg,
    parse_frame_rate,
    parse_int,
    parse_ratio,
)

FRAME_PATTERN = "%08d"
AUDIO_FILE_NAME = "audio.raw"
MJPEG_EXTENSION = ".jpg"
OTHER_FRAME_EXTENSION = ".frame"


def _make_work_dir() -> Path:
    if TEMP_WORK_DIR:
        TEMP_WORK_DIR.mkdir(parents=True, exist_ok=True)
    return Path(tempfile.mkdtemp(prefix=WORK_DIR_PREFIX, dir=TEMP_WORK_DIR))


def _remove_work_dir(work_dir: Optional[Path]) -> None:
    if work_dir and work_dir.exists():
        shutil.rmtree(work_dir, ignore_errors=True)
        logger.trace(f"Removed work directory {work_dir}")


def _run_ffmpeg(args: List[str], path: Path, fmt_tag: str) -> None:
    """Runs ffmpeg with `args` (overwriting outputs) and raises BackendError on failure."""
    cmd_list = [Modules.ffmpeg_path(), "-hide_banner", "-loglevel", "error", "-y"]
    cmd_list.extend(args)
    result = run_cmd(cmd_list, src_file_for_log=path, show_cmd=__debug__)
    if result is None or result.returncode != 0:
        raise BackendError(last_stderr_line(result), format_tag=fmt_tag)


def identify_container(path: Path) -> str:
    """
    Tells which container family a file belongs to.

    Returns:
        "avi" or "quicktime".

    Raises:
        UnsupportedFormatError: If ffprobe cannot read the file or it is some
            other container.
    """
    try:
        probe = ffmpeg.probe(str(path), cmd=Modules.ffprobe_path())
    except ffmpeg.Error as e:
        stderr = e.stderr.decode("utf-8", errors="replace") if isinstance(e.stderr, bytes) else e.stderr
        logger.error(f"ffprobe failed for {path}: {stderr}")
        raise UnsupportedFormatError() from e

    format_names = str(probe.get("format", {}).get("format_name", "")).split(",")
    if "avi" in format_names:
        return AVI_BACKEND
    if "mov" in format_names or "mp4" in format_names:
        return QUICKTIME_BACKEND
    raise UnsupportedFormatError(f"{path.name}: not a supported format - avi, quicktime")


@dataclass
class StreamInfo:
    """The parts of ffprobe output a reader uses."""

    width: int = 0
    height: int = 0
    frame_rate: float = 0.0
    compressor: Optional[str] = None
    codec_name: str = ""
    sample_aspect: Optional[Tuple[int, int]] = None
    field_order: Optional[str] = None
    audio_codec: Optional[str] = None
    audio_channels: int = 0
    audio_bits: int = 0
    audio_rate: int = 0

    @property
    def has_pcm_audio(self) -> bool:
        return bool(self.audio_codec and self.audio_codec.startswith(PCM_CODEC_PREFIX))


def parse_probe(probe: Dict[str, Any]) -> StreamInfo:
    """
    Extracts stream metadata from an `ffmpeg.probe` result.

    The first video stream and the first audio stream are used.

    Raises:
        UnsupportedFormatError: If the file has no video stream.
    """
    streams = probe.get("streams", [])
    video = next((s for s in streams if s.get("codec_type") == "video"), None)
    if video is None:
        raise UnsupportedFormatError("File has no video stream")
    audio = next((s for s in streams if s.get("codec_type") == "audio"), None)

    # ffprobe prints unknown fourccs as "[0][0][0][0]"
    tag = video.get("codec_tag_string")
    compressor = tag if tag and not tag.startswith("[") else video.get("codec_name")

    info = StreamInfo(
        width=parse_int(video.get("width")),
        height=parse_int(video.get("height")),
        frame_rate=parse_frame_rate(video.get("r_frame_rate")) or parse_frame_rate(video.get("avg_frame_rate")),
        compressor=compressor,
        codec_name=video.get("codec_name", ""),
        sample_aspect=parse_ratio(video.get("sample_aspect_ratio")),
        field_order=video.get("field_order"),
    )
    if audio is not None:
        info.audio_codec = audio.get("codec_name")
        info.audio_channels = parse_int(audio.get("channels"))
        info.audio_rate = parse_int(audio.get("sample_rate"))
        info.audio_bits = parse_int(audio.get("bits_per_sample")) or parse_int(audio.get("bits_per_raw_sample"))
    return info


class FFmpegWriter(ContainerWriter):
    """
    Collects frames and audio for one output file and muxes them on close.

    Subclasses provide the muxer name and the codec options of their container.
    """

    muxer: str = ""
    fmt_tag: str = ""

    def __init__(
        self,
        path: Path,
        fmt: ContainerFormat,
        width: int,
        height: int,
        interlaced: bool,
        fps: float,
        audio_bits: int = 0,
        audio_channels: int = 0,
        audio_rate: int = 0,
    ):
        self.path = Path(path)
        self.fmt = ContainerFormat.from_tag(fmt)
        self.width = width
        self.height = height
        self.interlaced = interlaced
        self.fps = fps
        self.audio_bits = audio_bits
        self.audio_channels = audio_channels
        self.audio_rate = audio_rate
        self.has_audio = audio_bits > 0 and audio_channels > 0

        self.frame_count = 0
        self.audio_bytes = 0
        self._closed = False
        self.work_dir = _make_work_dir()
        self.audio_file = self.work_dir / AUDIO_FILE_NAME
        try:
            self._audio_handle = self.audio_file.open("wb") if self.has_audio else None
        except OSError:
            _remove_work_dir(self.work_dir)
            raise
        logger.debug(f"Opened {self.muxer} writer for {self.path} (work dir {self.work_dir})")

    def _frame_path(self, index: int) -> Path:
        return self.work_dir / f"{index:08d}{MJPEG_EXTENSION}"

    def write_frame(self, data) -> None:
        self._frame_path(self.frame_count).write_bytes(data)
        self.frame_count += 1

    def dup_frame(self) -> None:
        if not self.frame_count:
            raise BackendError("No frame to duplicate", format_tag=self.fmt.value)
        shutil.copyfile(self._frame_path(self.frame_count - 1), self._frame_path(self.frame_count))
        self.frame_count += 1

    def _write_audio_bytes(self, data) -> None:
        if self._audio_handle is None:
            raise BackendError("Writer was opened without an audio track", format_tag=self.fmt.value)
        self._audio_handle.write(data)
        self.audio_bytes += len(data)

    def _video_output_args(self) -> List[str]:
        raise NotImplementedError

    def _audio_input_args(self) -> List[str]:
        raise NotImplementedError

    def _audio_codec(self) -> str:
        raise NotImplementedError

    def _mux_args(self) -> List[str]:
        cmd_list = ["-f", "image2", "-framerate", frame_rate_arg(self.fps), "-start_number", "0"]
        cmd_list.extend(["-i", str(self.work_dir / f"{FRAME_PATTERN}{MJPEG_EXTENSION}")])
        with_audio = self.has_audio and self.audio_bytes > 0
        if with_audio:
            cmd_list.extend(self._audio_input_args())
            cmd_list.extend(["-i", str(self.audio_file)])

        cmd_list.extend(["-map", "0:v"])
        if with_audio:
            cmd_list.extend(["-map", "1:a"])
        cmd_list.extend(["-c:v", "copy"])
        cmd_list.extend(self._video_output_args())
        if with_audio:
            cmd_list.extend(["-c:a", self._audio_codec()])
        cmd_list.extend(["-f", self.muxer, str(self.path)])
        return cmd_list

    def close(self) -> None:
        """
        Muxes the collected frames and audio into the target file.

        The work directory is removed whether or not muxing succeeds.

        Raises:
            BackendError: If no frame was written or ffmpeg fails.
        """
        if self._closed:
            return
        self._closed = True
        try:
            if self._audio_handle is not None:
                self._audio_handle.close()
            if not self.frame_count:
                raise BackendError("No video frames were written", format_tag=self.fmt.value)

            _run_ffmpeg(self._mux_args(), self.path, self.fmt.value)
            logger.info(
                f"Wrote {self.path.name}: {self.frame_count} frames, "
                f"{formatted_size(self.path.stat().st_size)}"
            )
        finally:
            _remove_work_dir(self.work_dir)


class AviWriter(FFmpegWriter):
    """MJPG in AVI with interleaved PCM audio passed through as given."""

    muxer = "avi"
    supports_dup_frame = True

    def write_audio(self, data) -> None:
        self._write_audio_bytes(data)

    def _video_output_args(self) -> List[str]:
        return ["-tag:v", AVI_VIDEO_TAG]

    def _audio_input_args(self) -> List[str]:
        return ["-f", AVI_RAW_FORMATS[self.audio_bits], "-ar", str(self.audio_rate), "-ac", str(self.audio_channels)]

    def _audio_codec(self) -> str:
        return AVI_PCM_CODECS[self.audio_bits]


class QuicktimeWriter(FFmpegWriter):
    """
    Motion-JPEG in Quicktime with 'twos' audio.

    Interlaced material is tagged 'mjpa' and gets a 'fiel' atom, progressive
    material is tagged 'jpeg'. Audio arrives as one signed 16-bit array per
    channel.
    """

    muxer = "mov"
    planar_audio = True

    def write_audio_planar(self, channels: List[array]) -> None:
        samples = min(len(c) for c in channels) if channels else 0
        interleaved = interleave(channels, samples)
        if host_is_big_endian():
            swap16(interleaved)
        self._write_audio_bytes(interleaved.tobytes())

    def _video_output_args(self) -> List[str]:
        if not self.interlaced:
            return ["-tag:v", QUICKTIME_TAG_PROGRESSIVE]
        field_order = (
            QUICKTIME_FIELD_ORDER_BOTTOM_FIRST
            if self.fmt.polarity is Interlacing.BOTTOM_FIRST
            else QUICKTIME_FIELD_ORDER_TOP_FIRST
        )
        return ["-tag:v", QUICKTIME_TAG_INTERLACED, "-field_order", field_order]

    def _audio_input_args(self) -> List[str]:
        return ["-f", PLANAR_RAW_FORMAT, "-ar", str(self.audio_rate), "-ac", str(self.audio_channels)]

    def _audio_codec(self) -> str:
        return QUICKTIME_PCM_CODEC


class FFmpegReader(ContainerReader):
    """
    Serves frame and sample reads from streams demuxed into a work directory.
    """

    fmt_tag: str = ""

    def __init__(self, path: Path):
        self.path = Path(path)
        try:
            probe = ffmpeg.probe(str(self.path), cmd=Modules.ffprobe_path())
        except ffmpeg.Error as e:
            stderr = e.stderr.decode("utf-8", errors="replace") if isinstance(e.stderr, bytes) else e.stderr
            raise BackendError(stderr.strip() or str(e), format_tag=self.fmt_tag) from e
        logger.trace(f"Probe data for {self.path.name}:\n{pformat(probe)}")
        self.info = parse_probe(probe)

        self.video_position = 0
        self.audio_position = 0
        self.work_dir = _make_work_dir()
        try:
            self.frame_files = self._extract_video()
            self.audio_file = self._extract_audio() if self.has_pcm_audio() else None
        except BaseException:
            _remove_work_dir(self.work_dir)
            raise
        logger.debug(
            f"Opened {self.path.name}: {len(self.frame_files)} frames, "
            f"{self.info.width}x{self.info.height}, compressor {self.info.compressor}"
        )

    def _extract_video(self) -> List[Path]:
        extension = MJPEG_EXTENSION if self.info.codec_name == "mjpeg" else OTHER_FRAME_EXTENSION
        cmd_list = ["-i", str(self.path), "-map", "0:v:0", "-c:v", "copy"]
        cmd_list.extend(["-f", "image2", "-start_number", "0", str(self.work_dir / f"{FRAME_PATTERN}{extension}")])
        _run_ffmpeg(cmd_list, self.path, self.fmt_tag)
        return sorted(self.work_dir.glob(f"*{extension}"))

    def _raw_audio_args(self) -> List[str]:
        raise NotImplementedError

    def _extract_audio(self) -> Path:
        audio_file = self.work_dir / AUDIO_FILE_NAME
        cmd_list = ["-i", str(self.path), "-map", "0:a:0"]
        cmd_list.extend(self._raw_audio_args())
        cmd_list.append(str(audio_file))
        _run_ffmpeg(cmd_list, self.path, self.fmt_tag)
        return audio_file

    def _bytes_per_sample(self) -> int:
        return max(1, (self.audio_bits() * self.audio_channels() + 7) // 8)

    def video_frames(self) -> int:
        return len(self.frame_files)

    def video_width(self) -> int:
        return self.info.width

    def video_height(self) -> int:
        return self.info.height

    def frame_rate(self) -> float:
        return self.info.frame_rate

    def video_compressor(self) -> Optional[str]:
        return self.info.compressor

    def _frame_file(self, frame: int) -> Path:
        if not 0 <= frame < len(self.frame_files):
            raise BackendError(f"Frame {frame} is out of range (0..{len(self.frame_files) - 1})", self.fmt_tag)
        return self.frame_files[frame]

    def frame_size(self, frame: int) -> int:
        return self._frame_file(frame).stat().st_size

    def set_video_position(self, frame: int) -> None:
        self.video_position = frame

    def read_frame(self) -> bytes:
        data = self._frame_file(self.video_position).read_bytes()
        self.video_position += 1
        return data

    def audio_channels(self) -> int:
        return self.info.audio_channels

    def audio_rate(self) -> int:
        return self.info.audio_rate

    def audio_samples(self) -> int:
        if self.audio_file is None or not self.audio_file.exists():
            return 0
        return self.audio_file.stat().st_size // self._bytes_per_sample()

    def set_audio_position(self, sample: int) -> None:
        self.audio_position = sample

    def _read_audio_bytes(self, samples: int) -> bytes:
        if self.audio_file is None:
            raise BackendError("File has no PCM audio track", self.fmt_tag)
        bps = self._bytes_per_sample()
        with self.audio_file.open("rb") as f:
            f.seek(self.audio_position * bps)
            data = f.read(samples * bps)
        self.audio_position += len(data) // bps
        return data

    def has_pcm_audio(self) -> bool:
        return self.info.has_pcm_audio

    def close(self) -> None:
        _remove_work_dir(self.work_dir)


class AviReader(FFmpegReader):
    fmt_tag = ContainerFormat.AVI.value

    def audio_bits(self) -> int:
        return self.info.audio_bits

    def has_pcm_audio(self) -> bool:
        return self.info.has_pcm_audio and self.info.audio_bits in AVI_RAW_FORMATS

    def _raw_audio_args(self) -> List[str]:
        bits = self.info.audio_bits
        return ["-c:a", AVI_PCM_CODECS[bits], "-f", AVI_RAW_FORMATS[bits]]

    def read_audio(self, samples: int) -> bytes:
        return self._read_audio_bytes(samples)


class QuicktimeReader(FFmpegReader):
    """Quicktime reads report 'pasp' and 'fiel' and return planar 16-bit audio."""

    fmt_tag = ContainerFormat.QUICKTIME.value
    planar_audio = True

    def audio_bits(self) -> int:
        return QUICKTIME_AUDIO_BITS if self.info.audio_codec else 0

    def _raw_audio_args(self) -> List[str]:
        return ["-c:a", PLANAR_RAW_CODEC, "-f", PLANAR_RAW_FORMAT]

    def read_audio_planar(self, samples: int) -> List[array]:
        interleaved = array("h")
        interleaved.frombytes(self._read_audio_bytes(samples))
        if host_is_big_endian():
            swap16(interleaved)
        channels = self.audio_channels()
        return [array("h", interleaved[j::channels]) for j in range(channels)]

    def sample_aspect(self) -> Optional[Tuple[int, int]]:
        return self.info.sample_aspect

    def field_order(self) -> Optional[str]:
        return self.info.field_order
