"""
Shared fixtures and builders for the lavio test suite.

JPEG test data is assembled segment by segment, so every offset a test checks
can be derived from the builder arguments. Container backends are replaced by
in-memory fakes registered in a `BackendRegistry`, which lets session tests run
without FFmpeg.
"""
from array import array
from typing import Dict, List, Optional, Sequence, Tuple

import pytest

from lavio.services.backends import BackendRegistry, ContainerReader, ContainerWriter

# Entropy-coded bytes with a stuffed 0xFF00 and a restart marker in them.
SCAN_DATA = b"\x12\x34\xff\x00\x56\xff\xd0\x78\x9a"


def segment(marker: int, payload: bytes) -> bytes:
    """One marker segment: FF, marker, 2-byte length (counting itself), payload."""
    return bytes([0xFF, marker]) + (len(payload) + 2).to_bytes(2, "big") + payload


def build_jpeg(
    height: int = 8,
    width: int = 16,
    sampling: Sequence[Tuple[int, int]] = ((2, 1), (1, 1), (1, 1)),
    app0_length: Optional[int] = 16,
    app1_length: Optional[int] = None,
    scan_data: bytes = SCAN_DATA,
    trailing: bytes = b"",
) -> bytes:
    """
    Builds a structurally valid baseline JPEG.

    Segment order: SOI, APP0, APP1, DQT, SOF0, DHT, SOS, data, EOI, trailing.
    `app0_length` and `app1_length` are the declared segment lengths; None
    leaves the segment out. The APP0 payload starts with "JFIF\\0".
    """
    parts = [b"\xff\xd8"]
    if app0_length is not None:
        payload = b"JFIF\x00"[:app0_length - 2]
        parts.append(segment(0xE0, payload + bytes(app0_length - 2 - len(payload))))
    if app1_length is not None:
        parts.append(segment(0xE1, bytes(app1_length - 2)))
    parts.append(segment(0xDB, b"\x00" + bytes(range(1, 65))))

    sof = bytes([8]) + height.to_bytes(2, "big") + width.to_bytes(2, "big") + bytes([len(sampling)])
    for n, (h, v) in enumerate(sampling):
        sof += bytes([n + 1, (h << 4) | v, 0 if n == 0 else 1])
    parts.append(segment(0xC0, sof))

    parts.append(segment(0xC4, b"\x00" + bytes(16)))

    sos = bytes([len(sampling)])
    for n in range(len(sampling)):
        sos += bytes([n + 1, 0x00])
    sos += b"\x00\x3f\x00"
    parts.append(segment(0xDA, sos))

    parts.append(scan_data)
    parts.append(b"\xff\xd9")
    parts.append(trailing)
    return b"".join(parts)


def build_dv_header(pal: bool = True, apt: int = 0, stype: int = 0, wide: bool = False, size: int = 480) -> bytes:
    """Builds the start of a DV frame: header DIF block plus the first VAUX packs."""
    frame = bytearray(size)
    frame[3] = 0x80 if pal else 0x00
    frame[4] = apt & 0x07
    vaux = 80 * 5 + 48
    frame[vaux] = 0x60
    frame[vaux + 3] = stype & 0x1F
    frame[vaux + 5] = 0x61
    frame[vaux + 7] = 0x02 if wide else 0x00
    return bytes(frame)


@pytest.fixture
def progressive_jpeg() -> bytes:
    return build_jpeg(height=16, width=16)


@pytest.fixture
def interlaced_frame() -> bytes:
    """Two 8-line fields of a 16-line frame, each with a 16-byte APP0 segment."""
    return build_jpeg(height=8) + build_jpeg(height=8)


@pytest.fixture
def quicktime_frame() -> bytes:
    """Two fields with APP1 segments large enough for the Quicktime field description."""
    return build_jpeg(height=8, app0_length=None, app1_length=42) + build_jpeg(
        height=8, app0_length=None, app1_length=42
    )


class FakeWriter(ContainerWriter):
    """Records everything written to it."""

    def __init__(self, path, fmt, width, height, interlaced, fps, audio_bits=0, audio_channels=0, audio_rate=0):
        self.path = path
        self.fmt = fmt
        self.params = (width, height, interlaced, fps, audio_bits, audio_channels, audio_rate)
        self.frames: List[bytes] = []
        self.dups = 0
        self.audio = bytearray()
        self.planar: List[List[array]] = []
        self.closed = False

    def write_frame(self, data) -> None:
        self.frames.append(bytes(data))

    def dup_frame(self) -> None:
        self.dups += 1

    def write_audio(self, data) -> None:
        self.audio += data

    def write_audio_planar(self, channels) -> None:
        self.planar.append([array("h", c) for c in channels])

    def close(self) -> None:
        self.closed = True


class FakeAviWriter(FakeWriter):
    supports_dup_frame = True


class FakeQuicktimeWriter(FakeWriter):
    planar_audio = True


class FakeReader(ContainerReader):
    """Serves frames and audio from memory."""

    def __init__(
        self,
        frames: List[bytes],
        height: int,
        width: int = 16,
        compressor: str = "MJPG",
        audio: bytes = b"",
        audio_channels: int = 0,
        audio_bits: int = 0,
        planar: bool = False,
        sample_aspect=None,
        field_order=None,
    ):
        self.frames = frames
        self.height = height
        self.width = width
        self.compressor = compressor
        self.audio = audio
        self.channels = audio_channels
        self.bits = audio_bits
        self.planar_audio = planar
        self.sar = sample_aspect
        self.order = field_order
        self.video_position = 0
        self.audio_position = 0
        self.closed = False

    def video_frames(self) -> int:
        return len(self.frames)

    def video_width(self) -> int:
        return self.width

    def video_height(self) -> int:
        return self.height

    def frame_rate(self) -> float:
        return 25.0

    def video_compressor(self):
        return self.compressor

    def frame_size(self, frame: int) -> int:
        return len(self.frames[frame])

    def set_video_position(self, frame: int) -> None:
        self.video_position = frame

    def read_frame(self) -> bytes:
        data = self.frames[self.video_position]
        self.video_position += 1
        return data

    def audio_channels(self) -> int:
        return self.channels

    def audio_bits(self) -> int:
        return self.bits

    def audio_rate(self) -> int:
        return 48000 if self.channels else 0

    def _bps(self) -> int:
        return max(1, (self.channels * self.bits + 7) // 8)

    def audio_samples(self) -> int:
        return len(self.audio) // self._bps()

    def set_audio_position(self, sample: int) -> None:
        self.audio_position = sample

    def read_audio(self, samples: int) -> bytes:
        bps = self._bps()
        data = self.audio[self.audio_position * bps:(self.audio_position + samples) * bps]
        self.audio_position += len(data) // bps
        return data

    def read_audio_planar(self, samples: int) -> List[array]:
        interleaved = array("h")
        interleaved.frombytes(self.read_audio(samples))
        return [array("h", interleaved[j::self.channels]) for j in range(self.channels)]

    def has_pcm_audio(self) -> bool:
        return self.channels > 0

    def sample_aspect(self):
        return self.sar

    def field_order(self):
        return self.order

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def writer_registry():
    """A registry whose writers are recorded in the returned list."""
    created: List[FakeWriter] = []
    registry = BackendRegistry()

    def factory(cls):
        def make(*args, **kwargs):
            writer = cls(*args, **kwargs)
            created.append(writer)
            return writer
        return make

    registry.register("avi", writer=factory(FakeAviWriter))
    registry.register("quicktime", writer=factory(FakeQuicktimeWriter))
    return registry, created


@pytest.fixture
def reader_registry():
    """
    Returns a function that builds a registry serving one FakeReader.

    The returned registry has the reader attached as `registry.fake_reader`.
    """

    def make(key: str = "avi", **reader_kwargs) -> BackendRegistry:
        reader = FakeReader(**reader_kwargs)
        registry = BackendRegistry()
        registry.identifier = lambda path: key
        registry.register(key, reader=lambda path: reader)
        registry.fake_reader = reader
        return registry

    return make


@pytest.fixture
def probe_result() -> Dict:
    """An `ffmpeg.probe` result for an interlaced MJPEG Quicktime file with stereo audio."""
    return {
        "streams": [
            {
                "index": 0,
                "codec_type": "video",
                "codec_name": "mjpeg",
                "codec_tag_string": "mjpa",
                "width": 720,
                "height": 576,
                "r_frame_rate": "25/1",
                "avg_frame_rate": "25/1",
                "sample_aspect_ratio": "59:54",
                "field_order": "tb",
            },
            {
                "index": 1,
                "codec_type": "audio",
                "codec_name": "pcm_s16be",
                "channels": 2,
                "sample_rate": "48000",
                "bits_per_sample": 16,
            },
        ],
        "format": {"format_name": "mov,mp4,m4a,3gp,3g2,mj2"},
    }
