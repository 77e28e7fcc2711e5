"""Tests for media sessions over fake container backends."""
import sys
from array import array
from pathlib import Path

import pytest

from conftest import build_jpeg

from lavio.domain.exceptions import (
    BackendError,
    MalformedStreamError,
    NoAudioTrackError,
    OutOfMemoryError,
    UnsupportedFormatError,
)
from lavio.domain.media import Chroma, ContainerFormat, DataFormat, Interlacing, SampleAspect
from lavio.services import session as session_module
from lavio.services.backends import BackendRegistry
from lavio.services.field_tagger import read_avi_field_tag, read_quicktime_field_info, split_fields
from lavio.services.session import (
    AviSession,
    JpegSession,
    QuicktimeSession,
    open_input_file,
    open_output_file,
)


def pcm16(*samples: int) -> bytes:
    return array("h", samples).tobytes()


class TestOpenOutputFile:
    """Tests for open_output_file."""

    def test_session_type_by_format(self, tmp_path, writer_registry):
        registry, _ = writer_registry
        for fmt, cls in (("a", AviSession), ("A", AviSession), ("q", QuicktimeSession), ("j", JpegSession)):
            with open_output_file(tmp_path / f"out_{fmt}", fmt, 16, 16, False, 25.0, registry=registry) as s:
                assert type(s) is cls
                s.write_frame(build_jpeg(height=16))

    @pytest.mark.parametrize(
        "fmt, interlaced, expected",
        [
            ("a", True, Interlacing.TOP_FIRST),
            ("A", True, Interlacing.BOTTOM_FIRST),
            ("j", True, Interlacing.TOP_FIRST),
            ("q", True, Interlacing.TOP_FIRST),
            ("A", False, Interlacing.NONE),
        ],
    )
    def test_interlacing_follows_format(self, tmp_path, writer_registry, fmt, interlaced, expected):
        registry, _ = writer_registry
        s = open_output_file(tmp_path / "out", fmt, 16, 16, interlaced, 25.0, registry=registry)
        assert s.video_interlacing() is expected
        assert s.video_chroma() is Chroma.UNKNOWN
        assert s.video_sampleaspect() == SampleAspect(1, 1)

    def test_audio_parameters(self, tmp_path, writer_registry):
        registry, created = writer_registry
        s = open_output_file(tmp_path / "out.avi", "a", 720, 576, False, 25.0, 16, 2, 48000, registry=registry)
        assert s.has_audio
        assert s.bps == 4
        assert (s.audio_channels(), s.audio_bits(), s.audio_rate()) == (2, 16, 48000)
        assert created[0].params == (720, 576, False, 25.0, 16, 2, 48000)

    def test_no_audio_without_channels(self, tmp_path, writer_registry):
        registry, _ = writer_registry
        s = open_output_file(tmp_path / "out.avi", "a", 16, 16, False, 25.0, 16, 0, 48000, registry=registry)
        assert not s.has_audio
        assert s.audio_channels() == 0
        with pytest.raises(NoAudioTrackError):
            s.write_audio(pcm16(1, 2), 2)

    def test_unknown_format(self, tmp_path):
        with pytest.raises(UnsupportedFormatError):
            open_output_file(tmp_path / "out", "x", 16, 16, False, 25.0)

    def test_format_without_backend(self, tmp_path):
        with pytest.raises(UnsupportedFormatError):
            open_output_file(tmp_path / "out.mov", "q", 16, 16, False, 25.0, registry=BackendRegistry())

    def test_existing_target_kept_without_backend(self, tmp_path):
        target = tmp_path / "keep.mov"
        target.write_bytes(b"keep")
        with pytest.raises(UnsupportedFormatError):
            open_output_file(target, "q", 16, 16, False, 25.0, registry=BackendRegistry())
        assert target.read_bytes() == b"keep"

    def test_quicktime_removes_existing_target(self, tmp_path, writer_registry):
        registry, _ = writer_registry
        target = tmp_path / "out.mov"
        target.write_bytes(b"old")
        open_output_file(target, "q", 16, 16, False, 25.0, registry=registry)
        assert not target.exists()


class TestWriteFrame:
    """Tests for write_frame on each session type."""

    def test_avi_interlaced_frames_are_tagged(self, tmp_path, writer_registry, interlaced_frame):
        registry, created = writer_registry
        with open_output_file(tmp_path / "out.avi", "A", 16, 16, True, 25.0, registry=registry) as s:
            s.write_frame(interlaced_frame)

        written = created[0].frames[0]
        assert [read_avi_field_tag(f) for f in split_fields(written, None, "A")] == [2, 1]
        assert created[0].closed

    def test_bytearray_is_tagged_in_place(self, tmp_path, writer_registry, interlaced_frame):
        registry, _ = writer_registry
        frame = bytearray(interlaced_frame)
        with open_output_file(tmp_path / "out.avi", "a", 16, 16, True, 25.0, registry=registry) as s:
            s.write_frame(frame)
        assert read_avi_field_tag(frame) == 1

    def test_bytes_are_not_modified(self, tmp_path, writer_registry, interlaced_frame):
        registry, _ = writer_registry
        original = bytes(interlaced_frame)
        with open_output_file(tmp_path / "out.avi", "a", 16, 16, True, 25.0, registry=registry) as s:
            s.write_frame(original)
        assert original == interlaced_frame

    def test_progressive_frames_are_not_tagged(self, tmp_path, writer_registry, progressive_jpeg):
        registry, created = writer_registry
        with open_output_file(tmp_path / "out.avi", "a", 16, 16, False, 25.0, registry=registry) as s:
            s.write_frame(progressive_jpeg)
        assert created[0].frames == [progressive_jpeg]

    def test_avi_repeats_are_duplicate_entries(self, tmp_path, writer_registry, progressive_jpeg):
        registry, created = writer_registry
        with open_output_file(tmp_path / "out.avi", "a", 16, 16, False, 25.0, registry=registry) as s:
            s.write_frame(progressive_jpeg, count=3)
            assert s.video_frames() == 3
        assert len(created[0].frames) == 1
        assert created[0].dups == 2

    def test_quicktime_repeats_are_full_writes(self, tmp_path, writer_registry, quicktime_frame):
        registry, created = writer_registry
        with open_output_file(tmp_path / "out.mov", "q", 16, 16, True, 25.0, registry=registry) as s:
            s.write_frame(quicktime_frame, count=3)
        frames = created[0].frames
        assert len(frames) == 3
        assert created[0].dups == 0
        assert read_quicktime_field_info(frames[0]).next_field_offset == 180
        assert frames[0] == frames[1] == frames[2]

    def test_quicktime_interlaced_frame_without_app1(self, tmp_path, writer_registry, interlaced_frame):
        registry, created = writer_registry
        s = open_output_file(tmp_path / "out.mov", "q", 16, 16, True, 25.0, registry=registry)
        with pytest.raises(MalformedStreamError):
            s.write_frame(interlaced_frame)
        assert created[0].frames == []
        s.close()
        assert s.closed

    def test_size_limits_written_bytes(self, tmp_path, writer_registry, progressive_jpeg):
        registry, created = writer_registry
        with open_output_file(tmp_path / "out.avi", "a", 16, 16, False, 25.0, registry=registry) as s:
            s.write_frame(progressive_jpeg + b"garbage", size=len(progressive_jpeg))
        assert created[0].frames == [progressive_jpeg]


class TestJpegStream:
    """Tests for the single JPEG stream format."""

    def test_frames_go_to_temp_file_until_close(self, tmp_path, progressive_jpeg):
        target = tmp_path / "out.jpg"
        s = open_output_file(target, "j", 16, 16, False, 25.0)
        s.write_frame(progressive_jpeg)
        s.write_frame(progressive_jpeg)

        temp = Path(str(target) + ".tmp")
        assert temp.exists()
        assert not target.exists()

        s.close()
        assert not temp.exists()
        assert target.read_bytes() == progressive_jpeg * 2

    def test_repeats_store_one_copy(self, tmp_path, progressive_jpeg):
        target = tmp_path / "out.jpg"
        with open_output_file(target, "j", 16, 16, False, 25.0) as s:
            s.write_frame(progressive_jpeg, count=4)
        assert target.read_bytes() == progressive_jpeg

    def test_interlaced_stream_is_tagged(self, tmp_path, interlaced_frame):
        target = tmp_path / "out.jpg"
        with open_output_file(target, "j", 16, 16, True, 25.0) as s:
            s.write_frame(interlaced_frame)
        assert [read_avi_field_tag(f) for f in split_fields(target.read_bytes(), None, "j")] == [1, 2]

    def test_replaces_existing_target(self, tmp_path, progressive_jpeg):
        target = tmp_path / "out.jpg"
        target.write_bytes(b"old contents")
        with open_output_file(target, "j", 16, 16, False, 25.0) as s:
            s.write_frame(progressive_jpeg)
        assert target.read_bytes() == progressive_jpeg

    def test_exception_in_block_discards_temp_file(self, tmp_path, progressive_jpeg):
        target = tmp_path / "out.jpg"
        target.write_bytes(b"old contents")
        with pytest.raises(RuntimeError):
            with open_output_file(target, "j", 16, 16, False, 25.0) as s:
                s.write_frame(progressive_jpeg)
                raise RuntimeError("encoder stopped")

        assert s.closed
        assert not Path(str(target) + ".tmp").exists()
        assert target.read_bytes() == b"old contents"

    def test_audio_is_not_available(self, tmp_path):
        with open_output_file(tmp_path / "out.jpg", "j", 16, 16, False, 25.0, 16, 1, 44100) as s:
            assert s.write_audio(pcm16(1, 2), 2) is None

    def test_compressor_is_not_available(self, tmp_path):
        with open_output_file(tmp_path / "out.jpg", "j", 16, 16, False, 25.0) as s:
            assert s.video_compressor() == "N/A"


class TestWriteAudio:
    """Tests for write_audio."""

    def test_avi_passes_interleaved_bytes(self, tmp_path, writer_registry):
        registry, created = writer_registry
        data = pcm16(1, -1, 2, -2, 3, -3)
        with open_output_file(tmp_path / "out.avi", "a", 16, 16, False, 25.0, 16, 2, 48000, registry=registry) as s:
            assert s.write_audio(data + b"\x00" * 8, 3) == 3
        assert bytes(created[0].audio) == data

    def test_quicktime_deinterleaves_stereo(self, tmp_path, writer_registry):
        registry, created = writer_registry
        with open_output_file(tmp_path / "out.mov", "q", 16, 16, False, 25.0, 16, 2, 48000, registry=registry) as s:
            assert s.write_audio(pcm16(1, -1, 2, -2), 2) == 2
        (left, right), = created[0].planar
        assert list(left) == [1, 2]
        assert list(right) == [-1, -2]

    def test_quicktime_widens_8_bit(self, tmp_path, writer_registry):
        registry, created = writer_registry
        with open_output_file(tmp_path / "out.mov", "q", 16, 16, False, 25.0, 8, 1, 8000, registry=registry) as s:
            s.write_audio(bytes([0x80, 0xFF, 0x00]), 3)
        (mono,), = created[0].planar
        assert list(mono) == [0, 0x7F00, -0x8000]

    def test_quicktime_mono_16_bit_passes_through(self, tmp_path, writer_registry):
        registry, created = writer_registry
        with open_output_file(tmp_path / "out.mov", "q", 16, 16, False, 25.0, 16, 1, 8000, registry=registry) as s:
            s.write_audio(pcm16(7, 8, 9), 2)
        (mono,), = created[0].planar
        assert list(mono) == [7, 8]

    def test_memory_error_becomes_out_of_memory(self, tmp_path, writer_registry, monkeypatch):
        registry, _ = writer_registry

        def exhausted(*args):
            raise MemoryError

        monkeypatch.setattr(session_module, "deinterleave", exhausted)
        with open_output_file(tmp_path / "out.mov", "q", 16, 16, False, 25.0, 8, 2, 8000, registry=registry) as s:
            with pytest.raises(OutOfMemoryError):
                s.write_audio(bytes(4), 2)


class TestOpenInputFile:
    """Tests for open_input_file and reading."""

    def test_reads_frames_and_metadata(self, reader_registry, progressive_jpeg):
        registry = reader_registry(frames=[progressive_jpeg, progressive_jpeg], height=16)
        with open_input_file("clip.avi", registry=registry) as s:
            assert isinstance(s, AviSession)
            assert s.video_frames() == 2
            assert (s.video_width(), s.video_height()) == (16, 16)
            assert s.frame_rate() == 25.0
            assert s.video_compressor() == "MJPG"
            assert s.frame_size(1) == len(progressive_jpeg)
            assert s.dataformat is DataFormat.MJPG
            assert s.video_interlacing() is Interlacing.NONE
            assert s.read_frame() == progressive_jpeg

            buffer = bytearray(400)
            assert s.read_frame_into(buffer) == len(progressive_jpeg)
            assert bytes(buffer[:len(progressive_jpeg)]) == progressive_jpeg

            s.seek_start()
            assert registry.fake_reader.video_position == 0
        assert registry.fake_reader.closed

    def test_probe_starts_at_first_frame(self, reader_registry, interlaced_frame):
        registry = reader_registry(frames=[interlaced_frame, b"second"], height=16)
        s = open_input_file("clip.avi", registry=registry)
        assert s.read_frame() == interlaced_frame
        assert s.format is ContainerFormat.AVI

    def test_read_frame_into_small_buffer(self, reader_registry, progressive_jpeg):
        registry = reader_registry(frames=[progressive_jpeg], height=16)
        with open_input_file("clip.avi", registry=registry) as s:
            with pytest.raises(ValueError):
                s.read_frame_into(bytearray(10))

    def test_failed_probe_closes_reader(self, reader_registry):
        registry = reader_registry(frames=[build_jpeg(height=10)], height=16)
        with pytest.raises(MalformedStreamError):
            open_input_file("clip.avi", registry=registry)
        assert registry.fake_reader.closed

    def test_unknown_compressor_closes_reader(self, reader_registry, progressive_jpeg):
        registry = reader_registry(frames=[progressive_jpeg], height=16, compressor="h264")
        with pytest.raises(UnsupportedFormatError):
            open_input_file("clip.avi", registry=registry)
        assert registry.fake_reader.closed

    def test_registry_without_identifier(self):
        with pytest.raises(UnsupportedFormatError):
            open_input_file("clip.avi", registry=BackendRegistry())

    def test_avi_audio(self, reader_registry, progressive_jpeg):
        audio = pcm16(1, -1, 2, -2, 3, -3)
        registry = reader_registry(
            frames=[progressive_jpeg], height=16, audio=audio, audio_channels=2, audio_bits=16
        )
        with open_input_file("clip.avi", registry=registry) as s:
            assert s.has_audio
            assert s.bps == 4
            assert s.audio_samples() == 3
            assert s.read_audio(2) == audio[:8]

            buffer = bytearray(16)
            assert s.read_audio_into(buffer, 5) == 1
            assert bytes(buffer[:4]) == audio[8:]

            s.set_audio_position(0)
            assert s.read_audio(1) == audio[:4]

    def test_quicktime_audio_is_interleaved(self, reader_registry):
        audio = pcm16(1, -1, 2, -2)
        registry = reader_registry(
            key="quicktime",
            frames=[build_jpeg(height=16)],
            height=16,
            compressor="jpeg",
            audio=audio,
            audio_channels=2,
            audio_bits=16,
            planar=True,
        )
        with open_input_file("clip.mov", registry=registry) as s:
            assert isinstance(s, QuicktimeSession)
            data = s.read_audio(2)
        if sys.byteorder == "little":
            assert data == audio
        else:
            swapped = array("h", [1, -1, 2, -2])
            swapped.byteswap()
            assert data == swapped.tobytes()

    def test_audio_on_video_only_file(self, reader_registry, progressive_jpeg):
        registry = reader_registry(frames=[progressive_jpeg], height=16)
        with open_input_file("clip.avi", registry=registry) as s:
            assert not s.has_audio
            assert s.bps == 1
            assert s.audio_samples() == 0
            with pytest.raises(NoAudioTrackError):
                s.read_audio(10)

    def test_write_on_read_session(self, reader_registry, progressive_jpeg):
        registry = reader_registry(frames=[progressive_jpeg], height=16)
        with open_input_file("clip.avi", registry=registry) as s:
            with pytest.raises(BackendError):
                s.write_frame(progressive_jpeg)

    def test_write_on_interlaced_read_session_leaves_frame_untouched(self, reader_registry, interlaced_frame):
        registry = reader_registry(frames=[interlaced_frame], height=16)
        frame = bytearray(interlaced_frame)
        with open_input_file("clip.avi", registry=registry) as s:
            assert s.video_interlacing() is Interlacing.TOP_FIRST
            with pytest.raises(BackendError):
                s.write_frame(frame)
        assert frame == interlaced_frame


class TestClose:
    """Tests for the session lifecycle."""

    def test_operations_after_close(self, tmp_path, progressive_jpeg):
        s = open_output_file(tmp_path / "out.jpg", "j", 16, 16, False, 25.0)
        s.close()
        assert s.closed
        with pytest.raises(ValueError):
            s.write_frame(progressive_jpeg)
        with pytest.raises(ValueError):
            s.video_frames()

    def test_close_twice(self, tmp_path, writer_registry):
        registry, created = writer_registry
        s = open_output_file(tmp_path / "out.avi", "a", 16, 16, False, 25.0, registry=registry)
        s.close()
        s.close()
        assert created[0].closed

    def test_backend_failure_on_close_still_closes(self, tmp_path, writer_registry):
        registry, created = writer_registry

        def failing_close():
            raise BackendError("muxing failed", "a")

        s = open_output_file(tmp_path / "out.avi", "a", 16, 16, False, 25.0, registry=registry)
        created[0].close = failing_close
        with pytest.raises(BackendError):
            s.close()
        assert s.closed
        assert s.writer is None

    def test_repr(self, tmp_path):
        s = open_output_file(tmp_path / "out.jpg", "j", 16, 16, False, 25.0)
        assert "JpegSession" in repr(s)
        s.close()
        assert "closed" in repr(s)
