"""
Command-Line Interface (CLI) setup for lavio.

This module uses Python's `argparse` to define the command-line arguments and
implements the two sub-commands:

- `info FILE`: open an AVI or Quicktime file and print what the probe found.
- `markers FILE`: scan a JPEG file (one frame, one or two fields) and print
  the marker offsets and field tags.

Results are printed as YAML on stdout; logging goes to stderr.
"""
import argparse
import sys
from pathlib import Path
from typing import Any, Dict, List

import yaml
from loguru import logger

from .domain.exceptions import LavioException, MalformedStreamError, strerror
from .services.field_tagger import read_avi_field_tag, read_quicktime_field_info
from .services.marker_scanner import read_frame_header, scan_jpeg
from .services.session import open_input_file


def get_args(argv: List[str] = None) -> argparse.Namespace:
    """
    Parses command-line arguments for lavio.

    Returns:
        argparse.Namespace: An object containing the parsed command-line
                            arguments as attributes.
    """
    parser = argparse.ArgumentParser(description="Inspect motion-JPEG AVI, Quicktime and JPEG files.")
    parser.add_argument(
        "--log-level", type=str, default="INFO", choices=["TRACE", "DEBUG", "INFO", "WARNING", "ERROR"],
        help="Set the logging level."
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    info_parser = subparsers.add_parser("info", help="Print the format of an AVI or Quicktime file.")
    info_parser.add_argument("file", type=Path, help="The media file to inspect.")

    markers_parser = subparsers.add_parser("markers", help="Print the marker offsets of a JPEG file.")
    markers_parser.add_argument("file", type=Path, help="A file holding one JPEG frame.")
    markers_parser.add_argument(
        "--header-only", action="store_true", help="Stop scanning at the start of the compressed data."
    )

    return parser.parse_args(argv)


def describe_media(path: Path) -> Dict[str, Any]:
    """Opens a media file for reading and collects its metadata."""
    with open_input_file(path) as session:
        info = {
            "file": str(path),
            "format": session.format.value,
            "compressor": session.video_compressor(),
            "frames": session.video_frames(),
            "width": session.video_width(),
            "height": session.video_height(),
            "frame_rate": round(session.frame_rate(), 3),
            "interlacing": session.video_interlacing().name.lower(),
            "sample_aspect": str(session.video_sampleaspect()),
            "chroma": session.video_chroma().value,
            "dataformat": session.dataformat.name,
        }
        if session.has_audio:
            info["audio"] = {
                "channels": session.audio_channels(),
                "bits": session.audio_bits(),
                "rate": session.audio_rate(),
                "samples": session.audio_samples(),
            }
    return info


def describe_markers(path: Path, header_only: bool = False) -> Dict[str, Any]:
    """Scans a JPEG file and collects the marker offsets of each field."""
    data = path.read_bytes()
    fields = []
    start = 0
    while start < len(data):
        field_data = memoryview(data)[start:]
        markers = scan_jpeg(field_data, header_only=header_only)
        header = read_frame_header(field_data, markers)
        entry = {
            "offset": start,
            "width": header.width,
            "height": header.height,
            "sampling": [f"{h}x{v}" for h, v in header.sampling_factors],
            "quant": markers.quant_offset,
            "huffman": markers.huffman_offset,
            "image": markers.image_offset,
            "scan": markers.scan_offset,
            "data": markers.data_offset,
            "app0": markers.app0_offset,
            "app1": markers.app1_offset,
            "avi1_field_order": read_avi_field_tag(field_data),
        }
        if markers.app1_offset:
            try:
                entry["quicktime_next_field"] = read_quicktime_field_info(field_data).next_field_offset
            except MalformedStreamError:
                logger.debug(f"APP1 segment at {start + markers.app1_offset} is not a Quicktime field description")
        if header_only:
            fields.append(entry)
            break
        entry["field_size"] = markers.field_size
        entry["padded_len"] = markers.padded_len
        fields.append(entry)
        start += markers.padded_len
    return {"file": str(path), "fields": fields}


def run(args: argparse.Namespace) -> int:
    """Executes the selected sub-command and returns the process exit code."""
    try:
        if args.command == "info":
            result = describe_media(args.file)
        else:
            result = describe_markers(args.file, args.header_only)
    except (LavioException, OSError) as e:
        logger.error(f"{args.file}: {strerror(e)}")
        return 1
    yaml.safe_dump(result, sys.stdout, sort_keys=False, allow_unicode=True)
    return 0
