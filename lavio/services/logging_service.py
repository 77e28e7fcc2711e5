"""
This module provides the plain-text error log for failed backend commands.

Real-time logging goes through loguru. In addition, when `error_log_dir` is set in
`config.user.yaml`, every failed ffmpeg/ffprobe invocation is appended to a text
file together with the command line and ffmpeg's stderr, which is the most useful
artefact when a container cannot be written or read.
"""

from datetime import datetime
from pathlib import Path

from loguru import logger

from ..config.common import ERROR_LOG_FILE_NAME


class Log:
    """
    A base class for file-based logs.

    It handles the basic setup of the log file path and makes sure the log
    directory exists.
    """

    # A decorative separator line used in text-based logs for better readability.
    linesep_marker: str = "=" * 50

    def __init__(self, log_base_path: Path):
        """
        Args:
            log_base_path: If it's a directory, log files will be created inside it.
                           If it's a file path, its parent will be used as the log
                           directory.
        """
        self.log_file_path: Path  # To be defined by the subclass.
        if log_base_path.is_dir():
            self.log_dir: Path = log_base_path.resolve()
        else:
            self.log_dir: Path = log_base_path.parent.resolve()
        self.log_dir.mkdir(parents=True, exist_ok=True)

    def write(self, *log_content: str):
        raise NotImplementedError("Subclasses must implement the write() method.")


class ErrorLog(Log):
    """
    Appends human-readable error reports to a plain text file.

    Each call adds a timestamped block followed by a separator line, so the file
    reads as a chronological record of backend failures.
    """

    def __init__(self, error_log_dir: Path, filename: str = ERROR_LOG_FILE_NAME):
        # A directory that does not exist yet is meant as a directory.
        error_log_dir.mkdir(parents=True, exist_ok=True)
        super().__init__(error_log_dir)
        self.log_file_path = self.log_dir / filename

    def write(self, *error_messages: str):
        """
        Writes one or more error message lines to the log file.

        Args:
            *error_messages: The lines of one error report.
        """
        if not error_messages:
            return

        timestamp = datetime.now().isoformat(timespec="seconds")
        content_to_write = (
            f"[{timestamp}]\n" + "\n".join(error_messages) + "\n" + self.linesep_marker + "\n"
        )

        try:
            with self.log_file_path.open("a", encoding="utf-8") as f:
                f.write(content_to_write)
        except OSError as e:
            logger.error(f"Failed to write to error log {self.log_file_path}: {e}")
