"""
This module provides utility functions related to FFmpeg.

It locates the `ffmpeg` and `ffprobe` executables (honouring `ffmpeg_dir` from the
user configuration), verifies that they run, and provides a robust function for
running command-line processes with logging. ffmpeg commands are built as
explicit argument lists and passed to `run_cmd`.
"""

import os
import shlex
import shutil
import subprocess
import sys
from pathlib import Path
from typing import List, Optional, Union

from loguru import logger

from ..config.common import ERROR_LOG_DIR, MODULE_PATH
from ..services.logging_service import ErrorLog


def run_cmd(
    cmd_parts: Union[str, List[str]],
    src_file_for_log: Path = Path(),
    error_log_dir_for_run_cmd: Optional[Path] = ERROR_LOG_DIR,
    show_cmd: bool = False,
) -> Optional[subprocess.CompletedProcess]:
    """
    Executes an external command safely and captures its output.

    This is a wrapper around Python's `subprocess.run` that adds logging and
    error handling. It can accept a command as either a single string or a list
    of arguments.

    Args:
        cmd_parts: The command to execute, as a single string or a list of strings.
                   A list is preferred for safety (avoids shell injection).
        src_file_for_log: The media file being processed, used for logging context
                          in case of an error.
        error_log_dir_for_run_cmd: The directory where an error log should be written
                                   if the command fails to run or exits non-zero.
        show_cmd: If True, the command will be logged at the DEBUG level before execution.

    Returns:
        A `subprocess.CompletedProcess` object, containing the return code, stdout
        and stderr. Returns `None` if the command fails to start (e.g.,
        `FileNotFoundError`).
    """
    cmd_list: List[str]

    if isinstance(cmd_parts, str):
        try:
            cmd_list = shlex.split(cmd_parts)
        except ValueError as e:
            logger.error(f"Error splitting command string with shlex: '{cmd_parts}'. Error: {e}")
            return None
    elif isinstance(cmd_parts, list):
        cmd_list = cmd_parts
    else:
        logger.error(f"run_cmd expects a command string or list, but received {type(cmd_parts)}.")
        return None

    if not cmd_list:
        logger.error("run_cmd received an empty command list.")
        return None

    if os.name == "nt":
        display_cmd_str = subprocess.list2cmdline(cmd_list)
    else:
        display_cmd_str = shlex.join(cmd_list)

    if show_cmd:
        logger.debug(f"Executing: {display_cmd_str}")

    try:
        result = subprocess.run(
            cmd_list,
            capture_output=True,
            text=True,
            encoding="utf-8",
            errors="replace",
            shell=False,
        )
    except FileNotFoundError:
        logger.error(
            f"Error: Command not found (e.g., '{cmd_list[0]}'). Ensure it's in your system's PATH or configured correctly."
        )
        if error_log_dir_for_run_cmd:
            ErrorLog(error_log_dir_for_run_cmd).write(
                f"Command execution error for: {src_file_for_log.name or 'N/A'}",
                f"Command: {display_cmd_str}",
                "Error: Command not found (FileNotFoundError).",
            )
        return None

    if result.returncode != 0:
        logger.debug(f"Command stderr (error, rc={result.returncode}): {result.stderr}")
        if error_log_dir_for_run_cmd:
            ErrorLog(error_log_dir_for_run_cmd).write(
                f"Command failed for: {src_file_for_log.name or 'N/A'} (rc={result.returncode})",
                f"Command: {display_cmd_str}",
                f"stderr: {result.stderr.strip()}",
            )
    elif result.stderr:
        logger.trace(f"Command stderr (non-error): {result.stderr}")

    return result


def last_stderr_line(result: Optional[subprocess.CompletedProcess]) -> str:
    """Returns the last non-empty line of a command's stderr, which is where ffmpeg puts the reason."""
    if result is None:
        return "command could not be started"
    lines = [line for line in (result.stderr or "").splitlines() if line.strip()]
    return lines[-1].strip() if lines else f"exit status {result.returncode}"


class Modules:
    """
    Locates and verifies the external FFmpeg tools.

    Paths come from the user's `config.user.yaml` (`ffmpeg_dir`), with a fallback
    to the system's PATH if no specific path is configured.
    """

    @staticmethod
    def _get_tool_path(tool: str) -> str:
        """
        Determines the executable path to use for `tool` ("ffmpeg" or "ffprobe").

        It prioritizes the configured `ffmpeg_dir` and otherwise returns the bare
        tool name, which relies on the system's PATH.
        """
        exe_name = f"{tool}.exe" if sys.platform == "win32" else tool

        if MODULE_PATH and MODULE_PATH.is_dir():
            configured_path = MODULE_PATH / exe_name
            if configured_path.is_file():
                return str(configured_path)
            logger.warning(f"`ffmpeg_dir` is configured, but '{exe_name}' was not found there. Falling back to system PATH.")

        return tool

    @staticmethod
    def ffmpeg_path() -> str:
        return Modules._get_tool_path("ffmpeg")

    @staticmethod
    def ffprobe_path() -> str:
        return Modules._get_tool_path("ffprobe")

    @staticmethod
    def tools_available() -> bool:
        """True when both ffmpeg and ffprobe can be found."""
        return all(
            Path(path).is_file() or shutil.which(path) is not None
            for path in (Modules.ffmpeg_path(), Modules.ffprobe_path())
        )

    @staticmethod
    def verify_ffmpeg() -> bool:
        """
        Verifies that FFmpeg is installed, accessible, and can be executed.

        This method runs `ffmpeg -version`, logs the first line of the output on
        success, and logs a detailed error message if the command fails or if
        FFmpeg cannot be found.

        Returns:
            True if FFmpeg ran successfully.
        """
        result = run_cmd([Modules.ffmpeg_path(), "-version"], error_log_dir_for_run_cmd=None)
        if result is None:
            logger.error(
                "FFmpeg command not found. AVI and Quicktime support is unavailable.\n"
                "You can either add it to your system's PATH or specify its location in the 'config.user.yaml' file."
            )
            return False
        if result.returncode != 0:
            logger.error(f"FFmpeg version command failed (return code {result.returncode}):\n{result.stderr}")
            return False
        version_output_lines = result.stdout.splitlines()
        logger.info(f"FFmpeg version check successful: {version_output_lines[0] if version_output_lines else '?'}")
        return True
