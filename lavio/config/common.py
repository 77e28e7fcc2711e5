"""
Common configuration settings used throughout the application.

This module contains globally shared configuration settings and constants that are
used across the whole lavio package. It centralizes parameters for logging,
temporary working directories and backend selection. It also handles the loading
of user-specific configuration from an external YAML file, allowing for easy
customization without modifying the source code.
"""
from pathlib import Path

import yaml
from loguru import logger

# --- User-Defined Configuration ---
# This block loads user-specific settings from a 'config.user.yaml' file located
# at the project root. This allows users to point lavio at a specific FFmpeg
# build or a RAM disk for temporary files without hardcoding paths.

PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
USER_CONFIG_PATH = PROJECT_ROOT / "config.user.yaml"

# The directory containing the FFmpeg and ffprobe executables. If not provided or
# None, the executables are assumed to be available in the system's PATH.
MODULE_PATH: Path | None = None

# Directory for the per-session temporary work directories of the container
# backends. None means the system default temporary directory.
TEMP_WORK_DIR: Path | None = None

# Directory where failed backend commands are logged in plain text.
# None disables the error log file; failures are still reported via loguru.
ERROR_LOG_DIR: Path | None = None

# Container backends the user has switched off (e.g. ["quicktime"]).
DISABLED_BACKENDS: tuple = ()

if USER_CONFIG_PATH.is_file():
    try:
        with USER_CONFIG_PATH.open("r", encoding="utf-8") as f:
            user_config = yaml.safe_load(f)
        if user_config and "paths" in user_config:
            paths_config = user_config.get("paths") or {}
            ffmpeg_dir_str = paths_config.get("ffmpeg_dir")
            temp_dir_str = paths_config.get("temp_work_dir")
            error_dir_str = paths_config.get("error_log_dir")

            if ffmpeg_dir_str:
                MODULE_PATH = Path(ffmpeg_dir_str)
            if temp_dir_str:
                TEMP_WORK_DIR = Path(temp_dir_str)
            if error_dir_str:
                ERROR_LOG_DIR = Path(error_dir_str).resolve()
        if user_config and "backends" in user_config:
            backends_config = user_config.get("backends") or {}
            DISABLED_BACKENDS = tuple(
                str(name).lower() for name in backends_config.get("disabled") or ()
            )
    except Exception as e:
        logger.warning(f"Could not load or parse '{USER_CONFIG_PATH}': {e}")
else:
    logger.debug(f"User config '{USER_CONFIG_PATH}' not found. Using defaults.")


# --- Logging Configuration ---

# The format string for the Loguru logger. It defines the structure and appearance
# of log messages, including timestamp, level, module name, and the message itself.
LOGGER_FORMAT = (
    "<green>{time:MM-DD HH:mm:ss}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
    "{process} - <level>{message}</level>"
)

# The filename used by ErrorLog inside ERROR_LOG_DIR.
ERROR_LOG_FILE_NAME = "backend_errors.txt"

# Prefix of the temporary work directories created by the container backends.
WORK_DIR_PREFIX = ".lavio_"
