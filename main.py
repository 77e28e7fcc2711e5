"""
Main entry point for the lavio command-line tool.

This script configures logging, parses the command-line arguments and runs the
selected sub-command (`info` or `markers`).
"""

import sys

from loguru import logger

from lavio.cli import get_args, run
from lavio.config.common import LOGGER_FORMAT
from lavio.utils.ffmpeg_utils import Modules


# Configure the logger for initial setup.
# The level might be overridden later by command-line arguments.
logger.remove()
log_level = "DEBUG" if __debug__ else "INFO"
logger.add(sys.stderr, level=log_level, format=LOGGER_FORMAT)


def main() -> int:
    """
    Runs the command-line tool.

    1. Parses command-line arguments.
    2. Re-configures the global logger with the requested level.
    3. Verifies that FFmpeg can be executed (needed for `info`).
    4. Runs the sub-command and returns its exit code.
    """
    args = get_args()

    logger.remove()
    logger.add(sys.stderr, level=args.log_level, format=LOGGER_FORMAT)
    logger.debug(f"Parsed arguments: {args}")

    if args.command == "info" and not Modules.verify_ffmpeg():
        return 1

    return run(args)


if __name__ == "__main__":
    sys.exit(main())
