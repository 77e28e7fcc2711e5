"""
Defines custom exception types for lavio.

Every operation of the library reports failure by raising one of these
exceptions rather than by setting a shared "last error" string. Callers can
catch a specific kind like `MalformedStreamError` or `NoAudioTrackError` and
react accordingly.

`strerror()` is the one place where an error is turned into a human-readable
message. It exists for front ends that only want to print something, and it is
the only way to see the verbatim text of a backend-originated failure.

All custom exceptions inherit from the base `LavioException`.
"""


class LavioException(Exception):
    """Base class for all custom exceptions in lavio."""

    default_message = "Unknown lavio error"

    def __init__(self, message: str = ""):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message


class MalformedStreamError(LavioException):
    """
    Raised when JPEG data cannot be parsed.

    This covers a missing start-of-image marker, a segment length that runs past
    the end of the buffer, a missing end-of-image marker in a full scan, and a
    required APP1 segment that is absent or too short for the Quicktime field
    metadata.
    """

    default_message = "Internal: broken JPEG format"


class OutOfMemoryError(LavioException):
    """Raised when a scratch buffer for audio conversion cannot be allocated."""

    default_message = "Internal: Out of memory"


class UnsupportedFormatError(LavioException):
    """
    Raised when a file or codec is not one lavio can handle.

    Examples are a container that is neither AVI nor Quicktime, a video
    compressor other than MJPEG, DV, YV12 or YUV2, or a format whose backend is
    not available in this installation.
    """

    default_message = "Input file format not recognized"


class NoAudioTrackError(LavioException):
    """Raised when an audio operation is requested on a video-only session."""

    default_message = "Trying to read audio from a video only file"


class BackendError(LavioException):
    """
    Raised when a container backend reports a failure.

    The backend's own message (for the ffmpeg backends, the tail of ffmpeg's
    stderr) is kept verbatim in `message`. `format_tag` records which container
    format was active, so `strerror()` can prefix the message accordingly.
    """

    default_message = "Container backend failure"

    def __init__(self, message: str = "", format_tag: str | None = None):
        super().__init__(message)
        self.format_tag = format_tag


def strerror(error: BaseException) -> str:
    """
    Renders an exception raised by lavio as a human-readable message.

    Structured error kinds render their fixed message. Backend errors render the
    backend's message, prefixed by the container family that produced it.

    Args:
        error: The exception to describe.

    Returns:
        A one-line description suitable for printing to a user.
    """
    if isinstance(error, BackendError):
        if error.format_tag in ("a", "A"):
            return f"AVI error: {error.message}"
        if error.format_tag == "q":
            return f"Quicktime error, possible(!) reason: {error.message}"
        if error.format_tag == "j":
            return f"JPEG stream error: {error.message}"
        return error.message or "No or unknown video format"
    if isinstance(error, LavioException):
        return error.message
    if isinstance(error, OSError) and error.strerror:
        return error.strerror
    return str(error) or "No or unknown video format"
