"""
Media processing exceptions for JokeReel.

This module defines custom exceptions for asset decoding,
concurrent asset loading and transcoding operations.
"""

from jokereel.core.exceptions import JokeReelError


class DecodeError(JokeReelError):
    """Raised when an asset's container, codec or image data cannot be parsed"""

    def __init__(self, kind: str, reason: str, file_path: str = None):
        self.kind = kind
        self.reason = reason
        self.file_path = file_path

        error_msg = f"Failed to decode {kind}: {reason}"
        if file_path:
            error_msg += f" (File: {file_path})"
        super().__init__(error_msg)


class AssetTimeoutError(JokeReelError, TimeoutError):
    """Raised when asset metadata never becomes available"""

    def __init__(self, kind: str, timeout: float):
        self.kind = kind
        self.timeout = timeout
        super().__init__(f"Timed out after {timeout:g}s waiting for {kind} metadata")


class PartialLoadFailure(JokeReelError):
    """
    Raised when any asset of a job fails to load.

    Attributes:
        kind: The asset that failed (background, thumbnail, avatar, narration)
        cause: The underlying DecodeError / AssetTimeoutError
    """

    def __init__(self, kind: str, cause: BaseException):
        self.kind = kind
        self.cause = cause
        super().__init__(f"Asset loading aborted: {kind} failed ({cause})")


class TranscodeError(JokeReelError):
    """Base class for transcoding failures"""


class EngineUnavailableError(TranscodeError):
    """
    Raised when the transcoding engine could not be initialised from any source.

    Attributes:
        attempts: Number of initialisation attempts made
        last_error: The last underlying error
    """

    def __init__(self, attempts: int, last_error: BaseException = None):
        self.attempts = attempts
        self.last_error = last_error
        reason = str(last_error) if last_error else "Unknown error"
        super().__init__(f"Failed to load transcoding engine after {attempts} attempts: {reason}")


class ConversionError(TranscodeError):
    """Raised when conversion fails on an initialised engine"""

    def __init__(self, reason: str, stderr: str = ""):
        self.reason = reason
        self.stderr = stderr
        error_msg = f"Video transcoding failed: {reason}"
        if stderr:
            error_msg += f" (ffmpeg: {stderr.strip()[-500:]})"
        super().__init__(error_msg)
