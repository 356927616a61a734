"""
Core exceptions for JokeReel

This module defines exceptions for caption timing, frame composition,
stream recording and pipeline orchestration errors.
"""


class JokeReelError(Exception):
    """Base class for all JokeReel errors"""


class InvalidInputError(JokeReelError, ValueError):
    """
    Raised for bad caption or duration input.

    Attributes:
        field: Name of the offending input
        reason: Description of why the value is invalid
    """

    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"Invalid {field}: {reason}")


class FrameOrderError(InvalidInputError):
    """Raised when frames are requested out of time order"""

    def __init__(self, previous_time: float, frame_time: float):
        self.previous_time = previous_time
        self.frame_time = frame_time
        super().__init__(
            "frame_time",
            f"{frame_time:.4f}s requested after {previous_time:.4f}s; frame times must not decrease"
        )


class RecordingError(JokeReelError):
    """Raised when the stream recorder fails mid-run"""

    def __init__(self, message: str, stderr: str = ""):
        self.message = message
        self.stderr = stderr
        error_msg = message
        if stderr:
            error_msg += f" (ffmpeg: {stderr.strip()[-500:]})"
        super().__init__(error_msg)


class RecorderUnavailable(RecordingError):
    """Raised when no combined capture/encode pipeline can be created"""


class AudioDecodeError(RecordingError):
    """Raised when the narration track cannot be decoded into playable audio"""

    def __init__(self, reason: str, audio_path: str = None):
        self.audio_path = audio_path
        self.reason = reason
        message = f"Narration audio cannot be decoded: {reason}"
        if audio_path:
            message += f" (File: {audio_path})"
        super().__init__(message)


class StageOrderViolation(JokeReelError):
    """Raised when a pipeline stage is entered before its predecessor completed"""

    def __init__(self, stage: str, previous_stage: str, previous_status: str):
        self.stage = stage
        self.previous_stage = previous_stage
        self.previous_status = previous_status
        super().__init__(
            f"Cannot enter stage '{stage}': previous stage '{previous_stage}' is {previous_status}"
        )


class JobCancelledError(JokeReelError):
    """Raised when a job is cancelled between stages or frames"""

    def __init__(self, stage: str = None):
        self.stage = stage
        message = "Job cancelled"
        if stage:
            message += f" during stage '{stage}'"
        super().__init__(message)


class PipelineBusyError(JokeReelError):
    """Raised when a pipeline instance is asked to run a second job concurrently"""

    def __init__(self):
        super().__init__("Pipeline is already running a job; use a separate pipeline instance")
