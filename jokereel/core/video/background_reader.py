"""
Sequential background frame decoding.

Runs ffmpeg as a rawvideo pipe that resamples the background clip to the
output frame rate and scales it to its fitted size on the canvas. The clip's
own audio is never decoded. Frames are only read forward; once the clip
ends the last frame is held.

Decoder diagnostics go to a log file next to the clip rather than a pipe,
so a damaged clip that floods stderr cannot stall the frame pipe.
"""
import logging
import subprocess
from pathlib import Path
from typing import IO, Optional

import ffmpeg
from PIL import Image

from jokereel.core.exceptions import FrameOrderError
from jokereel.core.models import MediaKind
from jokereel.media.exceptions import DecodeError
from jokereel.utils.temp_file_manager import remove_path

logger = logging.getLogger(__name__)

# Bytes read from the end of the decoder log when reporting a failure
_LOG_TAIL_BYTES = 4096


class BackgroundFrameReader:
    """Forward-only frame access to a background clip at a fixed frame rate."""

    def __init__(
        self,
        path: Path,
        width: int,
        height: int,
        fps: int,
        ffmpeg_cmd: str = "ffmpeg",
        log_path: Optional[Path] = None,
    ):
        self.path = Path(path)
        self.width = width
        self.height = height
        self.fps = fps
        self.ffmpeg_cmd = ffmpeg_cmd
        self.log_path = Path(log_path) if log_path else self.path.with_name(self.path.name + ".decode.log")

        self._process: Optional[subprocess.Popen] = None
        self._log_file: Optional[IO[bytes]] = None
        self._frame_size = width * height * 3
        self._current: Optional[Image.Image] = None
        self._current_index = -1
        self._eof = False

    @property
    def frames_read(self) -> int:
        return self._current_index + 1

    @property
    def exhausted(self) -> bool:
        return self._eof

    def build_command(self) -> list:
        return (
            ffmpeg
            .input(str(self.path))
            .video
            .filter("fps", fps=self.fps)
            .filter("scale", self.width, self.height)
            .output("pipe:", format="rawvideo", pix_fmt="rgb24")
            .global_args("-loglevel", "error", "-nostdin")
            .compile(cmd=self.ffmpeg_cmd)
        )

    def open(self) -> None:
        if self._process is not None:
            return
        args = self.build_command()
        logger.debug(f"Opening background reader: {' '.join(args)}")
        self._log_file = open(self.log_path, "wb")
        try:
            self._process = subprocess.Popen(
                args,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=self._log_file,
            )
        except OSError as e:
            self._close_log()
            raise DecodeError(MediaKind.BACKGROUND.value, f"failed to start decoder: {e}", str(self.path)) from e

    def _read_next(self) -> bool:
        raw = self._process.stdout.read(self._frame_size)
        if len(raw) < self._frame_size:
            self._eof = True
            self._check_exit()
            logger.debug(f"Background clip ended after {self.frames_read} frames, holding last frame")
            return False
        self._current = Image.frombytes("RGB", (self.width, self.height), raw)
        self._current_index += 1
        return True

    def _log_tail(self) -> str:
        """Last non-empty line the decoder logged, or an empty string."""
        if self._log_file is not None:
            self._log_file.flush()
        try:
            with open(self.log_path, "rb") as f:
                f.seek(0, 2)
                size = f.tell()
                f.seek(max(0, size - _LOG_TAIL_BYTES))
                tail = f.read().decode("utf-8", errors="replace")
        except OSError:
            return ""
        lines = [line for line in tail.splitlines() if line.strip()]
        return lines[-1].strip() if lines else ""

    def _check_exit(self) -> None:
        """Raise if the decoder stopped because of an error rather than end of clip."""
        try:
            returncode = self._process.wait(timeout=5)
        except subprocess.TimeoutExpired:
            return
        if returncode != 0:
            reason = self._log_tail() or f"ffmpeg exited with code {returncode}"
            raise DecodeError(MediaKind.BACKGROUND.value, reason, str(self.path))

    def frame_at(self, video_time: float) -> Optional[Image.Image]:
        """
        Return the frame shown at ``video_time`` seconds into the clip.

        Returns:
            The frame, or None if the clip produced no frames at all

        Raises:
            FrameOrderError: If the time falls before an already consumed frame
            DecodeError: If the decoder exits with an error
        """
        index = int(video_time * self.fps + 1e-6)
        if index < self._current_index:
            raise FrameOrderError(self._current_index / self.fps, video_time)

        self.open()
        while self._current_index < index and not self._eof:
            self._read_next()
        return self._current

    def _close_log(self) -> None:
        log_file, self._log_file = self._log_file, None
        if log_file is not None:
            log_file.close()

    def close(self) -> None:
        process, self._process = self._process, None
        if process is None:
            return
        if process.poll() is None:
            process.kill()
        try:
            process.wait(timeout=5)
        except subprocess.TimeoutExpired:
            logger.warning(f"Background reader for {self.path.name} did not exit")
        if process.stdout is not None:
            process.stdout.close()
        if process.returncode not in (0, -9, None):
            logger.debug(f"Background reader stderr: {self._log_tail()}")
        self._close_log()
        remove_path(self.log_path)
