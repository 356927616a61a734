"""
Stream Recorder - drives the frame loop and encodes the composited stream.

One ffmpeg process receives raw RGB frames on stdin (the only video track)
and reads the narration file (the only audio track). Both inputs start at
pts 0, so narration and frames are co-phased from the first frame. The
background clip's own audio never enters the graph.

Output is written inside the job workspace, read back into memory and
deleted. A failed or cancelled run never returns partial output.
"""

import asyncio
import logging
import math
import shutil
from pathlib import Path
from typing import Callable, Optional

import ffmpeg

from jokereel import settings
from jokereel.core.exceptions import (
    AudioDecodeError,
    InvalidInputError,
    JobCancelledError,
    RecorderUnavailable,
    RecordingError,
)
from jokereel.core.models import AudioTrack, CompositionResult
from jokereel.core.video.frame_clock import FrameClock
from jokereel.core.video.frame_compositor import FrameSource
from jokereel.media.ffmpeg_utils import (
    describe_ffmpeg_error,
    get_streams,
    make_recorder_encode_args,
    run_ffprobe,
)
from jokereel.utils.temp_file_manager import remove_path

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[float], None]


class StreamRecorder:
    """
    Records composited frames plus the narration track into one container.

    Example:
        >>> recorder = StreamRecorder(workspace)
        >>> result = await recorder.record(compositor.bind(assets, cues), 9.0, assets.narration)
    """

    def __init__(
        self,
        workspace: Path,
        fps: Optional[int] = None,
        width: Optional[int] = None,
        height: Optional[int] = None,
        thumbnail_duration: Optional[float] = None,
        container: Optional[str] = None,
        ffmpeg_cmd: Optional[str] = None,
        ffprobe_cmd: Optional[str] = None,
        clock: Optional[FrameClock] = None,
    ):
        default_w, default_h = settings.get_output_dimensions()
        recorder_cfg = settings.get_recorder_config()

        self.workspace = Path(workspace)
        self.fps = fps or settings.get_fps()
        self.width = width or default_w
        self.height = height or default_h
        self.thumbnail_duration = thumbnail_duration if thumbnail_duration is not None else settings.get_thumbnail_duration()
        self.container = (container or settings.get_recorder_container()).lower()
        self.ffmpeg_cmd = ffmpeg_cmd or settings.get_ffmpeg_binary()
        self.ffprobe_cmd = ffprobe_cmd or settings.get_ffprobe_binary()
        self.video_bitrate = str(recorder_cfg.get('video_bitrate', '4M'))
        self.audio_bitrate = str(recorder_cfg.get('audio_bitrate', '128k'))
        self.clock = clock or FrameClock(self.fps, realtime=settings.is_realtime_pacing())

        # Validates the container name up front
        self.mime_type, self.encode_args = make_recorder_encode_args(
            self.container, self.video_bitrate, self.audio_bitrate
        )

    def total_frames(self, total_main_duration: float) -> int:
        """floor((thumbnail + main) * fps), tolerant of float noise at exact frame boundaries"""
        return int(math.floor((self.thumbnail_duration + total_main_duration) * self.fps + 1e-9))

    # ------------------------------------------------------------------
    # Preconditions
    # ------------------------------------------------------------------

    def _resolve_encoder(self) -> str:
        executable = shutil.which(self.ffmpeg_cmd)
        if executable is None:
            raise RecorderUnavailable(f"ffmpeg executable not found: {self.ffmpeg_cmd}")
        return executable

    def _narration_path(self, audio_track: AudioTrack) -> Path:
        if audio_track.path is not None and Path(audio_track.path).exists():
            return Path(audio_track.path)
        path = self.workspace / "narration.audio"
        path.write_bytes(audio_track.data)
        return path

    async def _check_audio(self, path: Path) -> None:
        try:
            probe = await asyncio.to_thread(run_ffprobe, str(path), None, False, self.ffprobe_cmd)
        except FileNotFoundError as e:
            raise RecorderUnavailable(f"ffprobe executable not found: {self.ffprobe_cmd}") from e
        except TimeoutError as e:
            raise AudioDecodeError("metadata probe timed out", str(path)) from e
        except ffmpeg.Error as e:
            raise AudioDecodeError(describe_ffmpeg_error(e), str(path)) from e
        if not get_streams(probe, "audio"):
            raise AudioDecodeError("no audio stream", str(path))

    def build_command(self, encoder: str, audio_path: Path, output_path: Path) -> list:
        """ffmpeg argv for rawvideo stdin + narration file -> container."""
        video_in = ffmpeg.input(
            "pipe:",
            format="rawvideo",
            pix_fmt="rgb24",
            s=f"{self.width}x{self.height}",
            framerate=self.fps,
        )
        audio_in = ffmpeg.input(str(audio_path))
        return (
            ffmpeg
            .output(video_in.video, audio_in.audio, str(output_path), **self.encode_args)
            .overwrite_output()
            .global_args("-loglevel", "error", "-nostats")
            .compile(cmd=encoder)
        )

    # ------------------------------------------------------------------
    # Recording
    # ------------------------------------------------------------------

    async def record(
        self,
        frame_source: FrameSource,
        total_main_duration: float,
        audio_track: AudioTrack,
        on_progress: Optional[ProgressCallback] = None,
        should_stop: Optional[Callable[[], bool]] = None,
    ) -> CompositionResult:
        """
        Render and encode every frame of the job.

        Args:
            frame_source: frame_time -> RGB frame (see FrameCompositor.bind)
            total_main_duration: Length of the main interval in seconds
            audio_track: Narration, the only audio track of the output
            on_progress: Called with 0-100 at least once per second of output
            should_stop: Polled between frames; True stops cleanly and cancels

        Raises:
            RecorderUnavailable: If no encoder process can be created
            AudioDecodeError: If the narration cannot be decoded
            RecordingError: If the encoder fails mid-run
            JobCancelledError: If should_stop returned True
        """
        if total_main_duration is None or not math.isfinite(total_main_duration) or total_main_duration <= 0:
            raise InvalidInputError("total_main_duration", f"must be positive (got {total_main_duration})")

        self.workspace.mkdir(parents=True, exist_ok=True)
        audio_path = self._narration_path(audio_track)
        await self._check_audio(audio_path)
        encoder = self._resolve_encoder()

        output_path = self.workspace / f"composition.{self.container}"
        args = self.build_command(encoder, audio_path, output_path)
        total = self.total_frames(total_main_duration)
        logger.info(f"🎬 Recording {total} frames at {self.fps} fps into {self.container} ({total / self.fps:.2f}s)")
        logger.debug(f"Recorder command: {' '.join(args)}")

        try:
            process = await asyncio.create_subprocess_exec(
                *args,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise RecorderUnavailable(f"Failed to start encoder: {e}") from e

        stderr_task = asyncio.create_task(process.stderr.read())
        finished = False
        try:
            cancelled = await self._render_frames(process, frame_source, total, on_progress, should_stop, stderr_task)

            process.stdin.close()
            returncode = await process.wait()
            stderr = (await stderr_task).decode("utf-8", errors="replace")
            finished = True

            if cancelled:
                logger.info("⏹️ Recording stopped on request, output discarded")
                raise JobCancelledError("composition")
            if returncode != 0:
                raise RecordingError(f"Encoder exited with code {returncode}", stderr)
            if not output_path.exists():
                raise RecordingError("Encoder produced no output", stderr)

            data = output_path.read_bytes()
        finally:
            if not finished:
                await self._abort(process, stderr_task)
            remove_path(output_path)

        if on_progress:
            on_progress(100.0)

        result = CompositionResult(
            data=data,
            mime_type=self.mime_type,
            codec_family=self.container,
            duration_seconds=total / self.fps,
        )
        logger.info(f"✅ Recording complete: {result.size / 1024 / 1024:.2f} MB {result.mime_type}")
        return result

    async def _render_frames(
        self,
        process: asyncio.subprocess.Process,
        frame_source: FrameSource,
        total: int,
        on_progress: Optional[ProgressCallback],
        should_stop: Optional[Callable[[], bool]],
        stderr_task: asyncio.Task,
    ) -> bool:
        """Write ``total`` frames; returns True if stopped early on request."""
        expected_size = (self.width, self.height)
        self.clock.start()

        for index in range(total):
            if should_stop is not None and should_stop():
                return True

            # Decoding the background blocks; keep the event loop responsive meanwhile
            frame = await asyncio.to_thread(frame_source, self.clock.scheduled_time(index))
            if frame.size != expected_size:
                raise RecordingError(f"Frame {index} is {frame.size[0]}x{frame.size[1]}, expected {self.width}x{self.height}")
            if frame.mode != "RGB":
                frame = frame.convert("RGB")

            try:
                process.stdin.write(frame.tobytes())
                await process.stdin.drain()
            except (BrokenPipeError, ConnectionResetError) as e:
                await process.wait()
                stderr = (await stderr_task).decode("utf-8", errors="replace")
                raise RecordingError(f"Encoder closed its input at frame {index}", stderr) from e

            if on_progress and (index + 1) % self.fps == 0:
                on_progress((index + 1) / total * 100.0)

            await self.clock.wait_for_tick(index)

        return False

    @staticmethod
    async def _abort(process: asyncio.subprocess.Process, stderr_task: asyncio.Task) -> None:
        """Stop the encoder after a failure; partial output is deleted by the caller."""
        if process.returncode is None:
            try:
                process.kill()
            except ProcessLookupError:
                pass
            await process.wait()
        if not stderr_task.done():
            stderr_task.cancel()
        await asyncio.gather(stderr_task, return_exceptions=True)
