"""
Transcoder - converts the recorder's container into broadly playable MP4.

- Sources already in the target family pass through untouched
- The ffmpeg engine comes from an EngineHandle (lazy, retried, single-flight)
- Conversion parameters come from the ``transcode`` config section
- Working files live in a per-call directory and are removed best-effort
"""

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Optional

import ffmpeg

from jokereel import settings
from jokereel.core.models import CompositionResult
from jokereel.media.engine import EngineHandle
from jokereel.media.exceptions import ConversionError
from jokereel.media.ffmpeg_utils import parse_progress_line
from jokereel.utils.temp_file_manager import WorkspaceManager, remove_path

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[float], None]

_MIME_TYPES = {"mp4": "video/mp4", "webm": "video/webm", "mov": "video/quicktime", "mkv": "video/x-matroska"}


@dataclass(frozen=True)
class TranscodeSettings:
    """Conversion policy; defaults favour speed over quality"""
    target_family: str = "mp4"
    vcodec: str = "libx264"
    preset: str = "ultrafast"
    crf: int = 28
    acodec: str = "aac"
    audio_bitrate: str = "128k"
    pix_fmt: str = "yuv420p"
    movflags: str = "+faststart"
    max_muxing_queue_size: int = 1024

    @classmethod
    def from_config(cls, cfg: Optional[Dict[str, Any]] = None) -> "TranscodeSettings":
        cfg = settings.get_transcode_config() if cfg is None else cfg
        defaults = cls()
        return cls(
            target_family=str(cfg.get('target_family', defaults.target_family)).lower(),
            vcodec=str(cfg.get('vcodec', defaults.vcodec)),
            preset=str(cfg.get('preset', defaults.preset)),
            crf=int(cfg.get('crf', defaults.crf)),
            acodec=str(cfg.get('acodec', defaults.acodec)),
            audio_bitrate=str(cfg.get('audio_bitrate', defaults.audio_bitrate)),
            pix_fmt=str(cfg.get('pix_fmt', defaults.pix_fmt)),
            movflags=str(cfg.get('movflags', defaults.movflags)),
            max_muxing_queue_size=int(cfg.get('max_muxing_queue_size', defaults.max_muxing_queue_size)),
        )

    @property
    def mime_type(self) -> str:
        return _MIME_TYPES.get(self.target_family, f"video/{self.target_family}")

    def output_kwargs(self) -> Dict[str, Any]:
        return {
            "vcodec": self.vcodec,
            "preset": self.preset,
            "crf": self.crf,
            "acodec": self.acodec,
            "b:a": self.audio_bitrate,
            "movflags": self.movflags,
            "pix_fmt": self.pix_fmt,
            "max_muxing_queue_size": self.max_muxing_queue_size,
        }


class Transcoder:
    """
    Re-encodes composition results into the target codec family.

    Example:
        >>> transcoder = Transcoder(EngineHandle())
        >>> if transcoder.needs_transcode(result) and transcoder.can_transcode():
        ...     result = await transcoder.transcode(result)
    """

    def __init__(
        self,
        engine_handle: Optional[EngineHandle] = None,
        transcode_settings: Optional[TranscodeSettings] = None,
        workspace_manager: Optional[WorkspaceManager] = None,
    ):
        self.engine_handle = engine_handle or EngineHandle()
        self.settings = transcode_settings or TranscodeSettings.from_config()
        self.workspace_manager = workspace_manager or WorkspaceManager(base_dir=settings.get_workspace_root())

    def needs_transcode(self, source: CompositionResult) -> bool:
        return source.codec_family.lower() != self.settings.target_family

    def can_transcode(self) -> bool:
        """
        Whether this environment is expected to support conversion: some
        engine source resolves an executable and working storage is writable.
        """
        if not self.workspace_manager.is_writable():
            logger.warning(f"Working storage {self.workspace_manager.base_dir} is not writable, transcoding disabled")
            return False
        if not self.engine_handle.is_initialized and not self.engine_handle.can_locate():
            logger.warning("No ffmpeg executable available, transcoding disabled")
            return False
        return True

    def build_command(self, executable: str, input_path: Path, output_path: Path) -> list:
        return (
            ffmpeg
            .input(str(input_path))
            .output(str(output_path), **self.settings.output_kwargs())
            .overwrite_output()
            .global_args("-progress", "pipe:1", "-nostats", "-loglevel", "error")
            .compile(cmd=executable)
        )

    async def transcode(
        self,
        source: CompositionResult,
        on_progress: Optional[ProgressCallback] = None,
    ) -> CompositionResult:
        """
        Convert ``source`` into the target family.

        Returns:
            ``source`` itself when it is already in the target family

        Raises:
            EngineUnavailableError: If the engine could not be initialised
            ConversionError: If conversion fails on an initialised engine
        """
        if not self.needs_transcode(source):
            logger.info(f"Source already {self.settings.target_family}, no transcoding needed")
            return source

        engine = await self.engine_handle.get()
        logger.info(f"Starting transcoding: {source.size / 1024 / 1024:.2f} MB {source.codec_family} -> {self.settings.target_family}")

        workdir = self.workspace_manager.make_workspace(prefix="jokereel_transcode_")
        input_path = workdir / f"input.{source.codec_family}"
        output_path = workdir / f"output.{self.settings.target_family}"
        try:
            input_path.write_bytes(source.data)
            args = self.build_command(engine.executable, input_path, output_path)
            logger.debug(f"FFmpeg command: {' '.join(args)}")

            await self._run(args, source.duration_seconds, on_progress)

            if not output_path.exists() or output_path.stat().st_size == 0:
                raise ConversionError("engine produced no output")
            data = output_path.read_bytes()
        except OSError as e:
            raise ConversionError(f"working storage error: {e}") from e
        finally:
            self._cleanup(workdir, input_path, output_path)

        result = CompositionResult(
            data=data,
            mime_type=self.settings.mime_type,
            codec_family=self.settings.target_family,
            duration_seconds=source.duration_seconds,
        )
        logger.info(f"✅ Transcoding completed: {result.size / 1024 / 1024:.2f} MB {result.mime_type}")
        return result

    async def _run(self, args: list, duration: float, on_progress: Optional[ProgressCallback]) -> None:
        try:
            process = await asyncio.create_subprocess_exec(
                *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise ConversionError(f"failed to start engine: {e}") from e

        stderr_task = asyncio.create_task(process.stderr.read())
        try:
            last_reported = -1
            async for raw_line in process.stdout:
                percent = parse_progress_line(raw_line.decode("utf-8", errors="replace"), duration)
                if percent is None or on_progress is None:
                    continue
                rounded = round(percent)
                if rounded != last_reported:
                    last_reported = rounded
                    logger.debug(f"[FFmpeg Progress]: {rounded}%")
                    on_progress(float(rounded))
            returncode = await process.wait()
            stderr = (await stderr_task).decode("utf-8", errors="replace")
        except BaseException:
            if process.returncode is None:
                process.kill()
                await process.wait()
            stderr_task.cancel()
            await asyncio.gather(stderr_task, return_exceptions=True)
            raise

        if returncode != 0:
            raise ConversionError(f"engine exited with code {returncode}", stderr)

    @staticmethod
    def _cleanup(workdir: Path, *paths: Path) -> None:
        """Best-effort removal of working entries; failures are logged, never raised."""
        for path in paths:
            if path.exists() and not remove_path(path):
                logger.warning(f"Cleanup error (non-critical): could not delete {path.name}")
        remove_path(workdir)
