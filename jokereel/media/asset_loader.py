"""
Asset loading for composition jobs.

Resolves the raw bytes of the background video, thumbnail, avatar and
narration into decoded handles. Containers are only probed for metadata;
images are fully decoded with Pillow. The four loads of a job run
concurrently and the first failure aborts the rest.
"""
import asyncio
import io
import logging
from pathlib import Path
from typing import Callable, Dict, Optional, TypeVar

import ffmpeg
from PIL import Image

from jokereel import settings
from jokereel.core.models import AudioTrack, BackgroundVideo, ImageAsset, LoadedAssets, MediaKind
from jokereel.media.exceptions import AssetTimeoutError, DecodeError, PartialLoadFailure
from jokereel.media.ffmpeg_utils import (
    audio_params_from_probe,
    describe_ffmpeg_error,
    run_ffprobe,
    video_params_from_probe,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

_AUDIO_EXTENSIONS = {
    "audio/mpeg": ".mp3",
    "audio/mp3": ".mp3",
    "audio/wav": ".wav",
    "audio/x-wav": ".wav",
    "audio/ogg": ".ogg",
    "audio/webm": ".webm",
    "audio/aac": ".aac",
}


class AssetLoader:
    """
    Decodes the media inputs of one job inside its workspace directory.

    Example:
        >>> loader = AssetLoader(workspace)
        >>> assets = await loader.load_all(video_bytes, thumb_bytes, avatar_bytes, mp3_bytes)
    """

    def __init__(
        self,
        workspace: Path,
        metadata_timeout: Optional[float] = None,
        ffprobe_cmd: Optional[str] = None,
    ):
        self.workspace = Path(workspace)
        self.workspace.mkdir(parents=True, exist_ok=True)
        self.metadata_timeout = metadata_timeout or settings.get_metadata_timeout_seconds()
        self.ffprobe_cmd = ffprobe_cmd or settings.get_ffprobe_binary()

    async def _run(self, kind: MediaKind, fn: Callable[[], T]) -> T:
        """Run a blocking decode off the event loop, bounded by the metadata timeout."""
        try:
            return await asyncio.wait_for(asyncio.to_thread(fn), timeout=self.metadata_timeout)
        except (DecodeError, AssetTimeoutError):
            raise
        except asyncio.TimeoutError as e:
            raise AssetTimeoutError(kind.value, self.metadata_timeout) from e

    def _probe(self, kind: MediaKind, path: Path) -> dict:
        try:
            return run_ffprobe(str(path), timeout=self.metadata_timeout, use_cache=False, cmd=self.ffprobe_cmd)
        except TimeoutError as e:
            raise AssetTimeoutError(kind.value, self.metadata_timeout) from e
        except FileNotFoundError as e:
            raise DecodeError(kind.value, f"ffprobe executable not found ({self.ffprobe_cmd})", str(path)) from e
        except ffmpeg.Error as e:
            raise DecodeError(kind.value, describe_ffmpeg_error(e), str(path)) from e

    def _write(self, name: str, data: bytes) -> Path:
        path = self.workspace / name
        path.write_bytes(data)
        return path

    # ------------------------------------------------------------------
    # Single assets
    # ------------------------------------------------------------------

    async def load_video(self, data: bytes) -> BackgroundVideo:
        """Probe the background clip; its frames are decoded later, on demand."""
        kind = MediaKind.BACKGROUND
        if not data:
            raise DecodeError(kind.value, "no data")

        def decode() -> BackgroundVideo:
            path = self._write("background.video", data)
            params = video_params_from_probe(self._probe(kind, path))
            if not params.width or not params.height:
                raise DecodeError(kind.value, "no decodable video stream", str(path))
            if not params.duration:
                logger.warning("Background video has no duration metadata; frames are read until EOF")
            return BackgroundVideo(
                data=data,
                path=path,
                width=params.width,
                height=params.height,
                duration=params.duration or 0.0,
                codec=params.codec,
            )

        video = await self._run(kind, decode)
        logger.info(f"🎞️ Background loaded: {video.width}x{video.height} {video.codec} {video.duration:.2f}s")
        return video

    async def load_image(self, data: bytes, kind: MediaKind) -> ImageAsset:
        """Fully decode a thumbnail or avatar image to RGBA."""
        if not data:
            raise DecodeError(kind.value, "no data")

        def decode() -> ImageAsset:
            try:
                with Image.open(io.BytesIO(data)) as img:
                    img.load()
                    rgba = img.convert("RGBA")
            except (OSError, ValueError, Image.DecompressionBombError) as e:
                raise DecodeError(kind.value, str(e) or type(e).__name__) from e
            return ImageAsset(kind=kind, data=data, image=rgba)

        image = await self._run(kind, decode)
        logger.info(f"🖼️ {kind.value.capitalize()} loaded: {image.width}x{image.height}")
        return image

    async def load_audio(self, data: bytes, mime_type: str = "audio/mpeg") -> AudioTrack:
        """Read the narration duration from container metadata only."""
        kind = MediaKind.NARRATION
        if not data:
            raise DecodeError(kind.value, "no data")

        def decode() -> AudioTrack:
            path = self._write("narration" + _AUDIO_EXTENSIONS.get(mime_type, ".audio"), data)
            params = audio_params_from_probe(self._probe(kind, path))
            if not params.codec:
                raise DecodeError(kind.value, "no audio stream", str(path))
            if not params.duration or params.duration <= 0:
                raise DecodeError(kind.value, "no duration metadata", str(path))
            return AudioTrack(data=data, duration=params.duration, mime_type=mime_type, path=path)

        track = await self._run(kind, decode)
        logger.info(f"🔊 Narration loaded: {track.duration:.2f}s ({track.mime_type})")
        return track

    async def measure_audio_duration(self, data: bytes, mime_type: str = "audio/mpeg") -> float:
        track = await self.load_audio(data, mime_type)
        return track.duration

    # ------------------------------------------------------------------
    # Fan-out / fan-in
    # ------------------------------------------------------------------

    async def load_all(
        self,
        background: bytes,
        thumbnail: bytes,
        avatar: bytes,
        narration: bytes,
        narration_mime_type: str = "audio/mpeg",
    ) -> LoadedAssets:
        """
        Load all four assets concurrently.

        Raises:
            PartialLoadFailure: Naming the first asset that failed; the other
                loads are cancelled
        """
        tasks: Dict[MediaKind, asyncio.Task] = {
            MediaKind.BACKGROUND: asyncio.create_task(self.load_video(background)),
            MediaKind.THUMBNAIL: asyncio.create_task(self.load_image(thumbnail, MediaKind.THUMBNAIL)),
            MediaKind.AVATAR: asyncio.create_task(self.load_image(avatar, MediaKind.AVATAR)),
            MediaKind.NARRATION: asyncio.create_task(self.load_audio(narration, narration_mime_type)),
        }

        done, pending = await asyncio.wait(tasks.values(), return_when=asyncio.FIRST_EXCEPTION)

        failed = next(
            ((kind, task) for kind, task in tasks.items()
             if task in done and not task.cancelled() and task.exception() is not None),
            None,
        )
        if failed is not None:
            kind, task = failed
            for other in pending:
                other.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
            for other in done:
                if other is not task and other.exception() is None:
                    result = other.result()
                    if isinstance(result, ImageAsset):
                        result.image.close()
            logger.error(f"❌ Asset loading failed on {kind.value}: {task.exception()}")
            raise PartialLoadFailure(kind.value, task.exception()) from task.exception()

        return LoadedAssets(
            background=tasks[MediaKind.BACKGROUND].result(),
            thumbnail=tasks[MediaKind.THUMBNAIL].result(),
            avatar=tasks[MediaKind.AVATAR].result(),
            narration=tasks[MediaKind.NARRATION].result(),
        )
