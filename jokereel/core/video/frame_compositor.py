"""
Frame Compositor - renders one output frame of the vertical short.

Layout per frame:
- Thumbnail interval (frame_time < thumbnail_duration): thumbnail fitted
  and centred on black
- Main interval: background clip fitted and centred (letterbox/pillarbox,
  never cropped), circular avatar top-right, active caption text near the
  bottom edge

All frames are drawn into a single canvas that is cleared and rewritten on
every call, so frames must be requested in non-decreasing time order.
"""

import functools
import logging
from typing import Callable, Iterable, Optional, Sequence, Tuple

from PIL import Image, ImageChops, ImageDraw

from jokereel import settings
from jokereel.core.exceptions import FrameOrderError
from jokereel.core.models import CaptionCue, ImageAsset
from jokereel.core.video.background_reader import BackgroundFrameReader
from jokereel.core.video.font_resolver import FontResolver

logger = logging.getLogger(__name__)

FrameSource = Callable[[float], Image.Image]

# Supersampling factor for the avatar's circular mask edge
_MASK_SCALE = 4


def fit_rect(src_w: int, src_h: int, dst_w: int, dst_h: int) -> Tuple[int, int, int, int]:
    """
    Scale a source rectangle to fit inside the destination, preserving aspect ratio.

    Returns:
        (x, y, width, height) of the centred placement
    """
    src_aspect = src_w / src_h
    dst_aspect = dst_w / dst_h
    if src_aspect > dst_aspect:
        width = dst_w
        height = max(1, round(dst_w / src_aspect))
    else:
        width = max(1, round(dst_h * src_aspect))
        height = dst_h
    return (dst_w - width) // 2, (dst_h - height) // 2, width, height


def active_caption_text(cues: Iterable[CaptionCue], video_time: float) -> str:
    """Join the text of every cue active at ``video_time`` (usually exactly one)."""
    return " ".join(cue.text for cue in cues if cue.is_active(video_time))


class FrameCompositor:
    """
    Draws composited frames into a shared RGB canvas.

    Example:
        >>> compositor = FrameCompositor()
        >>> frame = compositor.render(1.5, assets, cues)
    """

    def __init__(
        self,
        width: Optional[int] = None,
        height: Optional[int] = None,
        fps: Optional[int] = None,
        thumbnail_duration: Optional[float] = None,
        font_resolver: Optional[FontResolver] = None,
        ffmpeg_cmd: Optional[str] = None,
    ):
        default_w, default_h = settings.get_output_dimensions()
        self.width = width or default_w
        self.height = height or default_h
        self.fps = fps or settings.get_fps()
        self.thumbnail_duration = thumbnail_duration if thumbnail_duration is not None else settings.get_thumbnail_duration()
        self.ffmpeg_cmd = ffmpeg_cmd or settings.get_ffmpeg_binary()

        video_cfg = settings.get_video_config()
        captions_cfg = settings.get_captions_config()
        avatar_cfg = settings.get_avatar_config()

        self.background_color = video_cfg.get('background_color', '#000000')
        self.caption_font_size = int(captions_cfg.get('font_size', 48))
        self.caption_fill = captions_cfg.get('fill_color', '#FFFFFF')
        self.caption_stroke = captions_cfg.get('stroke_color', '#000000')
        self.caption_stroke_width = int(captions_cfg.get('stroke_width', 4))
        self.caption_bottom_margin = int(captions_cfg.get('bottom_margin', 200))
        self.avatar_size = int(avatar_cfg.get('size', 100))
        self.avatar_margin = int(avatar_cfg.get('margin', 20))

        self.font_resolver = font_resolver or FontResolver(captions_cfg.get('font_path') or None)

        self.canvas = Image.new("RGB", (self.width, self.height), self.background_color)
        self._last_time: Optional[float] = None
        self._reader: Optional[BackgroundFrameReader] = None
        self._reader_key = None
        self._background_rect: Optional[Tuple[int, int, int, int]] = None
        self._thumbnail_cache: dict = {}
        self._avatar_cache: dict = {}

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def reset(self) -> None:
        """Forget frame history and release the background decoder for a new job."""
        self._last_time = None
        if self._reader is not None:
            self._reader.close()
        self._reader = None
        self._reader_key = None
        self._background_rect = None
        self._thumbnail_cache.clear()
        self._avatar_cache.clear()

    close = reset

    def bind(self, assets, cues: Sequence[CaptionCue]) -> FrameSource:
        """Fix the assets and cues of a job, leaving a frame_time -> frame function."""
        return functools.partial(self.render, assets=assets, cues=tuple(cues))

    # ------------------------------------------------------------------
    # Rendering
    # ------------------------------------------------------------------

    def render(self, frame_time: float, assets, cues: Sequence[CaptionCue]) -> Image.Image:
        """
        Render the frame shown at ``frame_time`` seconds into the output.

        Args:
            frame_time: Output time in seconds, non-decreasing across calls
            assets: CompositionRequest (or LoadedAssets) with background, thumbnail and avatar
            cues: Caption cues relative to the main interval

        Returns:
            The shared canvas; it is overwritten by the next call

        Raises:
            FrameOrderError: If frame_time is earlier than the previous call's
        """
        if self._last_time is not None and frame_time < self._last_time:
            raise FrameOrderError(self._last_time, frame_time)
        self._last_time = frame_time

        self.canvas.paste(self.background_color, (0, 0, self.width, self.height))

        if frame_time < self.thumbnail_duration:
            self._draw_thumbnail(assets.thumbnail)
        else:
            video_time = frame_time - self.thumbnail_duration
            self._draw_background(assets.background, video_time)
            self._draw_avatar(assets.avatar)
            self._draw_captions(cues, video_time)

        return self.canvas

    def _draw_thumbnail(self, thumbnail: ImageAsset) -> None:
        key = id(thumbnail)
        if key not in self._thumbnail_cache:
            x, y, w, h = fit_rect(thumbnail.width, thumbnail.height, self.width, self.height)
            self._thumbnail_cache[key] = ((x, y), thumbnail.image.resize((w, h), Image.LANCZOS))
        position, image = self._thumbnail_cache[key]
        self.canvas.paste(image, position, image)

    def _get_reader(self, background) -> BackgroundFrameReader:
        key = str(background.path)
        if self._reader is None or self._reader_key != key:
            if self._reader is not None:
                self._reader.close()
            x, y, w, h = fit_rect(background.width, background.height, self.width, self.height)
            self._background_rect = (x, y, w, h)
            self._reader = BackgroundFrameReader(background.path, w, h, self.fps, self.ffmpeg_cmd)
            self._reader_key = key
            logger.debug(f"Background placed at ({x}, {y}) size {w}x{h}")
        return self._reader

    def _draw_background(self, background, video_time: float) -> None:
        reader = self._get_reader(background)
        frame = reader.frame_at(video_time)
        if frame is not None:
            x, y, _, _ = self._background_rect
            self.canvas.paste(frame, (x, y))

    def _prepare_avatar(self, avatar: ImageAsset) -> Image.Image:
        key = id(avatar)
        if key not in self._avatar_cache:
            size = self.avatar_size
            image = avatar.image.resize((size, size), Image.LANCZOS)

            big = size * _MASK_SCALE
            mask = Image.new("L", (big, big), 0)
            ImageDraw.Draw(mask).ellipse((0, 0, big - 1, big - 1), fill=255)
            mask = mask.resize((size, size), Image.LANCZOS)

            image.putalpha(ImageChops.multiply(image.getchannel("A"), mask))
            self._avatar_cache[key] = image
        return self._avatar_cache[key]

    def _draw_avatar(self, avatar: ImageAsset) -> None:
        image = self._prepare_avatar(avatar)
        x = self.width - self.avatar_size - self.avatar_margin
        y = self.avatar_margin
        self.canvas.paste(image, (x, y), image)

    def _draw_captions(self, cues: Sequence[CaptionCue], video_time: float) -> None:
        text = active_caption_text(cues, video_time)
        if not text:
            return

        draw = ImageDraw.Draw(self.canvas)
        font = self.font_resolver.get_font(self.caption_font_size)
        # Horizontally centred, baseline bottom_margin px above the bottom edge
        draw.text(
            (self.width / 2, self.height - self.caption_bottom_margin),
            text,
            font=font,
            anchor="ms",
            fill=self.caption_fill,
            stroke_width=self.caption_stroke_width,
            stroke_fill=self.caption_stroke,
        )
