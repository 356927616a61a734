"""
Unit tests for FrameCompositor.

Tests cover:
- Aspect-preserving fit geometry
- Thumbnail interval vs main interval rendering
- Avatar circle placement and caption overlay
- Rejection of out-of-order frame times
"""
from pathlib import Path
from unittest.mock import patch

import pytest
from PIL import Image

from jokereel.core.exceptions import FrameOrderError
from jokereel.core.models import BackgroundVideo, CaptionCue, ImageAsset, LoadedAssets, AudioTrack, MediaKind
from jokereel.core.video.font_resolver import FontResolver
from jokereel.core.video.frame_compositor import FrameCompositor, active_caption_text, fit_rect

RED = (255, 0, 0)
GREEN = (0, 255, 0)
BLUE = (0, 0, 255)
BLACK = (0, 0, 0)
WHITE = (255, 255, 255)


class FakeReader:
    """Stands in for the ffmpeg-backed background reader"""
    instances = []

    def __init__(self, path, width, height, fps, ffmpeg_cmd="ffmpeg"):
        self.path = path
        self.size = (width, height)
        self.times = []
        self.closed = False
        FakeReader.instances.append(self)

    def frame_at(self, video_time):
        self.times.append(video_time)
        return Image.new("RGB", self.size, GREEN)

    def close(self):
        self.closed = True


@pytest.fixture
def fake_reader():
    FakeReader.instances = []
    with patch('jokereel.core.video.frame_compositor.BackgroundFrameReader', FakeReader):
        yield FakeReader


@pytest.fixture
def assets():
    return LoadedAssets(
        background=BackgroundVideo(data=b"", path=Path("background.video"), width=1920, height=1080, duration=10.0),
        thumbnail=ImageAsset(MediaKind.THUMBNAIL, b"", Image.new("RGBA", (100, 200), RED + (255,))),
        avatar=ImageAsset(MediaKind.AVATAR, b"", Image.new("RGBA", (300, 300), BLUE + (255,))),
        narration=AudioTrack(data=b"", duration=9.0),
    )


@pytest.fixture
def compositor():
    return FrameCompositor(
        width=1080,
        height=1920,
        fps=30,
        thumbnail_duration=1.0,
        font_resolver=FontResolver(),
        ffmpeg_cmd="ffmpeg",
    )


def _colors(image, box):
    return {color for _, color in image.crop(box).getcolors(maxcolors=1_000_000)}


def _white_bbox(image):
    """Bounding box of pure white (caption fill) pixels"""
    return image.convert("L").point(lambda v: 255 if v == 255 else 0).getbbox()


class TestFitRect:
    """Test contain-and-centre geometry"""

    def test_landscape_into_portrait_is_letterboxed(self):
        x, y, w, h = fit_rect(1920, 1080, 1080, 1920)

        assert (x, w) == (0, 1080)
        assert h == 608
        assert y == (1920 - 608) // 2

    def test_narrow_portrait_is_pillarboxed(self):
        assert fit_rect(100, 200, 1080, 1920) == (60, 0, 960, 1920)

    def test_same_aspect_fills_canvas(self):
        assert fit_rect(540, 960, 1080, 1920) == (0, 0, 1080, 1920)

    def test_never_exceeds_destination(self):
        for src in [(1, 1000), (1000, 1), (333, 777), (4096, 2160)]:
            x, y, w, h = fit_rect(*src, 1080, 1920)
            assert 0 <= x and 0 <= y
            assert x + w <= 1080 and y + h <= 1920


class TestActiveCaptionText:
    """Test active cue selection"""

    def test_single_active_cue(self):
        cues = [CaptionCue("one two", 0.0, 1.0), CaptionCue("three", 1.0, 2.0)]

        assert active_caption_text(cues, 1.5) == "three"

    def test_boundary_joins_both_cues(self):
        cues = [CaptionCue("one two", 0.0, 1.0), CaptionCue("three", 1.0, 2.0)]

        assert active_caption_text(cues, 1.0) == "one two three"

    def test_no_active_cue(self):
        assert active_caption_text([CaptionCue("one", 0.0, 1.0)], 3.0) == ""


class TestFrameCompositor:
    """Test frame rendering"""

    def test_thumbnail_interval(self, compositor, assets, fake_reader):
        """Before the thumbnail duration only the fitted thumbnail is shown"""
        frame = compositor.render(0.5, assets, [CaptionCue("hello", 0.0, 5.0)])

        assert frame.size == (1080, 1920)
        assert frame.getpixel((540, 960)) == RED
        assert frame.getpixel((30, 960)) == BLACK
        assert frame.getpixel((1050, 960)) == BLACK
        # No background decoding, avatar or caption during the thumbnail
        assert fake_reader.instances == []
        assert frame.getpixel((1010, 70)) == RED

    def test_main_interval_layout(self, compositor, assets, fake_reader):
        """Background fitted and centred, avatar top-right"""
        frame = compositor.render(1.5, assets, [])

        x, y, w, h = fit_rect(1920, 1080, 1080, 1920)
        assert frame.getpixel((540, y + h // 2)) == GREEN
        assert frame.getpixel((540, y - 5)) == BLACK
        assert frame.getpixel((540, y + h + 5)) == BLACK

        # Avatar occupies [960, 1060) x [20, 120)
        assert frame.getpixel((1010, 70)) == BLUE
        # Square corner of the avatar box lies outside the circle
        assert frame.getpixel((962, 22)) == BLACK
        assert frame.getpixel((1070, 70)) == BLACK

    def test_background_time_is_relative_to_main_interval(self, compositor, assets, fake_reader):
        compositor.render(1.0, assets, [])
        compositor.render(2.5, assets, [])

        reader = fake_reader.instances[0]
        assert reader.times == [0.0, 1.5]
        assert reader.size == (1080, 608)
        assert len(fake_reader.instances) == 1

    def test_caption_sits_on_bottom_margin_baseline(self, compositor, assets, fake_reader):
        """Caption is centred with its baseline 200px above the bottom edge"""
        cues = [CaptionCue("HIT THE ROAD", 0.0, 4.0)]

        frame = compositor.render(2.0, assets, cues)

        left, top, right, bottom = _white_bbox(frame)
        assert 1716 <= bottom <= 1721
        assert abs((left + right) / 2 - 540) <= 3
        # Only the stroke reaches past the baseline
        assert _colors(frame, (0, 1726, 1080, 1920)) == {BLACK}

    def test_descenders_hang_below_baseline(self, compositor, assets, fake_reader):
        cues = [CaptionCue("Why did the chicken", 0.0, 4.0)]

        frame = compositor.render(2.0, assets, cues)

        assert WHITE in _colors(frame, (0, 1600, 1080, 1720))
        assert WHITE in _colors(frame, (0, 1721, 1080, 1745))

    def test_no_caption_when_none_active(self, compositor, assets, fake_reader):
        cues = [CaptionCue("Why did the chicken", 0.0, 0.5)]

        frame = compositor.render(2.0, assets, cues)

        assert _colors(frame, (0, 1500, 1080, 1920)) == {BLACK}

    def test_canvas_is_cleared_between_frames(self, compositor, assets, fake_reader):
        cues = [CaptionCue("first", 0.0, 1.0)]
        compositor.render(1.5, assets, cues)

        frame = compositor.render(3.0, assets, cues)

        assert _colors(frame, (0, 1500, 1080, 1920)) == {BLACK}

    def test_backwards_time_rejected(self, compositor, assets, fake_reader):
        compositor.render(2.0, assets, [])

        with pytest.raises(FrameOrderError) as exc_info:
            compositor.render(1.9, assets, [])

        assert exc_info.value.previous_time == 2.0
        assert exc_info.value.frame_time == 1.9

    def test_reset_allows_new_job(self, compositor, assets, fake_reader):
        compositor.render(2.0, assets, [])

        compositor.reset()
        frame = compositor.render(0.0, assets, [])

        assert frame.getpixel((540, 960)) == RED
        assert fake_reader.instances[0].closed

    def test_bind_fixes_assets_and_cues(self, compositor, assets, fake_reader):
        frame_source = compositor.bind(assets, [CaptionCue("hello", 0.0, 1.0)])

        frame = frame_source(0.2)

        assert frame.getpixel((540, 960)) == RED
