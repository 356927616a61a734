"""
Unit tests for CaptionTimeline.

Tests cover:
- Word chunking with the configured chunk size
- Proportional timing that covers the narration exactly
- Empty narration and invalid durations
- CaptionCue validation
"""
import math

import pytest

from jokereel.core.caption_timeline import CaptionTimeline
from jokereel.core.exceptions import InvalidInputError
from jokereel.core.models import CaptionCue, CaptionTimelineConfig


class TestCaptionTimeline:
    """Test caption cue generation"""

    def test_chicken_scenario(self):
        """Ten words in chunks of four over nine seconds: 0.9s per word"""
        timeline = CaptionTimeline(chunk_size=4)
        cues = timeline.generate("Why did the chicken cross the road to tell you", 9.0)

        assert [c.text for c in cues] == ["Why did the chicken", "cross the road to", "tell you"]
        assert [(c.start, c.end) for c in cues] == [
            (0.0, pytest.approx(3.6)),
            (pytest.approx(3.6), pytest.approx(7.2)),
            (pytest.approx(7.2), 9.0),
        ]

    def test_nine_words_one_second_each(self):
        """Nine words over nine seconds put chunk boundaries on whole seconds"""
        timeline = CaptionTimeline(chunk_size=4)
        cues = timeline.generate("Why did the chicken cross the road to eat", 9.0)

        assert [(c.text, c.start, c.end) for c in cues] == [
            ("Why did the chicken", 0.0, 4.0),
            ("cross the road to", 4.0, 8.0),
            ("eat", 8.0, 9.0),
        ]

    def test_cues_are_contiguous_and_cover_duration(self):
        """Each cue starts where the previous one ended; the last ends at the duration"""
        timeline = CaptionTimeline(chunk_size=3)
        text = " ".join(f"word{i}" for i in range(17))
        duration = 7.3

        cues = timeline.generate(text, duration)

        assert cues[0].start == 0.0
        assert cues[-1].end == duration
        for previous, current in zip(cues, cues[1:]):
            assert current.start == pytest.approx(previous.end)
            assert current.start < current.end
        assert all(c.end <= duration for c in cues)

    def test_cue_count_is_ceiling_of_words_over_chunk(self):
        """Count of cues equals ceil(N / chunk_size) and every word appears once"""
        words = ["a"] * 10
        for chunk_size in (1, 2, 3, 4, 10, 11):
            cues = CaptionTimeline(chunk_size=chunk_size).generate(" ".join(words), 5.0)
            assert len(cues) == math.ceil(len(words) / chunk_size)
            assert sum(len(c.text.split()) for c in cues) == len(words)

    def test_whitespace_is_collapsed(self):
        """Tabs, newlines and repeated spaces all separate words"""
        cues = CaptionTimeline(chunk_size=2).generate("  one\ttwo\n\nthree   four ", 2.0)

        assert [c.text for c in cues] == ["one two", "three four"]

    def test_punctuation_stays_with_words(self):
        """Punctuation is not a separate token"""
        cues = CaptionTimeline(chunk_size=4).generate("Knock, knock. Who's there?", 3.0)

        assert len(cues) == 1
        assert cues[0].text == "Knock, knock. Who's there?"

    @pytest.mark.parametrize("text", ["", "   ", "\n\t", None])
    def test_empty_text_yields_no_cues(self, text):
        """No words means no captions, not an error"""
        assert CaptionTimeline().generate(text, 5.0) == []

    @pytest.mark.parametrize("duration", [0, -1.0, float("nan"), float("inf"), None])
    def test_invalid_duration_rejected(self, duration):
        """Durations must be positive and finite"""
        with pytest.raises(InvalidInputError) as exc_info:
            CaptionTimeline().generate("hello world", duration)

        assert exc_info.value.field == "total_duration"

    def test_default_chunk_size_comes_from_config(self):
        """Without an explicit chunk size the configured default (4) applies"""
        assert CaptionTimeline().chunk_size == 4

    def test_explicit_config_object(self):
        """A CaptionTimelineConfig may be passed directly"""
        timeline = CaptionTimeline(config=CaptionTimelineConfig(chunk_size=2))

        assert timeline.chunk_size == 2

    @pytest.mark.parametrize("chunk_size", [0, -3])
    def test_invalid_chunk_size_rejected(self, chunk_size):
        """Chunk size must be a positive integer"""
        with pytest.raises(InvalidInputError):
            CaptionTimeline(chunk_size=chunk_size)


class TestCaptionCue:
    """Test CaptionCue validation and activity"""

    def test_active_window_is_inclusive(self):
        """Both ends of the window count as active"""
        cue = CaptionCue("hello", 1.0, 2.0)

        assert cue.is_active(1.0)
        assert cue.is_active(1.5)
        assert cue.is_active(2.0)
        assert not cue.is_active(0.999)
        assert not cue.is_active(2.001)

    def test_empty_text_rejected(self):
        with pytest.raises(InvalidInputError):
            CaptionCue("  ", 0.0, 1.0)

    def test_end_must_follow_start(self):
        with pytest.raises(InvalidInputError):
            CaptionCue("hello", 1.0, 1.0)

    def test_negative_start_rejected(self):
        with pytest.raises(InvalidInputError):
            CaptionCue("hello", -0.5, 1.0)
