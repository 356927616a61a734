"""
Caption timeline generation.

Groups narration words into fixed-size chunks and spreads them over the
measured narration duration in proportion to their word count.
"""
import logging
import math
from typing import List, Optional

from jokereel import settings
from jokereel.core.exceptions import InvalidInputError
from jokereel.core.models import CaptionCue, CaptionTimelineConfig

logger = logging.getLogger(__name__)


class CaptionTimeline:
    """
    Turns narration text and its duration into ordered caption cues.

    Cues are contiguous and cover [0, total_duration] exactly:

        >>> timeline = CaptionTimeline(chunk_size=4)
        >>> [c.text for c in timeline.generate("Why did the chicken cross the road", 6.0)]
        ['Why did the chicken', 'cross the road']
    """

    def __init__(self, chunk_size: Optional[int] = None, config: Optional[CaptionTimelineConfig] = None):
        if config is None:
            config = CaptionTimelineConfig(
                chunk_size=chunk_size if chunk_size is not None else settings.get_caption_chunk_size()
            )
        self.config = config

    @property
    def chunk_size(self) -> int:
        return self.config.chunk_size

    def generate(self, text: str, total_duration: float) -> List[CaptionCue]:
        """
        Generate caption cues for narration text.

        Args:
            text: Narration text, split on whitespace
            total_duration: Measured narration duration in seconds (> 0)

        Returns:
            Cues in start order; empty if the text has no words

        Raises:
            InvalidInputError: If the duration is not a positive finite number
        """
        if total_duration is None or not math.isfinite(total_duration) or total_duration <= 0:
            raise InvalidInputError("total_duration", f"must be a positive number of seconds (got {total_duration})")

        tokens = (text or "").split()
        count = len(tokens)
        if count == 0:
            logger.info("No narration words, no captions generated")
            return []

        cues = []
        for offset in range(0, count, self.chunk_size):
            chunk = tokens[offset:offset + self.chunk_size]
            stop = offset + len(chunk)
            start = offset * total_duration / count
            end = total_duration if stop == count else stop * total_duration / count
            cues.append(CaptionCue(text=" ".join(chunk), start=start, end=end))

        logger.debug(f"Generated {len(cues)} caption cues for {count} words over {total_duration:.2f}s")
        return cues
