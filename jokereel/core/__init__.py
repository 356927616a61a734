"""
JokeReel Core Module

Caption timing, shared data models and the error taxonomy. Frame rendering
and recording live in ``jokereel.core.video``.
"""

from .caption_timeline import CaptionTimeline
from .models import CaptionCue, CompositionJob, CompositionResult

__all__ = [
    'CaptionTimeline',
    'CaptionCue',
    'CompositionJob',
    'CompositionResult',
]
