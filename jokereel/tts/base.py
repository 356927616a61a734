"""
Interfaces for the outbound AI collaborators: speech synthesis and script rewriting
"""

from abc import ABC, abstractmethod
import logging

logger = logging.getLogger(__name__)


class SpeechSynthesizer(ABC):
    """
    Abstract base class for text-to-speech providers.

    Implementations return opaque encoded audio (``audio/mpeg``); the
    pipeline only ever reads its duration from container metadata.
    """

    mime_type = "audio/mpeg"

    @abstractmethod
    def synthesize(self, text: str, voice_id: str) -> bytes:
        """
        Generate speech audio from text.

        Args:
            text: The narration script
            voice_id: Identifier from the voice catalog

        Returns:
            Encoded audio bytes

        Raises:
            Exception: If speech generation fails
        """
        pass

    def _sanitize_text_for_speech(self, text: str) -> str:
        """Trim and collapse whitespace; providers may override."""
        return ' '.join(text.split())


class ScriptRewriter(ABC):
    """Rewrites a raw joke into a short narration script."""

    @abstractmethod
    def rewrite(self, text: str) -> str:
        pass
