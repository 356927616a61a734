"""
Voice catalog

A static, read-only table of narration voices loaded once from the
``voices`` configuration section.
"""
import logging
from functools import lru_cache
from typing import Optional, Tuple

from pydantic import BaseModel, Field

from jokereel import settings

logger = logging.getLogger(__name__)


class Voice(BaseModel):
    """A selectable narration voice"""
    id: str = Field(description="Provider voice identifier", min_length=1)
    name: str = Field(description="Display name")
    gender: str = Field(default="", description="Voice gender label")
    accent: str = Field(default="", description="Accent label, e.g. 'American'")
    description: str = Field(default="", description="Short character description")
    use_case: str = Field(default="", description="Suggested use case")

    model_config = {"frozen": True}


@lru_cache(maxsize=1)
def get_voice_catalog() -> Tuple[Voice, ...]:
    entries = settings.get_voices_config().get('catalog') or []
    catalog = tuple(Voice.model_validate(entry) for entry in entries)
    logger.debug(f"Loaded {len(catalog)} voices")
    return catalog


def get_voice(voice_id: str) -> Optional[Voice]:
    return next((voice for voice in get_voice_catalog() if voice.id == voice_id), None)


def default_voice_id() -> str:
    """Configured default voice, falling back to the first catalog entry."""
    configured = settings.get_voices_config().get('default')
    if configured:
        return str(configured)
    catalog = get_voice_catalog()
    if not catalog:
        raise ValueError("Voice catalog is empty and no default voice is configured")
    return catalog[0].id
