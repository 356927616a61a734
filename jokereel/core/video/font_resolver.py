"""
Font Resolver - caption font lookup for the frame compositor.

Resolution order:
1. Explicit font path (argument or ``captions.font_path`` setting)
2. An installed bold sans-serif face for the current platform
3. Pillow's built-in scalable font
"""

import os
import logging
from typing import Dict, Optional

from PIL import ImageFont

from jokereel.config.font_utils import get_platform_bold_font

logger = logging.getLogger(__name__)


class FontResolver:
    """
    Resolves and caches Pillow fonts by size.

    Example:
        >>> resolver = FontResolver()
        >>> font = resolver.get_font(48)
    """

    def __init__(self, font_path: Optional[str] = None):
        self.font_path = font_path or ""
        self.font_cache: Dict[int, ImageFont.ImageFont] = {}
        self._resolved_path: Optional[str] = None

    def resolve_path(self) -> str:
        """Return the font file to use, or an empty string for the built-in font."""
        if self._resolved_path is None:
            if self.font_path and os.path.exists(self.font_path):
                self._resolved_path = self.font_path
            else:
                if self.font_path:
                    logger.warning(f"Configured caption font not found: {self.font_path}")
                self._resolved_path = get_platform_bold_font()
        return self._resolved_path

    def get_font(self, size: int) -> ImageFont.ImageFont:
        if size in self.font_cache:
            return self.font_cache[size]

        path = self.resolve_path()
        font = None
        if path:
            try:
                font = ImageFont.truetype(path, size)
            except OSError as e:
                logger.warning(f"Failed to load font {path}: {e}, using built-in font")
        if font is None:
            font = ImageFont.load_default(size=size)

        self.font_cache[size] = font
        return font
