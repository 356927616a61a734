"""Font utility functions for platform-specific font detection."""

import os
import platform
import logging
from typing import List, Optional

logger = logging.getLogger(__name__)


# Bold sans-serif faces, closest first to "bold Arial"
_BOLD_FONTS = {
    "Darwin": [
        "/System/Library/Fonts/Supplemental/Arial Bold.ttf",
        "/Library/Fonts/Arial Bold.ttf",
        "/System/Library/Fonts/Helvetica.ttc",
    ],
    "Linux": [
        "/usr/share/fonts/truetype/msttcorefonts/Arial_Bold.ttf",
        "/usr/share/fonts/truetype/liberation/LiberationSans-Bold.ttf",
        "/usr/share/fonts/truetype/liberation2/LiberationSans-Bold.ttf",
        "/usr/share/fonts/truetype/dejavu/DejaVuSans-Bold.ttf",
        "/usr/share/fonts/dejavu/DejaVuSans-Bold.ttf",
    ],
    "Windows": [
        "C:/Windows/Fonts/arialbd.ttf",
        "C:/Windows/Fonts/segoeuib.ttf",
    ],
}


def get_bold_font_candidates(system: Optional[str] = None) -> List[str]:
    """Return the bold font paths to probe on the given (or current) platform."""
    return list(_BOLD_FONTS.get(system or platform.system(), []))


def get_platform_bold_font(system: Optional[str] = None) -> str:
    """
    Get an installed bold font for caption rendering.

    Returns:
        str: Path to a bold font, or empty string if none is installed
    """
    system = system or platform.system()
    candidates = get_bold_font_candidates(system)
    if not candidates:
        logger.warning(f"Unknown platform: {system}, cannot detect default font")
        return ""

    for font_path in candidates:
        if os.path.exists(font_path):
            logger.debug(f"Using {system} bold font: {font_path}")
            return font_path

    logger.warning(f"No bold fonts found on {system}, falling back to built-in font")
    return ""
