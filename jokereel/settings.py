"""
Settings management for JokeReel application.

This module provides simple accessor functions for configuration values.
All configuration is stored in YAML files (default.yaml, config.yaml).
"""

import logging
from typing import Dict, Any, List, Optional

from .config import ConfigLoader

logger = logging.getLogger(__name__)

# Single source of configuration
_config_loader = ConfigLoader()


def reload_settings(user_config_path: Optional[str] = None) -> None:
    """Re-read configuration files and environment overrides."""
    global _config_loader
    _config_loader = ConfigLoader(user_config_path)


# ============================================================================
# Section Accessors - Get entire configuration sections
# ============================================================================

def get_app_config() -> Dict[str, Any]:
    """Get application settings"""
    return _config_loader.get_section('app') or {}


def get_video_config() -> Dict[str, Any]:
    """Get output video geometry and timing"""
    return _config_loader.get_section('video') or {}


def get_captions_config() -> Dict[str, Any]:
    """Get caption timing and styling configuration"""
    return _config_loader.get_section('captions') or {}


def get_avatar_config() -> Dict[str, Any]:
    """Get avatar overlay configuration"""
    return _config_loader.get_section('avatar') or {}


def get_assets_config() -> Dict[str, Any]:
    """Get asset loading configuration"""
    return _config_loader.get_section('assets') or {}


def get_recorder_config() -> Dict[str, Any]:
    """Get stream recorder configuration"""
    return _config_loader.get_section('recorder') or {}


def get_transcode_config() -> Dict[str, Any]:
    """Get transcoding configuration"""
    return _config_loader.get_section('transcode') or {}


def get_voices_config() -> Dict[str, Any]:
    """Get voice catalog configuration"""
    return _config_loader.get_section('voices') or {}


# ============================================================================
# Value Accessors
# ============================================================================

def _get_positive_int(section: Dict[str, Any], key: str, default: int) -> int:
    value = section.get(key, default)
    try:
        value = int(value)
    except (TypeError, ValueError):
        logger.warning(f"Invalid {key} value '{value}' in configuration, using {default}")
        return default
    if value < 1:
        logger.warning(f"{key} must be >= 1 (got {value}), using {default}")
        return default
    return value


def get_output_dimensions() -> tuple[int, int]:
    """Output canvas size (width, height), 9:16 by default"""
    cfg = get_video_config()
    return _get_positive_int(cfg, 'width', 1080), _get_positive_int(cfg, 'height', 1920)


def get_fps() -> int:
    """Output frame rate (default 30)"""
    return _get_positive_int(get_video_config(), 'fps', 30)


def get_thumbnail_duration() -> float:
    """Seconds the thumbnail is shown before the main interval (default 1.0)"""
    return float(get_video_config().get('thumbnail_duration', 1.0))


def get_caption_chunk_size() -> int:
    """Words grouped per caption cue (default 4)"""
    return _get_positive_int(get_captions_config(), 'chunk_size', 4)


def get_metadata_timeout_seconds() -> float:
    """Seconds to wait for asset metadata (default 30)"""
    value = get_assets_config().get('metadata_timeout', 30)
    try:
        return max(float(value), 1.0)
    except (TypeError, ValueError):
        logger.warning(f"Invalid metadata timeout '{value}' in configuration. Falling back to 30 seconds.")
        return 30.0


def get_ffprobe_binary() -> str:
    return str(get_assets_config().get('ffprobe_binary') or 'ffprobe')


def get_ffmpeg_binary() -> str:
    return str(get_recorder_config().get('ffmpeg_binary') or 'ffmpeg')


def get_recorder_container() -> str:
    """Container the recorder writes: 'webm' or 'mp4'"""
    return str(get_recorder_config().get('container', 'webm')).lower()


def is_realtime_pacing() -> bool:
    return bool(get_recorder_config().get('realtime', False))


def is_transcode_enabled() -> bool:
    return bool(get_transcode_config().get('enabled', True))


def get_engine_source_names() -> List[str]:
    """Ordered engine sources tried during transcoder initialisation"""
    sources = get_transcode_config().get('engine_sources') or ['configured', 'path', 'imageio']
    return [str(s) for s in sources]


def get_workspace_root() -> Optional[str]:
    """Root for per-job scratch directories, None for the system temp dir"""
    return get_app_config().get('workspace_root') or None


def get_log_file() -> str:
    return str(get_app_config().get('log_file') or 'jokereel.log')
