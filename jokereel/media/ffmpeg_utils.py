"""
FFmpeg utilities for JokeReel

Goals
- Probe asset metadata (container, streams, duration) without decoding payloads
- Cache probe results keyed by path, mtime and size
- Build encoder argument sets for the recorder's container profiles
- Parse ffmpeg ``-progress`` output into percentages

This module centralizes FFmpeg-related logic so the loader, recorder and
transcoder agree on how ffmpeg is invoked.
"""

from __future__ import annotations

import json
import logging
import subprocess
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import ffmpeg

from jokereel import settings

logger = logging.getLogger(__name__)


# --------------------------- FFprobe Cache ---------------------------

def _get_ffprobe_cache_key(path: str) -> Tuple[str, float, int]:
    """
    Generate cache key for ffprobe results based on file path, mtime, and size.

    Raises:
        OSError: If file does not exist or cannot be accessed
    """
    p = Path(path)
    stat = p.stat()
    return (str(p.resolve()), stat.st_mtime, stat.st_size)


@lru_cache(maxsize=128)
def _cached_ffprobe_result(cache_key: Tuple[str, float, int], timeout: float, cmd: str) -> Dict[str, Any]:
    """Cached ffprobe execution; the key changes whenever the file does."""
    path = cache_key[0]
    logger.debug(f"🔍 FFprobe cache MISS for {Path(path).name} (mtime={cache_key[1]}, size={cache_key[2]})")
    return _run_ffprobe_uncached(path, timeout, cmd)


def clear_ffprobe_cache() -> None:
    """Clear all cached ffprobe results."""
    _cached_ffprobe_result.cache_clear()
    logger.debug("🗑️ FFprobe cache cleared")


def get_ffprobe_cache_info() -> Dict[str, int]:
    """Get cache statistics as 'hits', 'misses', 'size', and 'maxsize'."""
    info = _cached_ffprobe_result.cache_info()
    return {
        'hits': info.hits,
        'misses': info.misses,
        'size': info.currsize,
        'maxsize': info.maxsize
    }


# --------------------------- Data models ---------------------------

@dataclass
class VideoParams:
    codec: Optional[str]
    width: Optional[int]
    height: Optional[int]
    duration: Optional[float]


@dataclass
class AudioParams:
    codec: Optional[str]
    channels: Optional[int]
    sample_rate: Optional[int]
    duration: Optional[float]


# --------------------------- Probe helpers ---------------------------

def run_ffprobe(
    path: str,
    timeout: Optional[float] = None,
    use_cache: bool = True,
    cmd: Optional[str] = None,
) -> Dict[str, Any]:
    """Run ffprobe and return parsed JSON, raising on failure.

    Args:
        path: Path to media file
        timeout: Timeout in seconds (if None, use configuration value)
        use_cache: Whether to use the probe cache
        cmd: ffprobe executable (if None, use configuration value)

    Raises:
        TimeoutError: If ffprobe times out
        FileNotFoundError: If ffprobe is not found
        ffmpeg.Error: If ffprobe cannot parse the file
    """
    effective_timeout = timeout if timeout is not None else settings.get_metadata_timeout_seconds()
    effective_cmd = cmd or settings.get_ffprobe_binary()

    if not use_cache:
        return _run_ffprobe_uncached(str(path), effective_timeout, effective_cmd)

    try:
        cache_key = _get_ffprobe_cache_key(str(path))
    except OSError as e:
        logger.warning(f"Failed to stat file for cache key: {e}, falling back to uncached probe")
        return _run_ffprobe_uncached(str(path), effective_timeout, effective_cmd)

    return _cached_ffprobe_result(cache_key, effective_timeout, effective_cmd)


def _run_ffprobe_uncached(path: str, timeout: float, cmd: str = "ffprobe") -> Dict[str, Any]:
    """Run ffprobe without caching (internal helper)."""
    args = [
        cmd,
        "-v", "error",
        "-show_format",
        "-show_streams",
        "-of", "json",
        path,
    ]
    try:
        completed = subprocess.run(
            args,
            capture_output=True,
            check=True,
            timeout=timeout
        )
    except subprocess.TimeoutExpired as e:
        logger.error(f"FFprobe timeout for {path} after {timeout}s")
        raise TimeoutError(f"FFprobe timeout for {path} after {timeout}s") from e
    except subprocess.CalledProcessError as e:
        stderr = (e.stderr or b"").decode('utf-8', errors='replace')
        logger.debug(f"FFprobe failed for {path}: returncode={e.returncode}, stderr={stderr}")
        raise ffmpeg.Error(cmd, e.stdout, e.stderr) from e
    except FileNotFoundError:
        logger.error(f"FFprobe not found ({cmd}). Please install ffmpeg.")
        raise

    try:
        return json.loads(completed.stdout or b"{}")
    except json.JSONDecodeError as e:
        logger.error(f"Failed to parse FFprobe JSON output for {path}: {e}")
        raise ffmpeg.Error(cmd, completed.stdout, b"invalid ffprobe JSON") from e


def get_streams(probe: Dict[str, Any], stream_type: str) -> List[Dict[str, Any]]:
    return [s for s in probe.get("streams", []) if s.get("codec_type") == stream_type]


def _to_float(value: Any) -> Optional[float]:
    try:
        result = float(value)
    except (TypeError, ValueError):
        return None
    return result if result == result else None


def get_duration(probe: Dict[str, Any], stream: Optional[Dict[str, Any]] = None) -> Optional[float]:
    """Stream duration when present, else the container duration."""
    if stream is not None:
        duration = _to_float(stream.get("duration"))
        if duration:
            return duration
    return _to_float(probe.get("format", {}).get("duration"))


def video_params_from_probe(probe: Dict[str, Any]) -> VideoParams:
    v_streams = get_streams(probe, "video")
    if not v_streams:
        return VideoParams(None, None, None, None)
    v = v_streams[0]
    return VideoParams(
        codec=v.get("codec_name"),
        width=int(v["width"]) if v.get("width") else None,
        height=int(v["height"]) if v.get("height") else None,
        duration=get_duration(probe, v),
    )


def audio_params_from_probe(probe: Dict[str, Any]) -> AudioParams:
    a_streams = get_streams(probe, "audio")
    if not a_streams:
        return AudioParams(None, None, None, None)
    a = a_streams[0]
    sr = a.get("sample_rate")
    return AudioParams(
        codec=a.get("codec_name"),
        channels=int(a["channels"]) if a.get("channels") else None,
        sample_rate=int(sr) if sr and str(sr).isdigit() else None,
        duration=get_duration(probe, a),
    )


def describe_ffmpeg_error(error: BaseException) -> str:
    """Human-readable reason from an ffmpeg.Error (stderr tail) or any exception."""
    stderr = getattr(error, "stderr", None)
    if isinstance(stderr, bytes):
        stderr = stderr.decode("utf-8", errors="replace")
    if stderr and stderr.strip():
        return stderr.strip().splitlines()[-1]
    return str(error) or type(error).__name__


# --------------------------- Encoding profiles ---------------------------

# container -> (mime type, encoder arguments)
RECORDER_PROFILES: Dict[str, Tuple[str, Dict[str, Any]]] = {
    "webm": ("video/webm", {
        "vcodec": "libvpx-vp9",
        "acodec": "libopus",
        "deadline": "realtime",
        "cpu-used": 8,
        "row-mt": 1,
    }),
    "mp4": ("video/mp4", {
        "vcodec": "libx264",
        "acodec": "aac",
        "preset": "veryfast",
        "pix_fmt": "yuv420p",
        "movflags": "+faststart",
    }),
}


def make_recorder_encode_args(container: str, video_bitrate: str, audio_bitrate: str) -> Tuple[str, Dict[str, Any]]:
    """Return (mime type, output kwargs) for a recorder container profile.

    Raises:
        ValueError: If the container has no profile
    """
    try:
        mime_type, base_args = RECORDER_PROFILES[container]
    except KeyError:
        raise ValueError(f"Unsupported recorder container '{container}' (expected one of {sorted(RECORDER_PROFILES)})")

    args = dict(base_args)
    args["b:v"] = video_bitrate
    args["b:a"] = audio_bitrate
    return mime_type, args


# --------------------------- Progress parsing ---------------------------

def parse_progress_line(line: str, total_duration: float) -> Optional[float]:
    """Convert one ``-progress`` key=value line into a percentage.

    ffmpeg reports ``out_time_us`` and (despite the name, also in microseconds)
    ``out_time_ms``; ``progress=end`` marks completion.

    Returns:
        Percentage in [0, 100], or None if the line carries no progress
    """
    key, sep, value = line.strip().partition("=")
    if not sep:
        return None
    if key == "progress":
        return 100.0 if value == "end" else None
    if key not in ("out_time_us", "out_time_ms") or total_duration <= 0:
        return None
    try:
        micros = int(value)
    except ValueError:
        return None
    if micros < 0:
        return 0.0
    return min(100.0, (micros / 1_000_000) / total_duration * 100.0)
