"""
Media processing package for JokeReel.

Asset decoding, ffmpeg/ffprobe helpers and MP4 transcoding.
"""

from .exceptions import (
    AssetTimeoutError,
    ConversionError,
    DecodeError,
    EngineUnavailableError,
    PartialLoadFailure,
)

__all__ = [
    'AssetTimeoutError',
    'ConversionError',
    'DecodeError',
    'EngineUnavailableError',
    'PartialLoadFailure',
]
