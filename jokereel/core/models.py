"""
Data models shared across the composition pipeline
"""
import math
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional, Tuple

from PIL import Image

from jokereel.core.exceptions import InvalidInputError


class MediaKind(str, Enum):
    """The four inputs of a composition job"""
    BACKGROUND = "background"
    THUMBNAIL = "thumbnail"
    AVATAR = "avatar"
    NARRATION = "narration"


@dataclass(frozen=True)
class CaptionCue:
    """A caption's text plus its active time window (seconds)"""
    text: str
    start: float
    end: float

    def __post_init__(self):
        if not self.text or not self.text.strip():
            raise InvalidInputError("caption text", "must contain at least one word")
        if not math.isfinite(self.start) or self.start < 0:
            raise InvalidInputError("caption start", f"must be >= 0 (got {self.start})")
        if not math.isfinite(self.end) or self.end <= self.start:
            raise InvalidInputError("caption end", f"must be after start {self.start} (got {self.end})")

    def is_active(self, t: float) -> bool:
        """Inclusive on both ends, so a boundary instant may match two cues"""
        return self.start <= t <= self.end


@dataclass
class CaptionTimelineConfig:
    chunk_size: int = 4

    def __post_init__(self):
        if not isinstance(self.chunk_size, int) or self.chunk_size < 1:
            raise InvalidInputError("chunk_size", f"must be a positive integer (got {self.chunk_size!r})")


@dataclass(frozen=True)
class AudioTrack:
    """Opaque narration bytes plus the duration read from container metadata"""
    data: bytes = field(repr=False)
    duration: float
    mime_type: str = "audio/mpeg"
    path: Optional[Path] = None


@dataclass(frozen=True)
class BackgroundVideo:
    data: bytes = field(repr=False)
    path: Path
    width: int
    height: int
    duration: float
    codec: Optional[str] = None


@dataclass(frozen=True)
class ImageAsset:
    kind: MediaKind
    data: bytes = field(repr=False)
    image: Image.Image = field(repr=False)

    @property
    def width(self) -> int:
        return self.image.width

    @property
    def height(self) -> int:
        return self.image.height


@dataclass
class LoadedAssets:
    """Decoded handles for one job; released when the job ends or fails"""
    background: BackgroundVideo
    thumbnail: ImageAsset
    avatar: ImageAsset
    narration: AudioTrack

    def release(self) -> None:
        for asset in (self.thumbnail, self.avatar):
            asset.image.close()


@dataclass(frozen=True)
class CompositionRequest:
    background: BackgroundVideo
    thumbnail: ImageAsset
    avatar: ImageAsset
    narration_audio: AudioTrack
    captions: Tuple[CaptionCue, ...]

    @classmethod
    def from_assets(cls, assets: LoadedAssets, captions) -> "CompositionRequest":
        return cls(
            background=assets.background,
            thumbnail=assets.thumbnail,
            avatar=assets.avatar,
            narration_audio=assets.narration,
            captions=tuple(captions),
        )


@dataclass(frozen=True)
class CompositionResult:
    """Encoded container bytes plus the declared MIME type and codec family"""
    data: bytes = field(repr=False)
    mime_type: str
    codec_family: str
    duration_seconds: float = 0.0

    @property
    def size(self) -> int:
        return len(self.data)

    @property
    def extension(self) -> str:
        return self.codec_family


class StageId(str, Enum):
    TTS = "tts"
    CAPTIONS = "captions"
    COMPOSITION = "composition"
    TRANSCODE = "transcode"
    RENDER = "render"


class StageStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    ERROR = "error"


class JobState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass
class ProcessingStage:
    id: StageId
    title: str
    description: str
    status: StageStatus = StageStatus.PENDING
    progress: Optional[float] = None
    error: Optional[str] = None

    def snapshot(self) -> "ProcessingStage":
        return ProcessingStage(
            id=self.id,
            title=self.title,
            description=self.description,
            status=self.status,
            progress=self.progress,
            error=self.error,
        )


@dataclass(frozen=True)
class StageError:
    """A caught error reported with its originating stage"""
    stage: StageId
    error_type: str
    message: str


@dataclass(frozen=True)
class CompositionJob:
    """Inputs handed over by the upload/editing layer"""
    narration_text: str
    background: bytes = field(repr=False)
    thumbnail: bytes = field(repr=False)
    avatar: bytes = field(repr=False)
    narration_audio: Optional[bytes] = field(default=None, repr=False)
    voice_id: Optional[str] = None
