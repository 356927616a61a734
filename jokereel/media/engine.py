"""
Transcoding engine acquisition.

The engine is an ffmpeg executable. Candidate sources are tried in priority
order (explicitly configured binary, ``PATH``, the binary bundled with
imageio-ffmpeg) and the first one that locates and runs wins. Whole passes
over the source list are retried with linear backoff.

EngineHandle owns the initialised engine. It initialises lazily, at most
once, and concurrent callers share the in-flight initialisation.
"""

import asyncio
import logging
import shutil
import subprocess
from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Optional, Sequence, TypeVar

import imageio_ffmpeg

from jokereel import settings
from jokereel.media.exceptions import EngineUnavailableError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class TranscodingEngine:
    executable: str
    source: str
    version: str = ""


@dataclass(frozen=True)
class EngineSource:
    """A tagged candidate location for the ffmpeg executable"""
    name: str
    locate: Callable[[], Optional[str]] = field(compare=False)


@dataclass(frozen=True)
class SourceAttempt:
    """Uniform outcome of trying one source"""
    source: EngineSource
    engine: Optional[TranscodingEngine] = None
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.engine is not None


class AllSourcesFailedError(RuntimeError):
    """No source produced a working engine during one pass"""

    def __init__(self, attempts: Sequence[SourceAttempt]):
        self.attempts = list(attempts)
        details = "; ".join(f"{a.source.name}: {a.error}" for a in self.attempts) or "no sources configured"
        super().__init__(f"Failed to load ffmpeg from all sources ({details})")


# --------------------------- Sources ---------------------------

def _locate_imageio() -> Optional[str]:
    try:
        return imageio_ffmpeg.get_ffmpeg_exe()
    except RuntimeError as e:
        logger.debug(f"imageio-ffmpeg has no bundled binary: {e}")
        return None


def configured_source(binary: Optional[str]) -> EngineSource:
    return EngineSource("configured", lambda: shutil.which(binary) if binary else None)


def path_source(name: str = "ffmpeg") -> EngineSource:
    return EngineSource("path", lambda: shutil.which(name))


def imageio_source() -> EngineSource:
    return EngineSource("imageio", _locate_imageio)


def build_engine_sources(names: Optional[Sequence[str]] = None, configured_binary: Optional[str] = None) -> List[EngineSource]:
    """Build the ordered source list from configuration names."""
    if names is None:
        names = settings.get_engine_source_names()
    if configured_binary is None:
        configured_binary = settings.get_transcode_config().get('engine_binary') or None

    factories = {
        "configured": lambda: configured_source(configured_binary),
        "path": path_source,
        "imageio": imageio_source,
    }
    sources = []
    for name in names:
        if name not in factories:
            logger.warning(f"Unknown engine source '{name}' ignored")
            continue
        sources.append(factories[name]())
    return sources


def verify_executable(executable: str, timeout: float = 15.0) -> str:
    """
    Run ``<executable> -version`` and return its first output line.

    Raises:
        OSError: If the executable cannot be started
        RuntimeError: If it exits non-zero or times out
    """
    try:
        completed = subprocess.run(
            [executable, "-hide_banner", "-version"],
            capture_output=True,
            timeout=timeout,
        )
    except subprocess.TimeoutExpired as e:
        raise RuntimeError(f"{executable} -version timed out after {timeout}s") from e
    if completed.returncode != 0:
        raise RuntimeError(f"{executable} -version exited with code {completed.returncode}")
    output = completed.stdout.decode("utf-8", errors="replace").strip()
    return output.splitlines()[0] if output else ""


def try_source(source: EngineSource, verify: Callable[[str], str] = verify_executable) -> SourceAttempt:
    try:
        executable = source.locate()
        if not executable:
            raise FileNotFoundError(f"no ffmpeg executable found via {source.name}")
        version = verify(executable)
    except (OSError, RuntimeError) as e:
        return SourceAttempt(source=source, error=e)
    return SourceAttempt(source=source, engine=TranscodingEngine(executable, source.name, version))


def load_first_available(
    sources: Sequence[EngineSource],
    verify: Callable[[str], str] = verify_executable,
) -> TranscodingEngine:
    """
    Try each source in order and return the first working engine.

    Raises:
        AllSourcesFailedError: Carrying every attempt's outcome
    """
    attempts = []
    for source in sources:
        logger.debug(f"Trying engine source: {source.name}")
        attempt = try_source(source, verify)
        if attempt.ok:
            logger.info(f"✅ Transcoding engine loaded from {source.name}: {attempt.engine.executable}")
            return attempt.engine
        logger.warning(f"Engine source {source.name} failed: {attempt.error}")
        attempts.append(attempt)
    raise AllSourcesFailedError(attempts)


# --------------------------- Retry policy ---------------------------

@dataclass(frozen=True)
class RetryPolicy:
    """Bounded retries with linear backoff: attempt * base_delay between attempts"""
    max_attempts: int = 3
    base_delay: float = 1.0

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1 (got {self.max_attempts})")

    @classmethod
    def from_config(cls) -> "RetryPolicy":
        cfg = settings.get_transcode_config()
        return cls(
            max_attempts=int(cfg.get('max_attempts', 3)),
            base_delay=float(cfg.get('retry_base_delay', 1.0)),
        )

    def delay_for(self, attempt: int) -> float:
        return attempt * self.base_delay

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        label: str = "operation",
    ) -> T:
        """
        Await ``operation`` until it succeeds or attempts run out.

        Raises:
            EngineUnavailableError: After the last failed attempt, carrying its error
        """
        last_error: Optional[BaseException] = None
        for attempt in range(1, self.max_attempts + 1):
            logger.info(f"Loading {label} (attempt {attempt}/{self.max_attempts})...")
            try:
                return await operation()
            except Exception as e:
                last_error = e
                logger.error(f"{label} attempt {attempt} failed: {e}")
                if attempt < self.max_attempts:
                    await sleep(self.delay_for(attempt))
        raise EngineUnavailableError(self.max_attempts, last_error)


# --------------------------- Handle ---------------------------

class EngineHandle:
    """
    Lazily initialised, single-flight owner of the transcoding engine.

    Example:
        >>> handle = EngineHandle()
        >>> engine = await handle.get()
    """

    def __init__(
        self,
        sources: Optional[Sequence[EngineSource]] = None,
        retry_policy: Optional[RetryPolicy] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        verify: Callable[[str], str] = verify_executable,
    ):
        self.sources = list(sources) if sources is not None else build_engine_sources()
        self.retry_policy = retry_policy or RetryPolicy.from_config()
        self._sleep = sleep
        self._verify = verify
        self._engine: Optional[TranscodingEngine] = None
        self._pending: Optional[asyncio.Task] = None
        self.initialization_count = 0

    @property
    def engine(self) -> Optional[TranscodingEngine]:
        return self._engine

    @property
    def is_initialized(self) -> bool:
        return self._engine is not None

    def can_locate(self) -> bool:
        """Whether any source resolves an executable, without running it."""
        for source in self.sources:
            try:
                if source.locate():
                    return True
            except (OSError, RuntimeError) as e:
                logger.debug(f"Engine source {source.name} cannot be located: {e}")
        return False

    async def get(self) -> TranscodingEngine:
        """
        Return the engine, initialising it on first use.

        Raises:
            EngineUnavailableError: If every attempt failed; the handle stays
                uninitialised so a later call starts over
        """
        if self._engine is not None:
            return self._engine

        if self._pending is None:
            logger.debug("Starting transcoding engine initialisation")
            self._pending = asyncio.ensure_future(self._initialize())
        else:
            logger.info("Engine initialisation already in progress, waiting...")

        pending = self._pending
        try:
            engine = await asyncio.shield(pending)
        finally:
            if self._pending is pending and pending.done():
                self._pending = None

        self._engine = engine
        return engine

    async def _initialize(self) -> TranscodingEngine:
        self.initialization_count += 1

        async def load_once() -> TranscodingEngine:
            return await asyncio.to_thread(load_first_available, self.sources, self._verify)

        return await self.retry_policy.run(load_once, sleep=self._sleep, label="transcoding engine")
