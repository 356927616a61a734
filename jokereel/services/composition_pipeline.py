"""
Composition Pipeline
Runs one job through tts -> captions -> composition -> transcode -> render
and publishes every stage change to subscribers.
"""
import asyncio
import logging
from pathlib import Path
from typing import Callable, List, Optional, Tuple

from jokereel import settings
from jokereel.core.caption_timeline import CaptionTimeline
from jokereel.core.exceptions import (
    InvalidInputError,
    JobCancelledError,
    PipelineBusyError,
    StageOrderViolation,
)
from jokereel.core.models import (
    CaptionCue,
    CompositionJob,
    CompositionResult,
    CompositionRequest,
    JobState,
    ProcessingStage,
    StageError,
    StageId,
    StageStatus,
)
from jokereel.core.video.frame_compositor import FrameCompositor
from jokereel.core.video.stream_recorder import StreamRecorder
from jokereel.media.asset_loader import AssetLoader
from jokereel.media.exceptions import TranscodeError
from jokereel.media.transcoder import Transcoder
from jokereel.tts.base import ScriptRewriter, SpeechSynthesizer
from jokereel.tts.voices import default_voice_id
from jokereel.utils.temp_file_manager import WorkspaceManager

logger = logging.getLogger(__name__)

StageCallback = Callable[[List[ProcessingStage]], None]
LoaderFactory = Callable[[Path], AssetLoader]
RecorderFactory = Callable[[Path], StreamRecorder]

STAGE_DEFINITIONS: Tuple[Tuple[StageId, str, str], ...] = (
    (StageId.TTS, "Generate Voice-Over", "Converting your joke to speech"),
    (StageId.CAPTIONS, "Create Captions", "Generating synchronized captions"),
    (StageId.COMPOSITION, "Compose Video", "Combining thumbnail, video, audio, and captions"),
    (StageId.TRANSCODE, "Convert to MP4", "Re-encoding for broad playback compatibility"),
    (StageId.RENDER, "Final Render", "Exporting your finished video"),
)


def create_stages() -> List[ProcessingStage]:
    return [ProcessingStage(id=sid, title=title, description=desc) for sid, title, desc in STAGE_DEFINITIONS]


class CompositionPipeline:
    """
    Orchestrates a composition job stage by stage.

    Stages run strictly in order. A stage may only start once the previous
    one completed, except that a failed transcode still lets the job finish
    with the recorder's container. One job runs per instance at a time.

    Example:
        >>> pipeline = CompositionPipeline()
        >>> pipeline.subscribe(lambda stages: print([s.status for s in stages]))
        >>> result = await pipeline.run(job)
    """

    def __init__(
        self,
        loader_factory: Optional[LoaderFactory] = None,
        compositor: Optional[FrameCompositor] = None,
        recorder_factory: Optional[RecorderFactory] = None,
        transcoder: Optional[Transcoder] = None,
        timeline: Optional[CaptionTimeline] = None,
        synthesizer: Optional[SpeechSynthesizer] = None,
        rewriter: Optional[ScriptRewriter] = None,
        workspace_manager: Optional[WorkspaceManager] = None,
        transcode_enabled: Optional[bool] = None,
    ):
        self.loader_factory = loader_factory or AssetLoader
        self.compositor = compositor or FrameCompositor()
        self.recorder_factory = recorder_factory or StreamRecorder
        self.workspace_manager = workspace_manager or WorkspaceManager(base_dir=settings.get_workspace_root())
        self.transcoder = transcoder or Transcoder(workspace_manager=self.workspace_manager)
        self.timeline = timeline or CaptionTimeline()
        self.synthesizer = synthesizer
        self.rewriter = rewriter
        self.transcode_enabled = settings.is_transcode_enabled() if transcode_enabled is None else transcode_enabled

        self._stages = create_stages()
        self._subscribers: List[StageCallback] = []
        self._state = JobState.IDLE
        self._cancel_requested = False
        self.errors: List[StageError] = []

    # ------------------------------------------------------------------
    # Observation and control
    # ------------------------------------------------------------------

    @property
    def stages(self) -> List[ProcessingStage]:
        return [stage.snapshot() for stage in self._stages]

    @property
    def state(self) -> JobState:
        return self._state

    def subscribe(self, callback: StageCallback) -> Callable[[], None]:
        """Register a stage listener; returns a function that unregisters it."""
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def cancel(self) -> None:
        """Request cancellation; honoured between stages and between frames."""
        if self._state == JobState.RUNNING:
            logger.info("⏹️ Cancellation requested")
            self._cancel_requested = True

    def _publish(self) -> None:
        snapshot = self.stages
        for callback in list(self._subscribers):
            try:
                callback(snapshot)
            except Exception as e:
                logger.warning(f"Stage subscriber raised an error (ignored): {e}")

    def _stage(self, stage_id: StageId) -> ProcessingStage:
        return next(stage for stage in self._stages if stage.id == stage_id)

    def _update(self, stage_id: StageId, status: Optional[StageStatus] = None,
                progress: Optional[float] = None, error: Optional[str] = None) -> None:
        stage = self._stage(stage_id)
        if status is not None:
            stage.status = status
        if progress is not None:
            stage.progress = progress
        if error is not None:
            stage.error = error
        self._publish()

    # ------------------------------------------------------------------
    # Stage transitions
    # ------------------------------------------------------------------

    def _check_cancelled(self, stage_id: StageId) -> None:
        if self._cancel_requested:
            raise JobCancelledError(stage_id.value)

    def _enter_stage(self, stage_id: StageId) -> None:
        """
        Mark ``stage_id`` as processing.

        Raises:
            StageOrderViolation: If the previous stage did not complete (a
                transcode stage in error still counts as finished)
        """
        index = [stage.id for stage in self._stages].index(stage_id)
        if index > 0:
            previous = self._stages[index - 1]
            finished = previous.status == StageStatus.COMPLETED or (
                previous.id == StageId.TRANSCODE and previous.status == StageStatus.ERROR
            )
            if not finished:
                raise StageOrderViolation(stage_id.value, previous.id.value, previous.status.value)

        logger.info(f"▶️ Stage {stage_id.value} started")
        self._update(stage_id, StageStatus.PROCESSING, progress=0.0)

    def _complete_stage(self, stage_id: StageId) -> None:
        logger.info(f"✅ Stage {stage_id.value} completed")
        self._update(stage_id, StageStatus.COMPLETED, progress=100.0)

    def _fail_stage(self, stage_id: StageId, error: BaseException) -> None:
        message = str(error) or type(error).__name__
        self.errors.append(StageError(stage=stage_id, error_type=type(error).__name__, message=message))
        logger.error(f"❌ Stage {stage_id.value} failed: {message}")
        self._update(stage_id, StageStatus.ERROR, error=message)

    def _progress_reporter(self, stage_id: StageId) -> Callable[[float], None]:
        def report(percent: float) -> None:
            self._update(stage_id, progress=max(0.0, min(100.0, float(percent))))
        return report

    # ------------------------------------------------------------------
    # Job execution
    # ------------------------------------------------------------------

    async def run(self, job: CompositionJob) -> CompositionResult:
        """
        Execute ``job`` end to end.

        Returns:
            The final container; MP4 unless transcoding was skipped or failed

        Raises:
            PipelineBusyError: If a job is already running on this pipeline
            JobCancelledError: If cancel() was called before completion
            JokeReelError: The first non-transcode stage failure
        """
        if self._state == JobState.RUNNING:
            raise PipelineBusyError()

        self._stages = create_stages()
        self.errors = []
        self._cancel_requested = False
        self._state = JobState.RUNNING
        self._publish()

        workspace = self.workspace_manager.make_workspace()
        logger.info(f"🚀 Starting composition job in {workspace}")
        try:
            audio, duration, script = await self._run_stage(StageId.TTS, self._generate_voice_over(job, workspace))
            cues = await self._run_stage(StageId.CAPTIONS, self._create_captions(script, duration))
            composed = await self._run_stage(StageId.COMPOSITION, self._compose(job, audio, cues, workspace))
            final = await self._run_transcode_stage(composed)
            result = await self._run_stage(StageId.RENDER, self._finalize(final))
        except BaseException:
            self._state = JobState.FAILED
            raise
        finally:
            self.workspace_manager.release(workspace)

        self._state = JobState.SUCCEEDED
        logger.info(f"🎉 Job finished: {result.size / 1024 / 1024:.2f} MB {result.mime_type}")
        return result

    async def _run_stage(self, stage_id: StageId, work):
        try:
            self._check_cancelled(stage_id)
            self._enter_stage(stage_id)
            result = await work
        except Exception as e:
            work.close()
            self._fail_stage(stage_id, e)
            raise
        self._complete_stage(stage_id)
        return result

    async def _generate_voice_over(self, job: CompositionJob, workspace: Path) -> Tuple[bytes, float, str]:
        """
        Returns:
            (audio, duration, script) where script is the text actually spoken
        """
        audio = job.narration_audio
        script = job.narration_text
        if audio is None:
            if self.synthesizer is None:
                raise InvalidInputError("narration_audio", "no audio supplied and no speech synthesizer configured")
            script = await self._rewrite_script(script)
            voice_id = job.voice_id or default_voice_id()
            logger.info(f"🎙️ Synthesizing narration with voice {voice_id}")
            audio = await asyncio.to_thread(self.synthesizer.synthesize, script, voice_id)
        if not audio:
            raise InvalidInputError("narration_audio", "audio is empty")

        loader = self.loader_factory(workspace)
        duration = await loader.measure_audio_duration(audio)
        return audio, duration, script

    async def _rewrite_script(self, text: str) -> str:
        # Supplied audio is never rewritten; captions must match what was recorded
        if self.rewriter is None:
            return text
        script = await asyncio.to_thread(self.rewriter.rewrite, text)
        if not script or not script.strip():
            raise InvalidInputError("narration_text", "script rewriter returned an empty script")
        logger.info(f"✍️ Narration rewritten ({len(text.split())} -> {len(script.split())} words)")
        return script

    async def _create_captions(self, text: str, duration: float) -> List[CaptionCue]:
        cues = self.timeline.generate(text, duration)
        logger.info(f"📝 Generated {len(cues)} caption cues over {duration:.2f}s")
        return cues

    async def _compose(self, job: CompositionJob, audio: bytes, cues: List[CaptionCue],
                       workspace: Path) -> CompositionResult:
        loader = self.loader_factory(workspace)
        assets = await loader.load_all(job.background, job.thumbnail, job.avatar, audio)
        try:
            self._check_cancelled(StageId.COMPOSITION)
            request = CompositionRequest.from_assets(assets, cues)
            self.compositor.reset()
            recorder = self.recorder_factory(workspace)
            return await recorder.record(
                self.compositor.bind(request, request.captions),
                request.narration_audio.duration,
                request.narration_audio,
                on_progress=self._progress_reporter(StageId.COMPOSITION),
                should_stop=lambda: self._cancel_requested,
            )
        finally:
            self.compositor.reset()
            assets.release()

    async def _run_transcode_stage(self, composed: CompositionResult) -> CompositionResult:
        """Transcode failures degrade to the recorder's container instead of failing the job."""
        stage_id = StageId.TRANSCODE
        try:
            self._check_cancelled(stage_id)
            self._enter_stage(stage_id)
        except Exception as e:
            self._fail_stage(stage_id, e)
            raise

        if not self.transcode_enabled:
            logger.info("Transcoding disabled, keeping recorder output")
            self._complete_stage(stage_id)
            return composed
        if not self.transcoder.needs_transcode(composed):
            self._complete_stage(stage_id)
            return composed
        if not self.transcoder.can_transcode():
            logger.warning(f"Transcoding unsupported in this environment, keeping {composed.codec_family}")
            self._complete_stage(stage_id)
            return composed

        try:
            transcoded = await self.transcoder.transcode(composed, on_progress=self._progress_reporter(stage_id))
        except TranscodeError as e:
            self._fail_stage(stage_id, e)
            logger.warning(f"⚠️ Continuing with original {composed.codec_family} output ({composed.mime_type})")
            return composed
        except Exception as e:
            self._fail_stage(stage_id, e)
            raise

        self._complete_stage(stage_id)
        return transcoded

    async def _finalize(self, result: CompositionResult) -> CompositionResult:
        if not result.data:
            raise InvalidInputError("result", "composition produced an empty container")
        logger.info(f"🎬 Final video ready: {result.codec_family} ({result.duration_seconds:.2f}s)")
        return result
