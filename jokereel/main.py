"""
JokeReel - Main execution script
Composes a captioned vertical short from a narration script, its audio, a
background clip, a thumbnail and an avatar.
"""
import argparse
import asyncio
import functools
import logging
import sys
from pathlib import Path
from typing import Dict, List, Optional

from dotenv import load_dotenv

from jokereel import settings
from jokereel.core.caption_timeline import CaptionTimeline
from jokereel.core.exceptions import JokeReelError
from jokereel.core.models import CompositionJob, ProcessingStage, StageStatus
from jokereel.core.video.stream_recorder import StreamRecorder
from jokereel.services.composition_pipeline import CompositionPipeline

logger = logging.getLogger(__name__)

_STATUS_ICONS = {
    StageStatus.PENDING: "⏳",
    StageStatus.PROCESSING: "🔄",
    StageStatus.COMPLETED: "✅",
    StageStatus.ERROR: "❌",
}


def setup_logging(verbose: bool = False, log_file: Optional[str] = None):
    """Setup structured logging configuration"""
    log_level = logging.DEBUG if verbose else logging.INFO

    detailed_formatter = logging.Formatter(
        '%(asctime)s | %(levelname)-8s | %(name)-20s | %(funcName)-15s:%(lineno)-4d | %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    simple_formatter = logging.Formatter(
        '%(asctime)s | %(levelname)-8s | %(message)s',
        datefmt='%H:%M:%S'
    )

    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_level)
    console_handler.setFormatter(simple_formatter)

    file_handler = logging.FileHandler(log_file or settings.get_log_file(), encoding='utf-8')
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(detailed_formatter)

    logging.basicConfig(
        level=log_level,
        handlers=[console_handler, file_handler],
        force=True
    )
    logging.getLogger('ffmpeg').setLevel(logging.WARNING)


def read_input_file(path_str: str, label: str) -> bytes:
    """Validate a user-provided input path and return its bytes."""
    if not path_str or not path_str.strip():
        raise ValueError(f"{label} path cannot be empty")
    path = Path(path_str.strip()).resolve()
    if not path.exists():
        raise FileNotFoundError(f"{label} file not found: {path}")
    if not path.is_file():
        raise ValueError(f"{label} path is not a file: {path}")
    return path.read_bytes()


class StageReporter:
    """Logs each stage whenever its status changes"""

    def __init__(self):
        self._last: Dict[str, StageStatus] = {}

    def __call__(self, stages: List[ProcessingStage]) -> None:
        for stage in stages:
            if self._last.get(stage.id.value) == stage.status:
                continue
            self._last[stage.id.value] = stage.status
            if stage.status == StageStatus.PENDING:
                continue
            message = f"{_STATUS_ICONS[stage.status]} {stage.title}: {stage.status.value}"
            if stage.error:
                message += f" ({stage.error})"
            logger.info(message)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="JokeReel - compose a captioned vertical short")
    parser.add_argument("--script", required=True, help="Path to the narration script (plain text)")
    parser.add_argument("--audio", required=True, help="Path to the narration audio (e.g. MP3)")
    parser.add_argument("--video", required=True, help="Path to the background video clip")
    parser.add_argument("--thumbnail", required=True, help="Path to the thumbnail image")
    parser.add_argument("--avatar", required=True, help="Path to the avatar image")
    parser.add_argument("--output", default="output/short.mp4", help="Output path (default: output/short.mp4)")
    parser.add_argument("--chunk-size", type=int, default=None, help="Words per caption (default: from config)")
    parser.add_argument("--container", choices=["webm", "mp4"], default=None,
                        help="Recorder container (default: from config)")
    parser.add_argument("--no-transcode", action="store_true", help="Keep the recorder's container as is")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    return parser


async def run_job(args: argparse.Namespace) -> Path:
    job = CompositionJob(
        narration_text=read_input_file(args.script, "Script").decode("utf-8"),
        background=read_input_file(args.video, "Video"),
        thumbnail=read_input_file(args.thumbnail, "Thumbnail"),
        avatar=read_input_file(args.avatar, "Avatar"),
        narration_audio=read_input_file(args.audio, "Audio"),
    )

    pipeline = CompositionPipeline(
        recorder_factory=functools.partial(StreamRecorder, container=args.container),
        timeline=CaptionTimeline(chunk_size=args.chunk_size),
        transcode_enabled=False if args.no_transcode else None,
    )
    pipeline.subscribe(StageReporter())

    result = await pipeline.run(job)

    output_path = Path(args.output)
    if output_path.suffix.lstrip('.').lower() != result.extension:
        output_path = output_path.with_suffix(f".{result.extension}")
        logger.warning(f"Output is {result.mime_type}, writing to {output_path}")
    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_bytes(result.data)
    logger.info(f"💾 Saved {result.size / 1024 / 1024:.2f} MB to {output_path}")
    return output_path


def cli(argv: Optional[List[str]] = None) -> int:
    load_dotenv()
    args = build_parser().parse_args(argv)
    setup_logging(args.verbose)

    try:
        asyncio.run(run_job(args))
    except (JokeReelError, ValueError, OSError) as e:
        logger.error(f"Execution failed: {e}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(cli())
