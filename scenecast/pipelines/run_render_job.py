"""Render a single job from the command line.

Usage:
    scenecast-render --job-id abc123 --scenes-file scenes.json
    VIDEO_ID=abc123 SCENES='[...]' python -m scenecast.pipelines.run_render_job
"""

import argparse
import json
import os
import signal
import sys
from pathlib import Path
from typing import Any, Optional

from scenecast.core.config import settings
from scenecast.core.errors import RenderPipelineError
from scenecast.core.logging_config import get_logger, setup_logging
from scenecast.models.schemas import JobStatus, StatusUpdate
from scenecast.pipelines.render_pipeline import build_orchestrator, normalize_scenes
from scenecast.storage.repository import JOB_ID_PATTERN
from scenecast.utils.cancellation import CancellationToken


def load_scene_payload(scenes_file: Optional[str], scenes_env: Optional[str]) -> Any:
    """
    Read the raw scene payload from a file or an inline JSON string.

    Raises:
        ValueError: If neither source is given or the JSON is invalid
    """
    if scenes_file:
        text = Path(scenes_file).read_text(encoding="utf-8")
    elif scenes_env:
        text = scenes_env
    else:
        raise ValueError("No scenes given: pass --scenes-file or set SCENES")
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        raise ValueError(f"Scenes are not valid JSON: {e}") from e


def install_signal_handlers(token: CancellationToken, logger: Any) -> None:
    """Cancel the running job on SIGINT/SIGTERM."""

    def handle(signum, _frame):
        name = signal.Signals(signum).name
        logger.warning(f"Received {name}, cancelling job")
        token.cancel(f"received {name}")

    signal.signal(signal.SIGINT, handle)
    signal.signal(signal.SIGTERM, handle)


def main(argv: Optional[list[str]] = None) -> int:
    """Main entrypoint for rendering one job."""
    parser = argparse.ArgumentParser(description="SceneCast - render one video job")
    parser.add_argument(
        "--job-id",
        type=str,
        default=os.environ.get("VIDEO_ID"),
        help="Job identifier (default: $VIDEO_ID)",
    )
    parser.add_argument(
        "--scenes-file",
        type=str,
        default=None,
        help="Path to a JSON file with the scene list (default: inline JSON in $SCENES)",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default=settings.log_level,
        help=f"Logging level (default: {settings.log_level})",
    )
    args = parser.parse_args(argv)

    setup_logging(log_level=args.log_level.upper(), log_file=settings.log_file, serialize=settings.log_json)
    logger = get_logger(__name__)

    if not args.job_id:
        parser.error("--job-id is required (or set VIDEO_ID)")
    if not JOB_ID_PATTERN.match(args.job_id):
        parser.error(f"Invalid job id: {args.job_id!r}")

    orchestrator = build_orchestrator(settings, logger)
    repository = orchestrator.status_sink

    try:
        scenes = normalize_scenes(load_scene_payload(args.scenes_file, os.environ.get("SCENES")), settings)
    except (ValueError, OSError, RenderPipelineError) as e:
        logger.error(f"❌ Could not load scenes: {e}")
        job = repository.load_job(args.job_id)
        if job is not None and not job.is_terminal:
            repository.update_status(
                args.job_id,
                StatusUpdate(
                    status=JobStatus.FAILED,
                    progress_percent=0,
                    current_step_label="Failed",
                    error_message=f"Invalid scenes: {e}",
                ),
            )
        return 1

    if repository.load_job(args.job_id) is None:
        repository.create_job(args.job_id, scenes)

    token = CancellationToken()
    install_signal_handlers(token, logger)

    try:
        job = orchestrator.run(args.job_id, scenes, cancel_token=token)
    except RenderPipelineError as e:
        retry_hint = "retryable" if e.retryable else "not retryable"
        logger.error(f"❌ Job {args.job_id} failed ({retry_hint}): {e.message}")
        return 1
    except Exception as e:
        logger.exception(f"❌ Job {args.job_id} failed unexpectedly: {e}")
        return 1

    logger.info(f"Video URL: {job.video_url}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
