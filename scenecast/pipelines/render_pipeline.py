"""Render pipeline orchestrator - scenes -> frames -> narration -> encode -> upload."""

from functools import partial
from pathlib import Path
from typing import Any, Optional

import requests
from pydantic import ValidationError

from scenecast.core.config import Settings
from scenecast.core.errors import (
    AssetGenerationError,
    InputValidationError,
    JobCancelledError,
    RenderPipelineError,
    UploadError,
)
from scenecast.models.schemas import (
    FrameAsset,
    JobStatus,
    PipelineStage,
    RenderJob,
    Scene,
    SceneIntake,
    StatusUpdate,
)
from scenecast.services.caption_builder import CaptionTrackBuilder
from scenecast.services.ffmpeg_runner import FFmpegRunner
from scenecast.services.frame_generator import FrameAssetGenerator
from scenecast.services.render_assembler import RenderGraphAssembler
from scenecast.services.storage_uploader import StorageProvider, get_storage_provider
from scenecast.services.tts_client import TTSClient
from scenecast.storage.repository import JobRepository
from scenecast.utils.cancellation import CancellationToken
from scenecast.utils.error_handler import describe_failure, format_error_message, get_fallback_suggestion
from scenecast.utils.io_utils import create_job_workspace, remove_workspace
from scenecast.utils.parallel_executor import ParallelExecutor
from scenecast.utils.rate_limiter import RateLimiter

VIDEO_FOLDER = "videos"
OUTPUT_FILE_NAME = "output.mp4"
CAPTIONS_FILE_NAME = "captions.ass"
COMPLETE_LABEL = "Complete!"
FAILED_LABEL = "Failed"


def normalize_scenes(payload: Any, settings: Settings) -> list[Scene]:
    """
    Turn a raw scene intake payload into validated scenes.

    Accepts a list of scene descriptors or an object with a "scenes" list.
    Scenes keep their array order; missing durations get the default and
    every duration is clamped into the configured safe range.

    Raises:
        InputValidationError: If the list is empty, a scene is unusable or no
            scene has narration text
    """
    if isinstance(payload, dict) and "scenes" in payload:
        payload = payload["scenes"]
    if not isinstance(payload, list) or not payload:
        raise InputValidationError("Scene list is empty or not a list")

    scenes = []
    for position, raw in enumerate(payload):
        if not isinstance(raw, dict):
            raise InputValidationError(f"Scene {position + 1} is not an object")
        try:
            intake = SceneIntake.model_validate(raw)
            scenes.append(
                intake.to_scene(
                    position,
                    settings.default_scene_duration,
                    settings.min_scene_duration,
                    settings.max_scene_duration,
                )
            )
        except ValidationError as e:
            raise InputValidationError(f"Scene {position + 1} is invalid: {e.errors()[0]['msg']}") from e
    if not any(scene.narration_text for scene in scenes):
        raise InputValidationError("No scene has narration text")
    return scenes


class RenderOrchestrator:
    """Drives one render job from queued to a single terminal state.

    All collaborators are constructed once per process and injected. Only
    the thread calling ``run`` writes the job's status.
    """

    def __init__(
        self,
        settings: Settings,
        logger: Any,
        status_sink: JobRepository,
        frame_generator: FrameAssetGenerator,
        synthesizer: TTSClient,
        caption_builder: CaptionTrackBuilder,
        assembler: RenderGraphAssembler,
        storage: StorageProvider,
        parallel_executor: Optional[ParallelExecutor] = None,
    ):
        """
        Initialize the orchestrator.

        Args:
            settings: Application settings
            logger: Logger instance
            status_sink: Receives status updates keyed by job id
            frame_generator: Renders one still per scene
            synthesizer: Speech synthesizer adapter
            caption_builder: Builds the caption track
            assembler: Render graph assembler
            storage: Storage provider for the finished video
            parallel_executor: Runs frame rendering (sequential when omitted)
        """
        self.settings = settings
        self.logger = logger
        self.status_sink = status_sink
        self.frame_generator = frame_generator
        self.synthesizer = synthesizer
        self.caption_builder = caption_builder
        self.assembler = assembler
        self.storage = storage
        self.parallel_executor = parallel_executor

    def run(
        self,
        job_id: str,
        scenes: list[Scene],
        cancel_token: Optional[CancellationToken] = None,
    ) -> RenderJob:
        """
        Render, upload and complete one job.

        On any failure the job is recorded as failed with a non-empty message,
        intermediate files are removed and the original error is re-raised
        for the caller's retry policy.

        Args:
            job_id: Job identifier (the record must exist in the status sink)
            scenes: Ordered scenes
            cancel_token: Token checked between stages and during encoding

        Returns:
            The completed job record

        Raises:
            RenderPipelineError: Any stage failure (see scenecast.core.errors)
        """
        token = cancel_token or CancellationToken()
        job_logger = self.logger.bind(job_id=job_id)
        job_logger.info(f"🎬 Starting render job {job_id}")
        workspace: Optional[Path] = None

        try:
            ordered = self._validate_scenes(scenes)

            self._enter_stage(job_id, PipelineStage.GENERATING_FRAMES, token)
            workspace = create_job_workspace(self.settings.work_dir, job_id)
            frames = self._generate_frames(ordered, workspace)
            job_logger.info(f"Generated {len(frames)} frames")

            self._enter_stage(job_id, PipelineStage.SYNTHESIZING_AUDIO, token)
            narration_path, captions_path = self._synthesize_narration(ordered, workspace)

            self._enter_stage(job_id, PipelineStage.ENCODING, token)
            result = self.assembler.assemble(
                frames,
                narration_path,
                workspace / OUTPUT_FILE_NAME,
                captions_path=captions_path,
                cancel_token=token,
            )

            self._enter_stage(job_id, PipelineStage.UPLOADING, token)
            video_url = self._upload(job_id, result.output_path)

            # Reported duration is the scene total; the measured length is kept alongside.
            total_duration = sum(scene.duration_seconds for scene in ordered)
            job = self.status_sink.update_status(
                job_id,
                StatusUpdate(
                    status=JobStatus.COMPLETED,
                    progress_percent=100,
                    current_step_label=COMPLETE_LABEL,
                    video_url=video_url,
                    duration_seconds=total_duration,
                    encoded_duration_seconds=result.encoded_seconds,
                ),
            )
        except Exception as e:
            self._record_failure(job_id, e)
            raise
        finally:
            if workspace is not None and not remove_workspace(workspace, self.logger):
                job_logger.warning(f"Intermediate files left behind in {workspace}")

        job_logger.info(f"✅ Job {job_id} complete: {video_url} ({total_duration:.1f}s)")
        return job

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    @staticmethod
    def _validate_scenes(scenes: list[Scene]) -> list[Scene]:
        if not scenes:
            raise InputValidationError("Scene list is empty")
        ordered = sorted(scenes, key=lambda scene: scene.index)
        indices = [scene.index for scene in ordered]
        if len(set(indices)) != len(indices):
            raise InputValidationError(f"Duplicate scene indices: {indices}")
        if not any(scene.narration_text for scene in ordered):
            raise InputValidationError("No scene has narration text")
        return ordered

    def _enter_stage(self, job_id: str, stage: PipelineStage, token: CancellationToken) -> None:
        if token.cancelled:
            raise JobCancelledError(f"Job cancelled before {stage.value.replace('_', ' ')}: {token.reason}")
        self.logger.info(f"Step: {stage.label}")
        self.status_sink.update_status(
            job_id,
            StatusUpdate(
                status=JobStatus.PROCESSING,
                progress_percent=stage.progress,
                current_step_label=stage.label,
            ),
        )

    def _render_frame(self, scene: Scene, total_scenes: int, workspace: Path) -> FrameAsset:
        path = workspace / f"frame_{scene.index:03d}.png"
        path.write_bytes(self.frame_generator.render(scene, total_scenes=total_scenes))
        return FrameAsset(scene_index=scene.index, path=path, duration_seconds=scene.duration_seconds)

    def _generate_frames(self, scenes: list[Scene], workspace: Path) -> list[FrameAsset]:
        tasks = [partial(self._render_frame, scene, len(scenes), workspace) for scene in scenes]
        if self.parallel_executor is not None:
            results = self.parallel_executor.execute_batch(
                tasks, task_names=[f"frame_{scene.index}" for scene in scenes]
            )
        else:
            results = [(task(), None) for task in tasks]

        frames = []
        for scene, (frame, error) in zip(scenes, results):
            if error is not None:
                if isinstance(error, RenderPipelineError):
                    raise error
                raise AssetGenerationError(f"Frame for scene {scene.index} failed: {error}") from error
            frames.append(frame)
        return frames

    def _synthesize_narration(self, scenes: list[Scene], workspace: Path) -> tuple[Path, Optional[Path]]:
        narration = self.synthesizer.synthesize_scenes(scenes)
        narration_path = workspace / f"narration.{narration.audio_format}"
        narration_path.write_bytes(narration.audio_bytes)

        if not self.settings.burn_captions:
            return narration_path, None
        if not narration.has_alignment:
            self.logger.warning("No character timings available; rendering without captions")
            return narration_path, None

        events = self.caption_builder.build_captions(narration.timing_map)
        if not events:
            return narration_path, None
        captions_path = self.caption_builder.write(events, workspace / CAPTIONS_FILE_NAME)
        return narration_path, captions_path

    def _upload(self, job_id: str, output_path: Path) -> str:
        try:
            data = output_path.read_bytes()
        except OSError as e:
            raise UploadError(f"Could not read encoded video {output_path}: {e}") from e
        return self.storage.upload_video(data, VIDEO_FOLDER, job_id)

    def _record_failure(self, job_id: str, error: Exception) -> None:
        """Record the failure on the job without masking the original error."""
        self.logger.error(
            format_error_message("Render job", error, {"job_id": job_id}, get_fallback_suggestion(error))
        )
        try:
            self.status_sink.update_status(
                job_id,
                StatusUpdate(
                    status=JobStatus.FAILED,
                    progress_percent=0,
                    current_step_label=FAILED_LABEL,
                    error_message=describe_failure(error),
                ),
            )
        except Exception as status_error:
            self.logger.error(f"Could not record failure for job {job_id}: {status_error}")


def build_orchestrator(settings: Settings, logger: Any) -> RenderOrchestrator:
    """
    Construct every collaborator once and wire up an orchestrator.

    Args:
        settings: Application settings
        logger: Logger instance

    Returns:
        Ready-to-run orchestrator (its status_sink is the job repository)
    """
    rate_limiter = RateLimiter(max_calls=settings.elevenlabs_rate_limit, time_window=60.0)
    return RenderOrchestrator(
        settings=settings,
        logger=logger,
        status_sink=JobRepository(settings, logger),
        frame_generator=FrameAssetGenerator(settings, logger),
        synthesizer=TTSClient(settings, logger, session=requests.Session(), rate_limiter=rate_limiter),
        caption_builder=CaptionTrackBuilder(settings, logger),
        assembler=RenderGraphAssembler(settings, logger, runner=FFmpegRunner(settings, logger)),
        storage=get_storage_provider(settings, logger),
        parallel_executor=ParallelExecutor(settings, logger),
    )
