"""Integration tests for the render pipeline orchestrator."""

import os
import shutil
import stat
import subprocess
import sys
import wave
from pathlib import Path
from unittest.mock import MagicMock

import pytest
import requests
from PIL import Image, ImageChops, ImageDraw, ImageStat

from scenecast.core.errors import (
    EncodeTimeoutError,
    InputValidationError,
    JobCancelledError,
    JobStateError,
    SynthesisError,
)
from scenecast.models.schemas import FrameAsset, JobStatus, Scene
from scenecast.pipelines.render_pipeline import RenderOrchestrator, build_orchestrator, normalize_scenes
from scenecast.services.caption_builder import CaptionTrackBuilder
from scenecast.services.ffmpeg_runner import FFmpegRunner
from scenecast.services.frame_generator import FrameAssetGenerator
from scenecast.services.render_assembler import RenderGraphAssembler
from scenecast.services.storage_uploader import LocalStorageProvider
from scenecast.services.tts_client import TTSClient
from scenecast.storage.repository import JobRepository
from scenecast.utils.cancellation import CancellationToken
from scenecast.utils.parallel_executor import ParallelExecutor


class RecordingRepository(JobRepository):
    """Job repository that keeps every update it receives."""

    def __init__(self, settings, logger):
        super().__init__(settings, logger)
        self.updates = []

    def update_status(self, job_id, update):
        self.updates.append(update)
        return super().update_status(job_id, update)


class FakeRunner:
    """Writes the output file instead of running ffmpeg."""

    def __init__(self, durations=None):
        self.durations = durations or {}
        self.commands = []

    def run(self, command, cancel_token=None, timeout=None, cwd=None):
        self.commands.append(command)
        Path(command[-1]).write_bytes(b"\x00\x00\x00\x18ftypmp42")
        return ""

    def probe_duration(self, media_path):
        return self.durations.get(Path(media_path).suffix)


def build(settings, logger, runner, storage=None, session=None):
    repository = RecordingRepository(settings, logger)
    orchestrator = RenderOrchestrator(
        settings=settings,
        logger=logger,
        status_sink=repository,
        frame_generator=FrameAssetGenerator(settings, logger),
        synthesizer=TTSClient(settings, logger, session=session),
        caption_builder=CaptionTrackBuilder(settings, logger),
        assembler=RenderGraphAssembler(settings, logger, runner=runner),
        storage=storage or LocalStorageProvider(settings, logger),
        parallel_executor=ParallelExecutor(settings, logger),
    )
    return orchestrator, repository


def leftover_files(settings):
    work_dir = Path(settings.work_dir)
    if not work_dir.exists():
        return []
    return list(work_dir.rglob("*"))


def ffmpeg_has_filter(name):
    if shutil.which("ffmpeg") is None:
        return False
    result = subprocess.run(["ffmpeg", "-hide_banner", "-filters"], capture_output=True, text=True, check=False)
    return any(line.split()[1:2] == [name] for line in result.stdout.splitlines())


requires_ffmpeg = pytest.mark.skipif(
    shutil.which("ffmpeg") is None or shutil.which("ffprobe") is None, reason="ffmpeg not installed"
)


def test_scenario_a_three_scenes(settings, logger, sample_scenes):
    """Test a successful render: progress climbs, duration is the scene total, temp files are gone."""
    runner = FakeRunner(durations={".wav": 3.24, ".mp4": 3.24})
    orchestrator, repository = build(settings, logger, runner)
    repository.create_job("job_a", sample_scenes)

    job = orchestrator.run("job_a", sample_scenes)

    assert job.status == JobStatus.COMPLETED
    assert job.progress_percent == 100
    assert job.current_step_label == "Complete!"
    assert job.video_url == "https://cdn.example.com/videos/job_a.mp4"
    assert job.duration_seconds == 15
    assert job.encoded_duration_seconds <= 15
    assert (Path(settings.public_dir) / "videos" / "job_a.mp4").exists()

    progress = [update.progress_percent for update in repository.updates]
    assert progress == sorted(progress)
    assert [update.status for update in repository.updates].count(JobStatus.COMPLETED) == 1

    command = runner.commands[0]
    assert command.count("-i") == 2
    assert "-shortest" in command
    assert leftover_files(settings) == []


def test_scenario_a_captions_and_frames_reach_encoder(settings, logger, sample_scenes):
    """Test that the encoder sees one frame per scene plus the repeat, and the caption track."""
    seen = {}

    class InspectingRunner(FakeRunner):
        def run(self, command, cancel_token=None, timeout=None, cwd=None):
            concat_path = Path(command[command.index("-i") + 1])
            seen["concat"] = concat_path.read_text(encoding="utf-8")
            seen["graph"] = command[command.index("-filter_complex") + 1]
            seen["captions"] = (concat_path.parent / "captions.ass").read_text(encoding="utf-8")
            return super().run(command, cancel_token, timeout, cwd)

    orchestrator, repository = build(settings, logger, InspectingRunner())
    repository.create_job("job_a", sample_scenes)

    orchestrator.run("job_a", sample_scenes)

    file_lines = [line for line in seen["concat"].splitlines() if line.startswith("file ")]
    assert len(file_lines) == len(sample_scenes) + 1
    assert file_lines[-1] == file_lines[-2]
    assert "ass=filename=" in seen["graph"]
    narration = " ".join(scene.narration_text for scene in sample_scenes)
    dialogue = [line for line in seen["captions"].splitlines() if line.startswith("Dialogue:")]
    assert len(dialogue) == len(narration.split())


def test_scenario_b_unauthorized_speech_provider(settings, logger, sample_scenes):
    """Test that a 401 fails the job with an authentication message and uploads nothing."""
    session = MagicMock(spec=requests.Session)
    response = MagicMock()
    response.status_code = 401
    response.text = "Unauthorized"
    response.json.return_value = {"detail": {"status": "invalid_api_key", "message": "Invalid API key"}}
    session.post.return_value = response
    storage = MagicMock()
    keyed_settings = settings.model_copy(update={"elevenlabs_api_key": "bad-key"})
    orchestrator, repository = build(keyed_settings, logger, FakeRunner(), storage=storage, session=session)
    repository.create_job("job_b", sample_scenes)

    with pytest.raises(SynthesisError):
        orchestrator.run("job_b", sample_scenes)

    job = repository.load_job("job_b")
    assert job.status == JobStatus.FAILED
    assert "authentication failed" in job.error_message
    storage.upload_video.assert_not_called()
    assert leftover_files(settings) == []


def test_scenario_c_missing_background_music(settings, logger, sample_scenes):
    """Test that an absent background bed renders narration-only audio."""
    assert not (Path(settings.assets_dir) / settings.background_music_file).exists()
    runner = FakeRunner()
    orchestrator, repository = build(settings, logger, runner)
    repository.create_job("job_c", sample_scenes)

    job = orchestrator.run("job_c", sample_scenes)

    assert job.status == JobStatus.COMPLETED
    graph = runner.commands[0][runner.commands[0].index("-filter_complex") + 1]
    assert "[1:a]volume=1.0[a_final]" in graph
    assert "amix" not in graph


@pytest.mark.skipif(sys.platform.startswith("win"), reason="uses a POSIX shell script as the encoder")
def test_scenario_d_encoder_timeout(settings, logger, sample_scenes, tmp_path):
    """Test that a hung encoder is killed, the job fails and no temp files remain."""
    fake_encoder = tmp_path / "hanging-ffmpeg"
    fake_encoder.write_text("#!/bin/sh\nexec sleep 30\n", encoding="utf-8")
    fake_encoder.chmod(fake_encoder.stat().st_mode | stat.S_IEXEC)
    hung_settings = settings.model_copy(
        update={"ffmpeg_binary": str(fake_encoder), "ffprobe_binary": "no-such-ffprobe", "encode_timeout_seconds": 1}
    )
    runner = FFmpegRunner(hung_settings, logger)
    runner.TERMINATE_GRACE_SECONDS = 2.0
    storage = MagicMock()
    orchestrator, repository = build(hung_settings, logger, runner, storage=storage)
    repository.create_job("job_d", sample_scenes)

    with pytest.raises(EncodeTimeoutError):
        orchestrator.run("job_d", sample_scenes)

    job = repository.load_job("job_d")
    assert job.status == JobStatus.FAILED
    assert "timed out" in job.error_message
    assert job.progress_percent == 60
    storage.upload_video.assert_not_called()
    assert leftover_files(settings) == []


def test_cancelled_job_fails_between_stages(settings, logger, sample_scenes):
    token = CancellationToken()
    token.cancel("user requested")
    orchestrator, repository = build(settings, logger, FakeRunner())
    repository.create_job("job_x", sample_scenes)

    with pytest.raises(JobCancelledError):
        orchestrator.run("job_x", sample_scenes, cancel_token=token)

    job = repository.load_job("job_x")
    assert job.status == JobStatus.FAILED
    assert "user requested" in job.error_message


def test_empty_scene_list_fails_job(settings, logger):
    orchestrator, repository = build(settings, logger, FakeRunner())
    repository.create_job("job_empty")

    with pytest.raises(InputValidationError):
        orchestrator.run("job_empty", [])

    assert repository.load_job("job_empty").status == JobStatus.FAILED


def test_silent_scene_is_rendered_without_narration(settings, logger):
    """Test that a scene without narration keeps its frame and adds no captions."""
    seen = {}

    class InspectingRunner(FakeRunner):
        def run(self, command, cancel_token=None, timeout=None, cwd=None):
            concat_path = Path(command[command.index("-i") + 1])
            seen["concat"] = concat_path.read_text(encoding="utf-8")
            seen["captions"] = (concat_path.parent / "captions.ass").read_text(encoding="utf-8")
            return super().run(command, cancel_token, timeout, cwd)

    scenes = [
        Scene(index=0, duration_seconds=5, narration_text="Hello world.", visual_hint="fear"),
        Scene(index=1, duration_seconds=5, description="Skyline at dusk", visual_hint="success"),
        Scene(index=2, duration_seconds=5, narration_text="The end."),
    ]
    orchestrator, repository = build(settings, logger, InspectingRunner())
    repository.create_job("job_silent", scenes)

    job = orchestrator.run("job_silent", scenes)

    assert job.status == JobStatus.COMPLETED
    assert job.duration_seconds == 15
    assert sum(1 for line in seen["concat"].splitlines() if line.startswith("file ")) == 4
    dialogue = [line for line in seen["captions"].splitlines() if line.startswith("Dialogue:")]
    assert len(dialogue) == len("Hello world. The end.".split())


def test_all_silent_scenes_fail_job(settings, logger):
    scenes = [Scene(index=0, duration_seconds=5), Scene(index=1, duration_seconds=5)]
    orchestrator, repository = build(settings, logger, FakeRunner())
    repository.create_job("job_mute", scenes)

    with pytest.raises(InputValidationError, match="narration"):
        orchestrator.run("job_mute", scenes)

    job = repository.load_job("job_mute")
    assert job.status == JobStatus.FAILED
    assert job.error_message == "No scene has narration text"


def test_completed_job_is_not_rerun(settings, logger, sample_scenes):
    """Test that running a terminal job again leaves it untouched."""
    orchestrator, repository = build(settings, logger, FakeRunner())
    repository.create_job("job_done", sample_scenes)
    first = orchestrator.run("job_done", sample_scenes)

    with pytest.raises(JobStateError):
        orchestrator.run("job_done", sample_scenes)

    job = repository.load_job("job_done")
    assert job.status == JobStatus.COMPLETED
    assert job.video_url == first.video_url


def test_normalize_scenes(settings):
    scenes = normalize_scenes(
        {
            "scenes": [
                {"sceneNumber": 1, "duration": 10, "narrationText": "First.", "visualHint": "fear"},
                {"sceneNumber": 2, "narrationText": "Second.", "visualHint": None},
            ]
        },
        settings,
    )

    assert [scene.index for scene in scenes] == [0, 1]
    assert scenes[0].duration_seconds == settings.max_scene_duration
    assert scenes[1].duration_seconds == settings.default_scene_duration


def test_normalize_scenes_keeps_scenes_without_narration(settings):
    scenes = normalize_scenes(
        [
            {"sceneNumber": 1, "duration": 5, "narrationText": "Hello world.", "visualHint": "fear"},
            {"sceneNumber": 2, "duration": 5, "visualHint": "success"},
        ],
        settings,
    )

    assert [scene.narration_text for scene in scenes] == ["Hello world.", ""]
    assert scenes[1].visual_hint == "success"


def test_normalize_scenes_uses_array_position_as_index(settings):
    scenes = normalize_scenes(
        [{"sceneNumber": 7, "narrationText": "First."}, {"sceneNumber": 3, "narrationText": "Second."}],
        settings,
    )

    assert [(scene.index, scene.narration_text) for scene in scenes] == [(0, "First."), (1, "Second.")]


@pytest.mark.parametrize(
    "payload",
    [[], {}, "scenes", [{"narrationText": ""}], [{"narrationText": "  "}, {"visualHint": "success"}], [42]],
)
def test_normalize_scenes_rejects_bad_payloads(settings, payload):
    with pytest.raises(InputValidationError):
        normalize_scenes(payload, settings)


def test_build_orchestrator_wires_clients(settings, logger):
    orchestrator = build_orchestrator(settings, logger)

    assert isinstance(orchestrator.status_sink, JobRepository)
    assert isinstance(orchestrator.assembler.runner, FFmpegRunner)
    assert orchestrator.synthesizer.rate_limiter is not None


@requires_ffmpeg
def test_real_encode_truncates_to_shorter_stream(settings, logger):
    """Test scenario A end to end with the real encoder."""
    encode_settings = settings.model_copy(update={"burn_captions": False, "video_fps": 10})
    scenes = [
        Scene(index=0, duration_seconds=5, narration_text="Hello world."),
        Scene(index=1, duration_seconds=5, narration_text="Atlas wins."),
        Scene(index=2, duration_seconds=5, narration_text="Done."),
    ]
    orchestrator, repository = build(encode_settings, logger, FFmpegRunner(encode_settings, logger))
    repository.create_job("job_real", scenes)

    job = orchestrator.run("job_real", scenes)

    narration_seconds = max(1.0, len("Hello world. Atlas wins. Done.") * 0.06)
    assert job.duration_seconds == 15
    assert job.encoded_duration_seconds is not None
    assert job.encoded_duration_seconds <= 15
    assert job.encoded_duration_seconds == pytest.approx(narration_seconds, abs=0.5)
    assert os.path.getsize(Path(encode_settings.public_dir) / "videos" / "job_real.mp4") > 0


def write_silence(path, seconds, sample_rate=16000):
    with wave.open(str(path), "wb") as wav_file:
        wav_file.setnchannels(1)
        wav_file.setsampwidth(2)
        wav_file.setframerate(sample_rate)
        wav_file.writeframes(b"\x00\x00" * int(seconds * sample_rate))
    return path


def extract_frame(video_path, seconds, target):
    subprocess.run(
        ["ffmpeg", "-y", "-v", "error", "-i", str(video_path), "-ss", f"{seconds:.2f}", "-frames:v", "1", str(target)],
        check=True,
    )
    with Image.open(target) as image:
        return image.convert("L")


@requires_ffmpeg
def test_real_encode_zooms_over_time(settings, logger, tmp_path):
    """Test that the camera motion changes the picture between early and late frames."""
    motion_settings = settings.model_copy(update={"video_fps": 10, "zoom_increment": 0.005, "burn_captions": False})
    workspace = tmp_path / "motion"
    workspace.mkdir()

    stripes = Image.new("L", (motion_settings.video_width, motion_settings.video_height), 0)
    draw = ImageDraw.Draw(stripes)
    for x in range(0, motion_settings.video_width, 20):
        draw.rectangle([x, 0, x + 9, motion_settings.video_height - 1], fill=255)
    frame_path = workspace / "frame_000.png"
    stripes.save(frame_path)
    narration_path = write_silence(workspace / "narration.wav", 5.0)

    assembler = RenderGraphAssembler(motion_settings, logger, runner=FFmpegRunner(motion_settings, logger))
    result = assembler.assemble(
        [FrameAsset(scene_index=0, path=frame_path, duration_seconds=5)],
        narration_path,
        workspace / "output.mp4",
    )

    early = extract_frame(result.output_path, 0.1, tmp_path / "early.png")
    late = extract_frame(result.output_path, 4.0, tmp_path / "late.png")
    assert ImageStat.Stat(ImageChops.difference(early, late)).mean[0] > 10


@requires_ffmpeg
@pytest.mark.skipif(not ffmpeg_has_filter("ass"), reason="ffmpeg built without libass")
def test_real_encode_burns_captions(settings, logger, sample_scenes):
    caption_settings = settings.model_copy(update={"burn_captions": True, "video_fps": 10})
    graphs = []

    class RecordingRunner(FFmpegRunner):
        def run(self, command, cancel_token=None, timeout=None, cwd=None):
            graphs.append(command[command.index("-filter_complex") + 1])
            return super().run(command, cancel_token=cancel_token, timeout=timeout, cwd=cwd)

    orchestrator, repository = build(caption_settings, logger, RecordingRunner(caption_settings, logger))
    repository.create_job("job_captions", sample_scenes)

    job = orchestrator.run("job_captions", sample_scenes)

    assert job.status == JobStatus.COMPLETED
    assert "ass=filename=captions.ass[v_final]" in graphs[0]
    assert job.encoded_duration_seconds is not None and job.encoded_duration_seconds > 0
    assert os.path.getsize(Path(caption_settings.public_dir) / "videos" / "job_captions.mp4") > 0
    assert leftover_files(caption_settings) == []
