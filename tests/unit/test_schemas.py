"""Tests for pipeline schemas."""

import math

import pytest
from pydantic import ValidationError

from scenecast.core.errors import TimingMapError
from scenecast.models.schemas import (
    CaptionEvent,
    CharacterTimingMap,
    EncodeResult,
    JobStatus,
    PipelineStage,
    Scene,
    SceneIntake,
    StatusUpdate,
)


def test_scene_allows_silent_narration():
    """Test that whitespace-only narration becomes an empty, silent scene."""
    assert Scene(index=0, duration_seconds=5, narration_text="   ").narration_text == ""
    assert Scene(index=0, duration_seconds=5).narration_text == ""


def test_scene_accepts_any_positive_duration():
    """Test that the pipeline accepts durations outside the intake range."""
    scene = Scene(index=0, duration_seconds=42.5, narration_text="Long beat")
    assert scene.duration_seconds == 42.5


@pytest.mark.parametrize("duration", [0, -1, math.inf, math.nan])
def test_scene_rejects_non_positive_or_non_finite_duration(duration):
    with pytest.raises(ValidationError):
        Scene(index=0, duration_seconds=duration, narration_text="Text")


def test_scene_is_immutable():
    scene = Scene(index=0, duration_seconds=5, narration_text="Text")
    with pytest.raises(ValidationError):
        scene.duration_seconds = 10


def test_scene_intake_reads_camel_case_fields():
    """Test intake of the script generator's field names."""
    intake = SceneIntake.model_validate(
        {
            "sceneNumber": "3",
            "duration": 5,
            "description": "Opening",
            "narrationText": "Money talks.",
            "visualHint": "confident hero",
            "transition": "fade",
        }
    )
    scene = intake.to_scene(2, default_duration=5, min_duration=4, max_duration=6)

    assert scene.index == 2
    assert scene.narration_text == "Money talks."
    assert scene.visual_hint == "confident hero"
    assert scene.transition == "fade"


def test_scene_intake_defaults_missing_fields():
    """Test that missing text becomes empty and missing duration gets the default."""
    intake = SceneIntake.model_validate({"narrationText": "Only text", "visualHint": None, "duration": "abc"})
    scene = intake.to_scene(0, default_duration=5, min_duration=4, max_duration=6)

    assert intake.visual_hint == ""
    assert intake.description == ""
    assert scene.duration_seconds == 5


@pytest.mark.parametrize("raw,expected", [(1, 4), (5.5, 5.5), (30, 6)])
def test_scene_intake_clamps_duration(raw, expected):
    intake = SceneIntake.model_validate({"narrationText": "x", "duration": raw})
    assert intake.to_scene(0, 5, 4, 6).duration_seconds == expected


def test_timing_map_rejects_mismatched_lengths():
    with pytest.raises(ValidationError):
        CharacterTimingMap(characters=["a", "b"], start_times=[0.0], end_times=[0.1, 0.2])


def test_timing_map_from_alignment():
    timing_map = CharacterTimingMap.from_alignment(
        {
            "characters": ["H", "i"],
            "character_start_times_seconds": [0.0, 0.1],
            "character_end_times_seconds": [0.1, 0.2],
        }
    )
    assert timing_map.text == "Hi"
    assert timing_map.length == 2


def test_timing_map_from_alignment_missing_key():
    """Test that a provider contract violation becomes a typed error."""
    with pytest.raises(TimingMapError):
        CharacterTimingMap.from_alignment({"characters": ["H"]})


def test_timing_map_from_alignment_inconsistent_arrays():
    with pytest.raises(TimingMapError):
        CharacterTimingMap.from_alignment(
            {
                "characters": ["H", "i"],
                "character_start_times_seconds": [0.0],
                "character_end_times_seconds": [0.1, 0.2],
            }
        )


def test_caption_event_end_before_start():
    with pytest.raises(ValidationError):
        CaptionEvent(text="word", start_time=1.0, end_time=0.5)


def test_stage_progress_is_increasing():
    progress = [stage.progress for stage in PipelineStage]
    assert progress == sorted(progress)
    assert all(0 < value < 100 for value in progress)


def test_failed_update_requires_message():
    with pytest.raises(ValidationError):
        StatusUpdate(status=JobStatus.FAILED, progress_percent=10, current_step_label="Failed", error_message=" ")


def test_completed_update_requires_url():
    with pytest.raises(ValidationError):
        StatusUpdate(status=JobStatus.COMPLETED, progress_percent=100, current_step_label="Complete!")


def test_encode_result_expected_seconds_is_shorter_stream(tmp_path):
    result = EncodeResult(output_path=tmp_path / "out.mp4", video_sequence_seconds=15.0, audio_seconds=3.2)
    assert result.expected_seconds == 3.2

    no_probe = EncodeResult(output_path=tmp_path / "out.mp4", video_sequence_seconds=15.0)
    assert no_probe.expected_seconds == 15.0
