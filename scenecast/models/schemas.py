"""Pydantic models and schemas for the rendering pipeline."""

import math
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from scenecast.core.errors import TimingMapError


# ============================================================================
# Enums
# ============================================================================


class JobStatus(str, Enum):
    """Lifecycle status of a render job."""

    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


class PipelineStage(str, Enum):
    """Processing sub-states a job moves through, in order."""

    GENERATING_FRAMES = "generating_frames"
    SYNTHESIZING_AUDIO = "synthesizing_audio"
    ENCODING = "encoding"
    UPLOADING = "uploading"

    @property
    def progress(self) -> int:
        """Progress percent reported when the stage starts."""
        return _STAGE_CHECKPOINTS[self][0]

    @property
    def label(self) -> str:
        return _STAGE_CHECKPOINTS[self][1]


_STAGE_CHECKPOINTS = {
    PipelineStage.GENERATING_FRAMES: (10, "Generating frames..."),
    PipelineStage.SYNTHESIZING_AUDIO: (40, "Synthesizing narration..."),
    PipelineStage.ENCODING: (60, "Encoding video..."),
    PipelineStage.UPLOADING: (90, "Uploading video..."),
}


class VisualTreatment(str, Enum):
    """Colour treatment applied to a scene frame."""

    FEAR = "fear"
    SUCCESS = "success"
    WARNING = "warning"
    CONFIDENT = "confident"
    NEUTRAL = "neutral"


class AssemblerState(str, Enum):
    """States of a single render graph assembly."""

    PREPARED = "prepared"
    IMAGES_SEQUENCED = "images_sequenced"
    AUDIO_ATTACHED = "audio_attached"
    FILTER_GRAPH_BUILT = "filter_graph_built"
    ENCODING = "encoding"
    DONE = "done"
    ENCODE_FAILED = "encode_failed"


# ============================================================================
# Scene Models
# ============================================================================


class Scene(BaseModel):
    """One narrated visual beat. Immutable once handed to the pipeline."""

    model_config = ConfigDict(frozen=True)

    index: int = Field(..., ge=0, description="Ordinal position (0-indexed)")
    duration_seconds: float = Field(..., gt=0, allow_inf_nan=False, description="How long the frame is held")
    narration_text: str = Field(default="", description="Narration spoken over this scene (may be empty)")
    visual_hint: str = Field(default="", description="Free text used to select a visual treatment")
    description: str = Field(default="", description="Scene description")
    transition: Optional[str] = Field(default=None, description="Requested transition (informational)")

    @field_validator("narration_text")
    @classmethod
    def _strip_narration(cls, value: str) -> str:
        return value.strip()


class SceneIntake(BaseModel):
    """A scene descriptor as it arrives from the script generator.

    ``sceneNumber`` and other unknown fields are ignored; the array position
    becomes the scene index.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    duration: Optional[float] = Field(default=None)
    description: str = Field(default="")
    narration_text: str = Field(
        default="", validation_alias=AliasChoices("narrationText", "narration_text", "voiceoverText")
    )
    visual_hint: str = Field(
        default="", validation_alias=AliasChoices("visualHint", "visual_hint", "imagePrompt")
    )
    transition: Optional[str] = Field(default=None)

    @field_validator("description", "narration_text", "visual_hint", mode="before")
    @classmethod
    def _none_to_empty(cls, value: Any) -> str:
        if value is None:
            return ""
        return value if isinstance(value, str) else str(value)

    @field_validator("duration", mode="before")
    @classmethod
    def _coerce_duration(cls, value: Any) -> Optional[float]:
        try:
            duration = float(value)
        except (TypeError, ValueError):
            return None
        return duration if math.isfinite(duration) else None

    def to_scene(
        self,
        index: int,
        default_duration: float,
        min_duration: float,
        max_duration: float,
    ) -> Scene:
        """Convert to a Scene, clamping the duration into the safe range."""
        duration = self.duration if self.duration and self.duration > 0 else default_duration
        duration = min(max(duration, min_duration), max_duration)
        return Scene(
            index=index,
            duration_seconds=duration,
            narration_text=self.narration_text,
            visual_hint=self.visual_hint,
            description=self.description,
            transition=self.transition,
        )


# ============================================================================
# Speech & Caption Models
# ============================================================================


class CharacterTimingMap(BaseModel):
    """Per-character start/end offsets (seconds) returned by the speech provider."""

    characters: list[str] = Field(default_factory=list)
    start_times: list[float] = Field(default_factory=list)
    end_times: list[float] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_parallel_arrays(self) -> "CharacterTimingMap":
        if not (len(self.characters) == len(self.start_times) == len(self.end_times)):
            raise ValueError(
                f"timing arrays differ in length: characters={len(self.characters)}, "
                f"starts={len(self.start_times)}, ends={len(self.end_times)}"
            )
        return self

    @property
    def text(self) -> str:
        return "".join(self.characters)

    @property
    def length(self) -> int:
        return len(self.characters)

    @classmethod
    def from_alignment(cls, alignment: Any) -> "CharacterTimingMap":
        """
        Parse a provider alignment object.

        Args:
            alignment: Dict with characters, character_start_times_seconds and
                character_end_times_seconds

        Raises:
            TimingMapError: If keys are missing or arrays are inconsistent
        """
        try:
            return cls(
                characters=alignment["characters"],
                start_times=alignment["character_start_times_seconds"],
                end_times=alignment["character_end_times_seconds"],
            )
        except (KeyError, TypeError) as e:
            raise TimingMapError(f"Alignment data is missing required fields: {e}") from e
        except ValidationError as e:
            raise TimingMapError(f"Alignment data is malformed: {e.errors()[0]['msg']}") from e


class NarrationAudio(BaseModel):
    """Synthesized narration plus its optional character timing map."""

    text: str = Field(..., description="Exact text sent to the provider")
    audio_bytes: bytes = Field(..., repr=False)
    audio_format: str = Field(default="mp3", description="File extension for the audio bytes")
    timing_map: Optional[CharacterTimingMap] = Field(default=None)

    @property
    def has_alignment(self) -> bool:
        return self.timing_map is not None and self.timing_map.length > 0


class CaptionEvent(BaseModel):
    """A single displayed word and its time window."""

    model_config = ConfigDict(frozen=True)

    text: str = Field(..., min_length=1)
    start_time: float = Field(..., ge=0)
    end_time: float = Field(..., ge=0)

    @model_validator(mode="after")
    def _end_not_before_start(self) -> "CaptionEvent":
        if self.end_time < self.start_time:
            raise ValueError("end_time must be >= start_time")
        return self


class QuotaStatus(BaseModel):
    """Character quota reported by the speech provider."""

    character_count: int
    character_limit: int
    can_synthesize_freely_character_limit: int = 0

    @property
    def remaining(self) -> int:
        return self.character_limit - self.character_count


# ============================================================================
# Render Models
# ============================================================================


class FrameAsset(BaseModel):
    """A rendered still for one scene, owned by a single job."""

    scene_index: int = Field(..., ge=0)
    path: Path
    duration_seconds: float = Field(..., gt=0)


class SequenceEntry(BaseModel):
    """One line pair of the image-sequence input; the trailing repeat has no duration."""

    path: Path
    duration_seconds: Optional[float] = None


class EncodeResult(BaseModel):
    """Outcome of a successful encode."""

    output_path: Path
    video_sequence_seconds: float
    audio_seconds: Optional[float] = None
    encoded_seconds: Optional[float] = None
    has_background_music: bool = False
    has_captions: bool = False

    @property
    def expected_seconds(self) -> float:
        """Output length implied by the shortest-stream policy."""
        if self.audio_seconds is None:
            return self.video_sequence_seconds
        return min(self.video_sequence_seconds, self.audio_seconds)


# ============================================================================
# Job Models
# ============================================================================


class RenderJob(BaseModel):
    """The status record for one video, polled by external observers."""

    job_id: str = Field(..., min_length=1)
    scenes: list[Scene] = Field(default_factory=list)
    status: JobStatus = Field(default=JobStatus.QUEUED)
    progress_percent: int = Field(default=0, ge=0, le=100)
    current_step_label: str = Field(default="Queued")
    error_message: Optional[str] = Field(default=None)
    video_url: Optional[str] = Field(default=None)
    duration_seconds: Optional[float] = Field(default=None, description="Sum of scene durations")
    encoded_duration_seconds: Optional[float] = Field(
        default=None, description="Measured length of the encoded file, when it could be probed"
    )
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal


class StatusUpdate(BaseModel):
    """A single status write, keyed externally by job id."""

    status: JobStatus
    progress_percent: int = Field(..., ge=0, le=100)
    current_step_label: str
    error_message: Optional[str] = None
    video_url: Optional[str] = None
    duration_seconds: Optional[float] = None
    encoded_duration_seconds: Optional[float] = None

    @model_validator(mode="after")
    def _terminal_fields_present(self) -> "StatusUpdate":
        if self.status == JobStatus.FAILED and not (self.error_message and self.error_message.strip()):
            raise ValueError("failed updates require a non-empty error_message")
        if self.status == JobStatus.COMPLETED and not self.video_url:
            raise ValueError("completed updates require a video_url")
        return self


# ============================================================================
# API Models
# ============================================================================


class JobStatusResponse(BaseModel):
    """Status payload returned to polling clients."""

    job_id: str
    status: JobStatus
    progress_percent: int
    current_step_label: str
    error_message: Optional[str] = None
    video_url: Optional[str] = None
    duration_seconds: Optional[float] = None
    encoded_duration_seconds: Optional[float] = None
    updated_at: datetime

    @classmethod
    def from_job(cls, job: RenderJob) -> "JobStatusResponse":
        return cls(
            job_id=job.job_id,
            status=job.status,
            progress_percent=job.progress_percent,
            current_step_label=job.current_step_label,
            error_message=job.error_message,
            video_url=job.video_url,
            duration_seconds=job.duration_seconds,
            encoded_duration_seconds=job.encoded_duration_seconds,
            updated_at=job.updated_at,
        )


class JobListResponse(BaseModel):
    """Known job ids."""

    jobs: list[str] = Field(default_factory=list)
