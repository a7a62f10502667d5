"""Application configuration using pydantic-settings."""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All settings can be configured via environment variables or a .env file.
    See .env.example for a template.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ========================================================================
    # Application Settings
    # ========================================================================
    app_name: str = Field(default="SceneCast Render Pipeline", description="Application name")
    app_version: str = Field(default="1.0.0", description="Application version")
    debug: bool = Field(default=False, description="Debug mode")
    log_level: str = Field(default="INFO", description="Logging level (DEBUG, INFO, WARNING, ERROR)")
    log_file: Optional[str] = Field(default=None, description="Optional log file path (rotated)")
    log_json: bool = Field(default=False, description="Write the log file as JSON lines")

    # ========================================================================
    # Speech Provider (ElevenLabs)
    # ========================================================================
    elevenlabs_api_key: Optional[str] = Field(default=None, description="ElevenLabs API key")
    elevenlabs_voice_id: str = Field(
        default="pNInz6obpgDQGcFmaJgB", description="ElevenLabs voice ID (default: Adam)"
    )
    elevenlabs_model_id: str = Field(default="eleven_multilingual_v2", description="ElevenLabs model ID")
    elevenlabs_api_url: str = Field(default="https://api.elevenlabs.io/v1", description="ElevenLabs API base URL")
    elevenlabs_timeout_seconds: float = Field(default=60.0, description="HTTP timeout for speech requests")
    tts_stability: float = Field(default=0.5, ge=0.0, le=1.0, description="Voice stability")
    tts_similarity_boost: float = Field(default=0.75, ge=0.0, le=1.0, description="Voice similarity boost")
    narration_separator: str = Field(
        default=" ",
        description="Separator used to join scene narrations into one script (keep constant for reproducible timing)",
    )

    # ========================================================================
    # Rate Limiting Settings
    # ========================================================================
    enable_rate_limiting: bool = Field(
        default=True,
        description="Enable rate limiting for API calls to prevent hitting limits (default: true)",
    )
    elevenlabs_rate_limit: int = Field(
        default=100, description="ElevenLabs API calls per minute (default: 100)"
    )

    # ========================================================================
    # Scene Intake
    # ========================================================================
    default_scene_duration: float = Field(default=5.0, description="Duration used when a scene has none")
    min_scene_duration: float = Field(default=4.0, description="Lower bound for intake scene durations")
    max_scene_duration: float = Field(default=6.0, description="Upper bound for intake scene durations")

    # ========================================================================
    # Frame Rendering
    # ========================================================================
    video_width: int = Field(default=1920, description="Video output width in pixels (default: 1920)")
    video_height: int = Field(default=1080, description="Video output height in pixels (default: 1080)")
    frame_watermark_text: Optional[str] = Field(
        default="ATLAS ECONOMY // ACADEMY", description="Watermark drawn on every frame (empty to disable)"
    )
    max_parallel_frame_workers: int = Field(
        default=4,
        description="Maximum number of frames rendered concurrently (set to 1 for sequential)",
    )

    # ========================================================================
    # Render Graph / Encoder
    # ========================================================================
    video_fps: int = Field(default=30, description="Output frame rate")
    zoom_increment: float = Field(default=0.001, gt=0, description="Per-frame zoom increment for camera motion")
    max_zoom: float = Field(default=1.5, gt=1.0, description="Zoom ceiling for camera motion")
    vignette_angle: float = Field(default=0.3, description="Vignette lens angle in radians")
    background_music_volume: float = Field(
        default=0.12, ge=0.0, le=1.0, description="Relative volume of the background bed"
    )
    burn_captions: bool = Field(default=True, description="Burn word captions into the video")
    video_crf: int = Field(default=18, description="libx264 constant rate factor")
    video_preset: str = Field(default="fast", description="libx264 preset")
    audio_bitrate: str = Field(default="192k", description="AAC bitrate")
    ffmpeg_binary: str = Field(default="ffmpeg", description="Encoder executable")
    ffprobe_binary: str = Field(default="ffprobe", description="Probe executable")
    encode_timeout_seconds: float = Field(
        default=900.0, description="Kill the encoder after this many seconds (0 disables)"
    )

    # ========================================================================
    # Paths
    # ========================================================================
    work_dir: str = Field(default="temp", description="Parent directory for per-job scratch directories")
    assets_dir: str = Field(default="assets", description="Directory holding optional shared assets")
    background_music_file: str = Field(
        default="bg_music.mp3", description="Background bed file name inside assets_dir (optional)"
    )

    # ========================================================================
    # Storage Settings
    # ========================================================================
    storage_path: str = Field(default="storage/jobs", description="Storage path for job status records")
    storage_type: str = Field(default="local", description="Video storage provider: local or s3")
    public_dir: str = Field(default="storage/public", description="Directory served publicly (local provider)")
    public_base_url: Optional[str] = Field(
        default=None, description="Base URL prepended to stored object keys"
    )
    s3_bucket: Optional[str] = Field(default=None, description="S3 bucket name")
    s3_region: Optional[str] = Field(default=None, description="S3 region")
    s3_endpoint_url: Optional[str] = Field(
        default=None, description="Custom S3-compatible endpoint (e.g. DigitalOcean Spaces)"
    )
    s3_access_key: Optional[str] = Field(default=None, description="S3 access key")
    s3_secret_key: Optional[str] = Field(default=None, description="S3 secret key")
    s3_prefix: str = Field(default="videos", description="Key prefix for uploaded videos")
    s3_public_read: bool = Field(default=True, description="Upload with a public-read ACL")


# Global settings instance
settings = Settings()
