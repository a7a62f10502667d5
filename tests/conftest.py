"""Shared pytest fixtures and configuration."""

import pytest

from scenecast.core.config import Settings
from scenecast.core.logging_config import get_logger
from scenecast.models.schemas import Scene


@pytest.fixture
def settings(tmp_path):
    """Create test settings with every path inside tmp_path."""
    return Settings(
        _env_file=None,
        elevenlabs_api_key=None,
        enable_rate_limiting=False,
        video_width=320,
        video_height=180,
        max_parallel_frame_workers=2,
        work_dir=str(tmp_path / "work"),
        assets_dir=str(tmp_path / "assets"),
        storage_path=str(tmp_path / "jobs"),
        storage_type="local",
        public_dir=str(tmp_path / "public"),
        public_base_url="https://cdn.example.com",
        encode_timeout_seconds=30,
    )


@pytest.fixture
def logger():
    """Create test logger instance."""
    return get_logger(__name__)


@pytest.fixture
def sample_scenes():
    """Three five-second scenes."""
    return [
        Scene(index=0, duration_seconds=5, narration_text="Hello world.", visual_hint="fear of missing out"),
        Scene(index=1, duration_seconds=5, narration_text="Atlas wins.", visual_hint="success story"),
        Scene(index=2, duration_seconds=5, narration_text="The end. Thanks for watching.", visual_hint=""),
    ]
