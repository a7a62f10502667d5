"""Utility functions for the SceneCast render pipeline."""

from scenecast.utils.io_utils import create_job_workspace, remove_workspace, sanitize_filename

__all__ = [
    "create_job_workspace",
    "remove_workspace",
    "sanitize_filename",
]
