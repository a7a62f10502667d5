"""I/O utility functions for job scratch space."""

import re
import shutil
import tempfile
from pathlib import Path
from typing import Any


def sanitize_filename(filename: str) -> str:
    """
    Convert text to a filesystem and URL safe identifier.

    Args:
        filename: Input text

    Returns:
        Lowercase string of [a-z0-9_], at most 50 characters
    """
    text = re.sub(r"[^a-z0-9]", "_", filename, flags=re.IGNORECASE)
    text = re.sub(r"_+", "_", text)
    return text.lower()[:50]


def create_job_workspace(base_dir: str, job_id: str) -> Path:
    """
    Create a private scratch directory for one job.

    Args:
        base_dir: Parent directory (created if missing)
        job_id: Job identifier, used as the directory prefix

    Returns:
        Path to the new, empty directory
    """
    base = Path(base_dir)
    base.mkdir(parents=True, exist_ok=True)
    return Path(tempfile.mkdtemp(prefix=f"{sanitize_filename(job_id)}_", dir=base))


def remove_workspace(path: Path, logger: Any) -> bool:
    """
    Best-effort removal of a job scratch directory.

    Failures are logged and swallowed so they never mask the job's own outcome.

    Returns:
        True if the directory no longer exists
    """
    try:
        shutil.rmtree(path)
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning(f"Non-critical cleanup error for {path}: {e}")
    return not path.exists()
