"""Storage repository for render job status records."""

import json
import os
import re
import tempfile
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

from pydantic import ValidationError

from scenecast.core.config import Settings
from scenecast.core.errors import InputValidationError, JobNotFoundError, JobStateError
from scenecast.models.schemas import JobStatus, RenderJob, Scene, StatusUpdate

JOB_ID_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]{0,127}$")


class JobRepository:
    """Repository for storing and updating render jobs as JSON files.

    Acts as the status sink: ``update_status`` may be called many times per
    job and is idempotent. Writes replace the file atomically so a polling
    reader never sees a half-written record.
    """

    def __init__(self, settings: Settings, logger: Any):
        """
        Initialize the repository.

        Args:
            settings: Application settings
            logger: Logger instance
        """
        self.settings = settings
        self.logger = logger
        self.storage_path = Path(settings.storage_path)
        self.storage_path.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()

    def _path_for(self, job_id: str) -> Path:
        if not JOB_ID_PATTERN.match(job_id or ""):
            raise InputValidationError(f"Invalid job id: {job_id!r}")
        return self.storage_path / f"{job_id}.json"

    def _write(self, job: RenderJob) -> None:
        file_path = self._path_for(job.job_id)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{job.job_id}.", suffix=".tmp", dir=self.storage_path)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(job.model_dump(mode="json"), f, indent=2, ensure_ascii=False)
            os.replace(tmp_name, file_path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def create_job(self, job_id: str, scenes: Optional[list[Scene]] = None) -> RenderJob:
        """
        Create a job in the queued state.

        Raises:
            JobStateError: If a record for job_id already exists
        """
        with self._lock:
            if self._path_for(job_id).exists():
                raise JobStateError(f"Job already exists: {job_id}")
            job = RenderJob(job_id=job_id, scenes=scenes or [])
            self._write(job)
        self.logger.info(f"Job created: {job_id} ({len(job.scenes)} scenes)")
        return job

    def load_job(self, job_id: str) -> Optional[RenderJob]:
        """
        Load a job from storage.

        Args:
            job_id: Job identifier

        Returns:
            The job if found, None otherwise
        """
        file_path = self._path_for(job_id)
        if not file_path.exists():
            self.logger.debug(f"Job not found: {job_id}")
            return None

        with open(file_path, "r", encoding="utf-8") as f:
            job_dict = json.load(f)
        try:
            return RenderJob(**job_dict)
        except ValidationError as e:
            self.logger.error(f"Corrupt job record {file_path}: {e}")
            raise

    def list_jobs(self) -> list[str]:
        """
        List all job IDs.

        Returns:
            Sorted list of job IDs
        """
        return sorted(f.stem for f in self.storage_path.glob("*.json"))

    def update_status(self, job_id: str, update: StatusUpdate) -> RenderJob:
        """
        Apply a status update.

        Progress never decreases. A terminal job is never changed again;
        re-applying the same terminal update is accepted as a no-op.

        Args:
            job_id: Job identifier
            update: The status write

        Returns:
            The job as stored after the update

        Raises:
            JobNotFoundError: If no record exists for job_id
            JobStateError: If the job is terminal and the update differs
        """
        with self._lock:
            job = self.load_job(job_id)
            if job is None:
                raise JobNotFoundError(f"Job not found: {job_id}")

            if job.is_terminal:
                if self._same_terminal_update(job, update):
                    return job
                raise JobStateError(
                    f"Job {job_id} is already {job.status.value}; refusing update to {update.status.value}"
                )

            job.status = update.status
            job.progress_percent = max(job.progress_percent, update.progress_percent)
            job.current_step_label = update.current_step_label
            job.error_message = update.error_message
            if update.video_url is not None:
                job.video_url = update.video_url
            if update.duration_seconds is not None:
                job.duration_seconds = update.duration_seconds
            if update.encoded_duration_seconds is not None:
                job.encoded_duration_seconds = update.encoded_duration_seconds
            job.updated_at = datetime.now()
            self._write(job)

        self.logger.debug(
            f"Job {job_id}: {job.status.value} {job.progress_percent}% - {job.current_step_label}"
        )
        return job

    @staticmethod
    def _same_terminal_update(job: RenderJob, update: StatusUpdate) -> bool:
        if update.status != job.status:
            return False
        if job.status == JobStatus.COMPLETED:
            return update.video_url == job.video_url
        return update.error_message == job.error_message
