"""FastAPI routes for render job status."""

from fastapi import APIRouter, HTTPException, Request

from scenecast.core.errors import InputValidationError
from scenecast.models.schemas import JobListResponse, JobStatusResponse
from scenecast.storage.repository import JobRepository

router = APIRouter(prefix="/jobs", tags=["jobs"])


def get_repository(request: Request) -> JobRepository:
    """Return the repository constructed at application startup."""
    return request.app.state.repository


@router.get("", response_model=JobListResponse)
async def list_jobs(request: Request) -> JobListResponse:
    """List known job ids."""
    return JobListResponse(jobs=get_repository(request).list_jobs())


@router.get("/{job_id}", response_model=JobStatusResponse)
async def get_job_status(job_id: str, request: Request) -> JobStatusResponse:
    """
    Get the current status of a render job.

    Mirrors what the pipeline last wrote: status, progress, step label and,
    once terminal, either the video URL or the error message.
    """
    try:
        job = get_repository(request).load_job(job_id)
    except InputValidationError as e:
        raise HTTPException(status_code=400, detail=e.message) from e

    if job is None:
        raise HTTPException(status_code=404, detail=f"Job not found: {job_id}")
    return JobStatusResponse.from_job(job)
