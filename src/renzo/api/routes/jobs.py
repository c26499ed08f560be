"""Image job API endpoints.

- POST /api/jobs - Submit a photo transformation to the AI provider
- GET /api/jobs/{job_id} - Current state of a job
- POST /api/jobs/{job_id}/check - Ask the provider for a job's status right now
- GET /api/projects/{project_id}/jobs - Jobs of a project, newest first

Jobs are only visible to the user who submitted them.
"""

from datetime import datetime
from typing import Optional
from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from renzo.api.dependencies import (
    get_cache,
    get_current_user_id,
    get_image_provider,
    get_job_sync_scheduler,
    get_result_store,
    get_settings,
    get_uow_factory,
)
from renzo.core.config import Settings
from renzo.models.job import Job
from renzo.services.cache import QueryCache, project_images_key
from renzo.services.exceptions import (
    InsufficientCreditsError,
    JobNotFoundError,
    ServiceError,
)
from renzo.services.image_generation.base import ImageGenerationProvider
from renzo.services.image_generation.prompts import TRANSFORMATION_TYPES
from renzo.services.jobs.submission import submit_job
from renzo.services.jobs.synchronizer import JobStatusSynchronizer
from renzo.services.storage.result_store import ResultStore
from renzo.workers.job_sync_worker import JobSyncScheduler

logger = structlog.get_logger()
router = APIRouter(tags=["jobs"])


# Request/Response Models


class SubmitJobRequest(BaseModel):
    """Request model for submitting an image transformation."""

    project_id: str = Field(..., description="Project the photo belongs to", min_length=1)
    transformation_type: str = Field(
        ...,
        description=f"One of: {', '.join(sorted(TRANSFORMATION_TYPES))}",
    )
    original_url: str = Field(..., description="Public URL of the source photo", min_length=1)
    custom_prompt: Optional[str] = Field(
        default=None,
        description="Free-text instructions (required for the 'custom' type)",
    )
    width: Optional[int] = Field(default=None, gt=0, description="Source image width in pixels")
    height: Optional[int] = Field(default=None, gt=0, description="Source image height in pixels")


class JobDTO(BaseModel):
    """Data Transfer Object for image jobs in API responses."""

    id: UUID = Field(..., description="Job ID")
    project_id: str = Field(..., description="Project the job belongs to")
    status: str = Field(..., description="Job status (pending, processing, completed, failed)")
    transformation_type: str = Field(..., description="Requested transformation")
    original_url: str = Field(..., description="Source photo URL")
    output_url: Optional[str] = Field(
        default=None, description="Generated image URL (null until completed)"
    )
    error_message: Optional[str] = Field(
        default=None, description="Failure reason (null unless failed)"
    )
    credit_cost: int = Field(..., description="Credits debited when the job completes")
    created_at: datetime = Field(..., description="Submission time (UTC)")
    completed_at: Optional[datetime] = Field(
        default=None, description="Time the job reached a terminal state (UTC)"
    )

    @classmethod
    def from_job(cls, job: Job) -> "JobDTO":
        return cls(
            id=job.id,
            project_id=job.project_id,
            status=job.status.value,
            transformation_type=job.transformation_type,
            original_url=job.original_url,
            output_url=job.output_url,
            error_message=job.error_message,
            credit_cost=job.credit_cost,
            created_at=job.created_at,
            completed_at=job.completed_at,
        )


class ProjectJobsResponse(BaseModel):
    """Response model for a project's job list."""

    project_id: str = Field(..., description="Project ID")
    jobs: list[JobDTO] = Field(..., description="Jobs, newest first")


# Helpers


async def _load_owned_job(uow_factory, job_id: UUID, user_id: str) -> Job:
    async with await uow_factory() as uow:
        job = await uow.jobs.get_by_id(job_id)

    # Foreign jobs are indistinguishable from missing ones
    if job is None or job.user_id != user_id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Job not found")
    return job


# Endpoints


@router.post("/api/jobs", response_model=JobDTO, status_code=status.HTTP_201_CREATED)
async def create_job(
    request: SubmitJobRequest,
    user_id: str = Depends(get_current_user_id),
    uow_factory=Depends(get_uow_factory),
    provider: ImageGenerationProvider = Depends(get_image_provider),
    settings: Settings = Depends(get_settings),
    cache: QueryCache = Depends(get_cache),
    scheduler: Optional[JobSyncScheduler] = Depends(get_job_sync_scheduler),
    result_store: Optional[ResultStore] = Depends(get_result_store),
) -> JobDTO:
    """Submit a photo transformation.

    Returns:
        201: The created job (usually processing, completed if the provider
             answered synchronously)

    Raises:
        HTTPException 400: Unknown transformation type or invalid prompt
        HTTPException 402: Balance does not cover the job
        HTTPException 502: Provider rejected or could not be reached
    """
    try:
        job = await submit_job(
            uow_factory,
            provider,
            user_id=user_id,
            project_id=request.project_id,
            transformation_type=request.transformation_type,
            original_url=request.original_url,
            custom_prompt=request.custom_prompt,
            width=request.width,
            height=request.height,
            credit_cost=settings.image_credit_cost,
            cache=cache,
            result_store=result_store,
        )
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except InsufficientCreditsError as e:
        raise HTTPException(
            status_code=status.HTTP_402_PAYMENT_REQUIRED,
            detail={
                "error": "Insufficient credits",
                "balance": e.balance,
                "required": e.required,
            },
        )
    except ServiceError as e:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=f"Image generation provider error: {e}",
        )

    if scheduler is not None:
        scheduler.track([job])

    return JobDTO.from_job(job)


@router.get("/api/jobs/{job_id}", response_model=JobDTO)
async def get_job(
    job_id: UUID,
    user_id: str = Depends(get_current_user_id),
    uow_factory=Depends(get_uow_factory),
) -> JobDTO:
    """Get a job's current state as stored."""
    job = await _load_owned_job(uow_factory, job_id, user_id)
    return JobDTO.from_job(job)


@router.post("/api/jobs/{job_id}/check", response_model=JobDTO)
async def check_job(
    job_id: UUID,
    user_id: str = Depends(get_current_user_id),
    uow_factory=Depends(get_uow_factory),
    provider: ImageGenerationProvider = Depends(get_image_provider),
    cache: QueryCache = Depends(get_cache),
    result_store: Optional[ResultStore] = Depends(get_result_store),
) -> JobDTO:
    """Check one job with the provider immediately and apply the result.

    Safe to call while the background sync is polling the same job: the
    terminal transition and the credit debit happen at most once.

    Raises:
        HTTPException 404: Job not found
        HTTPException 502: Provider could not be reached
    """
    job = await _load_owned_job(uow_factory, job_id, user_id)

    checker = JobStatusSynchronizer(uow_factory, provider, cache=cache, result_store=result_store)
    try:
        current = await checker.check_one(job)
    except JobNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Job not found")
    except ServiceError as e:
        logger.warning("job.manual_check_failed", job_id=str(job_id), error=str(e))
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=f"Image generation provider error: {e}",
        )

    return JobDTO.from_job(current)


@router.get("/api/projects/{project_id}/jobs", response_model=ProjectJobsResponse)
async def list_project_jobs(
    project_id: str,
    user_id: str = Depends(get_current_user_id),
    uow_factory=Depends(get_uow_factory),
    cache: QueryCache = Depends(get_cache),
) -> ProjectJobsResponse:
    """List the caller's jobs for a project (cached briefly, invalidated on change)."""
    key = project_images_key(project_id) + (user_id,)
    cached = cache.get(key)
    if cached is not None:
        return cached

    async with await uow_factory() as uow:
        jobs = await uow.jobs.list_by_project(project_id, user_id=user_id)

    response = ProjectJobsResponse(
        project_id=project_id, jobs=[JobDTO.from_job(job) for job in jobs]
    )
    cache.set(key, response)
    return response
