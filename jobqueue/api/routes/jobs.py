"""
Job submission and inspection routes.
"""

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from jobqueue.constants import API_V1_PREFIX, JobState
from jobqueue.db import get_async_session
from jobqueue.db.repository import JobRepository
from jobqueue.observability.metrics import get_metrics
from jobqueue.services.submission import SubmissionService
from jobqueue.types.api import (
    JobListResponse,
    JobResponse,
    JobStatsResponse,
    RequeueJobRequest,
    SubmitJobRequest,
    SubmitJobResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix=f"{API_V1_PREFIX}/jobs", tags=["Jobs"])


def get_submission_service() -> SubmissionService:
    """Dependency providing the submission service."""
    return SubmissionService()


@router.post(
    "",
    response_model=SubmitJobResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Submit a job",
    description=(
        "Record a job. Replays with the same idempotency key return the "
        "existing job with the same 202 response."
    ),
)
async def submit_job(
    request: SubmitJobRequest,
    service: SubmissionService = Depends(get_submission_service),
) -> SubmitJobResponse:
    """
    Submit a job idempotently.

    Args:
        request: Job submission request.
        service: Submission service.

    Returns:
        SubmitJobResponse with the job id and its current state.
    """
    result = await service.submit(
        job_type=request.job_type,
        payload=request.payload_bytes(),
        idempotency_key=request.idempotency_key,
        max_retries=request.max_retries,
    )

    return SubmitJobResponse(
        id=result.job_id,
        state=result.state,
        created=result.created,
        message="Job accepted" if result.created else "Job already exists (idempotent)",
    )


@router.get(
    "/stats/summary",
    response_model=JobStatsResponse,
    summary="Get job statistics",
    description="Get job counts by state and the number of claimable jobs.",
)
async def get_job_stats(
    session: AsyncSession = Depends(get_async_session),
) -> JobStatsResponse:
    repo = JobRepository(session)
    stats = await repo.get_job_stats()
    queue_depth = await repo.get_queue_depth()

    get_metrics().update_queue_depth(queue_depth)

    return JobStatsResponse(stats=stats, queue_depth=queue_depth)


@router.get(
    "/{job_id}",
    response_model=JobResponse,
    summary="Get job details",
    description="Get detailed information about a specific job.",
)
async def get_job(
    job_id: UUID,
    session: AsyncSession = Depends(get_async_session),
) -> JobResponse:
    """
    Get job details by ID.

    Raises:
        HTTPException: If the job does not exist.
    """
    repo = JobRepository(session)
    record = await repo.get_job(job_id)

    if record is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Job not found",
        )

    return JobResponse.from_record(record)


@router.get(
    "",
    response_model=JobListResponse,
    summary="List jobs",
    description="List jobs, newest first, with optional filtering.",
)
async def list_jobs(
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=20, ge=1, le=100),
    state: JobState | None = Query(default=None),
    job_type: str | None = Query(default=None),
    session: AsyncSession = Depends(get_async_session),
) -> JobListResponse:
    repo = JobRepository(session)
    offset = (page - 1) * page_size

    records, total = await repo.list_jobs(
        state=state,
        job_type=job_type,
        limit=page_size,
        offset=offset,
    )

    return JobListResponse(
        jobs=[JobResponse.from_record(record) for record in records],
        total=total,
        page=page,
        page_size=page_size,
        has_next=(page * page_size) < total,
    )


@router.post(
    "/{job_id}/requeue",
    response_model=JobResponse,
    summary="Requeue a dead job",
    description="Put a job that exhausted its retries back in the queue.",
)
async def requeue_job(
    job_id: UUID,
    request: RequeueJobRequest | None = None,
    session: AsyncSession = Depends(get_async_session),
) -> JobResponse:
    """
    Requeue a job from DEAD.

    Raises:
        HTTPException: 404 if the job does not exist, 409 if it is not DEAD.
    """
    request = request or RequeueJobRequest()
    repo = JobRepository(session)

    record = await repo.requeue_dead(
        job_id=job_id,
        reset_retries=request.reset_retries,
    )
    if record is not None:
        logger.info("Job requeued from DEAD", extra={"job_id": str(job_id)})
        return JobResponse.from_record(record)

    existing = await repo.get_job(job_id)
    if existing is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Job not found",
        )
    raise HTTPException(
        status_code=status.HTTP_409_CONFLICT,
        detail=f"Job is not dead (current state: {existing.state.value})",
    )
