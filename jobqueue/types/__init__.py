"""
Type definitions for the job queue.
Contains input/output type definitions for all functions, grouped by module.
"""

from jobqueue.types.api import (
    HealthResponse,
    JobListResponse,
    JobResponse,
    JobStatsResponse,
    RequeueJobRequest,
    SubmitJobRequest,
    SubmitJobResponse,
)
from jobqueue.types.job import (
    ClaimedJob,
    JobContext,
    JobRecord,
    JobResult,
    SubmitResult,
)

__all__ = [
    # API types
    "SubmitJobRequest",
    "SubmitJobResponse",
    "JobResponse",
    "JobListResponse",
    "JobStatsResponse",
    "RequeueJobRequest",
    "HealthResponse",
    # Job types
    "JobRecord",
    "ClaimedJob",
    "JobContext",
    "JobResult",
    "SubmitResult",
]
