"""
API request and response type definitions.
"""

import json
from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field

from jobqueue.constants import JobState
from jobqueue.types.job import JobRecord


class SubmitJobRequest(BaseModel):
    """Request body for submitting a job."""

    job_type: str = Field(..., min_length=1, max_length=255, description="Handler type")
    payload: Any = Field(default=None, description="JSON payload passed to the handler")
    idempotency_key: str = Field(
        ..., min_length=1, max_length=255, description="Stable key deduplicating retries"
    )
    max_retries: int | None = Field(
        default=None, ge=0, le=100, description="Failures allowed before dead-lettering"
    )

    def payload_bytes(self) -> bytes:
        """Serialize the JSON payload to the bytes stored with the job."""
        if self.payload is None:
            return b""
        return json.dumps(self.payload, separators=(",", ":")).encode("utf-8")


class SubmitJobResponse(BaseModel):
    """Response body after submitting a job (new or replayed)."""

    id: UUID
    state: JobState
    created: bool
    message: str = "Job accepted"


class JobResponse(BaseModel):
    """Full job details response."""

    id: UUID
    job_type: str
    idempotency_key: str
    payload: Any
    state: JobState
    retry_count: int
    max_retries: int
    lease_owner: str | None
    lease_expiry: datetime | None
    created_at: datetime
    updated_at: datetime
    completed_at: datetime | None
    last_error: str | None

    @classmethod
    def from_record(cls, record: JobRecord) -> "JobResponse":
        return cls(
            id=record.id,
            job_type=record.job_type,
            idempotency_key=record.idempotency_key,
            payload=_decode_payload(record.payload),
            state=record.state,
            retry_count=record.retry_count,
            max_retries=record.max_retries,
            lease_owner=record.lease_owner,
            lease_expiry=record.lease_expiry,
            created_at=record.created_at,
            updated_at=record.updated_at,
            completed_at=record.completed_at,
            last_error=record.last_error,
        )


def _decode_payload(payload: bytes) -> Any:
    # Payloads are opaque; show JSON when they are JSON, hex otherwise
    if not payload:
        return None
    try:
        return json.loads(payload.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError):
        return payload.hex()


class JobListResponse(BaseModel):
    """Paginated list of jobs."""

    jobs: list[JobResponse]
    total: int
    page: int
    page_size: int
    has_next: bool


class JobStatsResponse(BaseModel):
    """Job counts by state plus the number of claimable jobs."""

    stats: dict[str, int]
    queue_depth: int


class RequeueJobRequest(BaseModel):
    """Request body for requeueing a dead job."""

    reset_retries: bool = Field(
        default=True, description="Reset retry counter to 0"
    )


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str
    database: str
    timestamp: datetime

