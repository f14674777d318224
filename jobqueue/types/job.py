"""
Job-related type definitions for internal use.
"""

import json
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel

from jobqueue.constants import JobState


@dataclass(frozen=True)
class JobRecord:
    """
    Point-in-time snapshot of a row in the jobs table.

    Snapshots are never written back; every transition re-reads the row
    inside its own transaction.
    """

    id: UUID
    job_type: str
    payload: bytes
    idempotency_key: str
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
    def from_row(cls, row: Mapping[str, Any]) -> "JobRecord":
        """Build a snapshot from a result row mapping."""
        return cls(
            id=row["id"],
            job_type=row["job_type"],
            payload=bytes(row["payload"]),
            idempotency_key=row["idempotency_key"],
            state=JobState(row["state"]),
            retry_count=row["retry_count"],
            max_retries=row["max_retries"],
            lease_owner=row["lease_owner"],
            lease_expiry=row["lease_expiry"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            completed_at=row["completed_at"],
            last_error=row["last_error"],
        )


@dataclass(frozen=True)
class ClaimedJob:
    """A job handed to a worker by the Lease Manager."""

    record: JobRecord
    reclaimed: bool = False

    def __post_init__(self) -> None:
        if self.record.lease_owner is None or self.record.lease_expiry is None:
            raise ValueError("Claimed job must carry a lease")

    @property
    def id(self) -> UUID:
        return self.record.id

    @property
    def job_type(self) -> str:
        return self.record.job_type

    @property
    def lease_owner(self) -> str:
        return self.record.lease_owner

    @property
    def lease_expiry(self) -> datetime:
        return self.record.lease_expiry


@dataclass(frozen=True)
class SubmitResult:
    """Outcome of an idempotent submission."""

    job_id: UUID
    state: JobState
    created: bool


class JobResult(BaseModel):
    """
    Result of job execution.
    Returned by job handlers after processing.
    """

    success: bool
    output: dict[str, Any] | None = None
    error: str | None = None
    duration_ms: float | None = None


@dataclass
class JobContext:
    """
    Context passed to job handlers during execution.
    Contains job metadata and the raw payload.
    """

    job_id: UUID
    job_type: str
    payload: bytes
    retry_count: int
    max_retries: int
    lease_owner: str
    lease_expiry: datetime

    @classmethod
    def from_claim(cls, claimed: ClaimedJob) -> "JobContext":
        record = claimed.record
        return cls(
            job_id=record.id,
            job_type=record.job_type,
            payload=record.payload,
            retry_count=record.retry_count,
            max_retries=record.max_retries,
            lease_owner=claimed.lease_owner,
            lease_expiry=claimed.lease_expiry,
        )

    def json(self) -> Any:
        """Decode the payload as UTF-8 JSON (empty payload decodes to {})."""
        if not self.payload:
            return {}
        return json.loads(self.payload.decode("utf-8"))

    @property
    def is_last_attempt(self) -> bool:
        """Check if a failure now would dead-letter the job."""
        return self.retry_count + 1 >= self.max_retries

    @property
    def remaining_retries(self) -> int:
        """Get retries left before the job is dead-lettered."""
        return max(0, self.max_retries - self.retry_count)
