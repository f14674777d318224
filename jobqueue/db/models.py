"""
SQLAlchemy database models.
Defines the Job table, the sole persisted entity of the queue.
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    Enum,
    Index,
    Integer,
    LargeBinary,
    String,
    Text,
    TypeDecorator,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from jobqueue.constants import DEFAULT_MAX_RETRIES, JobState


def utcnow() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


class UTCDateTime(TypeDecorator):
    """
    Timestamp column that always round-trips as an aware UTC datetime.

    SQLite has no timezone support, so values are stored there as naive UTC
    and re-tagged on the way out.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        value = value.astimezone(timezone.utc)
        if dialect.name == "sqlite":
            return value.replace(tzinfo=None)
        return value

    def process_result_value(self, value: datetime | None, dialect) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class Job(Base):
    """
    Job model representing a unit of work in the queue.

    This is the authoritative source of truth for job state.
    All lifecycle transitions happen as single conditional UPDATEs on this table.

    Key constraints:
    - idempotency_key is unique, so one logical submission creates one row
    - lease_owner and lease_expiry are set together, and only while RUNNING
    - retry_count and max_retries are never negative
    """

    __tablename__ = "jobs"

    # Primary key
    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
        nullable=False,
    )

    # Job definition
    job_type: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        index=True,
    )
    payload: Mapped[bytes] = mapped_column(
        LargeBinary,
        nullable=False,
        default=b"",
    )
    idempotency_key: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )

    # Lifecycle
    state: Mapped[JobState] = mapped_column(
        Enum(
            JobState,
            name="job_state",
            create_constraint=True,
            values_callable=lambda x: [e.value for e in x],
        ),
        nullable=False,
        default=JobState.QUEUED,
    )

    # Retry tracking
    retry_count: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )
    max_retries: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=DEFAULT_MAX_RETRIES,
    )

    # Lease management
    lease_owner: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
    )
    lease_expiry: Mapped[datetime | None] = mapped_column(
        UTCDateTime,
        nullable=True,
    )

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        nullable=False,
        default=utcnow,
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        nullable=False,
        default=utcnow,
    )
    completed_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime,
        nullable=True,
    )

    # Error tracking
    last_error: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )

    __table_args__ = (
        UniqueConstraint("idempotency_key", name="uq_jobs_idempotency_key"),
        # Claim scan: eligible rows in FIFO order
        Index("ix_jobs_claim", "state", "created_at"),
        CheckConstraint("retry_count >= 0", name="ck_jobs_retry_count_non_negative"),
        CheckConstraint("max_retries >= 0", name="ck_jobs_max_retries_non_negative"),
        CheckConstraint(
            "(lease_owner IS NULL) = (lease_expiry IS NULL)",
            name="ck_jobs_lease_fields_together",
        ),
        CheckConstraint(
            "(state = 'running') = (lease_owner IS NOT NULL)",
            name="ck_jobs_lease_iff_running",
        ),
    )

    def __repr__(self) -> str:
        return (
            f"Job(id={self.id}, type={self.job_type}, state={self.state}, "
            f"retry={self.retry_count}/{self.max_retries})"
        )
