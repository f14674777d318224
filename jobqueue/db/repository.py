"""
Job repository for database operations.
Implements the atomic data access patterns the queue is built on.
"""

import logging
from collections.abc import Sequence
from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from jobqueue.constants import MAX_ERROR_LENGTH, JobState
from jobqueue.db.models import Job, utcnow
from jobqueue.lifecycle import ensure_transition, failure_outcome
from jobqueue.types.job import JobRecord

logger = logging.getLogger(__name__)

jobs = Job.__table__


class JobRepository:
    """
    Repository for job database operations.

    Implements atomic operations for:
    - Job submission with idempotency (INSERT ... ON CONFLICT DO NOTHING)
    - Lease claiming with FOR UPDATE SKIP LOCKED and a conditional UPDATE
    - Guarded finalize transitions
    - Operator requeue of dead-lettered jobs

    All methods return JobRecord snapshots built from RETURNING rows, never
    ORM instances, so no state is cached in the session between calls.
    Transaction boundaries belong to the caller.
    """

    def __init__(self, session: AsyncSession):
        """
        Initialize the repository with a database session.

        Args:
            session: The async database session.
        """
        self._session = session

    @property
    def dialect_name(self) -> str:
        return self._session.get_bind().dialect.name

    async def create_job(
        self,
        job_type: str,
        payload: bytes,
        idempotency_key: str,
        max_retries: int,
        now: datetime | None = None,
    ) -> tuple[JobRecord, bool]:
        """
        Create a new job, or return the existing one for this idempotency key.

        Args:
            job_type: The handler type of the job.
            payload: Opaque payload bytes.
            idempotency_key: Caller-supplied key; unique across all jobs.
            max_retries: Retry budget for the job.
            now: Creation timestamp (FIFO ordering key).

        Returns:
            Tuple of (JobRecord, created) where created is True if a new row was inserted.
        """
        now = now or utcnow()
        values = {
            "id": uuid4(),
            "job_type": job_type,
            "payload": payload,
            "idempotency_key": idempotency_key,
            "state": JobState.QUEUED,
            "retry_count": 0,
            "max_retries": max_retries,
            "created_at": now,
            "updated_at": now,
        }

        record = await self._insert_on_conflict_do_nothing(values)
        if record is not None:
            logger.info(
                "Created new job",
                extra={"job_id": str(record.id), "job_type": job_type},
            )
            return record, True

        # The insert revealed a conflicting row; fetch it
        existing = await self.get_job_by_idempotency_key(idempotency_key)
        if existing is None:
            raise RuntimeError("Job should exist after idempotency conflict")

        logger.info(
            "Returned existing job (idempotent)",
            extra={"job_id": str(existing.id), "idempotency_key": idempotency_key},
        )
        return existing, False

    async def _insert_on_conflict_do_nothing(self, values: dict) -> JobRecord | None:
        """
        INSERT ... ON CONFLICT (idempotency_key) DO NOTHING RETURNING *.

        Returns None when the unique constraint rejected the row, which means
        another submission with the same key already exists.
        """
        if self.dialect_name == "postgresql":
            dialect_insert = pg_insert
        elif self.dialect_name == "sqlite":
            dialect_insert = sqlite_insert
        else:
            raise NotImplementedError(
                f"Unsupported database dialect: {self.dialect_name}"
            )
        stmt = (
            dialect_insert(jobs)
            .values(**values)
            .on_conflict_do_nothing(index_elements=[jobs.c.idempotency_key])
            .returning(*jobs.c)
        )
        result = await self._session.execute(stmt)
        row = result.mappings().one_or_none()
        return JobRecord.from_row(row) if row is not None else None

    async def get_job(self, job_id: UUID) -> JobRecord | None:
        """
        Get a job by ID.

        Args:
            job_id: The job UUID.

        Returns:
            The JobRecord or None if not found.
        """
        result = await self._session.execute(select(jobs).where(jobs.c.id == job_id))
        row = result.mappings().one_or_none()
        return JobRecord.from_row(row) if row is not None else None

    async def get_job_by_idempotency_key(self, idempotency_key: str) -> JobRecord | None:
        """
        Get a job by idempotency key.

        Args:
            idempotency_key: The idempotency key.

        Returns:
            The JobRecord or None if not found.
        """
        result = await self._session.execute(
            select(jobs).where(jobs.c.idempotency_key == idempotency_key)
        )
        row = result.mappings().one_or_none()
        return JobRecord.from_row(row) if row is not None else None

    async def list_jobs(
        self,
        state: JobState | None = None,
        job_type: str | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> tuple[Sequence[JobRecord], int]:
        """
        List jobs with optional filtering, newest first.

        Args:
            state: Optional state filter.
            job_type: Optional job type filter.
            limit: Maximum number of jobs to return.
            offset: Offset for pagination.

        Returns:
            Tuple of (jobs, total_count).
        """
        filters = []
        if state is not None:
            filters.append(jobs.c.state == state)
        if job_type is not None:
            filters.append(jobs.c.job_type == job_type)

        count_stmt = select(func.count()).select_from(jobs).where(*filters)
        total = (await self._session.execute(count_stmt)).scalar() or 0

        stmt = (
            select(jobs)
            .where(*filters)
            .order_by(jobs.c.created_at.desc(), jobs.c.id)
            .limit(limit)
            .offset(offset)
        )
        result = await self._session.execute(stmt)
        return [JobRecord.from_row(row) for row in result.mappings().all()], total

    @staticmethod
    def eligible_for_claim(now: datetime):
        """
        SQL predicate for claimable rows.

        QUEUED rows without a live lease, plus RUNNING rows whose lease has
        expired (the crash-recovery edge).
        """
        return or_(
            and_(
                jobs.c.state == JobState.QUEUED,
                or_(jobs.c.lease_expiry.is_(None), jobs.c.lease_expiry < now),
            ),
            and_(
                jobs.c.state == JobState.RUNNING,
                jobs.c.lease_expiry < now,
            ),
        )

    async def find_claim_candidate(self, now: datetime) -> tuple[UUID, JobState] | None:
        """
        Lock the oldest eligible row, skipping rows locked by other claimers.

        On stores without row locks (SQLite) the FOR UPDATE clause is not
        rendered and the subsequent conditional UPDATE decides the race.

        Returns:
            Tuple of (job_id, current_state) or None if nothing is eligible.
        """
        stmt = (
            select(jobs.c.id, jobs.c.state)
            .where(self.eligible_for_claim(now))
            .order_by(jobs.c.created_at, jobs.c.id)
            .limit(1)
            .with_for_update(skip_locked=True)
        )
        row = (await self._session.execute(stmt)).one_or_none()
        if row is None:
            return None
        return row.id, JobState(row.state)

    async def lease_job(
        self,
        job_id: UUID,
        worker_id: str,
        lease_expiry: datetime,
        now: datetime,
    ) -> JobRecord | None:
        """
        Transition an eligible row to RUNNING under the given owner.

        The eligibility predicate is re-checked in the UPDATE itself, so a row
        that another claimer took in the meantime is left untouched.

        Returns:
            The leased JobRecord, or None if the row was no longer eligible.
        """
        stmt = (
            update(jobs)
            .where(and_(jobs.c.id == job_id, self.eligible_for_claim(now)))
            .values(
                state=JobState.RUNNING,
                lease_owner=worker_id,
                lease_expiry=lease_expiry,
                updated_at=now,
            )
            .returning(*jobs.c)
        )
        result = await self._session.execute(stmt)
        row = result.mappings().one_or_none()
        return JobRecord.from_row(row) if row is not None else None

    async def mark_succeeded(
        self,
        job_id: UUID,
        worker_id: str,
        now: datetime | None = None,
    ) -> JobRecord | None:
        """
        Transition RUNNING -> SUCCESS.

        Args:
            job_id: The job UUID.
            worker_id: The worker identifier (must still own the lease).
            now: Transition timestamp.

        Returns:
            Updated JobRecord or None if the worker no longer owns the job.
        """
        now = now or utcnow()
        stmt = (
            update(jobs)
            .where(
                and_(
                    jobs.c.id == job_id,
                    jobs.c.state == JobState.RUNNING,
                    jobs.c.lease_owner == worker_id,
                )
            )
            .values(
                state=JobState.SUCCESS,
                lease_owner=None,
                lease_expiry=None,
                completed_at=now,
                updated_at=now,
            )
            .returning(*jobs.c)
        )
        row = (await self._session.execute(stmt)).mappings().one_or_none()
        if row is None:
            logger.warning(
                "Lost lease before success could be recorded",
                extra={"job_id": str(job_id), "worker_id": worker_id},
            )
            return None

        logger.info("Job succeeded", extra={"job_id": str(job_id)})
        return JobRecord.from_row(row)

    async def mark_failed(
        self,
        job_id: UUID,
        worker_id: str,
        error: str,
        now: datetime | None = None,
    ) -> JobRecord | None:
        """
        Handle job failure. Either requeue for retry or move to DEAD.

        The row is read under FOR UPDATE and written back with a guard on the
        observed retry_count, so the decision and the write act on the same
        version of the row.

        Args:
            job_id: The job UUID.
            worker_id: The worker identifier (must still own the lease).
            error: Error message.
            now: Transition timestamp.

        Returns:
            Updated JobRecord or None if the worker no longer owns the job.
        """
        now = now or utcnow()
        owned = and_(
            jobs.c.id == job_id,
            jobs.c.state == JobState.RUNNING,
            jobs.c.lease_owner == worker_id,
        )

        current = (
            await self._session.execute(
                select(jobs.c.retry_count, jobs.c.max_retries)
                .where(owned)
                .with_for_update()
            )
        ).one_or_none()
        if current is None:
            logger.warning(
                "Lost lease before failure could be recorded",
                extra={"job_id": str(job_id), "worker_id": worker_id},
            )
            return None

        next_state, next_count = failure_outcome(current.retry_count, current.max_retries)
        ensure_transition(JobState.RUNNING, next_state)

        stmt = (
            update(jobs)
            .where(and_(owned, jobs.c.retry_count == current.retry_count))
            .values(
                state=next_state,
                retry_count=next_count,
                lease_owner=None,
                lease_expiry=None,
                last_error=error[:MAX_ERROR_LENGTH],
                completed_at=now if next_state == JobState.DEAD else None,
                updated_at=now,
            )
            .returning(*jobs.c)
        )
        row = (await self._session.execute(stmt)).mappings().one_or_none()
        if row is None:
            logger.warning(
                "Job changed while recording failure",
                extra={"job_id": str(job_id), "worker_id": worker_id},
            )
            return None

        if next_state == JobState.DEAD:
            logger.warning(
                f"Job moved to DEAD after {next_count} failures",
                extra={"job_id": str(job_id), "error": error},
            )
        else:
            logger.info(
                "Job queued for retry",
                extra={"job_id": str(job_id), "retry_count": next_count},
            )
        return JobRecord.from_row(row)

    async def requeue_dead(
        self,
        job_id: UUID,
        reset_retries: bool = True,
        now: datetime | None = None,
    ) -> JobRecord | None:
        """
        Put a dead-lettered job back in the queue.

        Args:
            job_id: The job UUID.
            reset_retries: Whether to reset the retry counter to 0.
            now: Transition timestamp.

        Returns:
            Updated JobRecord or None if not found or not DEAD.
        """
        now = now or utcnow()
        values = {
            "state": JobState.QUEUED,
            "updated_at": now,
            "completed_at": None,
            "last_error": None,
        }
        if reset_retries:
            values["retry_count"] = 0

        stmt = (
            update(jobs)
            .where(and_(jobs.c.id == job_id, jobs.c.state == JobState.DEAD))
            .values(**values)
            .returning(*jobs.c)
        )
        row = (await self._session.execute(stmt)).mappings().one_or_none()
        if row is None:
            return None

        logger.info("Dead job requeued", extra={"job_id": str(job_id)})
        return JobRecord.from_row(row)

    async def get_queue_depth(self, now: datetime | None = None) -> int:
        """
        Get the number of jobs currently eligible for claim.

        Returns:
            Number of claimable jobs.
        """
        now = now or utcnow()
        stmt = select(func.count()).select_from(jobs).where(self.eligible_for_claim(now))
        return (await self._session.execute(stmt)).scalar() or 0

    async def get_job_stats(self) -> dict[str, int]:
        """
        Get job counts by state.

        Returns:
            Dictionary of state -> count, with every state present.
        """
        stmt = select(jobs.c.state, func.count()).group_by(jobs.c.state)
        result = await self._session.execute(stmt)
        stats = {state.value: 0 for state in JobState}
        for state, count in result.all():
            stats[JobState(state).value] = count
        return stats

