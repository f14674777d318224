"""
Lease Manager.

Claims exactly one eligible job per call and hands it to a worker under a
time-bounded lease. Mutual exclusion between concurrently claiming workers
comes entirely from the database:

1. ``SELECT ... FOR UPDATE SKIP LOCKED LIMIT 1`` locks the oldest eligible
   row, so a contending claimer moves past it instead of queueing behind it.
2. ``UPDATE ... WHERE id = :id AND <eligible>`` re-checks eligibility while
   writing ownership. On stores without row locks this conditional update is
   the compare-and-swap; losing it means scanning again.

Both steps run in one transaction, so a failure leaves no partial state.
"""

import logging
from collections.abc import Callable
from datetime import datetime, timedelta

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from jobqueue.config import get_settings
from jobqueue.constants import SPAN_CLAIM_JOB, JobState
from jobqueue.db.connection import get_session_factory
from jobqueue.db.models import utcnow
from jobqueue.db.repository import JobRepository
from jobqueue.observability.metrics import get_metrics
from jobqueue.observability.tracing import get_tracer
from jobqueue.types.job import ClaimedJob

logger = logging.getLogger(__name__)


class LeaseManager:
    """
    Store-mediated mutual exclusion over job records.

    A claim that recovers an expired RUNNING lease is handed out exactly like
    a fresh QUEUED claim and does not touch retry_count.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        clock: Callable[[], datetime] = utcnow,
        max_attempts: int | None = None,
    ):
        """
        Initialize the lease manager.

        Args:
            session_factory: Session factory; defaults to the one set up by init_db().
            clock: Source of "now" for eligibility and lease expiry.
            max_attempts: How many candidates to try per claim before giving
                up when other claimers keep winning the race.

        Raises:
            ValueError: If max_attempts is less than 1.
        """
        settings = get_settings()
        self._session_factory = session_factory
        self._clock = clock
        self.max_attempts = (
            max_attempts if max_attempts is not None else settings.claim_max_attempts
        )
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.default_lease_duration = settings.worker_lease_duration_seconds

    async def claim(
        self,
        worker_id: str,
        lease_duration: float | timedelta | None = None,
    ) -> ClaimedJob | None:
        """
        Claim the oldest eligible job for ``worker_id``.

        Args:
            worker_id: Identity of the claiming worker.
            lease_duration: Lease length (seconds or timedelta).

        Returns:
            ClaimedJob snapshot, or None when nothing is eligible.

        Raises:
            ValueError: If the lease duration is not positive.
        """
        duration = self._lease_timedelta(lease_duration)
        session_factory = self._session_factory or get_session_factory()

        with get_tracer().start_as_current_span(SPAN_CLAIM_JOB) as span:
            span.set_attribute("worker_id", worker_id)

            async with session_factory() as session, session.begin():
                claimed = await self._claim_in_session(
                    JobRepository(session), worker_id, duration
                )

            if claimed is not None:
                span.set_attribute("job_id", str(claimed.id))
                span.set_attribute("reclaimed", claimed.reclaimed)

        metrics = get_metrics()
        if claimed is None:
            metrics.record_claim_empty(worker_id)
            return None

        metrics.record_lease_acquired(worker_id)
        if claimed.reclaimed:
            metrics.record_lease_expired(claimed.job_type)
            logger.warning(
                "Reclaimed job with expired lease",
                extra={"job_id": str(claimed.id), "worker_id": worker_id},
            )
        else:
            logger.info(
                "Claimed job",
                extra={"job_id": str(claimed.id), "worker_id": worker_id},
            )
        return claimed

    async def _claim_in_session(
        self,
        repo: JobRepository,
        worker_id: str,
        duration: timedelta,
    ) -> ClaimedJob | None:
        for _ in range(self.max_attempts):
            now = self._clock()
            candidate = await repo.find_claim_candidate(now)
            if candidate is None:
                return None

            job_id, previous_state = candidate
            record = await repo.lease_job(
                job_id=job_id,
                worker_id=worker_id,
                lease_expiry=now + duration,
                now=now,
            )
            if record is not None:
                return ClaimedJob(
                    record=record,
                    reclaimed=previous_state == JobState.RUNNING,
                )

            logger.debug(
                "Lost claim race, scanning again",
                extra={"job_id": str(job_id), "worker_id": worker_id},
            )

        return None

    def _lease_timedelta(self, lease_duration: float | timedelta | None) -> timedelta:
        if lease_duration is None:
            lease_duration = self.default_lease_duration
        if not isinstance(lease_duration, timedelta):
            lease_duration = timedelta(seconds=lease_duration)
        if lease_duration <= timedelta(0):
            raise ValueError("lease_duration must be positive")
        return lease_duration
