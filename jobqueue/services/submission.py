"""
Idempotent job submission.

Turns a (job_type, payload, idempotency_key) triple into exactly one Job
Record, no matter how many times or how concurrently the same key is sent.
"""

import logging
from collections.abc import Callable
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from jobqueue.config import get_settings
from jobqueue.constants import SPAN_SUBMIT_JOB
from jobqueue.db.connection import get_session_factory
from jobqueue.db.models import utcnow
from jobqueue.db.repository import JobRepository
from jobqueue.observability.metrics import get_metrics
from jobqueue.observability.tracing import get_tracer
from jobqueue.types.job import SubmitResult

logger = logging.getLogger(__name__)


class SubmissionService:
    """
    Intent-recording front end of the queue.

    A duplicate submission is never an error: the conflicting row is looked
    up and returned with ``created=False``.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        clock: Callable[[], datetime] = utcnow,
        on_submitted: Callable[[SubmitResult], None] | None = None,
    ):
        """
        Initialize the service.

        Args:
            session_factory: Session factory; defaults to the one set up by init_db().
            clock: Source of creation timestamps.
            on_submitted: Called after a new job is committed (not on replays).
        """
        self._session_factory = session_factory
        self._clock = clock
        self._on_submitted = on_submitted
        self._settings = get_settings()

    async def submit(
        self,
        job_type: str,
        payload: bytes,
        idempotency_key: str,
        max_retries: int | None = None,
    ) -> SubmitResult:
        """
        Record a job submission idempotently.

        Args:
            job_type: Handler type of the job.
            payload: Opaque payload bytes.
            idempotency_key: Stable caller-supplied key.
            max_retries: Retry budget; defaults to the configured default.

        Returns:
            SubmitResult with the job id and its current state.

        Raises:
            ValueError: If an argument is invalid.
        """
        if not job_type:
            raise ValueError("job_type must be a non-empty string")
        if not idempotency_key:
            raise ValueError("idempotency_key must be a non-empty string")
        if max_retries is None:
            max_retries = self._settings.default_max_retries
        if max_retries < 0:
            raise ValueError("max_retries must be >= 0")

        session_factory = self._session_factory or get_session_factory()

        with get_tracer().start_as_current_span(SPAN_SUBMIT_JOB) as span:
            span.set_attribute("job_type", job_type)
            span.set_attribute("idempotency_key", idempotency_key)

            async with session_factory() as session, session.begin():
                repo = JobRepository(session)
                record, created = await repo.create_job(
                    job_type=job_type,
                    payload=bytes(payload),
                    idempotency_key=idempotency_key,
                    max_retries=max_retries,
                    now=self._clock(),
                )

            span.set_attribute("job_id", str(record.id))
            span.set_attribute("created", created)

        result = SubmitResult(job_id=record.id, state=record.state, created=created)

        metrics = get_metrics()
        if created:
            metrics.record_job_submitted(job_type)
            if self._on_submitted is not None:
                self._on_submitted(result)
        else:
            metrics.record_job_deduplicated(job_type)
            logger.debug(
                "Duplicate submission resolved to existing job",
                extra={"job_id": str(record.id), "idempotency_key": idempotency_key},
            )

        return result
