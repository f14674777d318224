"""
Worker process for executing jobs.

Each Worker claims one job at a time through the Lease Manager, executes it,
and finalizes it according to the job lifecycle. Workers never talk to each
other; all coordination happens in the database.
"""

import asyncio
import logging
import os
import signal
import time
from collections.abc import Callable
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from jobqueue.config import get_settings
from jobqueue.constants import SPAN_EXECUTE_JOB, SPAN_FINALIZE_JOB
from jobqueue.db import close_db, get_engine, init_db
from jobqueue.db.connection import get_session_factory
from jobqueue.db.models import utcnow
from jobqueue.db.repository import JobRepository
from jobqueue.observability.logging import bind_context, clear_context, setup_logging
from jobqueue.observability.metrics import get_metrics, setup_metrics
from jobqueue.observability.tracing import get_tracer, instrument_sqlalchemy, setup_tracing
from jobqueue.types.job import ClaimedJob, JobContext, JobRecord, JobResult
from jobqueue.worker.handlers import execute_job
from jobqueue.worker.lease import LeaseManager

logger = logging.getLogger(__name__)


class Worker:
    """
    Job worker that polls for and executes jobs.

    Features:
    - One lease per iteration via the LeaseManager
    - Handler failures, exceptions and timeouts become retry/DEAD transitions
    - Fixed backoff after an empty claim, cut short by notify()
    - Graceful shutdown: the in-flight job is finished before stopping
    """

    def __init__(
        self,
        worker_id: str | None = None,
        lease_duration: float | None = None,
        poll_interval: float | None = None,
        execution_timeout: float | None = None,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        lease_manager: LeaseManager | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        """
        Initialize the worker.

        Args:
            worker_id: Unique worker identifier. Defaults to hostname + PID.
            lease_duration: Seconds a claimed job stays leased.
            poll_interval: Seconds to back off when the queue is empty.
            execution_timeout: Seconds a handler may run; defaults to the lease duration.
            session_factory: Session factory; defaults to the one set up by init_db().
            lease_manager: Lease manager to claim through.
            clock: Source of finalize timestamps.

        Raises:
            ValueError: If the lease duration or execution timeout is not positive.
        """
        settings = get_settings()

        self.worker_id = worker_id or settings.worker_id or f"{os.uname().nodename}-{os.getpid()}"
        self.lease_duration = (
            lease_duration
            if lease_duration is not None
            else settings.worker_lease_duration_seconds
        )
        if self.lease_duration <= 0:
            raise ValueError("lease_duration must be positive")
        self.poll_interval = (
            poll_interval
            if poll_interval is not None
            else settings.worker_poll_interval_seconds
        )
        if execution_timeout is None:
            execution_timeout = settings.worker_execution_timeout_seconds
        self.execution_timeout = (
            execution_timeout if execution_timeout is not None else self.lease_duration
        )
        if self.execution_timeout <= 0:
            raise ValueError("execution_timeout must be positive")
        if self.execution_timeout > self.lease_duration:
            logger.warning(
                "Execution timeout exceeds lease duration; jobs may run twice",
                extra={
                    "worker_id": self.worker_id,
                    "execution_timeout": self.execution_timeout,
                    "lease_duration": self.lease_duration,
                },
            )

        self._session_factory = session_factory
        self._clock = clock
        self._lease_manager = lease_manager or LeaseManager(
            session_factory=session_factory,
            clock=clock,
        )
        self._running = False
        self._wakeup = asyncio.Event()
        self._metrics = get_metrics()

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Run the claim/execute/finalize loop until stop() is called."""
        bind_context(worker_id=self.worker_id)
        logger.info(
            "Worker starting",
            extra={"worker_id": self.worker_id, "lease_duration": self.lease_duration}
        )

        self._running = True

        while self._running:
            try:
                processed = await self.run_once()
            except Exception as e:
                logger.exception(
                    f"Error in worker loop: {e}",
                    extra={"worker_id": self.worker_id}
                )
                processed = False

            if not processed and self._running:
                await self._backoff()

        logger.info("Worker stopped", extra={"worker_id": self.worker_id})
        clear_context()

    async def stop(self) -> None:
        """Stop the worker gracefully."""
        logger.info("Worker stopping", extra={"worker_id": self.worker_id})
        self._running = False
        self._wakeup.set()

    def notify(self) -> None:
        """Wake the worker from its backoff so it claims immediately."""
        self._wakeup.set()

    async def _backoff(self) -> None:
        try:
            await asyncio.wait_for(self._wakeup.wait(), timeout=self.poll_interval)
        except asyncio.TimeoutError:
            pass
        self._wakeup.clear()

    async def run_once(self) -> bool:
        """
        Claim and process at most one job.

        Returns:
            True if a job was claimed, False if the queue had nothing eligible.

        Raises:
            SQLAlchemyError: If claiming or finalizing fails in the store.
        """
        claimed = await self._lease_manager.claim(
            worker_id=self.worker_id,
            lease_duration=self.lease_duration,
        )
        if claimed is None:
            return False

        await self.process(claimed)
        return True

    async def process(self, claimed: ClaimedJob) -> JobRecord | None:
        """
        Execute a claimed job and record the outcome.

        Args:
            claimed: The job returned by the Lease Manager.

        Returns:
            The finalized JobRecord, or None if the lease was lost meanwhile.
        """
        context = JobContext.from_claim(claimed)
        start_time = time.monotonic()

        logger.info(
            "Executing job",
            extra={
                "job_id": str(claimed.id),
                "job_type": claimed.job_type,
                "retry_count": context.retry_count,
            }
        )

        with get_tracer().start_as_current_span(SPAN_EXECUTE_JOB) as span:
            span.set_attribute("job_id", str(claimed.id))
            span.set_attribute("job_type", claimed.job_type)
            span.set_attribute("retry_count", context.retry_count)

            result = await execute_job(context, timeout=self.execution_timeout)

        duration = time.monotonic() - start_time
        record = await self._finalize(claimed, result)

        if record is not None:
            self._metrics.record_job_finalized(
                job_type=claimed.job_type,
                state=record.state.value,
                duration_seconds=duration,
            )
            if result.success:
                logger.info(
                    "Job completed successfully",
                    extra={"job_id": str(claimed.id), "duration": f"{duration:.2f}s"}
                )
            else:
                logger.warning(
                    "Job failed",
                    extra={
                        "job_id": str(claimed.id),
                        "error": result.error,
                        "state": record.state.value,
                        "retry_count": record.retry_count,
                    }
                )
        return record

    async def _finalize(self, claimed: ClaimedJob, result: JobResult) -> JobRecord | None:
        session_factory = self._session_factory or get_session_factory()

        with get_tracer().start_as_current_span(SPAN_FINALIZE_JOB) as span:
            span.set_attribute("job_id", str(claimed.id))
            span.set_attribute("success", result.success)

            async with session_factory() as session, session.begin():
                repo = JobRepository(session)
                if result.success:
                    return await repo.mark_succeeded(
                        job_id=claimed.id,
                        worker_id=self.worker_id,
                        now=self._clock(),
                    )
                return await repo.mark_failed(
                    job_id=claimed.id,
                    worker_id=self.worker_id,
                    error=result.error or "Unknown error",
                    now=self._clock(),
                )


class WorkerPool:
    """
    Several workers sharing one process and one connection pool.

    Each member has its own identity and claims independently; the pool only
    starts, stops and wakes them together.
    """

    def __init__(self, base_worker_id: str | None = None, concurrency: int | None = None):
        settings = get_settings()
        base = base_worker_id or settings.worker_id or f"{os.uname().nodename}-{os.getpid()}"
        size = concurrency if concurrency is not None else settings.worker_concurrency
        if size < 1:
            raise ValueError("concurrency must be at least 1")
        self.workers = [Worker(worker_id=f"{base}-{n}") for n in range(size)]

    async def start(self) -> None:
        await asyncio.gather(*(worker.start() for worker in self.workers))

    async def stop(self) -> None:
        for worker in self.workers:
            await worker.stop()

    def notify(self) -> None:
        for worker in self.workers:
            worker.notify()


async def run_async() -> None:
    """Run the worker pool asynchronously."""
    setup_logging()
    setup_metrics()
    setup_tracing()
    await init_db()
    instrument_sqlalchemy(get_engine())

    pool = WorkerPool()

    # Handle shutdown signals
    loop = asyncio.get_running_loop()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(
            sig,
            lambda: asyncio.create_task(pool.stop())
        )

    try:
        await pool.start()
    finally:
        await close_db()


def run() -> None:
    """Run the worker."""
    asyncio.run(run_async())


if __name__ == "__main__":
    run()
