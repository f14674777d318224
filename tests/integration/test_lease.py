"""
Integration tests for the Lease Manager.
"""

import asyncio
from datetime import timedelta

import pytest

from jobqueue.constants import JobState
from jobqueue.db.repository import JobRepository
from jobqueue.services.submission import SubmissionService
from jobqueue.worker.lease import LeaseManager


class TestLeaseManager:
    """Tests for LeaseManager.claim."""

    async def _submit(self, service: SubmissionService, clock, key: str, **kwargs):
        result = await service.submit("echo", b"{}", key, **kwargs)
        clock.advance(seconds=1)
        return result

    async def _get(self, session_factory, job_id):
        async with session_factory() as session:
            return await JobRepository(session).get_job(job_id)

    async def test_empty_queue(self, lease_manager: LeaseManager):
        assert await lease_manager.claim("worker-1", lease_duration=30) is None

    async def test_claim_sets_lease(
        self,
        lease_manager: LeaseManager,
        submission_service: SubmissionService,
        clock,
    ):
        submitted = await self._submit(submission_service, clock, "a")

        claimed = await lease_manager.claim("worker-1", lease_duration=30)

        assert claimed is not None
        assert claimed.id == submitted.job_id
        assert claimed.reclaimed is False
        assert claimed.record.state == JobState.RUNNING
        assert claimed.lease_owner == "worker-1"
        assert claimed.lease_expiry == clock() + timedelta(seconds=30)

    async def test_claims_in_fifo_order(
        self,
        lease_manager: LeaseManager,
        submission_service: SubmissionService,
        clock,
    ):
        submitted = [
            await self._submit(submission_service, clock, key) for key in ("a", "b", "c")
        ]

        claimed = [await lease_manager.claim("worker-1", lease_duration=30) for _ in range(3)]

        assert [job.id for job in claimed] == [result.job_id for result in submitted]
        assert await lease_manager.claim("worker-1", lease_duration=30) is None

    async def test_live_lease_not_claimable(
        self,
        lease_manager: LeaseManager,
        submission_service: SubmissionService,
        clock,
    ):
        await self._submit(submission_service, clock, "a")
        await lease_manager.claim("worker-1", lease_duration=30)

        clock.advance(seconds=29)

        assert await lease_manager.claim("worker-2", lease_duration=30) is None

    async def test_expired_lease_reclaimed(
        self,
        lease_manager: LeaseManager,
        submission_service: SubmissionService,
        session_factory,
        clock,
    ):
        """Test that a crashed worker's job is handed to another worker."""
        submitted = await self._submit(submission_service, clock, "a")
        first = await lease_manager.claim("worker-1", lease_duration=30)

        clock.advance(seconds=31)
        second = await lease_manager.claim("worker-2", lease_duration=30)

        assert second is not None
        assert second.id == submitted.job_id
        assert second.reclaimed is True
        assert second.lease_owner == "worker-2"
        assert second.lease_expiry > first.lease_expiry
        # Reclaiming does not consume a retry
        assert second.record.retry_count == 0

        async with session_factory() as session, session.begin():
            repo = JobRepository(session)
            stale = await repo.mark_succeeded(first.id, "worker-1", now=clock())
            fresh = await repo.mark_succeeded(second.id, "worker-2", now=clock())

        assert stale is None
        assert fresh is not None
        assert fresh.state == JobState.SUCCESS

    async def test_terminal_jobs_never_claimed(
        self,
        lease_manager: LeaseManager,
        submission_service: SubmissionService,
        session_factory,
        clock,
    ):
        submitted = await self._submit(submission_service, clock, "a", max_retries=0)
        await self._submit(submission_service, clock, "b")
        first = await lease_manager.claim("worker-1", lease_duration=30)
        second = await lease_manager.claim("worker-1", lease_duration=30)

        async with session_factory() as session, session.begin():
            repo = JobRepository(session)
            await repo.mark_failed(first.id, "worker-1", error="x", now=clock())
            await repo.mark_succeeded(second.id, "worker-1", now=clock())

        assert (await self._get(session_factory, submitted.job_id)).state == JobState.DEAD

        clock.advance(hours=1)
        assert await lease_manager.claim("worker-2", lease_duration=30) is None

    async def test_requeued_job_claimable(
        self,
        lease_manager: LeaseManager,
        submission_service: SubmissionService,
        session_factory,
        clock,
    ):
        submitted = await submission_service.submit("echo", b"", "a")
        first = await lease_manager.claim("worker-1", lease_duration=30)

        async with session_factory() as session, session.begin():
            await JobRepository(session).mark_failed(first.id, "worker-1", error="x", now=clock())

        retry = await lease_manager.claim("worker-2", lease_duration=30)

        assert retry is not None
        assert retry.id == submitted.job_id
        assert retry.record.retry_count == 1
        assert retry.reclaimed is False

    async def test_concurrent_claims_are_exclusive(
        self,
        session_factory,
        submission_service: SubmissionService,
        clock,
    ):
        """Test that concurrent claimers never receive the same job."""
        for n in range(5):
            await self._submit(submission_service, clock, f"job-{n}")

        managers = [
            LeaseManager(session_factory=session_factory, clock=clock) for _ in range(8)
        ]
        results = await asyncio.gather(
            *(
                manager.claim(f"worker-{n}", lease_duration=30)
                for n, manager in enumerate(managers)
            )
        )

        claimed = [result for result in results if result is not None]
        assert len(claimed) == 5
        assert len({job.id for job in claimed}) == 5

    @pytest.mark.parametrize("duration", [0, -1, timedelta(0)])
    async def test_rejects_non_positive_lease(self, lease_manager: LeaseManager, duration):
        with pytest.raises(ValueError):
            await lease_manager.claim("worker-1", lease_duration=duration)

    def test_rejects_zero_max_attempts(self, session_factory, clock):
        with pytest.raises(ValueError, match="max_attempts must be at least 1"):
            LeaseManager(session_factory=session_factory, clock=clock, max_attempts=0)
