"""
Integration tests for idempotent job submission.
"""

import asyncio
from uuid import uuid4

import pytest
from sqlalchemy import func, select

from jobqueue.constants import JobState
from jobqueue.db.models import Job
from jobqueue.services.submission import SubmissionService
from jobqueue.types.job import SubmitResult


class TestSubmissionService:
    """Tests for SubmissionService.submit."""

    async def _count_jobs(self, session_factory) -> int:
        async with session_factory() as session:
            return (await session.execute(select(func.count()).select_from(Job))).scalar()

    async def test_submit_creates_queued_job(
        self,
        submission_service: SubmissionService,
        idempotency_key: str,
    ):
        result = await submission_service.submit(
            job_type="echo",
            payload=b'{"message":"hello"}',
            idempotency_key=idempotency_key,
        )

        assert result.created is True
        assert result.state == JobState.QUEUED

    async def test_replay_returns_same_job(
        self,
        submission_service: SubmissionService,
        session_factory,
        idempotency_key: str,
    ):
        """Test that a retried submission never creates a second record."""
        first = await submission_service.submit("echo", b"a", idempotency_key)
        second = await submission_service.submit("echo", b"a", idempotency_key)

        assert first.created is True
        assert second.created is False
        assert second.job_id == first.job_id
        assert await self._count_jobs(session_factory) == 1

    async def test_replay_reports_current_state(
        self,
        submission_service: SubmissionService,
        lease_manager,
        idempotency_key: str,
    ):
        first = await submission_service.submit("echo", b"", idempotency_key)
        await lease_manager.claim("worker-1", lease_duration=30)

        replay = await submission_service.submit("echo", b"", idempotency_key)

        assert replay.job_id == first.job_id
        assert replay.state == JobState.RUNNING

    async def test_concurrent_same_key(
        self,
        submission_service: SubmissionService,
        session_factory,
        idempotency_key: str,
    ):
        """Test that concurrent submissions of one key converge on one job."""
        results = await asyncio.gather(
            *(
                submission_service.submit("echo", b"{}", idempotency_key)
                for _ in range(8)
            )
        )

        assert len({result.job_id for result in results}) == 1
        assert sum(result.created for result in results) == 1
        assert await self._count_jobs(session_factory) == 1

    async def test_distinct_keys_create_distinct_jobs(
        self,
        submission_service: SubmissionService,
        session_factory,
    ):
        results = [
            await submission_service.submit("echo", b"{}", f"key-{uuid4().hex}")
            for _ in range(3)
        ]

        assert len({result.job_id for result in results}) == 3
        assert await self._count_jobs(session_factory) == 3

    async def test_default_max_retries(
        self,
        submission_service: SubmissionService,
        session_factory,
        idempotency_key: str,
    ):
        result = await submission_service.submit("echo", b"", idempotency_key)

        async with session_factory() as session:
            job = await session.get(Job, result.job_id)

        assert job.max_retries == 3

    @pytest.mark.parametrize(
        "job_type,key,max_retries",
        [
            ("", "key", None),
            ("echo", "", None),
            ("echo", "key", -1),
        ],
    )
    async def test_invalid_arguments(
        self,
        submission_service: SubmissionService,
        session_factory,
        job_type: str,
        key: str,
        max_retries: int | None,
    ):
        with pytest.raises(ValueError):
            await submission_service.submit(job_type, b"", key, max_retries=max_retries)

        assert await self._count_jobs(session_factory) == 0

    async def test_on_submitted_only_for_new_jobs(
        self,
        session_factory,
        clock,
        idempotency_key: str,
    ):
        notified: list[SubmitResult] = []
        service = SubmissionService(
            session_factory=session_factory,
            clock=clock,
            on_submitted=notified.append,
        )

        await service.submit("echo", b"", idempotency_key)
        await service.submit("echo", b"", idempotency_key)

        assert len(notified) == 1
        assert notified[0].created is True
