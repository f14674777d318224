"""
Unit tests for job handlers.
"""

import asyncio
from datetime import timedelta
from uuid import uuid4

import pytest

from jobqueue.db.models import utcnow
from jobqueue.types.job import JobContext, JobResult
from jobqueue.worker.handlers import (
    execute_job,
    get_handler,
    handle_echo,
    handle_fail,
    list_handlers,
    register_handler,
    unregister_handler,
)


def make_context(job_type: str = "echo", payload: bytes = b'{"message":"test"}', **kwargs) -> JobContext:
    values = {
        "job_id": uuid4(),
        "job_type": job_type,
        "payload": payload,
        "retry_count": 0,
        "max_retries": 3,
        "lease_owner": "test-worker",
        "lease_expiry": utcnow() + timedelta(seconds=30),
    }
    values.update(kwargs)
    return JobContext(**values)


class TestJobHandlers:
    """Tests for job handlers."""

    @pytest.fixture
    def job_context(self) -> JobContext:
        """Create a test job context."""
        return make_context()

    @pytest.fixture
    def temporary_handler(self):
        """Register handlers under throwaway job types."""
        registered = []

        def register(job_type, handler):
            register_handler(job_type)(handler)
            registered.append(job_type)

        yield register

        for job_type in registered:
            unregister_handler(job_type)

    def test_list_handlers(self):
        """Test listing registered handlers."""
        handlers = list_handlers()

        assert "echo" in handlers
        assert "sleep" in handlers
        assert "fail" in handlers
        assert "http_request" in handlers

    def test_get_handler_exists(self):
        """Test getting an existing handler."""
        handler = get_handler("echo")
        assert handler is not None
        assert handler == handle_echo

    def test_get_handler_not_exists(self):
        """Test getting a non-existent handler."""
        handler = get_handler("nonexistent")
        assert handler is None

    async def test_echo_handler(self, job_context: JobContext):
        """Test the echo handler."""
        result = await handle_echo(job_context)

        assert result.success is True
        assert result.output == {"echo": {"message": "test"}}

    async def test_echo_handler_binary_payload(self):
        result = await handle_echo(make_context(payload=b"\x00\xffraw"))

        assert result.success is True
        assert result.output == {"echo": "00ff726177"}

    async def test_sleep_handler_rejects_non_json_payload(self):
        result = await execute_job(make_context(job_type="sleep", payload=b"\xff\xfe"))

        assert result.success is False
        assert result.error == "Sleep payload must be a JSON object"

    async def test_fail_handler(self, job_context: JobContext):
        """Test the failing job handler."""
        result = await handle_fail(job_context)

        assert result.success is False
        assert "Intentional failure" in result.error

    async def test_http_request_without_url(self):
        result = await execute_job(make_context(job_type="http_request", payload=b"{}"))

        assert result.success is False
        assert result.error == "Missing 'url' in payload"

    async def test_execute_job_with_valid_type(self, job_context: JobContext):
        """Test execute_job with a valid job type."""
        result = await execute_job(job_context)

        assert result.success is True
        assert result.duration_ms is not None

    async def test_execute_job_with_invalid_type(self):
        """Test execute_job with an invalid job type."""
        result = await execute_job(make_context(job_type="nonexistent_handler"))

        assert result.success is False
        assert "No handler registered" in result.error

    async def test_execute_job_converts_exception(self, temporary_handler):
        async def explode(context: JobContext) -> JobResult:
            raise RuntimeError("boom")

        temporary_handler("explode", explode)

        result = await execute_job(make_context(job_type="explode"))

        assert result.success is False
        assert result.error == "Handler exception: boom"

    async def test_execute_job_rejects_non_result_return(self, temporary_handler):
        async def forgetful(context: JobContext) -> JobResult:
            return None

        temporary_handler("forgetful", forgetful)

        result = await execute_job(make_context(job_type="forgetful"))

        assert result.success is False
        assert result.error == "Handler returned NoneType, expected JobResult"
        assert result.duration_ms is not None

    async def test_execute_job_times_out(self, temporary_handler):
        async def hang(context: JobContext) -> JobResult:
            await asyncio.sleep(10)
            return JobResult(success=True)

        temporary_handler("hang", hang)

        result = await execute_job(make_context(job_type="hang"), timeout=0.05)

        assert result.success is False
        assert "timed out" in result.error

    async def test_handler_sees_retry_count(self, temporary_handler):
        seen = []

        async def record(context: JobContext) -> JobResult:
            seen.append(context.retry_count)
            return JobResult(success=True)

        temporary_handler("record", record)

        await execute_job(make_context(job_type="record", retry_count=2))

        assert seen == [2]


class TestJobContext:
    """Tests for JobContext."""

    def test_json_decodes_payload(self):
        context = make_context(payload=b'{"a": [1, 2]}')
        assert context.json() == {"a": [1, 2]}

    def test_json_empty_payload(self):
        context = make_context(payload=b"")
        assert context.json() == {}

    def test_is_last_attempt(self):
        """Test is_last_attempt property."""
        context = make_context(retry_count=2, max_retries=3)

        assert context.is_last_attempt is True

    def test_is_not_last_attempt(self):
        context = make_context(retry_count=0, max_retries=3)

        assert context.is_last_attempt is False

    def test_remaining_retries(self):
        """Test remaining_retries property."""
        context = make_context(retry_count=1, max_retries=3)

        assert context.remaining_retries == 2
