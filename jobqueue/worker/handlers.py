"""
Job handlers registry and implementations.

Job handlers must be idempotent - they may be executed multiple times
for the same job when a worker crashes and its lease expires.
"""

import asyncio
import json
import logging
from typing import Awaitable, Callable

import httpx

from jobqueue.types.job import JobContext, JobResult

logger = logging.getLogger(__name__)

# Type alias for job handler functions
JobHandler = Callable[[JobContext], Awaitable[JobResult]]

# Handler registry
_handlers: dict[str, JobHandler] = {}


def register_handler(job_type: str) -> Callable[[JobHandler], JobHandler]:
    """
    Decorator to register a job handler.

    Args:
        job_type: The job type this handler processes.

    Returns:
        Decorator function.

    Example:
        @register_handler("send_email")
        async def handle_send_email(context: JobContext) -> JobResult:
            ...
    """
    def decorator(handler: JobHandler) -> JobHandler:
        _handlers[job_type] = handler
        logger.debug(f"Registered handler for job type: {job_type}")
        return handler
    return decorator


def unregister_handler(job_type: str) -> None:
    """Remove a handler from the registry, if present."""
    _handlers.pop(job_type, None)


def get_handler(job_type: str) -> JobHandler | None:
    """
    Get the handler for a job type.

    Args:
        job_type: The job type.

    Returns:
        The handler function or None if not found.
    """
    return _handlers.get(job_type)


def list_handlers() -> list[str]:
    """List all registered job types."""
    return list(_handlers.keys())


# ============================================================================
# Built-in job handlers
# ============================================================================


@register_handler("echo")
async def handle_echo(context: JobContext) -> JobResult:
    """
    Echo handler for testing.

    Returns the decoded payload as output, or its hex form when the
    payload is not UTF-8 JSON.
    """
    logger.info(
        "Echo job executing",
        extra={"job_id": str(context.job_id), "retry_count": context.retry_count}
    )

    try:
        echoed = context.json()
    except (UnicodeDecodeError, json.JSONDecodeError):
        echoed = context.payload.hex()

    return JobResult(
        success=True,
        output={"echo": echoed},
    )


@register_handler("sleep")
async def handle_sleep(context: JobContext) -> JobResult:
    """
    Sleep handler for testing delays.

    Payload should contain:
    - duration_seconds: How long to sleep
    """
    try:
        data = context.json()
    except (UnicodeDecodeError, json.JSONDecodeError):
        data = None
    if not isinstance(data, dict):
        return JobResult(
            success=False,
            error="Sleep payload must be a JSON object",
        )
    duration = data.get("duration_seconds", 1)

    logger.info(
        "Sleep job starting",
        extra={"job_id": str(context.job_id), "duration": duration}
    )

    await asyncio.sleep(duration)

    return JobResult(
        success=True,
        output={"slept_for": duration},
    )


@register_handler("fail")
async def handle_fail(context: JobContext) -> JobResult:
    """
    Handler that always fails - for testing retry logic.
    """
    return JobResult(
        success=False,
        error=f"Intentional failure after {context.retry_count} retries",
    )


@register_handler("http_request")
async def handle_http_request(context: JobContext) -> JobResult:
    """
    Make an HTTP request.

    Payload should contain:
    - url: The URL to request
    - method: HTTP method (GET, POST, etc.)
    - headers: Optional headers
    - body: Optional request body
    """
    data = context.json()
    url = data.get("url")
    method = data.get("method", "GET").upper()
    headers = data.get("headers", {})
    body = data.get("body")

    if not url:
        return JobResult(
            success=False,
            error="Missing 'url' in payload",
        )

    logger.info(
        "HTTP request job",
        extra={"job_id": str(context.job_id), "method": method, "url": url}
    )

    try:
        async with httpx.AsyncClient() as client:
            response = await client.request(
                method=method,
                url=url,
                headers=headers,
                json=body if method in ["POST", "PUT", "PATCH"] else None,
                timeout=30.0,
            )
    except httpx.HTTPError as e:
        return JobResult(
            success=False,
            error=f"HTTP request failed: {e}",
        )

    return JobResult(
        success=response.is_success,
        output={
            "status_code": response.status_code,
            "body": response.text[:1000],  # Truncate response
        },
        error=None if response.is_success else f"HTTP {response.status_code}",
    )


async def execute_job(context: JobContext, timeout: float | None = None) -> JobResult:
    """
    Execute a job using the appropriate handler.

    Never raises for handler problems: a missing handler, an exception, or a
    timeout all come back as a failed JobResult.

    Args:
        context: The job context.
        timeout: Seconds the handler may run before it is cancelled.

    Returns:
        JobResult from the handler.
    """
    handler = get_handler(context.job_type)

    if handler is None:
        logger.error(
            f"No handler for job type: {context.job_type}",
            extra={"job_id": str(context.job_id)}
        )
        return JobResult(
            success=False,
            error=f"No handler registered for job type: {context.job_type}",
        )

    loop = asyncio.get_running_loop()
    started = loop.time()
    try:
        result = await asyncio.wait_for(handler(context), timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning(
            "Handler timed out",
            extra={"job_id": str(context.job_id), "timeout": timeout}
        )
        result = JobResult(
            success=False,
            error=f"Handler timed out after {timeout}s",
        )
    except Exception as e:
        logger.exception(
            "Handler raised exception",
            extra={"job_id": str(context.job_id), "error": str(e)}
        )
        result = JobResult(
            success=False,
            error=f"Handler exception: {e}",
        )

    if not isinstance(result, JobResult):
        logger.error(
            "Handler returned an invalid result",
            extra={"job_id": str(context.job_id), "result_type": type(result).__name__},
        )
        result = JobResult(
            success=False,
            error=f"Handler returned {type(result).__name__}, expected JobResult",
        )

    if result.duration_ms is None:
        result.duration_ms = (loop.time() - started) * 1000
    return result
