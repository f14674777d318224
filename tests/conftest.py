"""
Pytest configuration and shared fixtures.

Tests run against PostgreSQL when TEST_DATABASE_URL is set, and against a
throwaway SQLite file per test otherwise.
"""

import os
from collections.abc import AsyncGenerator
from datetime import datetime, timedelta, timezone
from typing import Any
from uuid import uuid4

import pytest
import pytest_asyncio
import sqlalchemy as sa
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from jobqueue.config import get_settings
from jobqueue.db import close_db, create_session_factory, create_tables, init_db
from jobqueue.db.connection import get_test_engine
from jobqueue.services.submission import SubmissionService
from jobqueue.worker.lease import LeaseManager

TEST_DATABASE_URL = os.getenv("TEST_DATABASE_URL")


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def database_url(tmp_path) -> str:
    """Get the test database URL."""
    return TEST_DATABASE_URL or f"sqlite+aiosqlite:///{tmp_path / 'jobqueue.db'}"


@pytest_asyncio.fixture
async def async_engine(database_url: str) -> AsyncGenerator[AsyncEngine]:
    """Create an async database engine with a fresh jobs table."""
    engine = get_test_engine(database_url)
    await create_tables(engine)

    if engine.dialect.name == "postgresql":
        async with engine.begin() as conn:
            await conn.execute(sa.text("TRUNCATE TABLE jobs"))

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(async_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to the test engine."""
    return create_session_factory(async_engine)


@pytest_asyncio.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession]:
    """Create a database session for tests."""
    async with session_factory() as session:
        yield session

        # Rollback any uncommitted changes
        await session.rollback()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def submission_service(session_factory, clock: FakeClock) -> SubmissionService:
    return SubmissionService(session_factory=session_factory, clock=clock)


@pytest.fixture
def lease_manager(session_factory, clock: FakeClock) -> LeaseManager:
    return LeaseManager(session_factory=session_factory, clock=clock)


@pytest_asyncio.fixture
async def app(database_url: str, monkeypatch) -> AsyncGenerator[FastAPI]:
    """Create a FastAPI app backed by the test database."""
    from jobqueue.api.main import create_app

    monkeypatch.setenv("DATABASE_URL", database_url)
    monkeypatch.setenv("DATABASE_CREATE_TABLES", "true")
    get_settings.cache_clear()

    await init_db()

    if TEST_DATABASE_URL:
        from jobqueue.db import get_engine

        async with get_engine().begin() as conn:
            await conn.execute(sa.text("TRUNCATE TABLE jobs"))

    yield create_app()

    await close_db()
    get_settings.cache_clear()


@pytest_asyncio.fixture
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient]:
    """Create an async HTTP client for testing."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture
def idempotency_key() -> str:
    """Generate a unique idempotency key."""
    return f"test-{uuid4().hex}"


@pytest.fixture
def sample_job_payload() -> dict[str, Any]:
    """Create a sample job payload."""
    return {"message": "Hello, World!"}
