"""
Pytest configuration and fixtures.
"""

from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator, AsyncIterator

import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import StaticPool

from safetyops.app.api.deps import get_clock, get_store
from safetyops.app.core.config import Settings, get_settings
from safetyops.app.core.database import Base
from safetyops.app.main import app
from safetyops.app.services.capa_service import CapaLifecycle
from safetyops.app.services.document_store import InMemoryDocumentStore, SqlDocumentStore
from safetyops.app.services.incident_service import IncidentLifecycle
from safetyops.app.services.metrics_engine import SafetyMetricsService

# Register the documents table with Base.metadata
from safetyops.app.models.document_orm import DocumentORM  # noqa: F401

# Use in-memory SQLite for testing
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

START = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


class FrozenClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now

    def set(self, moment: datetime) -> datetime:
        self.now = moment
        return self.now


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(START)


@pytest.fixture
def settings() -> Settings:
    return Settings(enforce_transitions=True)


@pytest.fixture
def permissive_settings() -> Settings:
    return Settings(enforce_transitions=False)


@pytest.fixture
def memory_store(clock) -> InMemoryDocumentStore:
    return InMemoryDocumentStore(clock=clock)


@asynccontextmanager
async def sqlite_session_factory() -> AsyncIterator[async_sessionmaker[AsyncSession]]:
    """
    Fresh in-memory database.
    Tables are created on entry and the engine disposed on exit.
    """
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
async def session_factory() -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    async with sqlite_session_factory() as factory:
        yield factory


@pytest.fixture
def sql_store(session_factory, clock) -> SqlDocumentStore:
    return SqlDocumentStore(session_factory, clock=clock)


@pytest.fixture(params=["memory", "sql"])
async def store(request, clock):
    """Runs the test once against each store adapter."""
    if request.param == "memory":
        yield InMemoryDocumentStore(clock=clock)
        return
    async with sqlite_session_factory() as factory:
        yield SqlDocumentStore(factory, clock=clock)


@pytest.fixture
def incidents(store, settings, clock) -> IncidentLifecycle:
    return IncidentLifecycle(store, settings=settings, clock=clock)


@pytest.fixture
def capas(store, settings, clock) -> CapaLifecycle:
    return CapaLifecycle(store, settings=settings, clock=clock)


@pytest.fixture
def metrics(store, settings, clock) -> SafetyMetricsService:
    return SafetyMetricsService(store, settings=settings, clock=clock)


@pytest.fixture
async def client(sql_store, settings, clock) -> AsyncGenerator[AsyncClient, None]:
    """
    Test client with the store, clock and settings dependencies overridden.
    """
    app.dependency_overrides[get_store] = lambda: sql_store
    app.dependency_overrides[get_clock] = lambda: clock
    app.dependency_overrides[get_settings] = lambda: settings

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()

