"""
Pytest fixtures for testing.

Provides:
- A controllable clock
- Registry / evaluator / tracker built on the default catalog
- An initialized container and an HTTP test client
- An in-memory SQLite engine for the database store
"""

from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from rollout_engine.core.config import RolloutSettings, Settings
from rollout_engine.core.container import Container
from rollout_engine.core.features import (
    EvaluationContext,
    FeatureService,
    FlagRegistry,
    MemoryStateStore,
)
from rollout_engine.core.features.catalog import DEFAULT_CATALOG, PILOT_DEVELOPER, PILOT_PROJECT
from rollout_engine.core.rollout import PhaseTracker
from rollout_engine.main import create_app
from rollout_engine.models.base import Base
from rollout_engine.models.database import init_db

# Test database URL (SQLite in-memory for speed)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

PILOT_CONTEXT = EvaluationContext(developer_id=PILOT_DEVELOPER, project_id=PILOT_PROJECT)


class FakeClock:
    """Clock that only moves when told to."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2024, 1, 15, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, hours: float = 0, minutes: float = 0) -> datetime:
        self.now += timedelta(hours=hours, minutes=minutes)
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def registry(clock: FakeClock) -> FlagRegistry:
    """Registry holding the default pilot catalog."""
    return FlagRegistry(DEFAULT_CATALOG, clock=clock)


@pytest.fixture
def empty_registry(clock: FakeClock) -> FlagRegistry:
    return FlagRegistry(clock=clock)


@pytest.fixture
def features(registry: FlagRegistry) -> FeatureService:
    return FeatureService(registry)


@pytest.fixture
def tracker(registry: FlagRegistry, features: FeatureService, clock: FakeClock) -> PhaseTracker:
    return PhaseTracker(
        registry,
        features,
        reference_context=PILOT_CONTEXT,
        required_flags=["cr008_doc_first_flow"],
        clock=clock,
    )


# ============ Application ============


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        environment="testing",
        log_format="text",
        rollout=RolloutSettings(store="memory"),
    )


@pytest.fixture
def memory_store() -> MemoryStateStore:
    return MemoryStateStore()


@pytest_asyncio.fixture
async def container(
    settings: Settings,
    memory_store: MemoryStateStore,
    clock: FakeClock,
) -> AsyncGenerator[Container, None]:
    """Initialized container seeded from the default catalog."""
    container = Container.from_settings(settings, store=memory_store, clock=clock)
    await container.initialize()
    yield container
    await container.shutdown()


@pytest.fixture
def app(settings: Settings, container: Container) -> FastAPI:
    return create_app(settings, container=container)


@pytest_asyncio.fixture
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    """
    Test client bound to the app.

    ASGITransport does not run the lifespan; the container fixture has
    already been initialized.
    """
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as client:
        yield client


# ============ Database ============


@pytest_asyncio.fixture
async def db_engine():
    """Create test database engine with the rollout tables."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    await init_db(engine)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()
