from __future__ import annotations

import os
from collections.abc import AsyncGenerator, Callable
from datetime import UTC, datetime, timedelta

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

# Override DATABASE_URL before any metrichub module is imported so that
# metrichub.config.settings picks up the in-memory SQLite URL.
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

# Importing the package registers every mapped class on Base.metadata.
import metrichub.models  # noqa: E402, F401
from metrichub.config import Settings  # noqa: E402
from metrichub.database import get_db  # noqa: E402
from metrichub.engine import Deployment, Incident, MetricsEngine  # noqa: E402
from metrichub.main import create_app  # noqa: E402
from metrichub.models.base import Base  # noqa: E402
from metrichub.models.enums import DeploymentStatus, IncidentSeverity  # noqa: E402

_TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

# Every engine in the test-suite runs against this frozen clock.
NOW = datetime(2024, 6, 30, 12, 0, tzinfo=UTC)


# ---------------------------------------------------------------------------
# Event factories
# ---------------------------------------------------------------------------


def make_deployment(
    start: datetime,
    *,
    service: str = "api",
    environment: str = "production",
    status: DeploymentStatus = DeploymentStatus.success,
    lead_time: timedelta | None = timedelta(hours=2),
    **kwargs,
) -> Deployment:
    """Build a deployment whose commit landed *lead_time* before *start*."""
    return Deployment(
        service=service,
        environment=environment,
        status=status,
        start_time=start,
        commit_time=None if lead_time is None else start - lead_time,
        **kwargs,
    )


def make_incident(
    start: datetime,
    *,
    recovery: timedelta | None = None,
    service: str = "api",
    environment: str = "production",
    severity: IncidentSeverity = IncidentSeverity.high,
    **kwargs,
) -> Incident:
    """Build an incident, resolved after *recovery* when given."""
    return Incident(
        title=kwargs.pop("title", "Elevated error rate"),
        service=service,
        environment=environment,
        severity=severity,
        start_time=start,
        resolved_time=None if recovery is None else start + recovery,
        **kwargs,
    )


# ---------------------------------------------------------------------------
# Engine fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def clock() -> Callable[[], datetime]:
    return lambda: NOW


@pytest.fixture()
def metrics_engine(clock: Callable[[], datetime]) -> MetricsEngine:
    """A fresh, isolated engine pinned to :data:`NOW`."""
    return MetricsEngine(clock=clock)


# ---------------------------------------------------------------------------
# Database fixtures
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture(scope="function")
async def db_engine():
    """Create an in-memory SQLite async engine and build the schema.

    Each test function gets a fresh engine so schemas never leak between tests.
    """
    async_engine = create_async_engine(
        _TEST_DATABASE_URL,
        echo=False,
        connect_args={"check_same_thread": False},
    )

    async with async_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_engine

    async with async_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await async_engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def db_session(db_engine) -> AsyncGenerator[AsyncSession, None]:
    """Yield an async session bound to the in-memory database."""
    factory = async_sessionmaker(
        bind=db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
        autocommit=False,
    )
    async with factory() as session:
        try:
            yield session
        finally:
            await session.rollback()
            await session.close()


# ---------------------------------------------------------------------------
# HTTP fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def app_settings() -> Settings:
    return Settings(
        DATABASE_URL=_TEST_DATABASE_URL,
        PERSISTENCE_ENABLED=True,
        AUTO_MIGRATE=False,
        SIMULATION_ENABLED=True,
    )


@pytest_asyncio.fixture(scope="function")
async def client(
    db_session: AsyncSession,
    metrics_engine: MetricsEngine,
    app_settings: Settings,
) -> AsyncGenerator[AsyncClient, None]:
    """Return an httpx.AsyncClient wired to a fresh FastAPI app.

    The app shares :func:`metrics_engine` with the test, and ``get_db`` is
    overridden to yield the test session so that journal writes land in the
    same in-memory SQLite database the assertions read from.
    """
    app = create_app(settings=app_settings, engine=metrics_engine)

    async def _override_get_db() -> AsyncGenerator[AsyncSession, None]:
        yield db_session

    app.dependency_overrides[get_db] = _override_get_db

    transport = ASGITransport(app=app)  # type: ignore[arg-type]
    async with AsyncClient(transport=transport, base_url="http://testserver") as ac:
        yield ac
