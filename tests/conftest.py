"""Pytest configuration and fixtures."""

import os

# Settings are read at import time, so the environment is fixed before any
# ttc_incidents import
os.environ["DEBUG"] = "true"
os.environ["SECRET_DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["SECRET_CELERY_BROKER_URL"] = "memory://"
os.environ["SECRET_CELERY_RESULT_BACKEND"] = "cache+memory://"
os.environ["OTEL_ENABLED"] = "false"
os.environ["OTEL_SDK_DISABLED"] = "true"
os.environ["CHANGE_FEED_ENABLED"] = "false"

from collections.abc import AsyncGenerator

import httpx
import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from tests.fixtures.otel import otel_enabled_provider, reset_tracer_provider  # noqa: F401
from tests.helpers.upstream import FakeUpstream
from ttc_incidents.api.admin import get_change_feed, get_ttc_client
from ttc_incidents.core.config import settings
from ttc_incidents.core.database import get_db
from ttc_incidents.main import app
from ttc_incidents.models import Base
from ttc_incidents.services.ttc_client import TtcClient


@pytest.fixture(autouse=True)
def fast_upstream(monkeypatch: pytest.MonkeyPatch) -> None:
    """No courtesy delay between paged upstream requests in tests."""
    monkeypatch.setattr(settings, "UPSTREAM_REQUEST_DELAY_SECONDS", 0)


@pytest.fixture
async def db_engine() -> AsyncGenerator[AsyncEngine]:
    """
    In-memory SQLite engine with the full schema.

    StaticPool keeps the single connection alive, so every session created
    from this engine sees the same database for the whole test.

    Yields:
        AsyncEngine with all tables created
    """
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to the test engine, configured like the application's."""
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest.fixture
async def db_session(session_factory: async_sessionmaker[AsyncSession]) -> AsyncGenerator[AsyncSession]:
    """
    Database session for one test.

    Yields:
        AsyncSession on the in-memory database
    """
    async with session_factory() as session:
        yield session


@pytest.fixture
def upstream() -> FakeUpstream:
    """Programmable stand-in for the TTC live feed, RSZ page and closure search."""
    return FakeUpstream()


@pytest.fixture
async def ttc_client(upstream: FakeUpstream) -> AsyncGenerator[TtcClient]:
    """
    TtcClient whose HTTP traffic is answered by ``upstream``.

    Yields:
        TtcClient over an httpx.MockTransport
    """
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(upstream.handler))
    async with TtcClient(http_client=http_client) as client:
        yield client
    await http_client.aclose()


@pytest.fixture
async def async_client(db_session: AsyncSession, ttc_client: TtcClient) -> AsyncGenerator[AsyncClient]:
    """
    Async HTTP client for the API with database and upstream overridden.

    Args:
        db_session: Test database session
        ttc_client: Upstream client backed by the fake upstream

    Yields:
        Async HTTP client with ASGI transport
    """

    async def override_get_db() -> AsyncGenerator[AsyncSession]:
        yield db_session

    async def override_get_ttc_client() -> AsyncGenerator[TtcClient]:
        yield ttc_client

    async def override_get_change_feed() -> AsyncGenerator[None]:
        yield None

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_ttc_client] = override_get_ttc_client
    app.dependency_overrides[get_change_feed] = override_get_change_feed

    try:
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            yield client
    finally:
        app.dependency_overrides.clear()

