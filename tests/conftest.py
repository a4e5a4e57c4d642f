from __future__ import annotations

from collections.abc import AsyncIterator

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool
from src.api.deps import get_db_session, get_eligibility_notifier, get_renderer
from src.api.main import app
from src.infrastructure.db.base import Base
from src.infrastructure.db.models import UserRole

from tests.utils import FakeRenderer, RecordingNotifier, create_user


@pytest.fixture()
async def engine() -> AsyncIterator[AsyncEngine]:
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture()
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest.fixture()
async def db(session_factory: async_sessionmaker[AsyncSession]) -> AsyncIterator[AsyncSession]:
    """Session used to seed data; services under test get their own session."""
    async with session_factory() as session:
        yield session


@pytest.fixture()
def renderer() -> FakeRenderer:
    return FakeRenderer()


@pytest.fixture()
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture()
async def instructor(db: AsyncSession) -> str:
    await create_user(db, "instructor-1", full_name="Grace Instructor", role=UserRole.INSTRUCTOR)
    return "instructor-1"


@pytest.fixture()
async def learner(db: AsyncSession) -> str:
    await create_user(db, "learner-1", full_name="Ada Learner")
    return "learner-1"


@pytest.fixture()
async def async_client(
    session_factory: async_sessionmaker[AsyncSession],
    renderer: FakeRenderer,
    notifier: RecordingNotifier,
) -> AsyncIterator[AsyncClient]:
    """Async HTTP client wired to the test database and fake collaborators."""

    async def override_db_session() -> AsyncIterator[AsyncSession]:
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db_session] = override_db_session
    app.dependency_overrides[get_renderer] = lambda: renderer
    app.dependency_overrides[get_eligibility_notifier] = lambda: notifier

    transport = ASGITransport(app=app)  # type: ignore
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()
