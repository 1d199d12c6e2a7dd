"""
Pytest fixtures for all tests.

Provides:
- SQLite-backed test database, created fresh per test
- Auth components wired with a controllable clock and timer
- Test app and HTTP client
- Users, sub-agencies and bearer tokens
"""

from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from agencyhub.config import Settings, settings
from agencyhub.core.database import Base, create_session_factory, get_db
from agencyhub.core.security import create_access_token
from agencyhub.features.api_keys.dependencies import AuthComponents, build_auth_components
from agencyhub.main import create_application
from agencyhub.models import SubAgency, User
from tests.factories import SubAgencyFactory, UserFactory
from tests.fakes import FakeClock, FakeTimer


@pytest.fixture
def test_settings() -> Settings:
    """Settings with cheap bcrypt and no background cleanup."""
    return settings.model_copy(update={
        "api_key_hash_rounds": 4,
        "expired_key_cleanup_interval_seconds": 0,
        "rate_limit_backend": "memory",
    })


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def timer() -> FakeTimer:
    return FakeTimer()


@pytest_asyncio.fixture
async def test_db_engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """
    Create test database engine.

    A file database (not :memory:) so request handlers and detached
    tasks each get their own connection to the same data.
    """
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", echo=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(test_db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return create_session_factory(test_db_engine)


@pytest_asyncio.fixture
async def auth_components(
    test_settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    clock: FakeClock,
    timer: FakeTimer,
) -> AsyncGenerator[AuthComponents, None]:
    components = build_auth_components(
        test_settings,
        session_factory,
        clock=clock,
        timer=timer,
    )
    yield components
    await components.stop()


@pytest_asyncio.fixture
async def app(
    auth_components: AuthComponents,
    session_factory: async_sessionmaker[AsyncSession],
):
    """
    Create FastAPI test application.

    Overrides the database dependency to use the test database.
    """
    application = create_application(auth_components=auth_components)

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    application.dependency_overrides[get_db] = override_get_db

    return application


@pytest_asyncio.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """
    Create async HTTP client for testing API endpoints.

    Usage:
        async def test_endpoint(client):
            response = await client.get("/api/v1/api-keys")
            assert response.status_code == 200
    """
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


# Test data
@pytest_asyncio.fixture
async def test_user(session_factory) -> User:
    return await UserFactory.create(
        session_factory,
        email="owner@example.com",
        full_name="Agency Owner",
    )


@pytest_asyncio.fixture
async def other_user(session_factory) -> User:
    return await UserFactory.create(session_factory, email="someone-else@example.com")


@pytest_asyncio.fixture
async def sub_agency(session_factory, test_user: User) -> SubAgency:
    return await SubAgencyFactory.create(session_factory, test_user, name="North Region")


@pytest_asyncio.fixture
async def second_sub_agency(session_factory, test_user: User) -> SubAgency:
    return await SubAgencyFactory.create(session_factory, test_user, name="South Region")


@pytest_asyncio.fixture
async def foreign_sub_agency(session_factory, other_user: User) -> SubAgency:
    return await SubAgencyFactory.create(session_factory, other_user)


@pytest.fixture
def test_token(test_user: User) -> str:
    """Session bearer token for test_user."""
    return create_access_token(subject=test_user.id)


@pytest.fixture
def auth_headers(test_token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {test_token}"}


@pytest.fixture
def other_auth_headers(other_user: User) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(subject=other_user.id)}"}
