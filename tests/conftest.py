"""Test configuration and fixtures.

Test setup:
1. Every test gets a fresh file-backed SQLite database (aiosqlite). A file,
   not :memory:, so concurrent sessions contend for rows on separate
   connections the way they do on PostgreSQL
2. Every test gets its own in-memory Redis server (fakeredis); setting
   ``redis_server.connected = False`` simulates an outage
3. One RSA keypair is generated per test session
4. The service container is wired on top of those and installed on the app,
   since the HTTP test client does not run the lifespan
"""

import os

# Settings are read at import time
os.environ.setdefault("ENVIRONMENT", "development")
os.environ.setdefault("LOG_FORMAT", "text")
os.environ.setdefault("COOKIE_SECURE", "true")
os.environ.setdefault("RATE_LIMIT_ENABLED", "true")

from collections.abc import AsyncGenerator  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from fakeredis import FakeAsyncRedis, FakeServer  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402

from src.config.settings import settings  # noqa: E402
from src.container import ServiceContainer  # noqa: E402
from src.database.base import Base  # noqa: E402
from src.database.client import create_session_factory  # noqa: E402
from src.features.auth.keys import KeyProvider  # noqa: E402
from src.features.user.models import User, UserStatus  # noqa: E402
from src.main import app  # noqa: E402

TEST_PASSWORD = "TestPass123!"


# Key material - Session Scope (RSA generation is slow)


@pytest.fixture(scope="session")
def keys() -> KeyProvider:
    return KeyProvider.generate()


# Database - Function Scope


@pytest_asyncio.fixture
async def db_engine(tmp_path) -> AsyncGenerator[AsyncEngine]:
    """Create a SQLite database file with the full schema for one test."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return create_session_factory(db_engine)


@pytest_asyncio.fixture
async def session(session_factory) -> AsyncGenerator[AsyncSession]:
    """A standalone session for arranging and inspecting data in tests."""
    async with session_factory() as db:
        yield db


# Redis - Function Scope


@pytest.fixture
def redis_server() -> FakeServer:
    return FakeServer()


@pytest_asyncio.fixture
async def redis(redis_server: FakeServer) -> AsyncGenerator[FakeAsyncRedis]:
    client = FakeAsyncRedis(server=redis_server, decode_responses=True)
    yield client
    await client.aclose()


# Services


@pytest.fixture
def container(session_factory, redis, keys) -> ServiceContainer:
    return ServiceContainer.from_resources(settings, session_factory, redis, keys)


@pytest.fixture
def codec(container):
    return container.codec


@pytest.fixture
def ledger(container):
    return container.ledger


@pytest.fixture
def coordinator(container):
    return container.coordinator


# FastAPI Client


@pytest_asyncio.fixture
async def client(container: ServiceContainer) -> AsyncGenerator[AsyncClient]:
    """Async HTTP client against the app with the test container installed.

    https so the Secure auth cookies are sent back on later requests.
    """
    app.state.container = container
    async with AsyncClient(transport=ASGITransport(app=app), base_url="https://test") as ac:
        yield ac
    del app.state.container


# Test User Factories


@pytest.fixture
def user_password() -> str:
    """Password every `make_user` user gets unless told otherwise."""
    return TEST_PASSWORD


@pytest_asyncio.fixture
async def make_user(session_factory):
    """Factory fixture to create committed test users with custom fields.

    Usage:
        user = await make_user()                            # defaults
        locked = await make_user(status=UserStatus.LOCKED)  # locked user
    """
    counter = 0

    async def _factory(
        email=None,
        username=None,
        full_name="Test User",
        password=TEST_PASSWORD,
        status=UserStatus.ACTIVE,
        **kwargs,
    ) -> User:
        nonlocal counter
        counter += 1

        user = User(
            email=email or f"testuser{counter}@example.com",
            username=username or f"testuser{counter}",
            full_name=full_name,
            hashed_password=User.hash_password(password),
            status=status.value,
            **kwargs,
        )

        async with session_factory() as db:
            db.add(user)
            await db.commit()
        return user

    yield _factory


@pytest_asyncio.fixture
async def auth_client(client: AsyncClient, make_user):
    """Client logged in through the login endpoint.

    The auth cookies land in the client's cookie jar; the token pair is also
    returned for tests that send the bearer header explicitly.

    Returns:
        tuple: (client, user, tokens)

    """
    user = await make_user()
    response = await client.post(
        f"{settings.api_prefix}/auth/login",
        json={"username": user.username, "password": TEST_PASSWORD},
    )
    assert response.status_code == 200, response.text
    yield client, user, response.json()
