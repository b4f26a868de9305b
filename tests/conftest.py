"""Pytest fixtures for testing."""
from collections.abc import AsyncGenerator, Generator
from pathlib import Path

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import (
    AsyncConnection,
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
)

from core.feed_cache import FeedCache, set_feed_cache
from db.session import create_sqlite_engine, init_database, sqlite_url
from models.user import User


@pytest.fixture
def database_path(tmp_path: Path) -> Path:
    """Path of a fresh SQLite file for the test."""
    return tmp_path / "bookmarks.db"


@pytest.fixture
async def async_engine(database_path: Path) -> AsyncGenerator[AsyncEngine]:
    """Create an async engine on a new database file at the current schema."""
    engine = create_sqlite_engine(sqlite_url(database_path))
    await init_database(engine)

    yield engine

    await engine.dispose()


@pytest.fixture
async def db_connection(async_engine: AsyncEngine) -> AsyncGenerator[AsyncConnection]:
    """
    Create a connection with a transaction that will be rolled back after the test.

    This provides test isolation - each test runs in its own transaction
    that is rolled back, so tests don't affect each other.
    """
    async with async_engine.connect() as connection:
        transaction = await connection.begin()
        try:
            yield connection
        finally:
            await transaction.rollback()


@pytest.fixture
def session_factory(db_connection: AsyncConnection) -> async_sessionmaker[AsyncSession]:
    """
    Session factory bound to the test transaction.

    Uses savepoints, allowing the session's flush/commit to work within our
    outer test transaction.
    """
    return async_sessionmaker(
        bind=db_connection,
        class_=AsyncSession,
        expire_on_commit=False,
        join_transaction_mode="create_savepoint",
    )


@pytest.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession]:
    """Create an async session bound to the test transaction."""
    async with session_factory() as session:
        yield session


@pytest.fixture
async def test_user(db_session: AsyncSession) -> User:
    """Create a test user."""
    user = User(github_id=1001, display_name="Test User")
    db_session.add(user)
    await db_session.flush()
    await db_session.refresh(user)
    return user


@pytest.fixture
async def other_user(db_session: AsyncSession) -> User:
    """Create another test user for isolation tests."""
    user = User(github_id=2002, display_name="Other User")
    db_session.add(user)
    await db_session.flush()
    await db_session.refresh(user)
    return user


@pytest.fixture
def feed_cache() -> Generator[FeedCache]:
    """Install a fresh global feed cache for the test."""
    cache = FeedCache()
    set_feed_cache(cache)
    yield cache
    set_feed_cache(None)


@pytest.fixture
async def client(
    db_session: AsyncSession,
    session_factory: async_sessionmaker[AsyncSession],
    feed_cache: FeedCache,
) -> AsyncGenerator[AsyncClient]:
    """Create a dev-mode test client with database session override."""
    from api.main import app
    from core.config import Settings, get_settings
    from db.session import get_async_session, get_session_factory

    get_settings.cache_clear()

    async def override_get_async_session() -> AsyncGenerator[AsyncSession]:
        yield db_session

    def override_get_settings() -> Settings:
        return Settings(dev_mode=True)

    def override_get_session_factory() -> async_sessionmaker[AsyncSession]:
        return session_factory

    app.dependency_overrides[get_async_session] = override_get_async_session
    app.dependency_overrides[get_settings] = override_get_settings
    app.dependency_overrides[get_session_factory] = override_get_session_factory

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as test_client:
        yield test_client

    app.dependency_overrides.clear()
