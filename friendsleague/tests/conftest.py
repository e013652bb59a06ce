"""
Shared pytest configuration for backend tests.

Runs against in-memory SQLite by default. Set TEST_DATABASE_URL to run against
PostgreSQL instead.

SAFETY: when TEST_DATABASE_URL points at a server database, this module
REFUSES to run unless the database name contains the substring "test".
"""

import os

os.environ.setdefault("ENV", "test")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker  # noqa: E402
from sqlalchemy.pool import NullPool, StaticPool  # noqa: E402

from friendsleague.database.db import Base  # noqa: E402
from friendsleague.database import db  # noqa: E402
from friendsleague.services import user_service, websocket_manager  # noqa: E402


def _resolve_test_database_url() -> str:
    """Build the test database URL with safety checks.

    Raises ``RuntimeError`` if a server database URL does not point to a
    database whose name contains "test".
    """
    url = os.getenv("TEST_DATABASE_URL", "sqlite+aiosqlite:///:memory:")
    if url.startswith("sqlite"):
        return url

    db_name = url.rsplit("/", 1)[-1].split("?")[0]
    if "test" not in db_name.lower():
        raise RuntimeError(
            f"\n{'=' * 70}\n"
            f"  SAFETY: Refusing to run tests against database '{db_name}'.\n"
            f"  The database name must contain 'test' to prevent accidental\n"
            f"  data loss in development or production databases.\n\n"
            f"  Fix: set TEST_DATABASE_URL to a test database, e.g.:\n"
            f"    export TEST_DATABASE_URL=postgresql+asyncpg://.../{db_name}_test\n"
            f"{'=' * 70}"
        )
    return url


# Validated at import time so pytest fails immediately on a bad URL.
TEST_DATABASE_URL = _resolve_test_database_url()


@pytest_asyncio.fixture(scope="function")
async def test_engine():
    """Fresh schema per test. db.AsyncSessionLocal is pointed at the test engine."""
    if TEST_DATABASE_URL.startswith("sqlite"):
        # One shared connection so every session sees the same in-memory database
        engine = create_async_engine(TEST_DATABASE_URL, poolclass=StaticPool)
    else:
        engine = create_async_engine(TEST_DATABASE_URL, poolclass=NullPool, pool_pre_ping=True)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    # Code using db.AsyncSessionLocal() (presence updates, WebSocket handlers)
    # must hit the same database as the test fixtures
    test_session_maker = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )
    original_async_session_local = db.AsyncSessionLocal
    db.AsyncSessionLocal = test_session_maker

    yield engine

    db.AsyncSessionLocal = original_async_session_local
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(test_engine):
    """A session on the test database; rolled back after the test."""
    async_session_maker = async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )
    async with async_session_maker() as session:
        try:
            yield session
        finally:
            await session.rollback()


@pytest.fixture(autouse=True)
def fresh_websocket_manager(monkeypatch):
    """Each test gets its own global WebSocket manager."""
    monkeypatch.setattr(websocket_manager, "_websocket_manager", None)
    yield


@pytest.fixture(autouse=True)
def no_s3_config(monkeypatch):
    """Tests never talk to a real bucket; S3 tests set the variables they need."""
    for name in ("AWS_ACCESS_KEY_ID", "AWS_SECRET_ACCESS_KEY", "AWS_S3_BUCKET", "AWS_S3_CLOUDFRONT_URL"):
        monkeypatch.delenv(name, raising=False)
    yield


async def create_test_user(session, username, email=None, phone_number=None):
    """Helper: create a user with a throwaway password hash and return the User."""
    return await user_service.create_user(
        session,
        username=username,
        password_hash="not-a-real-hash",
        email=email,
        phone_number=phone_number,
    )


@pytest_asyncio.fixture
async def users(db_session):
    """Four users: alice, bob, carol and dave."""
    return {
        name: await create_test_user(db_session, name)
        for name in ("alice", "bob", "carol", "dave")
    }
