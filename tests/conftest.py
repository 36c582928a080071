import os
from datetime import datetime, timedelta, timezone

import pytest

# Keep local .env / environment settings from leaking into tests
os.environ.setdefault("REDIS_URL", "")
os.environ.setdefault("ENABLE_FEATURE_ANALYTICS", "true")

from feature_rollout.infrastructure.cache.redis_client import InMemoryCache  # noqa: E402
from feature_rollout.infrastructure.db import models  # noqa: E402

Base = models.Base


class FakeClock:
    """Mutable clock; ``advance`` moves time forward without sleeping."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2024, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)

    def timestamp(self) -> float:
        return self.now.timestamp()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def database_url(tmp_path):
    """Return a sqlite+aiosqlite URL backed by a per-test file in pytest's tmp_path."""
    db_file = tmp_path / "test.db"
    # Use POSIX path so SQLAlchemy parses correctly on Windows
    return f"sqlite+aiosqlite:///{db_file.as_posix()}"


@pytest.fixture
async def engine(database_url):
    from sqlalchemy.ext.asyncio import create_async_engine

    eng = create_async_engine(database_url, echo=False)
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    try:
        yield eng
    finally:
        await eng.dispose()


@pytest.fixture
def session_factory(engine):
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    return async_sessionmaker(bind=engine, expire_on_commit=False, class_=AsyncSession)


@pytest.fixture
async def session(session_factory):
    async with session_factory() as s:
        yield s


@pytest.fixture
def cache(clock):
    """Return an explicit InMemoryCache whose expiry follows the fake clock."""
    return InMemoryCache(clock=clock.timestamp)


@pytest.fixture
async def test_app(database_url, cache):
    """Create an app + engine + sessionmaker backed by an ephemeral DB.

    Yields (client, engine, AsyncSessionLocal).
    """
    # Lazy import to avoid importing app before tests configure env
    from tests.fixtures.app_factory import create_test_app

    client, eng, AsyncSessionLocal = await create_test_app(database_url=database_url, cache=cache)
    try:
        yield client, eng, AsyncSessionLocal
    finally:
        await client.scheduler.shutdown()
        client.reset()
        await eng.dispose()
