import os
import random
from datetime import datetime, timedelta

# Tracing stays off in tests; must be set before mahoot.config is imported
os.environ.setdefault("OTEL_ENABLED", "false")

import pytest
import pytest_asyncio
from fakeredis.aioredis import FakeRedis
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from mahoot import models  # noqa: F401  (registers tables on Base.metadata)
from mahoot.catalog import PostCatalog
from mahoot.clients import redis_client
from mahoot.config import settings
from mahoot.database import Base, get_db
from mahoot.followees import FolloweeRegistry
from mahoot.main import app

NOW = datetime(2025, 3, 14, 15, 0, 0)


class FixedClock:
    """Callable clock the tests can move forward."""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest_asyncio.fixture
async def engine():
    eng = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    try:
        yield eng
    finally:
        await eng.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def session(session_factory):
    async with session_factory() as s:
        yield s


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def rng():
    return random.Random(1234)


@pytest_asyncio.fixture(autouse=True)
async def fake_redis():
    client = FakeRedis(decode_responses=True)
    redis_client.set_redis(client)
    try:
        yield client
    finally:
        redis_client.set_redis(None)
        await client.flushall()


@pytest_asyncio.fixture
async def api_client(session_factory):
    async def _get_db():
        async with session_factory() as s:
            try:
                yield s
                await s.commit()
            except Exception:
                await s.rollback()
                raise

    app.dependency_overrides[get_db] = _get_db
    transport = ASGITransport(app=app)
    try:
        async with AsyncClient(transport=transport, base_url="http://testserver") as client:
            yield client
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def settings_override():
    """Set attributes on the shared settings object for one test."""
    changed = {}

    def _set(**values):
        for key, value in values.items():
            changed.setdefault(key, getattr(settings, key))
            setattr(settings, key, value)

    yield _set
    for key, value in changed.items():
        setattr(settings, key, value)


# ── Seeding helpers ─────────────────────────────────────────────────────────

async def follow(session, user_id, followee_id, quota=None):
    edge = await FolloweeRegistry(session).add_or_update(user_id, followee_id, quota=quota)
    await session.commit()
    return edge


async def seed_posts(session, author_id, count, start=NOW - timedelta(hours=1)):
    """`count` posts by `author_id`, one minute apart, newest last."""
    catalog = PostCatalog(session)
    uris = []
    for i in range(count):
        uri = f"at://{author_id}/app.bsky.feed.post/{i:04d}"
        await catalog.add(uri, f"cid-{author_id}-{i}", author_id, start + timedelta(minutes=i))
        uris.append(uri)
    await session.commit()
    return uris
