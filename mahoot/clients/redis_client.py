"""
Redis client wrapper.

Responsibilities:
  • Feed leases — STRING keyed by feed-lease:{user_id}
                   value = random token owned by the holder
                   PX expiry so a crashed holder never blocks a user forever

The API takes a lease around feed generation so two requests for the same
user cannot both size their page from the same view count.
"""
import asyncio
import logging
import secrets
import time
from contextlib import asynccontextmanager
from typing import Optional

import redis.asyncio as aioredis

from mahoot.config import settings
from mahoot.errors import AllocationBusyError

logger = logging.getLogger(__name__)

_redis: Optional[aioredis.Redis] = None

LEASE_KEY = "feed-lease:{user_id}"
LEASE_POLL_INTERVAL = 0.05


async def init_redis() -> None:
    global _redis
    _redis = aioredis.Redis(
        host=settings.redis_host,
        port=settings.redis_port,
        decode_responses=True,
    )
    await _redis.ping()
    logger.info("Redis connected at %s:%s", settings.redis_host, settings.redis_port)


async def close_redis() -> None:
    global _redis
    if _redis is not None:
        await _redis.aclose()
        _redis = None


def get_redis() -> aioredis.Redis:
    if _redis is None:
        raise RuntimeError("Redis not initialised — call init_redis() at startup")
    return _redis


def set_redis(client: Optional[aioredis.Redis]) -> None:
    """Swap the module client (tests inject a fake)."""
    global _redis
    _redis = client


# ─────────────────────── Feed generation lease ────────────────────────────

@asynccontextmanager
async def feed_lease(
    user_id: str,
    ttl_ms: Optional[int] = None,
    wait_seconds: Optional[float] = None,
):
    """
    Hold the per-user feed lease for the duration of the block.

    Polls until the lease is free or `wait_seconds` elapse, then raises
    AllocationBusyError. The lease is only released by the token that took it.
    """
    r = get_redis()
    key = LEASE_KEY.format(user_id=user_id)
    token = secrets.token_hex(16)
    ttl_ms = ttl_ms or settings.feed_lease_ttl_ms
    if wait_seconds is None:
        wait_seconds = settings.feed_lease_wait_seconds

    deadline = time.monotonic() + wait_seconds
    while not await r.set(key, token, nx=True, px=ttl_ms):
        if time.monotonic() >= deadline:
            raise AllocationBusyError(
                f"Feed generation already in progress for {user_id}"
            )
        await asyncio.sleep(LEASE_POLL_INTERVAL)

    try:
        yield
    finally:
        # Not atomic: an expired lease re-taken between GET and DELETE would be
        # dropped early. The TTL is far above normal generation time.
        if await r.get(key) == token:
            await r.delete(key)
