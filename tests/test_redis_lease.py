import pytest

from mahoot.clients.redis_client import LEASE_KEY, feed_lease
from mahoot.errors import AllocationBusyError

ALICE = "did:plc:alice"


@pytest.mark.asyncio
async def test_lease_is_released_after_block(fake_redis):
    key = LEASE_KEY.format(user_id=ALICE)

    async with feed_lease(ALICE):
        assert await fake_redis.get(key) is not None

    assert await fake_redis.get(key) is None


@pytest.mark.asyncio
async def test_held_lease_raises_busy(fake_redis):
    async with feed_lease(ALICE):
        with pytest.raises(AllocationBusyError):
            async with feed_lease(ALICE, wait_seconds=0.1):
                pass


@pytest.mark.asyncio
async def test_leases_are_per_user(fake_redis):
    async with feed_lease(ALICE):
        async with feed_lease("did:plc:bob", wait_seconds=0):
            pass


@pytest.mark.asyncio
async def test_release_leaves_foreign_token_alone(fake_redis):
    key = LEASE_KEY.format(user_id=ALICE)

    async with feed_lease(ALICE):
        # Lease expired and someone else took it
        await fake_redis.set(key, "other-holder")

    assert await fake_redis.get(key) == "other-holder"


@pytest.mark.asyncio
async def test_lease_has_expiry(fake_redis):
    async with feed_lease(ALICE, ttl_ms=5000):
        ttl = await fake_redis.pttl(LEASE_KEY.format(user_id=ALICE))
        assert 0 < ttl <= 5000
