import pytest

from mahoot.errors import ValidationError
from mahoot.models import UserPreferences
from mahoot.preferences import PreferenceStore


@pytest.mark.asyncio
async def test_get_or_create_uses_defaults(session):
    store = PreferenceStore(session)

    prefs = await store.get_or_create("did:plc:alice")

    assert prefs.daily_post_limit == 300
    assert prefs.default_quota == 7
    assert prefs.created_at is not None


@pytest.mark.asyncio
async def test_get_or_create_is_idempotent(session):
    store = PreferenceStore(session)
    first = await store.get_or_create("did:plc:alice")
    await store.set_daily_limit("did:plc:alice", 50)

    again = await store.get_or_create("did:plc:alice")

    assert again.user_id == first.user_id
    assert again.daily_post_limit == 50
    rows = (await session.execute(UserPreferences.__table__.select())).all()
    assert len(rows) == 1


@pytest.mark.asyncio
@pytest.mark.parametrize("limit", [0, 1001, -5])
async def test_set_daily_limit_rejects_out_of_range(session, limit):
    with pytest.raises(ValidationError):
        await PreferenceStore(session).set_daily_limit("did:plc:alice", limit)


@pytest.mark.asyncio
async def test_set_daily_limit_rejects_bool_and_float(session):
    store = PreferenceStore(session)
    with pytest.raises(ValidationError):
        await store.set_daily_limit("did:plc:alice", True)
    with pytest.raises(ValidationError):
        await store.set_daily_limit("did:plc:alice", 10.5)


@pytest.mark.asyncio
async def test_limit_bounds_are_inclusive(session):
    store = PreferenceStore(session)
    assert (await store.set_daily_limit("did:plc:alice", 1)).daily_post_limit == 1
    assert (await store.set_daily_limit("did:plc:alice", 1000)).daily_post_limit == 1000
    assert (await store.set_default_quota("did:plc:alice", 1)).default_quota == 1
    assert (await store.set_default_quota("did:plc:alice", 50)).default_quota == 50


@pytest.mark.asyncio
async def test_default_quota_of_zero_is_rejected(session):
    # 0 mutes a single followee but is not a valid default
    with pytest.raises(ValidationError):
        await PreferenceStore(session).set_default_quota("did:plc:alice", 0)


@pytest.mark.asyncio
async def test_update_validates_everything_before_writing(session):
    store = PreferenceStore(session)
    await store.get_or_create("did:plc:alice")

    with pytest.raises(ValidationError):
        await store.update("did:plc:alice", daily_post_limit=100, default_quota=99)

    prefs = await store.get_or_create("did:plc:alice")
    assert prefs.daily_post_limit == 300
    assert prefs.default_quota == 7


@pytest.mark.asyncio
async def test_blank_user_id_is_rejected(session):
    with pytest.raises(ValidationError):
        await PreferenceStore(session).get_or_create("   ")
