import pytest
from sqlalchemy.exc import OperationalError

from mahoot.clients.redis_client import LEASE_KEY
from mahoot.stats import StatsAggregator

from conftest import seed_posts

ALICE = "did:plc:alice"
BOB = "did:plc:bob"
AUTH = {"X-Requester-Id": ALICE}


@pytest.mark.asyncio
async def test_health(api_client):
    resp = await api_client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"


@pytest.mark.asyncio
@pytest.mark.parametrize("path", ["/feed", "/preferences", "/followees", "/stats"])
async def test_requester_header_is_required(api_client, path):
    resp = await api_client.get(path)
    assert resp.status_code == 401

    resp = await api_client.get(path, headers={"X-Requester-Id": "  "})
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_feed_config_is_public(api_client):
    resp = await api_client.get("/feed/config")

    assert resp.status_code == 200
    body = resp.json()
    assert body["algorithm"] == "mahoot"
    assert body["features"]["daily_limits"]["max"] == 1000
    assert body["features"]["mahoot_numbers"]["default"] == 7


# ── Preferences ────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_preferences_defaults(api_client):
    resp = await api_client.get("/preferences", headers=AUTH)

    assert resp.status_code == 200
    body = resp.json()
    assert body["daily_post_limit"] == 300
    assert body["default_quota"] == 7
    assert body["calculated_default_quota"] == 7
    assert body["followee_count"] == 0
    assert body["stats"]["days_with_data"] == 0


@pytest.mark.asyncio
async def test_put_preferences_rebalances_followees(api_client):
    await api_client.post("/followees", json={"followee_id": BOB}, headers=AUTH)

    resp = await api_client.put("/preferences", json={"daily_post_limit": 5}, headers=AUTH)

    assert resp.status_code == 200
    assert resp.json()["daily_post_limit"] == 5
    followees = (await api_client.get("/followees", headers=AUTH)).json()
    assert followees["followees"][0]["quota"] == 5


@pytest.mark.asyncio
async def test_put_preferences_rejects_whole_request_on_bad_field(api_client):
    resp = await api_client.put(
        "/preferences", json={"daily_post_limit": 50, "default_quota": 0}, headers=AUTH
    )
    assert resp.status_code == 400

    body = (await api_client.get("/preferences", headers=AUTH)).json()
    assert body["daily_post_limit"] == 300


# ── Followees ──────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_followee_lifecycle(api_client):
    resp = await api_client.post("/followees", json={"followee_id": BOB}, headers=AUTH)
    assert resp.status_code == 201
    assert resp.json()["pinned"] is False

    resp = await api_client.put(f"/followees/{BOB}", json={"quota": 0}, headers=AUTH)
    assert resp.status_code == 200
    assert resp.json()["quota"] == 0
    assert resp.json()["pinned"] is True

    resp = await api_client.delete(f"/followees/{BOB}/quota", headers=AUTH)
    assert resp.status_code == 200
    assert resp.json()["pinned"] is False

    assert (await api_client.delete(f"/followees/{BOB}", headers=AUTH)).status_code == 204
    assert (await api_client.delete(f"/followees/{BOB}", headers=AUTH)).status_code == 204
    assert (await api_client.get("/followees", headers=AUTH)).json()["count"] == 0


@pytest.mark.asyncio
async def test_followee_errors(api_client):
    resp = await api_client.put(f"/followees/{BOB}", json={"quota": 3}, headers=AUTH)
    assert resp.status_code == 404

    await api_client.post("/followees", json={"followee_id": BOB}, headers=AUTH)
    resp = await api_client.put(f"/followees/{BOB}", json={"quota": 51}, headers=AUTH)
    assert resp.status_code == 400

    resp = await api_client.post("/followees", json={"followee_id": ALICE}, headers=AUTH)
    assert resp.status_code == 400


# ── Feed ───────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_feed_serves_and_records_views(api_client, session):
    await api_client.post("/followees", json={"followee_id": BOB, "quota": 3}, headers=AUTH)
    await seed_posts(session, BOB, 10)

    resp = await api_client.get("/feed", params={"limit": 10}, headers=AUTH)

    assert resp.status_code == 200
    body = resp.json()
    assert len(body["feed"]) == 3
    assert body["metadata"]["remaining_posts"] == 300
    assert body["cursor"] is not None
    item = body["feed"][0]
    assert set(item) == {"post", "reason", "allocation"}
    assert item["allocation"]["author_id"] == BOB

    listing = (await api_client.get("/followees", headers=AUTH)).json()
    assert listing["followees"][0]["viewed_today"] == 3

    # Quota is used up for today; the page is empty but not short-circuited
    again = (await api_client.get("/feed", headers=AUTH)).json()
    assert again["feed"] == []
    assert again["cursor"] is None
    assert again["metadata"]["posts_viewed_today"] == 3


@pytest.mark.asyncio
async def test_feed_without_followees_is_empty(api_client):
    resp = await api_client.get("/feed", headers=AUTH)

    assert resp.json() == {"cursor": None, "feed": [], "metadata": None}


@pytest.mark.asyncio
async def test_feed_busy_when_lease_is_held(api_client, fake_redis, settings_override):
    settings_override(feed_lease_wait_seconds=0)
    await fake_redis.set(LEASE_KEY.format(user_id=ALICE), "someone-else")

    resp = await api_client.get("/feed", headers=AUTH)

    assert resp.status_code == 409


@pytest.mark.asyncio
async def test_feed_without_lease(api_client, fake_redis, settings_override):
    settings_override(feed_lease_enabled=False)
    await fake_redis.set(LEASE_KEY.format(user_id=ALICE), "someone-else")

    resp = await api_client.get("/feed", headers=AUTH)

    assert resp.status_code == 200


# ── Stats ──────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_stats_summary(api_client):
    await api_client.post("/followees", json={"followee_id": BOB, "quota": 4}, headers=AUTH)

    resp = await api_client.get("/stats", headers=AUTH)

    assert resp.status_code == 200
    body = resp.json()
    assert body["followee_summary"]["total_quota"] == 4
    assert body["followee_summary"]["pinned_count"] == 1
    assert body["usage"]["estimated_daily_capacity"] == 4


@pytest.mark.asyncio
async def test_storage_failure_maps_to_503(api_client, monkeypatch):
    async def _down(self, user_id):
        raise OperationalError("SELECT 1", {}, Exception("connection lost"))

    monkeypatch.setattr(StatsAggregator, "summary", _down)

    resp = await api_client.get("/stats", headers=AUTH)

    assert resp.status_code == 503
