import asyncio
from datetime import datetime

import pytest

from mahoot.catalog import PostCatalog
from mahoot.followees import FolloweeRegistry
from mahoot.ingestion import (
    on_follow_created,
    on_follow_removed,
    on_post_created,
    on_post_deleted,
)
from mahoot.worker import (
    IngestionWorker,
    _parse_timestamp,
    cancel_and_wait,
    cleanup_loop,
    cleanup_once,
)

ALICE = "did:plc:alice"
BOB = "did:plc:bob"


@pytest.mark.asyncio
async def test_follow_then_unfollow_by_record_uri(session):
    await on_follow_created(session, ALICE, BOB, "at://alice/app.bsky.graph.follow/3k1")
    edge = await FolloweeRegistry(session).get(ALICE, BOB)
    assert edge.pinned is False

    removed = await on_follow_removed(session, "at://alice/app.bsky.graph.follow/3k1")

    assert removed.followee_id == BOB
    assert await FolloweeRegistry(session).count(ALICE) == 0


@pytest.mark.asyncio
async def test_unknown_unfollow_is_ignored(session):
    assert await on_follow_removed(session, "at://alice/app.bsky.graph.follow/none") is None


@pytest.mark.asyncio
async def test_post_created_and_deleted(session):
    assert await on_post_created(session, "at://bob/post/1", "cid", BOB) is True
    assert await on_post_created(session, "at://bob/post/1", "cid", BOB) is False

    assert await on_post_deleted(session, "at://bob/post/1") is True
    assert await PostCatalog(session).count() == 0


def test_parse_timestamp_normalises_to_naive_utc():
    assert _parse_timestamp("2025-03-14T12:00:00Z") == datetime(2025, 3, 14, 12, 0)
    assert _parse_timestamp("2025-03-14T14:00:00+02:00") == datetime(2025, 3, 14, 12, 0)
    assert _parse_timestamp(None) is None


# ── Worker ─────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_worker_applies_records(session_factory):
    worker = IngestionWorker(session_factory, log_every=2)

    assert await worker.handle(
        {"type": "follow.created", "follower_id": ALICE, "followee_id": BOB, "uri": "at://f/1"}
    )
    assert await worker.handle(
        {"type": "post.created", "uri": "at://bob/post/1", "cid": "c", "author_id": BOB,
         "indexed_at": "2025-03-14T12:00:00Z"}
    )

    async with session_factory() as s:
        assert await FolloweeRegistry(s).count(ALICE) == 1
        post = await PostCatalog(s).get("at://bob/post/1")
        assert post.indexed_at == datetime(2025, 3, 14, 12, 0)
    assert worker.counts == {"follow.created": 1, "post.created": 1}


@pytest.mark.asyncio
async def test_worker_skips_bad_records(session_factory):
    worker = IngestionWorker(session_factory)

    assert await worker.handle({"type": "post.created", "uri": "at://x"}) is False
    assert await worker.handle({"type": "like.created"}) is False
    # Self-follow fails validation inside the core and is skipped too
    assert await worker.handle(
        {"type": "follow.created", "follower_id": ALICE, "followee_id": ALICE, "uri": "at://f/1"}
    ) is False

    assert worker.processed == 0


@pytest.mark.asyncio
async def test_deleting_unknown_post_is_harmless(session_factory):
    worker = IngestionWorker(session_factory)
    assert await worker.handle({"type": "post.deleted", "uri": "at://never-indexed"})

    async with session_factory() as s:
        assert await PostCatalog(s).count() == 0


@pytest.mark.asyncio
async def test_cleanup_once_commits(session_factory):
    assert await cleanup_once(session_factory) == (0, 0)


@pytest.mark.asyncio
async def test_cleanup_task_stops_cleanly(session_factory, monkeypatch):
    ran = asyncio.Event()

    async def _cleanup(factory):
        ran.set()
        return 0, 0

    monkeypatch.setattr("mahoot.worker.cleanup_once", _cleanup)
    task = asyncio.create_task(cleanup_loop(session_factory))
    await ran.wait()

    await cancel_and_wait(task)

    assert task.cancelled()
