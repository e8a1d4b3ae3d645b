"""
Ingestion handlers — the core's entry points for decoded firehose records.

The streaming subscriber that discovers follows and posts lives outside this
service; it hands each record to one of these functions (in production via
the Kafka worker in mahoot.worker). Each handler runs against the caller's
session and leaves committing to the caller.
"""
import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from mahoot.catalog import PostCatalog
from mahoot.followees import FolloweeRegistry
from mahoot.models import FolloweeEdge

logger = logging.getLogger(__name__)


async def on_follow_created(
    session: AsyncSession,
    follower_id: str,
    followee_id: str,
    source_ref: str,
) -> FolloweeEdge:
    """A follow record appeared: add a default-tier edge and rebalance."""
    edge = await FolloweeRegistry(session).add_or_update(
        follower_id, followee_id, source_ref=source_ref
    )
    logger.info("Follow relationship added: %s -> %s", follower_id, followee_id)
    return edge


async def on_follow_removed(
    session: AsyncSession, source_ref: str
) -> Optional[FolloweeEdge]:
    """A follow record was deleted; only its URI is known."""
    edge = await FolloweeRegistry(session).remove_by_source(source_ref)
    if edge is not None:
        logger.info(
            "Follow relationship removed: %s -> %s", edge.user_id, edge.followee_id
        )
    return edge


async def on_post_created(
    session: AsyncSession,
    uri: str,
    content_id: str,
    author_id: str,
    indexed_at: Optional[datetime] = None,
) -> bool:
    return await PostCatalog(session).add(uri, content_id, author_id, indexed_at)


async def on_post_deleted(session: AsyncSession, uri: str) -> bool:
    return await PostCatalog(session).remove(uri)
