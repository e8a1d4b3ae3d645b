"""
Feed endpoints:
  GET /feed?limit=&cursor=  — next Mahoot page for the requester
  GET /feed/config          — algorithm description and tunables (no auth)

Feed generation runs under the requester's Redis lease when
`feed_lease_enabled` is set, so two pages for one user are never sized from
the same view count.
"""
import logging
from contextlib import nullcontext
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from mahoot.allocator import ALGORITHM, VERSION, FeedAllocator
from mahoot.clients.redis_client import feed_lease
from mahoot.config import settings
from mahoot.database import get_db
from mahoot.followees import QUOTA_MAX, QUOTA_MIN
from mahoot.preferences import (
    DAILY_LIMIT_MAX,
    DAILY_LIMIT_MIN,
    DEFAULT_QUOTA_MAX,
    DEFAULT_QUOTA_MIN,
)
from mahoot.routers.deps import get_requester
from mahoot.schemas import FeedPage

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("", response_model=FeedPage)
async def get_feed(
    limit: int = Query(default=settings.feed_page_size),
    cursor: Optional[str] = Query(default=None),
    requester_id: str = Depends(get_requester),
    db: AsyncSession = Depends(get_db),
):
    """
    Build one page. Every post returned is recorded as viewed, so repeating
    the request never shows the same post twice.
    """
    lease = feed_lease(requester_id) if settings.feed_lease_enabled else nullcontext()
    async with lease:
        return await FeedAllocator(db).generate_feed(requester_id, limit, cursor)


@router.get("/config")
async def get_feed_config():
    return {
        "algorithm": ALGORITHM,
        "version": VERSION,
        "description": "Time-controlled social media with fair followee exposure",
        "features": {
            "daily_limits": {
                "name": "Daily Post Limits",
                "description": "Set a daily limit on how many posts you consume",
                "default": settings.default_daily_post_limit,
                "min": DAILY_LIMIT_MIN,
                "max": DAILY_LIMIT_MAX,
            },
            "mahoot_numbers": {
                "name": "Mahoot Numbers",
                "description": "Guaranteed minimum posts per followee per day",
                "default": settings.default_quota,
                "min": DEFAULT_QUOTA_MIN,
                "max": DEFAULT_QUOTA_MAX,
            },
            "amplification": {
                "name": "Followee Amplification",
                "description": "Amp up important voices or amp down prolific posters",
                "min": QUOTA_MIN,
                "max": QUOTA_MAX,
            },
            "random_selection": {
                "name": "Random Subset Selection",
                "description": "Randomly selects posts from over-posting followees",
            },
            "statistics": {
                "name": "Usage Statistics",
                "description": "Track your viewing patterns and engagement",
            },
        },
        "configuration": {
            "daily_post_limit": {"endpoint": "PUT /preferences", "type": "integer"},
            "default_quota": {"endpoint": "PUT /preferences", "type": "integer"},
            "followee_quota": {"endpoint": "PUT /followees/{followee_id}", "type": "integer"},
        },
    }
