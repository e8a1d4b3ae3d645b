"""
FeedAllocator — builds one bounded, fair feed page per request.

  Stage 1 │ Budget
  ────────┼──────────────────────────────────────────────────────────────
          │  Load preferences + followees and today's view records.
          │  page_cap = min(daily_post_limit − viewed_today, page_size)

  Stage 2 │ Allocation
  ────────┼──────────────────────────────────────────────────────────────
          │  Walk followees by quota, highest first. Each followee gets
          │  min(quota − viewed_from_followee_today, page_cap − allocated)
          │  slots, filled from an over-fetched pool of unviewed posts and
          │  shuffled. Muted (quota 0) followees are skipped.

  Stage 3 │ Accounting
  ────────┼──────────────────────────────────────────────────────────────
          │  Every allocated post is recorded as viewed and committed at
          │  once: exposure is permanent even if a later step fails.
          │  Today's daily_stats row is bumped by the number of new views.

Each call recomputes everything from live state; the returned cursor is
informational and is not used to resume a page.
"""
import logging
import random
import time
from collections import Counter
from datetime import datetime
from typing import Callable, Optional

from opentelemetry import trace
from sqlalchemy.ext.asyncio import AsyncSession

from mahoot.config import settings
from mahoot.errors import AuthRequiredError
from mahoot.followees import FolloweeRegistry
from mahoot.models import FolloweeEdge, Post, UserPreferences, utcnow
from mahoot.preferences import PreferenceStore
from mahoot.schemas import (
    AllocationInfo,
    FeedFeatures,
    FeedItem,
    FeedMetadata,
    FeedPage,
    PriorityTier,
)
from mahoot.stats import StatsAggregator
from mahoot.telemetry import FEED_EMPTY_TOTAL, FEED_LATENCY, FEED_POSTS_SERVED_TOTAL
from mahoot.views import ViewTracker

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

ALGORITHM = "mahoot"
VERSION = "1.0.0"


def priority_tier(quota: int, default_quota: int) -> PriorityTier:
    if quota > default_quota:
        return "high"
    if quota < default_quota:
        return "low"
    return "normal"


def allocation_reason(position: int, quota: int, tier: PriorityTier) -> str:
    reason = f"Mahoot: {position}/{quota} posts from this followee today"
    if tier == "high":
        reason += " (amped up)"
    elif tier == "low":
        reason += " (amped down)"
    return reason


def make_cursor(items: list[FeedItem], now: Optional[datetime] = None) -> Optional[str]:
    if not items:
        return None
    ts = now or utcnow()
    epoch_ms = int((ts - datetime(1970, 1, 1)).total_seconds() * 1000)
    return f"{epoch_ms}::{items[-1].post}"


class FeedAllocator:
    def __init__(
        self,
        session: AsyncSession,
        rng: Optional[random.Random] = None,
        clock: Optional[Callable[[], datetime]] = None,
        overfetch_factor: Optional[int] = None,
    ) -> None:
        self.session = session
        self.rng = rng or random.Random()
        self.clock = clock or utcnow
        self.overfetch_factor = overfetch_factor or settings.overfetch_factor
        self.preferences = PreferenceStore(session)
        self.followees = FolloweeRegistry(session, self.preferences)
        self.views = ViewTracker(session, clock=self.clock)
        self.stats = StatsAggregator(session, clock=self.clock)

    async def generate_feed(
        self,
        requester_id: Optional[str],
        page_size: int = 20,
        cursor: Optional[str] = None,
    ) -> FeedPage:
        if not requester_id or not requester_id.strip():
            raise AuthRequiredError("User authentication required for Mahoot feed")

        start_time = time.time()
        with tracer.start_as_current_span("generate_feed") as span:
            span.set_attribute("user.id", requester_id)
            span.set_attribute("feed.page_size", page_size)
            if cursor:
                span.set_attribute("feed.cursor", cursor)

            page = await self._generate(requester_id, page_size, span)

            FEED_LATENCY.observe(time.time() - start_time)
            span.set_attribute("feed.posts_returned", len(page.feed))
            return page

    async def _generate(self, requester_id: str, page_size: int, span) -> FeedPage:
        # ═══════════════════════════════════════════════════════════════
        #  STAGE 1 — Budget
        # ═══════════════════════════════════════════════════════════════
        with tracer.start_as_current_span("stage1_budget"):
            prefs = await self.preferences.get_or_create(requester_id)
            followees = await self.followees.list_followees(requester_id)
            if not followees:
                return self._empty("no_followees", requester_id)

            viewed_today = await self.views.viewed_today(requester_id)
            viewed_count = len(viewed_today)
            if viewed_count >= prefs.daily_post_limit:
                return self._empty("budget_exhausted", requester_id)

            remaining = prefs.daily_post_limit - viewed_count
            page_cap = min(remaining, page_size)
            if page_cap <= 0:
                return self._empty("no_capacity", requester_id)

        span.set_attribute("feed.viewed_today", viewed_count)
        span.set_attribute("feed.page_cap", page_cap)

        # ═══════════════════════════════════════════════════════════════
        #  STAGE 2 + 3 — Allocation and accounting
        # ═══════════════════════════════════════════════════════════════
        viewed_by_author = Counter(v.author_id for v in viewed_today)
        # Stable sort: equal quotas keep the registry's order
        ordered = sorted(followees, key=lambda f: f.quota, reverse=True)

        page: list[tuple[Post, FeedItem]] = []
        inserted = 0
        with tracer.start_as_current_span("stage2_allocation"):
            for followee in ordered:
                if len(page) >= page_cap:
                    break
                allocated = await self._allocate_followee(
                    requester_id,
                    followee,
                    prefs,
                    viewed_by_author[followee.followee_id],
                    page_cap - len(page),
                )
                for post, item in allocated:
                    page.append((post, item))
                    if await self.views.record(post.uri, post.author_id, requester_id):
                        inserted += 1
                    await self.session.commit()

        # Newest first, by the catalog's own timestamp
        page.sort(key=lambda entry: (entry[0].indexed_at, entry[0].uri), reverse=True)
        feed = [item for _, item in page]

        with tracer.start_as_current_span("stage3_daily_stats"):
            await self.stats.increment_daily(
                requester_id,
                self.clock().date(),
                baseline=viewed_count,
                delta=inserted,
                followee_count=len(followees),
            )

        FEED_POSTS_SERVED_TOTAL.inc(len(feed))
        logger.info(
            "Feed for %s: %d posts (viewed_today=%d, limit=%d, followees=%d)",
            requester_id, len(feed), viewed_count, prefs.daily_post_limit,
            len(followees),
        )

        now = self.clock()
        return FeedPage(
            cursor=make_cursor(feed, now),
            feed=feed,
            metadata=FeedMetadata(
                algorithm=ALGORITHM,
                version=VERSION,
                requester=requester_id,
                daily_post_limit=prefs.daily_post_limit,
                default_quota=prefs.default_quota,
                followee_count=len(followees),
                posts_viewed_today=viewed_count,
                remaining_posts=remaining,
                generated_at=now,
                features=FeedFeatures(),
            ),
        )

    async def _allocate_followee(
        self,
        requester_id: str,
        followee: FolloweeEdge,
        prefs: UserPreferences,
        viewed_from_followee: int,
        free_slots: int,
    ) -> list[tuple[Post, FeedItem]]:
        """Pick this followee's posts for the page; nothing is written here."""
        quota = followee.quota
        if quota == 0:
            return []
        if viewed_from_followee >= quota:
            return []

        slots = min(quota - viewed_from_followee, free_slots)
        if slots <= 0:
            return []

        candidates = await self.views.unviewed_by_author(
            requester_id, followee.followee_id, slots * self.overfetch_factor
        )
        if not candidates:
            return []

        chosen = candidates[:slots]
        self.rng.shuffle(chosen)

        tier = priority_tier(quota, prefs.default_quota)
        now = self.clock()
        allocated = []
        for offset, post in enumerate(chosen):
            position = viewed_from_followee + offset + 1
            allocated.append(
                (
                    post,
                    FeedItem(
                        post=post.uri,
                        reason=allocation_reason(position, quota, tier),
                        allocation=AllocationInfo(
                            quota=quota,
                            is_custom=quota != prefs.default_quota,
                            priority_tier=tier,
                            position_in_allocation=position,
                            author_id=followee.followee_id,
                            indexed_at=post.indexed_at,
                            generated_at=now,
                        ),
                    ),
                )
            )
        return allocated

    def _empty(self, reason: str, requester_id: str) -> FeedPage:
        FEED_EMPTY_TOTAL.labels(reason=reason).inc()
        logger.info("Empty feed for %s: %s", requester_id, reason)
        return FeedPage(cursor=None, feed=[], metadata=None)
