"""
StatsAggregator — consumption statistics derived from view records.

  daily_stats    one row per (user, day), written after each feed page
  rolling 30d    totals and averages over days that actually have data
  per author     today / 7d / 30d view counts joined with the current quota
  retention      old daily rows and views of removed posts are purged
"""
import logging
from datetime import date, datetime, timedelta
from typing import Callable, Optional

from sqlalchemy import and_, case, delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from mahoot.config import settings
from mahoot.database import upsert
from mahoot.followees import FolloweeRegistry
from mahoot.models import DailyStat, FolloweeEdge, Post, ViewRecord, utcnow
from mahoot.preferences import PreferenceStore
from mahoot.schemas import (
    AuthorStats,
    FolloweeSummary,
    PreferencesSummary,
    RollingStats,
    StatsSummary,
    UsageStats,
)
from mahoot.views import day_bounds

logger = logging.getLogger(__name__)

ROLLING_WINDOW_DAYS = 30
WEEK_DAYS = 7
TOP_AUTHORS = 10


class StatsAggregator:
    def __init__(
        self,
        session: AsyncSession,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.session = session
        self.clock = clock or utcnow

    # ── Daily rollup ─────────────────────────────────────────────────────

    async def get_daily(self, user_id: str, day: date) -> Optional[DailyStat]:
        result = await self.session.execute(
            select(DailyStat)
            .where(DailyStat.user_id == user_id, DailyStat.date == day)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def upsert_daily(
        self, user_id: str, day: date, total_viewed: int, followee_count: int
    ) -> None:
        """Overwrite the (user, day) row. Last write wins."""
        await upsert(
            self.session,
            DailyStat,
            {
                "user_id": user_id,
                "date": day,
                "total_posts_viewed": total_viewed,
                "followee_count": followee_count,
            },
            conflict_columns=("user_id", "date"),
            update={
                "total_posts_viewed": total_viewed,
                "followee_count": followee_count,
            },
        )

    async def increment_daily(
        self,
        user_id: str,
        day: date,
        baseline: int,
        delta: int,
        followee_count: int,
    ) -> None:
        """
        Add `delta` new views to the (user, day) row in one statement.

        A missing row is created as `baseline + delta`, where `baseline` is the
        caller's count of views earlier that day. An existing row is bumped in
        place, so two concurrent pages never overwrite each other's count.
        """
        await upsert(
            self.session,
            DailyStat,
            {
                "user_id": user_id,
                "date": day,
                "total_posts_viewed": baseline + delta,
                "followee_count": followee_count,
            },
            conflict_columns=("user_id", "date"),
            update={
                "total_posts_viewed": DailyStat.total_posts_viewed + delta,
                "followee_count": followee_count,
            },
        )

    # ── Rolling window ───────────────────────────────────────────────────

    async def rolling_30_day(self, user_id: str) -> RollingStats:
        cutoff = self.clock().date() - timedelta(days=ROLLING_WINDOW_DAYS)
        row = (
            await self.session.execute(
                select(
                    func.sum(DailyStat.total_posts_viewed),
                    func.avg(DailyStat.total_posts_viewed),
                    func.avg(DailyStat.followee_count),
                    func.count(DailyStat.date),
                ).where(DailyStat.user_id == user_id, DailyStat.date >= cutoff)
            )
        ).one()
        total, avg_viewed, avg_followees, days = row
        return RollingStats(
            total_viewed=int(total or 0),
            avg_per_day=float(avg_viewed or 0),
            avg_followee_count=float(avg_followees or 0),
            days_with_data=int(days or 0),
        )

    # ── Per author ───────────────────────────────────────────────────────

    async def _author_stats(
        self, viewer_id: str, author_id: Optional[str] = None
    ) -> list[AuthorStats]:
        now = self.clock()
        today_start, _ = day_bounds(now.date())
        week_ago = now - timedelta(days=WEEK_DAYS)
        month_ago = now - timedelta(days=ROLLING_WINDOW_DAYS)

        def _since(cutoff: datetime):
            return func.sum(case((ViewRecord.viewed_at >= cutoff, 1), else_=0))

        stmt = (
            select(
                ViewRecord.author_id,
                _since(today_start),
                _since(week_ago),
                _since(month_ago),
                FolloweeEdge.quota,
            )
            .outerjoin(
                FolloweeEdge,
                and_(
                    FolloweeEdge.user_id == ViewRecord.viewer_id,
                    FolloweeEdge.followee_id == ViewRecord.author_id,
                ),
            )
            .where(ViewRecord.viewer_id == viewer_id)
            .group_by(ViewRecord.author_id, FolloweeEdge.quota)
            .order_by(ViewRecord.author_id)
        )
        if author_id is not None:
            stmt = stmt.where(ViewRecord.author_id == author_id)

        rows = (await self.session.execute(stmt)).all()
        return [
            AuthorStats(
                author_id=aid,
                viewed_today=int(today or 0),
                viewed_this_week=int(week or 0),
                viewed_this_month=int(month or 0),
                quota=quota,
            )
            for aid, today, week, month, quota in rows
        ]

    async def per_author_stats(self, viewer_id: str, author_id: str) -> AuthorStats:
        stats = await self._author_stats(viewer_id, author_id)
        if stats:
            return stats[0]
        edge = await self.session.get(FolloweeEdge, (viewer_id, author_id))
        return AuthorStats(
            author_id=author_id,
            viewed_today=0,
            viewed_this_week=0,
            viewed_this_month=0,
            quota=edge.quota if edge else None,
        )

    async def all_author_stats(self, viewer_id: str) -> list[AuthorStats]:
        """Stats for every author the viewer has ever been shown."""
        return await self._author_stats(viewer_id)

    # ── Summary ──────────────────────────────────────────────────────────

    async def summary(self, user_id: str) -> StatsSummary:
        prefs_store = PreferenceStore(self.session)
        registry = FolloweeRegistry(self.session, prefs_store)

        prefs = await prefs_store.get_or_create(user_id)
        calculated = await registry.calculate_default_quota(user_id)
        followees = await registry.list_followees(user_id)
        rolling = await self.rolling_30_day(user_id)
        authors = await self.all_author_stats(user_id)

        total_quota = sum(f.quota for f in followees)
        average_quota = total_quota / len(followees) if followees else 0.0
        top = sorted(
            authors, key=lambda a: (-a.viewed_this_month, a.author_id)
        )[:TOP_AUTHORS]

        return StatsSummary(
            user_id=user_id,
            preferences=PreferencesSummary(
                daily_post_limit=prefs.daily_post_limit,
                default_quota=prefs.default_quota,
                calculated_default_quota=calculated,
            ),
            followee_summary=FolloweeSummary(
                total_followees=len(followees),
                total_quota=total_quota,
                average_quota=round(average_quota, 2),
                muted_count=sum(1 for f in followees if f.quota == 0),
                pinned_count=sum(1 for f in followees if f.pinned),
            ),
            usage=UsageStats(
                total_posts_viewed_30_days=rolling.total_viewed,
                average_posts_per_day=round(rolling.avg_per_day, 2),
                days_with_data=rolling.days_with_data,
                estimated_daily_capacity=total_quota,
            ),
            top_authors=top,
        )

    # ── Retention ────────────────────────────────────────────────────────

    async def cleanup(self, days_to_keep: Optional[int] = None) -> tuple[int, int]:
        """
        Delete daily rows older than `days_to_keep` days, and old view records
        whose post has left the catalog.

        A view record for a post still in the catalog is what keeps that post
        from being served to the viewer again, so it is never purged.
        """
        if days_to_keep is None:
            days_to_keep = settings.stats_retention_days
        cutoff = self.clock() - timedelta(days=days_to_keep)

        in_catalog = select(Post.uri).where(Post.uri == ViewRecord.post_uri)
        views = await self.session.execute(
            delete(ViewRecord).where(
                ViewRecord.viewed_at < cutoff, ~in_catalog.exists()
            )
        )
        daily = await self.session.execute(
            delete(DailyStat).where(DailyStat.date < cutoff.date())
        )
        logger.info(
            "Cleaned up statistics older than %d days: %d view records, %d daily rows",
            days_to_keep, views.rowcount, daily.rowcount,
        )
        return views.rowcount, daily.rowcount
