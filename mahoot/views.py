"""
ViewTracker — which posts each viewer has already been shown.

A (post, viewer) pair is recorded at most once: the composite primary key on
view_records turns a repeated insert into a no-op, which keeps recording safe
under concurrent writers without a read-before-write check.
"""
import logging
from datetime import date, datetime, time, timedelta
from typing import Callable, Optional

from sqlalchemy import and_, select
from sqlalchemy.ext.asyncio import AsyncSession

from mahoot.database import insert_ignore
from mahoot.models import Post, ViewRecord, utcnow
from mahoot.telemetry import VIEW_RECORDS_TOTAL

logger = logging.getLogger(__name__)


def day_bounds(day: date) -> tuple[datetime, datetime]:
    """Half-open UTC interval [00:00, next 00:00) covering `day`."""
    start = datetime.combine(day, time.min)
    return start, start + timedelta(days=1)


class ViewTracker:
    def __init__(
        self,
        session: AsyncSession,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.session = session
        self.clock = clock or utcnow

    async def record(self, post_uri: str, author_id: str, viewer_id: str) -> bool:
        """Mark `post_uri` as shown to `viewer_id`. Returns False for a repeat."""
        inserted = await insert_ignore(
            self.session,
            ViewRecord,
            {
                "post_uri": post_uri,
                "author_id": author_id,
                "viewer_id": viewer_id,
                "viewed_at": self.clock(),
            },
            conflict_columns=("post_uri", "viewer_id"),
        )
        VIEW_RECORDS_TOTAL.labels(outcome="inserted" if inserted else "duplicate").inc()
        return inserted

    async def viewed_on(self, viewer_id: str, day: date) -> list[ViewRecord]:
        start, end = day_bounds(day)
        result = await self.session.execute(
            select(ViewRecord).where(
                ViewRecord.viewer_id == viewer_id,
                ViewRecord.viewed_at >= start,
                ViewRecord.viewed_at < end,
            )
        )
        return list(result.scalars().all())

    async def viewed_today(self, viewer_id: str) -> list[ViewRecord]:
        return await self.viewed_on(viewer_id, self.clock().date())

    async def unviewed_by_author(
        self, viewer_id: str, author_id: str, limit: int
    ) -> list[Post]:
        """Newest-first posts by `author_id` that `viewer_id` has not seen."""
        if limit <= 0:
            return []
        seen = select(ViewRecord.post_uri).where(
            and_(
                ViewRecord.post_uri == Post.uri,
                ViewRecord.viewer_id == viewer_id,
            )
        )
        result = await self.session.execute(
            select(Post)
            .where(Post.author_id == author_id, ~seen.exists())
            .order_by(Post.indexed_at.desc(), Post.uri.desc())
            .limit(limit)
        )
        return list(result.scalars().all())
