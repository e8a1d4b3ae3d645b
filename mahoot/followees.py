"""
FolloweeRegistry — the user → followee graph and per-edge Mahoot numbers.

Edges come in two tiers:

  default  pinned=False  quota is system-assigned and recalculated whenever
                         the user's followee count changes
  pinned   pinned=True   quota was set explicitly by the user (amp up, amp
                         down, mute) and is never overwritten by rebalancing

The default quota spreads the daily budget evenly over followees:
clamp(ceil(daily_post_limit / followee_count), 1, default_quota_ceiling).
"""
import logging
import math
from typing import Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from mahoot.config import settings
from mahoot.database import upsert
from mahoot.errors import (
    NotFoundError,
    ValidationError,
    require_identifier,
    require_int_in_range,
)
from mahoot.models import FolloweeEdge, utcnow
from mahoot.preferences import PreferenceStore
from mahoot.telemetry import FOLLOWEE_REBALANCE_TOTAL

logger = logging.getLogger(__name__)

QUOTA_MIN, QUOTA_MAX = 0, 50


def default_quota_for(
    daily_post_limit: int,
    followee_count: int,
    fallback: int,
    ceiling: int | None = None,
) -> int:
    """Even share of the daily budget per followee, floored at 1 and capped."""
    if followee_count <= 0:
        return fallback
    if ceiling is None:
        ceiling = settings.default_quota_ceiling
    return max(1, min(math.ceil(daily_post_limit / followee_count), ceiling))


def default_source_reference(user_id: str, followee_id: str) -> str:
    return f"at://{user_id}/app.bsky.graph.follow/{followee_id}"


class FolloweeRegistry:
    def __init__(
        self,
        session: AsyncSession,
        preferences: Optional[PreferenceStore] = None,
    ) -> None:
        self.session = session
        self.preferences = preferences or PreferenceStore(session)

    # ── Reads ────────────────────────────────────────────────────────────

    async def list_followees(self, user_id: str) -> list[FolloweeEdge]:
        result = await self.session.execute(
            select(FolloweeEdge)
            .where(FolloweeEdge.user_id == user_id)
            .order_by(FolloweeEdge.followee_id)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def get(self, user_id: str, followee_id: str) -> Optional[FolloweeEdge]:
        result = await self.session.execute(
            select(FolloweeEdge)
            .where(
                FolloweeEdge.user_id == user_id,
                FolloweeEdge.followee_id == followee_id,
            )
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def count(self, user_id: str, exclude: Optional[str] = None) -> int:
        stmt = select(func.count()).select_from(FolloweeEdge).where(
            FolloweeEdge.user_id == user_id
        )
        if exclude is not None:
            stmt = stmt.where(FolloweeEdge.followee_id != exclude)
        return (await self.session.execute(stmt)).scalar_one()

    async def calculate_default_quota(
        self, user_id: str, exclude: Optional[str] = None
    ) -> int:
        """
        Default Mahoot number for `user_id`, counting every followee except
        `exclude` (the one being added, when called from add_or_update).
        """
        prefs = await self.preferences.get_or_create(user_id)
        n = await self.count(user_id, exclude=exclude)
        return default_quota_for(prefs.daily_post_limit, n, prefs.default_quota)

    # ── Writes ───────────────────────────────────────────────────────────

    async def add_or_update(
        self,
        user_id: str,
        followee_id: str,
        quota: Optional[int] = None,
        source_ref: Optional[str] = None,
    ) -> FolloweeEdge:
        """
        Create or refresh an edge.

        With an explicit `quota` the edge becomes pinned. Without one, new and
        default-tier edges get the calculated default while an already pinned
        edge keeps the quota the user chose.
        """
        require_identifier(user_id, "user_id")
        require_identifier(followee_id, "followee_id")
        if user_id == followee_id:
            raise ValidationError("Cannot follow yourself")
        if quota is not None:
            require_int_in_range(quota, "quota", QUOTA_MIN, QUOTA_MAX)

        existing = await self.get(user_id, followee_id)
        if quota is not None:
            new_quota, pinned = quota, True
        elif existing is not None and existing.pinned:
            new_quota, pinned = existing.quota, True
        else:
            new_quota = await self.calculate_default_quota(user_id, exclude=followee_id)
            pinned = False

        now = utcnow()
        ref = source_ref or default_source_reference(user_id, followee_id)
        await upsert(
            self.session,
            FolloweeEdge,
            {
                "user_id": user_id,
                "followee_id": followee_id,
                "quota": new_quota,
                "pinned": pinned,
                "source_reference": ref,
                "created_at": now,
                "updated_at": now,
            },
            conflict_columns=("user_id", "followee_id"),
            update={
                "quota": new_quota,
                "pinned": pinned,
                "source_reference": ref,
                "updated_at": now,
            },
        )

        if existing is None:
            logger.info(
                "Followee added: %s -> %s (quota=%d, pinned=%s)",
                user_id, followee_id, new_quota, pinned,
            )
        if existing is None or not pinned:
            await self.rebalance(user_id)

        return await self.get(user_id, followee_id)

    async def set_quota(self, user_id: str, followee_id: str, quota: int) -> FolloweeEdge:
        """Amp up / amp down / mute an existing followee. Pins the edge."""
        require_int_in_range(quota, "quota", QUOTA_MIN, QUOTA_MAX)
        edge = await self.get(user_id, followee_id)
        if edge is None:
            raise NotFoundError(f"{user_id} does not follow {followee_id}")

        edge.quota = quota
        edge.pinned = True
        edge.updated_at = utcnow()
        await self.session.flush()
        logger.info("Quota pinned: %s -> %s = %d", user_id, followee_id, quota)
        return edge

    async def reset_quota(self, user_id: str, followee_id: str) -> FolloweeEdge:
        """Return a pinned edge to the default tier."""
        edge = await self.get(user_id, followee_id)
        if edge is None:
            raise NotFoundError(f"{user_id} does not follow {followee_id}")

        edge.quota = await self.calculate_default_quota(user_id)
        edge.pinned = False
        edge.updated_at = utcnow()
        await self.session.flush()
        return edge

    async def remove(self, user_id: str, followee_id: str) -> bool:
        """Delete an edge. Removing an absent edge is a no-op."""
        result = await self.session.execute(
            delete(FolloweeEdge).where(
                FolloweeEdge.user_id == user_id,
                FolloweeEdge.followee_id == followee_id,
            )
        )
        if result.rowcount == 0:
            return False

        logger.info("Followee removed: %s -> %s", user_id, followee_id)
        await self.rebalance(user_id)
        return True

    async def remove_by_source(self, source_ref: str) -> Optional[FolloweeEdge]:
        """Delete the edge created by the follow record `source_ref`."""
        result = await self.session.execute(
            select(FolloweeEdge)
            .where(FolloweeEdge.source_reference == source_ref)
            .limit(1)
        )
        edge = result.scalar_one_or_none()
        if edge is None:
            logger.warning("No followee edge for unfollow %s", source_ref)
            return None

        await self.remove(edge.user_id, edge.followee_id)
        return edge

    async def rebalance(self, user_id: str) -> int:
        """
        Recompute the default quota over all current followees and write it to
        every default-tier edge. Returns the number of edges changed.
        """
        if await self.count(user_id) == 0:
            return 0

        new_default = await self.calculate_default_quota(user_id)
        result = await self.session.execute(
            update(FolloweeEdge)
            .where(
                FolloweeEdge.user_id == user_id,
                FolloweeEdge.pinned.is_(False),
                FolloweeEdge.quota != new_default,
            )
            .values(quota=new_default, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        FOLLOWEE_REBALANCE_TOTAL.inc()
        if result.rowcount:
            logger.info(
                "Rebalanced %d default-tier followees for %s: quota=%d",
                result.rowcount, user_id, new_default,
            )
        return result.rowcount
