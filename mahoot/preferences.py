"""
PreferenceStore — per-user daily budget and default Mahoot number.

Rows are created lazily on first access with the configured defaults and are
only ever changed through the validated setters below.
"""
import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from mahoot.config import settings
from mahoot.database import insert_ignore
from mahoot.errors import require_identifier, require_int_in_range
from mahoot.models import UserPreferences, utcnow

logger = logging.getLogger(__name__)

DAILY_LIMIT_MIN, DAILY_LIMIT_MAX = 1, 1000
DEFAULT_QUOTA_MIN, DEFAULT_QUOTA_MAX = 1, 50


class PreferenceStore:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def _load(self, user_id: str) -> Optional[UserPreferences]:
        result = await self.session.execute(
            select(UserPreferences)
            .where(UserPreferences.user_id == user_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_or_create(self, user_id: str) -> UserPreferences:
        """Return the user's preferences, creating the default row if absent."""
        require_identifier(user_id, "user_id")
        prefs = await self._load(user_id)
        if prefs is not None:
            return prefs

        now = utcnow()
        created = await insert_ignore(
            self.session,
            UserPreferences,
            {
                "user_id": user_id,
                "daily_post_limit": settings.default_daily_post_limit,
                "default_quota": settings.default_quota,
                "created_at": now,
                "updated_at": now,
            },
            conflict_columns=("user_id",),
        )
        if created:
            logger.info("Created default preferences for %s", user_id)
        # A concurrent request may have won the insert; either way the row exists
        return await self._load(user_id)

    async def set_daily_limit(self, user_id: str, limit: int) -> UserPreferences:
        require_int_in_range(
            limit, "daily_post_limit", DAILY_LIMIT_MIN, DAILY_LIMIT_MAX
        )
        return await self.update(user_id, daily_post_limit=limit)

    async def set_default_quota(self, user_id: str, quota: int) -> UserPreferences:
        # Only the default is bounded below at 1; followee edges may be 0 (muted)
        require_int_in_range(
            quota, "default_quota", DEFAULT_QUOTA_MIN, DEFAULT_QUOTA_MAX
        )
        return await self.update(user_id, default_quota=quota)

    async def update(
        self,
        user_id: str,
        daily_post_limit: Optional[int] = None,
        default_quota: Optional[int] = None,
    ) -> UserPreferences:
        """
        Apply any supplied values. Every value is validated before anything is
        written, so a bad field rejects the whole update.
        """
        if daily_post_limit is not None:
            require_int_in_range(
                daily_post_limit, "daily_post_limit", DAILY_LIMIT_MIN, DAILY_LIMIT_MAX
            )
        if default_quota is not None:
            require_int_in_range(
                default_quota, "default_quota", DEFAULT_QUOTA_MIN, DEFAULT_QUOTA_MAX
            )

        prefs = await self.get_or_create(user_id)
        if daily_post_limit is None and default_quota is None:
            return prefs

        if daily_post_limit is not None:
            prefs.daily_post_limit = daily_post_limit
        if default_quota is not None:
            prefs.default_quota = default_quota
        prefs.updated_at = utcnow()
        await self.session.flush()

        logger.info(
            "Preferences updated for %s: daily_post_limit=%d default_quota=%d",
            user_id, prefs.daily_post_limit, prefs.default_quota,
        )
        return prefs
