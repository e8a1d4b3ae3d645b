"""
Pydantic request / response schemas for the API layer.
Kept separate from ORM models to avoid coupling transport to storage.

Every record has a fixed shape: optional values are explicit nulls, never
omitted keys.
"""
from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel


# ──────────────────────────── Statistics ──────────────────────────────────

class RollingStats(BaseModel):
    total_viewed: int
    avg_per_day: float          # averaged over days with data only
    avg_followee_count: float
    days_with_data: int


class AuthorStats(BaseModel):
    author_id: str
    viewed_today: int
    viewed_this_week: int
    viewed_this_month: int
    quota: Optional[int]        # None once the viewer no longer follows the author


class PreferencesSummary(BaseModel):
    daily_post_limit: int
    default_quota: int
    calculated_default_quota: int


class FolloweeSummary(BaseModel):
    total_followees: int
    total_quota: int
    average_quota: float
    muted_count: int
    pinned_count: int


class UsageStats(BaseModel):
    total_posts_viewed_30_days: int
    average_posts_per_day: float
    days_with_data: int
    estimated_daily_capacity: int   # sum of all followee quotas


class StatsSummary(BaseModel):
    user_id: str
    preferences: PreferencesSummary
    followee_summary: FolloweeSummary
    usage: UsageStats
    top_authors: list[AuthorStats]


# ──────────────────────────── Preferences ─────────────────────────────────

class PreferencesUpdate(BaseModel):
    # Range checks happen in PreferenceStore so they surface as 400s
    daily_post_limit: Optional[int] = None
    default_quota: Optional[int] = None


class PreferencesResponse(BaseModel):
    user_id: str
    daily_post_limit: int
    default_quota: int
    calculated_default_quota: int
    followee_count: int
    stats: RollingStats
    created_at: datetime
    updated_at: datetime


# ──────────────────────────── Followees ───────────────────────────────────

class FolloweeCreate(BaseModel):
    followee_id: str
    quota: Optional[int] = None     # omitted → calculated default, unpinned


class FolloweeQuotaUpdate(BaseModel):
    quota: int


class FolloweeResponse(BaseModel):
    followee_id: str
    quota: int
    pinned: bool
    source_reference: str
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class FolloweeWithStats(FolloweeResponse):
    viewed_today: int = 0
    viewed_this_week: int = 0
    viewed_this_month: int = 0


class FolloweeListResponse(BaseModel):
    followees: list[FolloweeWithStats]
    count: int


# ──────────────────────────── Feed ────────────────────────────────────────

PriorityTier = Literal["high", "normal", "low"]


class AllocationInfo(BaseModel):
    """Why a post was allocated to this page."""
    quota: int
    is_custom: bool                 # quota differs from the user's default
    priority_tier: PriorityTier     # quota above / equal to / below default
    position_in_allocation: int     # 1-based slot within today's quota
    author_id: str
    indexed_at: datetime
    generated_at: datetime


class FeedItem(BaseModel):
    post: str
    reason: Optional[str]
    allocation: Optional[AllocationInfo]


class FeedFeatures(BaseModel):
    daily_limits: bool = True
    mahoot_numbers: bool = True
    amplification: bool = True
    random_selection: bool = True
    statistics: bool = True


class FeedMetadata(BaseModel):
    algorithm: str
    version: str
    requester: str
    daily_post_limit: int
    default_quota: int
    followee_count: int
    posts_viewed_today: int         # before this page
    remaining_posts: int            # before this page
    generated_at: datetime
    features: FeedFeatures


class FeedPage(BaseModel):
    cursor: Optional[str]
    feed: list[FeedItem]
    metadata: Optional[FeedMetadata]
