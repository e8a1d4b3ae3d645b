"""
SQLAlchemy ORM models for TiDB.

Tables:
  user_preferences — per-user daily budget + default Mahoot number
  followee_edges   — user → followee graph with per-edge quota
  posts            — post catalog fed by the ingestion worker
  view_records     — viewer × post exposures (at most one per pair)
  daily_stats      — per-user per-day consumption rollup
"""
import datetime as dt
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    Index,
    Integer,
    String,
)
from sqlalchemy.orm import Mapped, mapped_column

from mahoot.database import Base


def utcnow() -> datetime:
    """Naive UTC timestamp; every DateTime column stores UTC without tzinfo."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class UserPreferences(Base):
    __tablename__ = "user_preferences"

    user_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    daily_post_limit: Mapped[int] = mapped_column(Integer, nullable=False)
    default_quota: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, nullable=False
    )


class FolloweeEdge(Base):
    __tablename__ = "followee_edges"

    user_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    followee_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    # Mahoot number: max posts per day from this followee. 0 = muted.
    quota: Mapped[int] = mapped_column(Integer, nullable=False)
    # True when the user set the quota explicitly; pinned edges are left
    # alone when default quotas are recalculated.
    pinned: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    # URI of the follow record that created the edge (used on unfollow)
    source_reference: Mapped[str] = mapped_column(String(512), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, nullable=False
    )

    __table_args__ = (
        Index("idx_followee_edges_followee", "followee_id"),
        Index("idx_followee_edges_source", "source_reference"),
    )


class Post(Base):
    __tablename__ = "posts"

    uri: Mapped[str] = mapped_column(String(512), primary_key=True)
    content_id: Mapped[str] = mapped_column(String(255), nullable=False)
    author_id: Mapped[str] = mapped_column(String(255), nullable=False)
    indexed_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, nullable=False
    )

    __table_args__ = (
        Index("idx_posts_author_indexed", "author_id", "indexed_at"),
    )


class ViewRecord(Base):
    __tablename__ = "view_records"

    # Composite key is what makes repeated inserts no-ops
    post_uri: Mapped[str] = mapped_column(String(512), primary_key=True)
    viewer_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    author_id: Mapped[str] = mapped_column(String(255), nullable=False)
    viewed_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, nullable=False
    )

    __table_args__ = (
        Index("idx_view_records_viewer_viewed", "viewer_id", "viewed_at"),
        Index("idx_view_records_viewer_author", "viewer_id", "author_id"),
        Index("idx_view_records_viewed", "viewed_at"),
    )


class DailyStat(Base):
    __tablename__ = "daily_stats"

    user_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    date: Mapped[dt.date] = mapped_column(Date, primary_key=True)
    total_posts_viewed: Mapped[int] = mapped_column(
        Integer, default=0, nullable=False
    )
    followee_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    __table_args__ = (
        Index("idx_daily_stats_date", "date"),
    )
