"""
Followee endpoints:
  GET    /followees                     — edges joined with per-author stats
  POST   /followees                     — follow (optionally with a quota)
  PUT    /followees/{followee_id}       — amp up / amp down / mute
  DELETE /followees/{followee_id}/quota — back to the default tier
  DELETE /followees/{followee_id}       — unfollow (idempotent)
"""
import logging

from fastapi import APIRouter, Depends, Response, status
from opentelemetry import trace
from sqlalchemy.ext.asyncio import AsyncSession

from mahoot.database import get_db
from mahoot.followees import FolloweeRegistry
from mahoot.routers.deps import get_requester
from mahoot.schemas import (
    FolloweeCreate,
    FolloweeListResponse,
    FolloweeQuotaUpdate,
    FolloweeResponse,
    FolloweeWithStats,
)
from mahoot.stats import StatsAggregator

logger = logging.getLogger(__name__)
router = APIRouter()
tracer = trace.get_tracer(__name__)


@router.get("", response_model=FolloweeListResponse)
async def list_followees(
    requester_id: str = Depends(get_requester),
    db: AsyncSession = Depends(get_db),
):
    followees = await FolloweeRegistry(db).list_followees(requester_id)
    by_author = {
        s.author_id: s for s in await StatsAggregator(db).all_author_stats(requester_id)
    }

    items = []
    for edge in followees:
        item = FolloweeWithStats.model_validate(edge)
        stats = by_author.get(edge.followee_id)
        if stats is not None:
            item.viewed_today = stats.viewed_today
            item.viewed_this_week = stats.viewed_this_week
            item.viewed_this_month = stats.viewed_this_month
        items.append(item)
    return FolloweeListResponse(followees=items, count=len(items))


@router.post("", response_model=FolloweeResponse, status_code=status.HTTP_201_CREATED)
async def add_followee(
    body: FolloweeCreate,
    requester_id: str = Depends(get_requester),
    db: AsyncSession = Depends(get_db),
):
    with tracer.start_as_current_span("add_followee"):
        return await FolloweeRegistry(db).add_or_update(
            requester_id, body.followee_id, quota=body.quota
        )


@router.put("/{followee_id}", response_model=FolloweeResponse)
async def set_followee_quota(
    followee_id: str,
    body: FolloweeQuotaUpdate,
    requester_id: str = Depends(get_requester),
    db: AsyncSession = Depends(get_db),
):
    return await FolloweeRegistry(db).set_quota(requester_id, followee_id, body.quota)


@router.delete("/{followee_id}/quota", response_model=FolloweeResponse)
async def reset_followee_quota(
    followee_id: str,
    requester_id: str = Depends(get_requester),
    db: AsyncSession = Depends(get_db),
):
    return await FolloweeRegistry(db).reset_quota(requester_id, followee_id)


@router.delete("/{followee_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_followee(
    followee_id: str,
    requester_id: str = Depends(get_requester),
    db: AsyncSession = Depends(get_db),
):
    await FolloweeRegistry(db).remove(requester_id, followee_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
