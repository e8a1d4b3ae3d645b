"""
Preference endpoints:
  GET /preferences — budget, default quota and 30-day usage
  PUT /preferences — change daily_post_limit and/or default_quota
"""
import logging

from fastapi import APIRouter, Depends
from opentelemetry import trace
from sqlalchemy.ext.asyncio import AsyncSession

from mahoot.database import get_db
from mahoot.followees import FolloweeRegistry
from mahoot.preferences import PreferenceStore
from mahoot.routers.deps import get_requester
from mahoot.schemas import PreferencesResponse, PreferencesUpdate
from mahoot.stats import StatsAggregator

logger = logging.getLogger(__name__)
router = APIRouter()
tracer = trace.get_tracer(__name__)


async def _preferences_response(db: AsyncSession, user_id: str) -> PreferencesResponse:
    store = PreferenceStore(db)
    registry = FolloweeRegistry(db, store)

    prefs = await store.get_or_create(user_id)
    return PreferencesResponse(
        user_id=user_id,
        daily_post_limit=prefs.daily_post_limit,
        default_quota=prefs.default_quota,
        calculated_default_quota=await registry.calculate_default_quota(user_id),
        followee_count=await registry.count(user_id),
        stats=await StatsAggregator(db).rolling_30_day(user_id),
        created_at=prefs.created_at,
        updated_at=prefs.updated_at,
    )


@router.get("", response_model=PreferencesResponse)
async def get_preferences(
    requester_id: str = Depends(get_requester),
    db: AsyncSession = Depends(get_db),
):
    return await _preferences_response(db, requester_id)


@router.put("", response_model=PreferencesResponse)
async def put_preferences(
    body: PreferencesUpdate,
    requester_id: str = Depends(get_requester),
    db: AsyncSession = Depends(get_db),
):
    """
    A changed daily limit also changes the calculated default quota, so
    default-tier followees are rebalanced afterwards.
    """
    with tracer.start_as_current_span("put_preferences"):
        store = PreferenceStore(db)
        await store.update(
            requester_id,
            daily_post_limit=body.daily_post_limit,
            default_quota=body.default_quota,
        )
        await FolloweeRegistry(db, store).rebalance(requester_id)
        return await _preferences_response(db, requester_id)
