"""
Statistics endpoint:
  GET /stats — preferences, followee summary, 30-day usage and top authors
"""
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from mahoot.database import get_db
from mahoot.routers.deps import get_requester
from mahoot.schemas import StatsSummary
from mahoot.stats import StatsAggregator

router = APIRouter()


@router.get("", response_model=StatsSummary)
async def get_stats(
    requester_id: str = Depends(get_requester),
    db: AsyncSession = Depends(get_db),
):
    return await StatsAggregator(db).summary(requester_id)
