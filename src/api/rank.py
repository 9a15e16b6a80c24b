"""
Rank API
User-facing rank status, refresh and history
"""
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel

from src.api.rate_limit import limiter
from src.core.ranks import Tier
from src.core.services.leaderboard_cache import get_user_leaderboard_position
from src.core.services.rank_service import (
    RankStatus, RefreshResult, get_rank_history, get_user_rank_status, refresh_my_rank,
)
from src.database.connection import async_session
from src.database.models import PromotionTrigger

router = APIRouter(prefix="/rank", tags=["rank"])


class RankHistoryEntry(BaseModel):
    previous_tier: Tier
    new_tier: Tier
    achieved_at: datetime
    percentage_at_upgrade: float
    days_in_previous_tier: int
    trigger: PromotionTrigger
    note: Optional[str] = None


class LeaderboardPosition(BaseModel):
    user_id: str
    current_tier: Tier
    position: int


@router.get("/{user_id}", response_model=RankStatus)
async def rank_status(user_id: str):
    """Current tier, percentage, breakdown and blockers"""
    async with async_session() as session:
        status = await get_user_rank_status(session, user_id)
    if status is None:
        raise HTTPException(status_code=404, detail="User not found")
    return status


@router.post("/{user_id}/refresh", response_model=RefreshResult)
@limiter.limit("20/minute")
async def refresh_rank(request: Request, user_id: str):
    """
    Recalculate on demand. A refresh inside the hourly window is not an
    error: the response carries the wait time instead.
    """
    async with async_session() as session:
        return await refresh_my_rank(session, user_id)


@router.get("/{user_id}/history", response_model=List[RankHistoryEntry])
async def rank_history(user_id: str):
    async with async_session() as session:
        rows = await get_rank_history(session, user_id)
        return [
            RankHistoryEntry(
                previous_tier=row.previous_tier,
                new_tier=row.new_tier,
                achieved_at=row.achieved_at,
                percentage_at_upgrade=row.percentage_at_upgrade,
                days_in_previous_tier=row.days_in_previous_tier,
                trigger=row.trigger,
                note=row.note,
            ) for row in rows
        ]


@router.get("/{user_id}/position", response_model=LeaderboardPosition)
async def leaderboard_position(user_id: str):
    """Live position inside the user's own tier"""
    async with async_session() as session:
        position = await get_user_leaderboard_position(session, user_id)
        status = await get_user_rank_status(session, user_id)
    return LeaderboardPosition(user_id=user_id, current_tier=status.current_tier, position=position)
