"""
Leaderboard API
Per-tier top lists served from the precomputed cache
"""
from typing import List, Optional

from fastapi import APIRouter, HTTPException

from src.core.config import get_settings
from src.core.ranks import parse_tier
from src.core.services.leaderboard_cache import LeaderboardEntry, cache_sizes, get_leaderboard
from src.database.connection import async_session

router = APIRouter(prefix="/leaderboard", tags=["leaderboard"])


@router.get("/{tier}", response_model=List[LeaderboardEntry])
async def tier_leaderboard(tier: str, size: Optional[int] = None):
    """
    Top users of one tier

    - size: 10 (default) or 100
    """
    parsed = parse_tier(tier)
    if parsed is None:
        raise HTTPException(status_code=404, detail=f"Unknown tier: {tier}")

    size = size or get_settings().leaderboard_small_size
    if size not in cache_sizes():
        raise HTTPException(status_code=400, detail=f"size must be one of {cache_sizes()}")

    return await get_leaderboard(async_session, parsed, size)
