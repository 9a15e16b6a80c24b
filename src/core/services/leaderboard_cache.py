"""
Leaderboard Cache
Per-tier top-N snapshots with a TTL, rebuilt whole
"""

import logging
from datetime import datetime, timedelta
from typing import List, Optional

from pydantic import BaseModel
from sqlalchemy import select, desc, asc, func
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.core.clock import utcnow
from src.core.config import get_settings
from src.core.errors import SideEffectResult, UserNotFoundError
from src.core.ranks import TIER_ORDER, Tier
from src.database.models import LeaderboardCache, User, UserStats

logger = logging.getLogger(__name__)


class LeaderboardEntry(BaseModel):
    position: int
    user_id: str
    display_name: str
    avatar_url: Optional[str]
    current_tier: Tier
    rank_percentage: float
    accuracy_rate: float
    total_predictions: int


def cache_key(tier: Tier, size: int) -> str:
    return f"{tier.value}_TOP{size}"


def cache_sizes() -> List[int]:
    s = get_settings()
    return sorted({s.leaderboard_small_size, s.leaderboard_large_size})


async def build_tier_leaderboard(session: AsyncSession, tier: Tier, limit: int) -> List[LeaderboardEntry]:
    """
    Top users of a tier.

    Ordering:
    1. rank_percentage DESC
    2. user_id ASC (deterministic)
    """
    result = await session.execute(
        select(UserStats, User.display_name, User.avatar_url)
        .join(User, User.id == UserStats.user_id)
        .where(UserStats.current_tier == tier)
        .where(User.is_system_user == False)  # noqa: E712
        .order_by(desc(UserStats.rank_percentage), asc(UserStats.user_id))
        .limit(limit)
    )

    return [
        LeaderboardEntry(
            position=i + 1,
            user_id=stats.user_id,
            display_name=display_name or "Anonymous",
            avatar_url=avatar_url,
            current_tier=stats.current_tier,
            rank_percentage=stats.rank_percentage or 0.0,
            accuracy_rate=round(stats.accuracy_rate or 0.0, 1),
            total_predictions=stats.total_predictions or 0,
        )
        for i, (stats, display_name, avatar_url) in enumerate(result.all())
    ]


async def _write_snapshot(session: AsyncSession, tier: Tier, size: int, entries: List[LeaderboardEntry], now: datetime):
    ttl = timedelta(minutes=get_settings().leaderboard_cache_ttl_minutes)
    payload = [e.model_dump(mode="json") for e in entries[:size]]

    snapshot = await session.get(LeaderboardCache, cache_key(tier, size))
    if snapshot is None:
        snapshot = LeaderboardCache(id=cache_key(tier, size), tier=tier, size=size)
        session.add(snapshot)
    snapshot.entries = payload
    snapshot.generated_at = now
    snapshot.expires_at = now + ttl


async def rebuild_tier_cache(session: AsyncSession, tier: Tier, now: Optional[datetime] = None) -> List[LeaderboardEntry]:
    """Rebuild every snapshot size of one tier; returns the largest list"""
    now = now or utcnow()
    sizes = cache_sizes()
    entries = await build_tier_leaderboard(session, tier, max(sizes))
    for size in sizes:
        await _write_snapshot(session, tier, size, entries, now)
    await session.commit()
    return entries


async def rebuild_leaderboard_cache(
    session_factory: async_sessionmaker,
    now: Optional[datetime] = None,
) -> SideEffectResult:
    """
    Precompute every tier's snapshots.
    Never raises: the pipeline that triggered the rebuild must not fail because of it.
    """
    now = now or utcnow()
    started = utcnow()
    logger.info("Starting leaderboard precomputation")

    try:
        async with session_factory() as session:
            for tier in TIER_ORDER:
                entries = await rebuild_tier_cache(session, tier, now)
                logger.info("Precomputed leaderboard for %s: %s users", tier.value, len(entries))
    except Exception as e:
        logger.error("Error precomputing leaderboards: %s", e)
        return SideEffectResult.failure("rebuild_leaderboard_cache", e)

    logger.info("Leaderboard precomputation complete in %.0fms", (utcnow() - started).total_seconds() * 1000)
    return SideEffectResult.success("rebuild_leaderboard_cache")


async def get_cached_leaderboard(
    session: AsyncSession,
    tier: Tier,
    size: int,
    now: Optional[datetime] = None,
) -> Optional[List[LeaderboardEntry]]:
    """Snapshot entries while still fresh, else None"""
    now = now or utcnow()
    snapshot = await session.get(LeaderboardCache, cache_key(tier, size), populate_existing=True)
    if snapshot is None or snapshot.expires_at <= now:
        return None
    return [LeaderboardEntry(**e) for e in snapshot.entries]


async def get_leaderboard(
    session_factory: async_sessionmaker,
    tier: Tier,
    size: Optional[int] = None,
    now: Optional[datetime] = None,
) -> List[LeaderboardEntry]:
    """Serve the cache up to its TTL, otherwise rebuild this tier and serve fresh"""
    now = now or utcnow()
    size = size or get_settings().leaderboard_small_size

    async with session_factory() as session:
        cached = await get_cached_leaderboard(session, tier, size, now)
        if cached is not None:
            return cached

        if size in cache_sizes():
            entries = await rebuild_tier_cache(session, tier, now)
        else:
            entries = await build_tier_leaderboard(session, tier, size)
        return entries[:size]


async def get_user_leaderboard_position(session: AsyncSession, user_id: str) -> int:
    """1 + number of same-tier users with a strictly higher percentage"""
    result = await session.execute(select(UserStats).where(UserStats.user_id == user_id))
    stats = result.scalar_one_or_none()
    if stats is None:
        raise UserNotFoundError(user_id)

    higher = await session.execute(
        select(func.count())
        .select_from(UserStats)
        .join(User, User.id == UserStats.user_id)
        .where(
            UserStats.current_tier == stats.current_tier,
            UserStats.rank_percentage > stats.rank_percentage,
            User.is_system_user == False,  # noqa: E712
        )
    )
    return higher.scalar_one() + 1
