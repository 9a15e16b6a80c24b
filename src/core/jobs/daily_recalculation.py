"""
Daily Rank Recalculation
Sweep every ranked user in fixed-size batches and persist the new percentage
"""

import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker

from src.core.clock import utcnow
from src.core.config import get_settings
from src.core.jobs.job_runner import JobBudget, JobResult, settle_all
from src.core.services.leaderboard_cache import rebuild_leaderboard_cache
from src.core.services.rank_engine import calculate_rank_percentage
from src.database.connection import async_session
from src.database.models import UserStats

logger = logging.getLogger(__name__)

JOB_NAME = "daily_rank_recalculation"

# Outcomes of a single user unit
UPDATED = "updated"
SKIPPED = "skipped"


async def _recalculate_one(session_factory: async_sessionmaker, user_id: str, now: datetime) -> str:
    """
    Recompute one user in its own session.
    Skips users updated within the last interval (same rule as the service).
    """
    interval = timedelta(minutes=get_settings().rank_recalc_interval_minutes)

    async with session_factory() as session:
        result = await session.execute(select(UserStats).where(UserStats.user_id == user_id))
        stats = result.scalar_one_or_none()
        if stats is None:
            return SKIPPED

        if stats.last_rank_update_at and now - stats.last_rank_update_at < interval:
            return SKIPPED

        calculation = calculate_rank_percentage(stats, now)

        stats.rank_percentage = calculation.percentage
        stats.rank_breakdown = calculation.breakdown.model_dump()
        stats.last_rank_update_at = now
        if stats.current_tier_start_date is None:
            stats.current_tier_start_date = stats.account_created_at

        await session.commit()
        return UPDATED


async def _next_batch(session_factory: async_sessionmaker, after: Optional[str], size: int):
    """Keyset page of user ids with an assigned tier"""
    async with session_factory() as session:
        query = (
            select(UserStats.user_id)
            .where(UserStats.current_tier.is_not(None))
            .order_by(UserStats.user_id.asc())
            .limit(size)
        )
        if after is not None:
            query = query.where(UserStats.user_id > after)
        result = await session.execute(query)
        return list(result.scalars().all())


async def run_daily_recalculation(
    session_factory: async_sessionmaker = async_session,
    now: Optional[datetime] = None,
    budget: Optional[JobBudget] = None,
    rebuild_leaderboards: bool = True,
) -> JobResult:
    """
    One daily sweep. Restart-safe: recently updated users are skipped,
    so a re-run after a partial run only does the remaining work.
    """
    s = get_settings()
    now = now or utcnow()
    budget = budget or JobBudget(s.recalculation_budget_seconds)
    result = JobResult(job=JOB_NAME, started_at=utcnow())

    logger.info("Starting daily rank recalculation job")

    after = None
    while True:
        if budget.exhausted():
            logger.warning("Daily recalculation budget reached after %s users, stopping", result.processed)
            result.truncated = True
            break

        user_ids = await _next_batch(session_factory, after, s.rank_batch_size)
        if not user_ids:
            break
        after = user_ids[-1]

        outcomes = await settle_all(
            [_recalculate_one(session_factory, user_id, now) for user_id in user_ids],
            s.rank_batch_concurrency,
        )
        for user_id, outcome in zip(user_ids, outcomes):
            result.processed += 1
            if isinstance(outcome, BaseException):
                logger.error("Error processing user %s: %s", user_id, outcome)
                result.record_error(user_id, outcome)
            elif outcome == SKIPPED:
                result.skipped += 1
            else:
                result.updated += 1

    result.finish()
    logger.info(
        "Daily rank recalculation complete: processed=%s updated=%s skipped=%s errors=%s durationMs=%s",
        result.processed, result.updated, result.skipped, result.errors, result.duration_ms,
    )

    if rebuild_leaderboards:
        rebuild = await rebuild_leaderboard_cache(session_factory, now)
        if not rebuild.ok:
            logger.warning("Leaderboard rebuild after recalculation failed: %s", rebuild.error)

    return result
