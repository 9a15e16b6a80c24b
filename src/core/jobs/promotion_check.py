"""
Daily Promotion Check
Runs ~30 minutes after recalculation and promotes users at 100%
"""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import select, desc, asc
from sqlalchemy.ext.asyncio import async_sessionmaker

from src.core.clock import utcnow
from src.core.config import get_settings
from src.core.jobs.job_runner import JobBudget, JobResult
from src.core.ranks import get_next_tier, get_tier_config
from src.core.services.rank_engine import account_age_days, days_in_tier, resolve_tier
from src.core.services.rank_service import promote_user
from src.database.connection import async_session
from src.database.models import PromotionTrigger, UserStats

logger = logging.getLogger(__name__)

JOB_NAME = "rank_promotion_check"


async def run_promotion_check(
    session_factory: async_sessionmaker = async_session,
    now: Optional[datetime] = None,
    budget: Optional[JobBudget] = None,
) -> JobResult:
    """
    Promote users whose percentage reached the threshold (99.9, for float
    tolerance) and whose account age meets the next tier's time gate.
    One tier per run; the terminal tier is skipped.
    """
    s = get_settings()
    now = now or utcnow()
    budget = budget or JobBudget(s.promotion_budget_seconds)
    result = JobResult(job=JOB_NAME, started_at=utcnow())

    logger.info("Starting rank promotion check job")

    async with session_factory() as session:
        rows = await session.execute(
            select(UserStats.user_id)
            .where(UserStats.rank_percentage >= s.promotion_threshold)
            .order_by(desc(UserStats.rank_percentage), asc(UserStats.user_id))
            .limit(s.promotion_check_limit)
        )
        user_ids = list(rows.scalars().all())

    for user_id in user_ids:
        if budget.exhausted():
            logger.warning("Promotion check budget reached after %s users, stopping", result.processed)
            result.truncated = True
            break

        result.processed += 1
        try:
            async with session_factory() as session:
                stats = (await session.execute(
                    select(UserStats).where(UserStats.user_id == user_id)
                )).scalar_one_or_none()
                # Re-check: the row may have changed since the query
                if stats is None or (stats.rank_percentage or 0) < s.promotion_threshold:
                    result.skipped += 1
                    continue

                tier = resolve_tier(stats)
                next_tier = get_next_tier(tier)
                if next_tier is None:
                    result.skipped += 1
                    continue

                in_tier = days_in_tier(stats, now)
                gate = get_tier_config(next_tier).min_time_gate_days
                if account_age_days(stats, now) < gate:
                    logger.info(
                        "User %s at %s%% but below the %s-day gate for %s (%s days in tier)",
                        user_id, stats.rank_percentage, gate, next_tier.value, in_tier,
                    )
                    result.skipped += 1
                    continue

                await promote_user(session, stats, next_tier, PromotionTrigger.AUTO_PROMOTION, now)
                result.updated += 1
        except Exception as e:
            logger.error("Error processing user %s: %s", user_id, e)
            result.record_error(user_id, e)

    result.finish()
    logger.info(
        "Rank promotion check complete: checked=%s promoted=%s errors=%s durationMs=%s",
        result.processed, result.updated, result.errors, result.duration_ms,
    )
    return result
