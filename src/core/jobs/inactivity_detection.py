"""
Weekly Inactivity Detection
Add an inactivity streak to users with a 30+ day activity gap
"""

import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import select, update, or_
from sqlalchemy.ext.asyncio import async_sessionmaker

from src.core.clock import utcnow, whole_days_between
from src.core.config import get_settings
from src.core.jobs.job_runner import JobBudget, JobResult
from src.database.connection import async_session
from src.database.models import UserStats

logger = logging.getLogger(__name__)

JOB_NAME = "inactivity_detection"


async def _next_page(session_factory: async_sessionmaker, after: Optional[str], size: int, cutoff: datetime):
    """Keyset page of (user_id, last_active_at) for users inactive since before the cutoff"""
    async with session_factory() as session:
        query = (
            select(UserStats.user_id, UserStats.last_active_at, UserStats.last_inactivity_check_at,
                   UserStats.reengagement_flagged_at)
            .where(UserStats.last_active_at < cutoff)
            .order_by(UserStats.user_id.asc())
            .limit(size)
        )
        if after is not None:
            query = query.where(UserStats.user_id > after)
        result = await session.execute(query)
        return result.all()


async def run_inactivity_detection(
    session_factory: async_sessionmaker = async_session,
    now: Optional[datetime] = None,
    budget: Optional[JobBudget] = None,
) -> JobResult:
    """
    One weekly sweep, paginated until every match is seen.

    Every match gets inactivity_streaks + 1, unless it was already counted
    within the recheck window (a re-run in the same week is a no-op).
    Users gone 60+ days are flagged once for a re-engagement notification.
    """
    s = get_settings()
    now = now or utcnow()
    budget = budget or JobBudget(s.inactivity_budget_seconds)
    result = JobResult(job=JOB_NAME, started_at=utcnow())

    cutoff = now - timedelta(days=s.inactivity_days)
    recheck_after = now - timedelta(days=s.inactivity_recheck_days)

    logger.info("Starting weekly inactivity detection job")

    after = None
    while True:
        if budget.exhausted():
            logger.warning("Inactivity detection budget reached after %s users, stopping", result.processed)
            result.truncated = True
            break

        rows = await _next_page(session_factory, after, s.inactivity_page_size, cutoff)
        if not rows:
            break
        after = rows[-1].user_id

        async with session_factory() as session:
            for row in rows:
                result.processed += 1
                try:
                    if row.last_inactivity_check_at and row.last_inactivity_check_at > recheck_after:
                        result.skipped += 1
                        continue

                    values = {
                        "inactivity_streaks": UserStats.inactivity_streaks + 1,
                        "last_inactivity_check_at": now,
                        "version": UserStats.version + 1,
                    }

                    days_inactive = whole_days_between(row.last_active_at, now)
                    flag = days_inactive >= s.inactivity_notification_days and row.reengagement_flagged_at is None
                    if flag:
                        values["reengagement_flagged_at"] = now

                    # Guarded on the check stamp so a concurrent run cannot double count
                    claim = await session.execute(
                        update(UserStats)
                        .where(
                            UserStats.user_id == row.user_id,
                            or_(
                                UserStats.last_inactivity_check_at.is_(None),
                                UserStats.last_inactivity_check_at <= recheck_after,
                            ),
                        )
                        .values(**values)
                        .execution_options(synchronize_session=False)
                    )
                    await session.commit()

                    if claim.rowcount == 0:
                        result.skipped += 1
                        continue

                    result.updated += 1
                    if flag:
                        result.flagged_for_notification += 1
                        logger.info("User %s inactive for %s days", row.user_id, days_inactive)
                except Exception as e:
                    await session.rollback()
                    logger.error("Error processing user %s: %s", row.user_id, e)
                    result.record_error(row.user_id, e)

    result.finish()
    logger.info(
        "Inactivity detection complete: flagged=%s notified=%s errors=%s durationMs=%s",
        result.updated, result.flagged_for_notification, result.errors, result.duration_ms,
    )
    return result
