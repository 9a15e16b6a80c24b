"""
Rank Job Scheduler
Cron wiring for the rank jobs (APScheduler, UTC)
"""

import logging
from typing import Awaitable, Callable, Dict

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from sqlalchemy.ext.asyncio import async_sessionmaker

from src.core.config import get_settings
from src.core.jobs.daily_recalculation import run_daily_recalculation
from src.core.jobs.inactivity_detection import run_inactivity_detection
from src.core.jobs.job_runner import JobResult, run_job_with_retries
from src.core.jobs.promotion_check import run_promotion_check
from src.core.services.alerts import alert_admin, format_job_summary
from src.core.services.leaderboard_cache import rebuild_leaderboard_cache
from src.database.connection import async_session

logger = logging.getLogger(__name__)


def job_entry_points(session_factory: async_sessionmaker = async_session) -> Dict[str, Callable[[], Awaitable[JobResult]]]:
    """Single-shot entry points by name (also used by the admin API and external cron)"""
    return {
        "daily_recalculation": lambda: run_daily_recalculation(session_factory),
        "inactivity_detection": lambda: run_inactivity_detection(session_factory),
        "promotion_check": lambda: run_promotion_check(session_factory),
    }


async def run_named_job(name: str, session_factory: async_sessionmaker = async_session) -> JobResult:
    """Run one job with whole-job retries, then report its summary to the admin channel"""
    entry_points = job_entry_points(session_factory)
    if name not in entry_points:
        raise KeyError(f"Unknown job: {name}")

    try:
        result = await run_job_with_retries(name, entry_points[name])
    except Exception as e:
        await alert_admin(f"🚨 {name} failed: {e}")
        raise

    if result.errors or result.truncated:
        await alert_admin(format_job_summary(result))
    return result


async def refresh_leaderboards(session_factory: async_sessionmaker = async_session):
    outcome = await rebuild_leaderboard_cache(session_factory)
    if not outcome.ok:
        logger.warning("Scheduled leaderboard refresh failed: %s", outcome.error)


def build_scheduler(session_factory: async_sessionmaker = async_session) -> AsyncIOScheduler:
    """
    - daily recalculation: 02:00 UTC
    - promotion check: 30 minutes later
    - inactivity detection: Sunday 03:00 UTC
    - leaderboard refresh: hourly (matches the cache TTL)
    """
    s = get_settings()
    scheduler = AsyncIOScheduler(timezone="UTC")
    job_defaults = {"max_instances": 1, "coalesce": True, "misfire_grace_time": 3600}

    async def daily_recalculation():
        await run_named_job("daily_recalculation", session_factory)

    async def promotion_check():
        await run_named_job("promotion_check", session_factory)

    async def inactivity_detection():
        await run_named_job("inactivity_detection", session_factory)

    async def leaderboard_refresh():
        await refresh_leaderboards(session_factory)

    promotion_hour = s.daily_recalculation_hour_utc + s.promotion_check_minute_offset // 60
    promotion_minute = s.promotion_check_minute_offset % 60

    scheduler.add_job(
        daily_recalculation,
        CronTrigger(hour=s.daily_recalculation_hour_utc, minute=0, timezone="UTC"),
        id="daily_recalculation",
        **job_defaults,
    )
    scheduler.add_job(
        promotion_check,
        CronTrigger(hour=promotion_hour % 24, minute=promotion_minute, timezone="UTC"),
        id="promotion_check",
        **job_defaults,
    )
    scheduler.add_job(
        inactivity_detection,
        CronTrigger(
            day_of_week=s.inactivity_detection_day_of_week,
            hour=s.inactivity_detection_hour_utc,
            minute=0,
            timezone="UTC",
        ),
        id="inactivity_detection",
        **job_defaults,
    )
    scheduler.add_job(
        leaderboard_refresh,
        CronTrigger(minute=15, timezone="UTC"),
        id="leaderboard_refresh",
        **job_defaults,
    )
    return scheduler
