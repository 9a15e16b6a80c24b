"""
Application Configuration
Central settings for the rank engine, jobs and API
"""

from typing import Optional
from functools import lru_cache

from pydantic_settings import BaseSettings
from pydantic import Field


class Settings(BaseSettings):
    """Main application settings"""

    # === Application ===
    debug: bool = Field(default=False, alias="DEBUG")

    # === Database ===
    database_url: str = Field(default="sqlite+aiosqlite:///./truthrank.db", alias="DATABASE_URL")

    # === Admin ===
    admin_secret: str = Field(default="change_me_in_production", alias="ADMIN_SECRET")
    telegram_bot_token: Optional[str] = Field(default=None, alias="TELEGRAM_BOT_TOKEN")
    admin_telegram_chat_id: Optional[int] = Field(default=None, alias="ADMIN_TELEGRAM_CHAT_ID")

    # === Rank recalculation ===
    rank_recalc_interval_minutes: int = Field(default=60, alias="RANK_RECALC_INTERVAL_MINUTES")
    rank_batch_size: int = Field(default=100, alias="RANK_BATCH_SIZE")
    rank_batch_concurrency: int = Field(default=10, alias="RANK_BATCH_CONCURRENCY")

    # === Inactivity ===
    inactivity_days: int = Field(default=30, alias="INACTIVITY_DAYS")
    inactivity_notification_days: int = Field(default=60, alias="INACTIVITY_NOTIFICATION_DAYS")
    inactivity_page_size: int = Field(default=500, alias="INACTIVITY_PAGE_SIZE")
    inactivity_recheck_days: int = Field(default=6, alias="INACTIVITY_RECHECK_DAYS")

    # === Promotion ===
    promotion_threshold: float = Field(default=99.9, alias="PROMOTION_THRESHOLD")
    promotion_check_limit: int = Field(default=200, alias="PROMOTION_CHECK_LIMIT")
    rank_upgrade_notification_enabled: bool = Field(default=True, alias="RANK_UPGRADE_NOTIFICATION_ENABLED")

    # === Leaderboard ===
    leaderboard_small_size: int = Field(default=10, alias="LEADERBOARD_SMALL_SIZE")
    leaderboard_large_size: int = Field(default=100, alias="LEADERBOARD_LARGE_SIZE")
    leaderboard_cache_ttl_minutes: int = Field(default=60, alias="LEADERBOARD_CACHE_TTL_MINUTES")

    # === Jobs ===
    recalculation_budget_seconds: int = Field(default=540, alias="RECALCULATION_BUDGET_SECONDS")
    inactivity_budget_seconds: int = Field(default=300, alias="INACTIVITY_BUDGET_SECONDS")
    promotion_budget_seconds: int = Field(default=300, alias="PROMOTION_BUDGET_SECONDS")
    job_max_retries: int = Field(default=3, alias="JOB_MAX_RETRIES")
    job_initial_backoff_seconds: float = Field(default=60.0, alias="JOB_INITIAL_BACKOFF_SECONDS")
    job_max_backoff_seconds: float = Field(default=3600.0, alias="JOB_MAX_BACKOFF_SECONDS")

    # === Schedule (UTC) ===
    run_scheduler_with_api: bool = Field(default=False, alias="RUN_SCHEDULER_WITH_API")
    daily_recalculation_hour_utc: int = Field(default=2, alias="DAILY_RECALCULATION_HOUR_UTC")
    promotion_check_minute_offset: int = Field(default=30, alias="PROMOTION_CHECK_MINUTE_OFFSET")
    inactivity_detection_day_of_week: str = Field(default="sun", alias="INACTIVITY_DETECTION_DAY_OF_WEEK")
    inactivity_detection_hour_utc: int = Field(default=3, alias="INACTIVITY_DETECTION_HOUR_UTC")

    class Config:
        env_file = ".env"
        extra = "ignore"


@lru_cache()
def get_settings() -> Settings:
    s = Settings()

    # Sanitize admin secret: remove common copy/paste artifacts (quotes, extra whitespace)
    if s.admin_secret:
        s.admin_secret = s.admin_secret.strip().strip('"').strip("'")

    return s


# Convenience singleton (cached)
settings = get_settings()
