"""
Clock helpers
All timestamps are stored as naive UTC datetimes
"""

from datetime import datetime, timezone
from typing import Optional, Union

from src.core.errors import StatsValidationError

SECONDS_PER_DAY = 60 * 60 * 24


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: Union[datetime, str, None], field: str = "timestamp") -> datetime:
    """
    Normalize a datetime or ISO-8601 string to naive UTC.
    Raises StatsValidationError for missing or unparsable input.
    """
    if value is None:
        raise StatsValidationError(field, value)

    if isinstance(value, str):
        raw = value.strip()
        if raw.endswith("Z"):
            raw = raw[:-1] + "+00:00"
        try:
            value = datetime.fromisoformat(raw)
        except ValueError:
            raise StatsValidationError(field, value)

    if not isinstance(value, datetime):
        raise StatsValidationError(field, value)

    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def whole_days_between(start: datetime, end: datetime) -> int:
    """Floor of elapsed days, clamped to >= 0"""
    seconds = (end - start).total_seconds()
    return max(0, int(seconds // SECONDS_PER_DAY))


def minutes_until(target: datetime, now: Optional[datetime] = None) -> int:
    now = now or utcnow()
    seconds = (target - now).total_seconds()
    if seconds <= 0:
        return 0
    return int(-(-seconds // 60))
