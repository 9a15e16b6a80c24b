"""
Job Runner
Shared plumbing for the scheduled rank jobs: results, wall-clock budget, retries
"""

import asyncio
import logging
import time
from datetime import datetime
from typing import Awaitable, Callable, List, Optional

from pydantic import BaseModel, Field

from src.core.clock import utcnow
from src.core.config import get_settings

logger = logging.getLogger(__name__)


class UserError(BaseModel):
    user_id: str
    error: str


class JobResult(BaseModel):
    job: str
    started_at: datetime
    completed_at: Optional[datetime] = None
    processed: int = 0
    skipped: int = 0
    updated: int = 0
    errors: int = 0
    error_details: List[UserError] = Field(default_factory=list)
    flagged_for_notification: int = 0
    truncated: bool = False

    def record_error(self, user_id: str, error: BaseException, limit: int = 50):
        self.errors += 1
        if len(self.error_details) < limit:
            self.error_details.append(UserError(user_id=user_id, error=f"{type(error).__name__}: {error}"))

    def finish(self) -> "JobResult":
        self.completed_at = utcnow()
        return self

    @property
    def duration_ms(self) -> int:
        end = self.completed_at or utcnow()
        return int((end - self.started_at).total_seconds() * 1000)


class JobBudget:
    """
    Wall-clock budget for one run. Jobs check it before enqueuing a new
    batch and stop cleanly instead of being killed mid-write.
    """

    def __init__(self, seconds: float, clock: Callable[[], float] = time.monotonic):
        self.seconds = seconds
        self._clock = clock
        self._start = clock()

    @property
    def elapsed(self) -> float:
        return self._clock() - self._start

    def exhausted(self) -> bool:
        return self.elapsed >= self.seconds


async def settle_all(units: List[Awaitable], concurrency: int) -> List[object]:
    """
    Run per-user units concurrently, bounded by a semaphore.
    Every unit settles: results and exceptions come back in order,
    and no failure cancels its siblings.
    """
    semaphore = asyncio.Semaphore(max(1, concurrency))

    async def _bounded(unit):
        async with semaphore:
            return await unit

    return await asyncio.gather(*(_bounded(u) for u in units), return_exceptions=True)


def backoff_delay(attempt: int, initial: float, ceiling: float) -> float:
    """Exponential backoff capped at the ceiling (attempt starts at 0)"""
    return min(ceiling, initial * (2 ** attempt))


async def run_job_with_retries(
    name: str,
    job: Callable[[], Awaitable[JobResult]],
    retries: Optional[int] = None,
    initial_backoff: Optional[float] = None,
    max_backoff: Optional[float] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> JobResult:
    """
    Retry a whole-job failure a small fixed number of times.
    Per-user failures never reach here: jobs count them in their result.
    """
    s = get_settings()
    retries = s.job_max_retries if retries is None else retries
    initial_backoff = s.job_initial_backoff_seconds if initial_backoff is None else initial_backoff
    max_backoff = s.job_max_backoff_seconds if max_backoff is None else max_backoff

    attempt = 0
    while True:
        try:
            return await job()
        except Exception as e:
            if attempt >= retries:
                logger.error("Fatal error in %s after %s attempts: %s", name, attempt + 1, e)
                raise
            delay = backoff_delay(attempt, initial_backoff, max_backoff)
            logger.warning("%s failed (attempt %s/%s), retrying in %.0fs: %s", name, attempt + 1, retries + 1, delay, e)
            attempt += 1
            await sleep(delay)
