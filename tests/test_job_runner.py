"""
Job plumbing tests

Coverage:
- Exponential backoff with a ceiling
- Whole-job retries
- Settle-all batches keep order and isolate failures
- Wall-clock budget
- Scheduler wiring and named job runs
"""
import asyncio
from datetime import datetime
from unittest.mock import AsyncMock

import pytest

from src.core.errors import SideEffectResult
from src.core.jobs import scheduler as scheduler_module
from src.core.jobs.job_runner import JobBudget, JobResult, backoff_delay, run_job_with_retries, settle_all
from src.core.jobs.scheduler import build_scheduler, run_named_job


def _result(name="job"):
    return JobResult(job=name, started_at=datetime(2026, 3, 2)).finish()


def test_backoff_delay_doubles_until_ceiling():
    assert [backoff_delay(a, 60, 3600) for a in range(4)] == [60, 120, 240, 480]
    assert backoff_delay(10, 60, 3600) == 3600


@pytest.mark.asyncio
async def test_retries_then_succeeds():
    attempts = []
    sleeps = []

    async def job():
        attempts.append(1)
        if len(attempts) < 3:
            raise RuntimeError("db unavailable")
        return _result()

    async def fake_sleep(seconds):
        sleeps.append(seconds)

    result = await run_job_with_retries("job", job, retries=3, initial_backoff=1, max_backoff=10, sleep=fake_sleep)

    assert result.job == "job"
    assert len(attempts) == 3
    assert sleeps == [1, 2]


@pytest.mark.asyncio
async def test_retries_exhausted_raises():
    sleeps = []

    async def job():
        raise RuntimeError("still down")

    async def fake_sleep(seconds):
        sleeps.append(seconds)

    with pytest.raises(RuntimeError):
        await run_job_with_retries("job", job, retries=3, initial_backoff=5, max_backoff=12, sleep=fake_sleep)

    assert sleeps == [5, 10, 12]


@pytest.mark.asyncio
async def test_settle_all_keeps_order_and_failures():
    async def ok(value):
        await asyncio.sleep(0)
        return value

    async def boom():
        raise ValueError("bad user")

    results = await settle_all([ok(1), boom(), ok(3)], concurrency=2)

    assert results[0] == 1
    assert isinstance(results[1], ValueError)
    assert results[2] == 3


@pytest.mark.asyncio
async def test_settle_all_bounds_concurrency():
    running = 0
    peak = 0

    async def unit():
        nonlocal running, peak
        running += 1
        peak = max(peak, running)
        await asyncio.sleep(0.01)
        running -= 1

    await settle_all([unit() for _ in range(10)], concurrency=3)

    assert peak == 3


def test_job_budget_with_fake_clock():
    now = [100.0]
    budget = JobBudget(30, clock=lambda: now[0])

    assert budget.exhausted() is False
    now[0] = 130.0
    assert budget.exhausted() is True


def test_job_result_error_details_capped():
    result = _result()
    for i in range(60):
        result.record_error(f"u{i}", RuntimeError("x"))

    assert result.errors == 60
    assert len(result.error_details) == 50


# =============================================================================
# Scheduler
# =============================================================================

@pytest.mark.asyncio
async def test_scheduler_registers_cron_jobs():
    scheduler = build_scheduler()

    jobs = {job.id: job for job in scheduler.get_jobs()}

    assert set(jobs) == {"daily_recalculation", "promotion_check", "inactivity_detection", "leaderboard_refresh"}
    for job in jobs.values():
        assert job.max_instances == 1
        assert job.coalesce is True

    def fields(job):
        return {f.name: str(f) for f in job.trigger.fields if not f.is_default}

    assert fields(jobs["daily_recalculation"]) == {"hour": "2", "minute": "0"}
    assert fields(jobs["promotion_check"]) == {"hour": "2", "minute": "30"}
    assert fields(jobs["inactivity_detection"]) == {"day_of_week": "sun", "hour": "3", "minute": "0"}


@pytest.mark.asyncio
async def test_run_named_job_unknown_name(session_factory):
    with pytest.raises(KeyError):
        await run_named_job("nope", session_factory)


@pytest.mark.asyncio
async def test_run_named_job_clean_run_sends_no_alert(session_factory, monkeypatch):
    alert = AsyncMock(return_value=SideEffectResult.success("alert_admin"))
    monkeypatch.setattr(scheduler_module, "alert_admin", alert)

    result = await run_named_job("inactivity_detection", session_factory)

    assert result.job == "inactivity_detection"
    alert.assert_not_awaited()


@pytest.mark.asyncio
async def test_run_named_job_errors_are_alerted(session_factory, monkeypatch):
    alert = AsyncMock(return_value=SideEffectResult.success("alert_admin"))
    monkeypatch.setattr(scheduler_module, "alert_admin", alert)

    async def job_with_errors():
        result = _result("promotion_check")
        result.record_error("alice", RuntimeError("stale row"))
        return result

    monkeypatch.setattr(scheduler_module, "job_entry_points", lambda session_factory: {"promotion_check": job_with_errors})

    result = await run_named_job("promotion_check", session_factory)

    assert result.errors == 1
    alert.assert_awaited_once()
    assert "ERRORS" in alert.await_args.args[0]


@pytest.mark.asyncio
async def test_run_named_job_fatal_failure_alerts_and_raises(session_factory, settings, monkeypatch):
    monkeypatch.setattr(settings, "job_max_retries", 0)
    alert = AsyncMock(return_value=SideEffectResult.success("alert_admin"))
    monkeypatch.setattr(scheduler_module, "alert_admin", alert)

    async def broken():
        raise RuntimeError("database gone")

    monkeypatch.setattr(scheduler_module, "job_entry_points", lambda session_factory: {"daily_recalculation": broken})

    with pytest.raises(RuntimeError):
        await run_named_job("daily_recalculation", session_factory)

    alert.assert_awaited_once()
