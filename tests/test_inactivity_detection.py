"""
Inactivity detection job tests

Coverage:
- Pagination beyond one page
- Active users untouched
- Same-week re-run does not double count
- One-time re-engagement flag at 60+ days
"""
from datetime import datetime, timedelta

import pytest

from src.core.jobs.inactivity_detection import run_inactivity_detection
from src.core.jobs.job_runner import JobBudget

NOW = datetime(2026, 3, 2, 12, 0, 0)


@pytest.mark.asyncio
async def test_every_page_is_processed(session_factory, make_user, load_stats, settings, monkeypatch):
    monkeypatch.setattr(settings, "inactivity_page_size", 2)
    for i in range(5):
        await make_user(f"idle{i}", age_days=45)

    result = await run_inactivity_detection(session_factory, now=NOW)

    assert result.processed == 5
    assert result.updated == 5
    for i in range(5):
        assert (await load_stats(f"idle{i}")).inactivity_streaks == 1


@pytest.mark.asyncio
async def test_active_users_untouched(session_factory, make_user, load_stats):
    await make_user("busy", age_days=100, last_active_at=NOW - timedelta(days=2))
    await make_user("idle", age_days=100, last_active_at=NOW - timedelta(days=31))

    result = await run_inactivity_detection(session_factory, now=NOW)

    assert result.updated == 1
    assert (await load_stats("busy")).inactivity_streaks == 0
    assert (await load_stats("idle")).inactivity_streaks == 1


@pytest.mark.asyncio
async def test_same_week_rerun_does_not_double_count(session_factory, make_user, load_stats):
    await make_user("idle", age_days=45)

    await run_inactivity_detection(session_factory, now=NOW)
    second = await run_inactivity_detection(session_factory, now=NOW + timedelta(hours=2))

    assert second.updated == 0
    assert second.skipped == 1
    assert (await load_stats("idle")).inactivity_streaks == 1


@pytest.mark.asyncio
async def test_next_week_counts_again(session_factory, make_user, load_stats):
    await make_user("idle", age_days=45)

    await run_inactivity_detection(session_factory, now=NOW)
    await run_inactivity_detection(session_factory, now=NOW + timedelta(days=7))

    assert (await load_stats("idle")).inactivity_streaks == 2


@pytest.mark.asyncio
async def test_long_absence_flagged_once(session_factory, make_user, load_stats):
    await make_user("gone", age_days=200, last_active_at=NOW - timedelta(days=70))
    await make_user("idle", age_days=200, last_active_at=NOW - timedelta(days=40))

    first = await run_inactivity_detection(session_factory, now=NOW)
    second = await run_inactivity_detection(session_factory, now=NOW + timedelta(days=7))

    assert first.flagged_for_notification == 1
    assert second.flagged_for_notification == 0
    assert (await load_stats("gone")).reengagement_flagged_at == NOW
    assert (await load_stats("idle")).reengagement_flagged_at is None


@pytest.mark.asyncio
async def test_budget_exhausted_truncates(session_factory, make_user):
    await make_user("idle", age_days=45)

    result = await run_inactivity_detection(session_factory, now=NOW, budget=JobBudget(0))

    assert result.truncated is True
    assert result.updated == 0
