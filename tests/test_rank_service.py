"""
Rank service tests

Coverage:
- Hourly rate limit and forced recalculation
- Promotion on recalculation, history and notification hook
- Resolved-prediction counters
- Inactivity penalty, status projection, refresh payload
- Manual override
"""
from datetime import datetime, timedelta
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from src.core.errors import RankStoreError, RateLimited, UserNotFoundError
from src.core.ranks import Tier
from src.core.services.alerts import register_rank_upgrade_listener
from src.core.services.rank_engine import RankCalculationResult
from src.core.services.rank_service import (
    admin_recalculate,
    apply_inactivity_penalty,
    check_rate_limit,
    create_user_stats,
    get_rank_history,
    get_user_rank_status,
    get_user_stats,
    on_prediction_resolved,
    override_user_tier,
    recalculate_user_rank,
    refresh_my_rank,
)
from src.database.models import PromotionTrigger, RankUpgradeHistory

NOW = datetime(2026, 3, 2, 12, 0, 0)

MAXED_NOVICE = dict(
    total_predictions=6,
    total_resolved_predictions=10,
    correct_predictions=10,
    weekly_activity_count=2,
)


# =============================================================================
# Rate limiting
# =============================================================================

@pytest.mark.asyncio
async def test_first_recalculation_persists(session, make_user, load_stats):
    await make_user("alice", age_days=10)

    result = await recalculate_user_rank(session, "alice", now=NOW)

    assert isinstance(result, RankCalculationResult)
    assert result.percentage == 50.0
    stats = await load_stats("alice")
    assert stats.rank_percentage == 50.0
    assert stats.last_rank_update_at == NOW
    assert stats.last_recalculation_at == NOW
    assert stats.rank_breakdown["time"] == 100.0


@pytest.mark.asyncio
async def test_second_recalculation_within_hour_is_rate_limited(session, make_user):
    await make_user("alice", age_days=10)
    await recalculate_user_rank(session, "alice", now=NOW)

    result = await recalculate_user_rank(session, "alice", now=NOW + timedelta(minutes=20))

    assert isinstance(result, RateLimited)
    assert result.next_allowed_at == NOW + timedelta(hours=1)
    assert result.retry_after_minutes == 40


@pytest.mark.asyncio
async def test_recalculation_allowed_after_interval(session, make_user):
    await make_user("alice", age_days=10)
    await recalculate_user_rank(session, "alice", now=NOW)

    result = await recalculate_user_rank(session, "alice", now=NOW + timedelta(minutes=60))

    assert isinstance(result, RankCalculationResult)


@pytest.mark.asyncio
async def test_force_bypasses_rate_limit(session, make_user, load_stats):
    await make_user("alice", age_days=10)
    await recalculate_user_rank(session, "alice", now=NOW)

    later = NOW + timedelta(minutes=5)
    result = await admin_recalculate(session, "alice", now=later)

    assert isinstance(result, RankCalculationResult)
    assert (await load_stats("alice")).last_rank_update_at == later


@pytest.mark.asyncio
async def test_check_rate_limit(make_user, load_stats):
    await make_user("alice", last_recalculation_at=NOW)
    stats = await load_stats("alice")

    assert check_rate_limit(stats, NOW + timedelta(minutes=59)).allowed is False
    assert check_rate_limit(stats, NOW + timedelta(minutes=60)).allowed is True


@pytest.mark.asyncio
async def test_unknown_user_raises_not_found(session):
    with pytest.raises(UserNotFoundError):
        await recalculate_user_rank(session, "ghost", now=NOW)


@pytest.mark.asyncio
async def test_failed_persist_releases_rate_limit_slot(session, make_user, load_stats, monkeypatch):
    await make_user("alice", age_days=10)

    # claim commits first; the recalculation commit is the second
    real_commit = session.commit
    commits = []

    async def flaky_commit():
        commits.append(1)
        if len(commits) == 2:
            raise OperationalError("COMMIT", {}, Exception("disk I/O error"))
        await real_commit()

    monkeypatch.setattr(session, "commit", flaky_commit)

    with pytest.raises(RankStoreError):
        await recalculate_user_rank(session, "alice", now=NOW)

    stats = await load_stats("alice")
    assert stats.last_recalculation_at is None
    assert stats.last_rank_update_at is None

    retry = await recalculate_user_rank(session, "alice", now=NOW + timedelta(minutes=1))
    assert isinstance(retry, RankCalculationResult)
    assert (await load_stats("alice")).last_recalculation_at == NOW + timedelta(minutes=1)


@pytest.mark.asyncio
async def test_store_failure_on_lookup_is_wrapped(session, make_user, monkeypatch):
    await make_user("alice", age_days=10)
    locked = OperationalError("SELECT user_stats", {}, Exception("database is locked"))
    monkeypatch.setattr(session, "execute", AsyncMock(side_effect=locked))

    with pytest.raises(RankStoreError) as exc_info:
        await get_user_stats(session, "alice")

    assert exc_info.value.original is locked


# =============================================================================
# Promotion
# =============================================================================

@pytest.mark.asyncio
async def test_recalculation_promotes_eligible_user(session, make_user, load_stats):
    await make_user("alice", age_days=10, **MAXED_NOVICE)
    received = []

    async def listener(user_id, upgrade):
        received.append((user_id, upgrade.new_tier))

    register_rank_upgrade_listener(listener)

    result = await recalculate_user_rank(session, "alice", now=NOW)

    assert result.eligible_for_upgrade is True
    stats = await load_stats("alice")
    assert stats.current_tier == Tier.AMATEUR
    assert stats.rank_percentage == 0.0
    assert stats.current_tier_start_date == NOW
    assert received == [("alice", Tier.AMATEUR)]

    history = await get_rank_history(session, "alice")
    assert len(history) == 1
    assert history[0].previous_tier == Tier.NOVICE
    assert history[0].new_tier == Tier.AMATEUR
    assert history[0].trigger == PromotionTrigger.RECALCULATION
    assert history[0].days_in_previous_tier == 10


@pytest.mark.asyncio
async def test_failed_notification_does_not_block_promotion(session, make_user, load_stats):
    await make_user("alice", age_days=10, **MAXED_NOVICE)

    async def broken_listener(user_id, upgrade):
        raise RuntimeError("push service down")

    register_rank_upgrade_listener(broken_listener)

    await recalculate_user_rank(session, "alice", now=NOW)

    assert (await load_stats("alice")).current_tier == Tier.AMATEUR


@pytest.mark.asyncio
async def test_disabled_notifications_skip_listeners(session, make_user, settings, monkeypatch):
    monkeypatch.setattr(settings, "rank_upgrade_notification_enabled", False)
    await make_user("alice", age_days=10, **MAXED_NOVICE)
    received = []

    async def listener(user_id, upgrade):
        received.append(user_id)

    register_rank_upgrade_listener(listener)
    await recalculate_user_rank(session, "alice", now=NOW)

    assert received == []


@pytest.mark.asyncio
async def test_young_account_not_promoted(session, make_user, load_stats):
    await make_user("alice", age_days=3, **MAXED_NOVICE)

    result = await recalculate_user_rank(session, "alice", now=NOW)

    assert result.eligible_for_upgrade is False
    assert (await load_stats("alice")).current_tier == Tier.NOVICE


# =============================================================================
# Resolved predictions
# =============================================================================

@pytest.mark.asyncio
async def test_resolution_updates_counters(session, make_user, load_stats):
    await make_user("alice", age_days=10)

    await on_prediction_resolved(session, "alice", was_correct=True, was_contrarian=True, now=NOW)
    await on_prediction_resolved(session, "alice", was_correct=False, was_contrarian=True, now=NOW)

    stats = await load_stats("alice")
    assert stats.total_resolved_predictions == 2
    assert stats.correct_predictions == 1
    assert stats.contrarian_wins_count == 1
    assert stats.accuracy_rate == pytest.approx(50.0)


@pytest.mark.asyncio
async def test_resolution_recalculation_is_rate_limited(session, make_user):
    await make_user("alice", age_days=10)

    first = await on_prediction_resolved(session, "alice", True, False, now=NOW)
    second = await on_prediction_resolved(session, "alice", True, False, now=NOW)

    assert isinstance(first, RankCalculationResult)
    assert isinstance(second, RateLimited)


@pytest.mark.asyncio
async def test_resolution_for_unknown_user(session):
    with pytest.raises(UserNotFoundError):
        await on_prediction_resolved(session, "ghost", True, False, now=NOW)


# =============================================================================
# Inactivity penalty
# =============================================================================

@pytest.mark.asyncio
async def test_inactivity_penalty_applies_immediately(session, make_user, load_stats):
    await make_user("alice", age_days=10, last_recalculation_at=NOW)

    outcome = await apply_inactivity_penalty(session, "alice", now=NOW)

    assert outcome.ok is True
    stats = await load_stats("alice")
    assert stats.inactivity_streaks == 1
    assert stats.rank_percentage == 40.0


@pytest.mark.asyncio
async def test_inactivity_penalty_unknown_user(session):
    with pytest.raises(UserNotFoundError):
        await apply_inactivity_penalty(session, "ghost", now=NOW)


@pytest.mark.asyncio
async def test_inactivity_penalty_store_failure_is_returned(session, make_user, load_stats, monkeypatch):
    await make_user("alice", age_days=10)
    monkeypatch.setattr(
        session, "execute",
        AsyncMock(side_effect=OperationalError("SELECT user_stats", {}, Exception("database is locked"))),
    )

    outcome = await apply_inactivity_penalty(session, "alice", now=NOW)

    assert outcome.ok is False
    assert outcome.name == "apply_inactivity_penalty"
    assert "RankStoreError" in outcome.error
    assert (await load_stats("alice")).inactivity_streaks == 0


# =============================================================================
# Status / refresh
# =============================================================================

@pytest.mark.asyncio
async def test_status_for_unknown_user_is_none(session):
    assert await get_user_rank_status(session, "ghost", now=NOW) is None


@pytest.mark.asyncio
async def test_status_projection(session, make_user):
    await make_user("alice", age_days=10, rank_percentage=50.0, current_tier_start_date=NOW - timedelta(days=5))

    status = await get_user_rank_status(session, "alice", now=NOW)

    assert status.current_tier == Tier.NOVICE
    assert status.calculation.percentage == 50.0
    assert status.next_tier_config.tier == Tier.AMATEUR
    # 50% over 5 days -> 10/day -> 5 days left
    assert status.estimated_days_to_next_tier == 5


@pytest.mark.asyncio
async def test_refresh_my_rank_payloads(session, make_user):
    await make_user("alice", age_days=10)

    first = await refresh_my_rank(session, "alice", now=NOW)
    second = await refresh_my_rank(session, "alice", now=NOW + timedelta(minutes=30))

    assert first.success is True
    assert first.rank_percentage == 50.0
    assert first.calculation is not None
    assert second.success is False
    assert second.next_update_in_minutes == 30
    assert second.message == "Rank was updated recently. Please try again in 30 minutes."
    assert second.current_tier == Tier.NOVICE


# =============================================================================
# Manual override
# =============================================================================

@pytest.mark.asyncio
async def test_override_can_move_backward(session, make_user, load_stats):
    await make_user("alice", age_days=100, current_tier=Tier.ANALYST, rank_percentage=40.0)

    entry = await override_user_tier(session, "alice", "novice", note="abuse review", now=NOW)

    assert entry.previous_tier == Tier.ANALYST
    assert entry.new_tier == Tier.NOVICE
    assert entry.trigger == PromotionTrigger.MANUAL_OVERRIDE
    stats = await load_stats("alice")
    assert stats.current_tier == Tier.NOVICE
    assert stats.rank_percentage == 0.0

    rows = (await session.execute(select(RankUpgradeHistory))).scalars().all()
    assert [r.note for r in rows] == ["abuse review"]


@pytest.mark.asyncio
@pytest.mark.parametrize("target", ["NOVICE", "LEGEND"])
async def test_override_rejects_same_or_unknown_tier(session, make_user, target):
    await make_user("alice")
    with pytest.raises(ValueError):
        await override_user_tier(session, "alice", target, now=NOW)


# =============================================================================
# Signup
# =============================================================================

@pytest.mark.asyncio
async def test_create_user_stats_is_idempotent(session, make_user, load_stats):
    await make_user("alice", age_days=5, rank_percentage=33.0)

    stats = await create_user_stats(session, "alice")

    assert stats.rank_percentage == 33.0
    fresh = await load_stats("alice")
    assert fresh.current_tier == Tier.NOVICE
    assert fresh.current_tier_start_date == NOW - timedelta(days=5)
    assert fresh.account_created_at == NOW - timedelta(days=5)


@pytest.mark.asyncio
async def test_create_user_stats_needs_account(session):
    with pytest.raises(UserNotFoundError):
        await create_user_stats(session, "ghost")
