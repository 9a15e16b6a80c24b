"""
Rank Service
Orchestrates the rank engine with rate limiting, persistence and promotion
"""

import logging
from datetime import datetime, timedelta
from typing import List, Optional, Union

from pydantic import BaseModel
from sqlalchemy import select, update, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.clock import minutes_until, utcnow
from src.core.config import get_settings
from src.core.errors import (
    RankError, RankStoreError, RateLimited, SideEffectResult, UserNotFoundError,
)
from src.core.ranks import (
    Tier, TierConfig, estimate_days_to_next_tier, get_next_tier, get_tier_config, parse_tier,
)
from src.core.services.alerts import notify_rank_upgrade
from src.core.services.rank_engine import (
    RankCalculationResult, RankUpgrade, calculate_rank_percentage, days_in_tier, prepare_rank_upgrade, resolve_tier,
)
from src.database.models import PromotionTrigger, RankUpgradeHistory, User, UserStats

logger = logging.getLogger(__name__)


class RateLimitCheck(BaseModel):
    allowed: bool
    next_allowed_at: datetime
    reason: Optional[str] = None


class RankStatus(BaseModel):
    user_id: str
    current_tier: Tier
    rank_percentage: float
    total_predictions: int
    total_resolved_predictions: int
    correct_predictions: int
    accuracy_rate: float
    weekly_activity_count: int
    inactivity_streaks: int
    last_rank_update_at: Optional[datetime]
    calculation: RankCalculationResult
    next_tier_config: Optional[TierConfig]
    estimated_days_to_next_tier: Optional[int]


class RefreshResult(BaseModel):
    """Payload for the user-triggered "refresh my rank" action"""
    success: bool
    message: str
    current_tier: Tier
    rank_percentage: float
    next_update_in_minutes: Optional[int] = None
    calculation: Optional[RankCalculationResult] = None


def _recalc_interval() -> timedelta:
    return timedelta(minutes=get_settings().rank_recalc_interval_minutes)


async def get_user_stats(session: AsyncSession, user_id: str) -> UserStats:
    """Load the rank record (fresh from the DB) or raise UserNotFoundError"""
    try:
        result = await session.execute(
            select(UserStats)
            .where(UserStats.user_id == user_id)
            .execution_options(populate_existing=True)
        )
    except SQLAlchemyError as e:
        await session.rollback()
        raise RankStoreError(f"Failed to load rank record for {user_id}", e) from e
    stats = result.scalar_one_or_none()
    if stats is None:
        raise UserNotFoundError(user_id)
    return stats


async def create_user_stats(
    session: AsyncSession,
    user_id: str,
    created_at: Optional[datetime] = None,
) -> UserStats:
    """
    Signup initialiser: lowest tier, 0%, tier clock started at account creation.
    Idempotent; an existing record is returned untouched.
    """
    existing = await session.get(UserStats, user_id)
    if existing is not None:
        return existing

    user = await session.get(User, user_id)
    if user is None:
        raise UserNotFoundError(user_id)

    created = created_at or user.created_at or utcnow()
    stats = UserStats(
        user_id=user_id,
        account_created_at=created,
        current_tier=Tier.NOVICE,
        rank_percentage=0.0,
        current_tier_start_date=created,
        last_active_at=created,
    )
    try:
        session.add(stats)
        await session.commit()
    except SQLAlchemyError as e:
        await session.rollback()
        raise RankStoreError(f"Failed to create rank record for {user_id}", e) from e

    logger.info("[RANK SERVICE] Created rank record for %s", user_id)
    return stats


def check_rate_limit(stats: UserStats, now: Optional[datetime] = None) -> RateLimitCheck:
    """At most one recalculation per interval per user"""
    now = now or utcnow()
    if stats.last_recalculation_at is None:
        return RateLimitCheck(allowed=True, next_allowed_at=now)

    next_allowed = stats.last_recalculation_at + _recalc_interval()
    if now < next_allowed:
        return RateLimitCheck(
            allowed=False,
            next_allowed_at=next_allowed,
            reason=f"Recalculation available in {minutes_until(next_allowed, now)} minutes",
        )
    return RateLimitCheck(allowed=True, next_allowed_at=now)


async def _claim_recalculation_slot(session: AsyncSession, user_id: str, now: datetime) -> bool:
    """
    Atomically stamp last_recalculation_at if the interval has elapsed.
    Two racing triggers for the same user: only one wins the claim.
    """
    claim = await session.execute(
        update(UserStats)
        .where(
            UserStats.user_id == user_id,
            or_(
                UserStats.last_recalculation_at.is_(None),
                UserStats.last_recalculation_at <= now - _recalc_interval(),
            ),
        )
        .values(last_recalculation_at=now, version=UserStats.version + 1)
        .execution_options(synchronize_session=False)
    )
    await session.commit()
    return claim.rowcount > 0


async def _release_recalculation_slot(session: AsyncSession, user_id: str, claimed_at: datetime):
    """Undo our own claim when the recalculation never persisted, so the user can retry"""
    try:
        await session.execute(
            update(UserStats)
            .where(
                UserStats.user_id == user_id,
                UserStats.last_recalculation_at == claimed_at,
            )
            .values(last_recalculation_at=None, version=UserStats.version + 1)
            .execution_options(synchronize_session=False)
        )
        await session.commit()
    except SQLAlchemyError as e:
        await session.rollback()
        logger.warning("[RANK SERVICE] Could not release recalculation slot for %s: %s", user_id, e)


def apply_promotion(
    session: AsyncSession,
    stats: UserStats,
    new_tier: Tier,
    trigger: PromotionTrigger,
    now: datetime,
) -> RankUpgrade:
    """
    Move the user one tier forward and append a history row.
    Does not commit.
    """
    upgrade = prepare_rank_upgrade(stats, new_tier, now)

    stats.current_tier = new_tier
    stats.rank_percentage = 0.0
    stats.current_tier_start_date = now
    stats.last_rank_update_at = now

    session.add(RankUpgradeHistory(
        user_id=stats.user_id,
        previous_tier=upgrade.previous_tier,
        new_tier=upgrade.new_tier,
        achieved_at=upgrade.achieved_at,
        percentage_at_upgrade=upgrade.percentage_at_upgrade,
        days_in_previous_tier=upgrade.days_in_previous_tier,
        trigger=trigger,
    ))
    return upgrade


async def fire_upgrade_notification(user_id: str, upgrade: RankUpgrade):
    """Best effort: a failed notification is logged and dropped"""
    outcome = await notify_rank_upgrade(user_id, upgrade)
    if not outcome.ok:
        logger.warning("Promotion notification failed for %s: %s", user_id, outcome.error)


async def promote_user(
    session: AsyncSession,
    stats: UserStats,
    new_tier: Tier,
    trigger: PromotionTrigger,
    now: Optional[datetime] = None,
) -> RankUpgrade:
    """Promote, commit, then fire the notification hook"""
    now = now or utcnow()
    upgrade = apply_promotion(session, stats, new_tier, trigger, now)
    await session.commit()

    logger.info(
        "[RANK UPGRADE] User %s: %s -> %s (%s)",
        stats.user_id, upgrade.previous_tier.value, upgrade.new_tier.value, trigger.value,
    )
    await fire_upgrade_notification(stats.user_id, upgrade)
    return upgrade


async def recalculate_user_rank(
    session: AsyncSession,
    user_id: str,
    force: bool = False,
    now: Optional[datetime] = None,
) -> Union[RankCalculationResult, RateLimited]:
    """
    Recalculate a user's rank percentage.

    - force=False: rate limited (default once per hour); returns RateLimited when refused
    - force=True: admin / penalty path, always proceeds
    Promotes the user when the calculation says they are eligible.
    """
    now = now or utcnow()
    upgrade = None
    claimed = False
    try:
        stats = await get_user_stats(session, user_id)

        if not force:
            claimed = await _claim_recalculation_slot(session, user_id, now)
            if not claimed:
                stats = await get_user_stats(session, user_id)
                check = check_rate_limit(stats, now)
                logger.info("[RANK SERVICE] Rate limit hit for user %s", user_id)
                return RateLimited(
                    user_id=user_id,
                    next_allowed_at=check.next_allowed_at,
                    retry_after_minutes=max(1, minutes_until(check.next_allowed_at, now)),
                    reason=check.reason or "Rate limit exceeded",
                )
            stats = await get_user_stats(session, user_id)

        calculation = calculate_rank_percentage(stats, now)

        stats.rank_percentage = calculation.percentage
        stats.rank_breakdown = calculation.breakdown.model_dump()
        stats.last_rank_update_at = now
        stats.last_recalculation_at = now

        if calculation.eligible_for_upgrade and calculation.next_tier:
            upgrade = apply_promotion(session, stats, calculation.next_tier, PromotionTrigger.RECALCULATION, now)

        await session.commit()
    except (SQLAlchemyError, RankStoreError) as e:
        await session.rollback()
        if claimed:
            await _release_recalculation_slot(session, user_id, now)
        if isinstance(e, RankStoreError):
            raise
        raise RankStoreError(f"Failed to recalculate rank for {user_id}", e) from e

    logger.info(
        "[RANK CALC] User %s: %s%% eligible=%s",
        user_id, calculation.percentage, calculation.eligible_for_upgrade,
    )

    if upgrade is not None:
        logger.info(
            "[RANK UPGRADE] User %s: %s -> %s",
            user_id, upgrade.previous_tier.value, upgrade.new_tier.value,
        )
        await fire_upgrade_notification(user_id, upgrade)

    return calculation


async def on_prediction_resolved(
    session: AsyncSession,
    user_id: str,
    was_correct: bool,
    was_contrarian: bool,
    now: Optional[datetime] = None,
) -> Union[RankCalculationResult, RateLimited]:
    """
    Count a resolved prediction for the user, then trigger a rate-limited
    recalculation (which may legitimately be a no-op).
    """
    await get_user_stats(session, user_id)

    correct_inc = 1 if was_correct else 0
    contrarian_inc = 1 if (was_correct and was_contrarian) else 0

    try:
        # SET expressions all read the pre-update row
        await session.execute(
            update(UserStats)
            .where(UserStats.user_id == user_id)
            .values(
                total_resolved_predictions=UserStats.total_resolved_predictions + 1,
                correct_predictions=UserStats.correct_predictions + correct_inc,
                contrarian_wins_count=UserStats.contrarian_wins_count + contrarian_inc,
                accuracy_rate=(UserStats.correct_predictions + correct_inc) * 100.0
                / (UserStats.total_resolved_predictions + 1),
                version=UserStats.version + 1,
            )
            .execution_options(synchronize_session=False)
        )
        await session.commit()
    except SQLAlchemyError as e:
        await session.rollback()
        raise RankStoreError(f"Failed to record resolution for {user_id}", e) from e

    return await recalculate_user_rank(session, user_id, force=False, now=now)


async def apply_inactivity_penalty(
    session: AsyncSession,
    user_id: str,
    now: Optional[datetime] = None,
) -> SideEffectResult:
    """
    Add one inactivity streak and force-recalculate so the penalty lands now.
    Unknown users raise UserNotFoundError; store failures are logged and
    returned, never raised.
    """
    try:
        await get_user_stats(session, user_id)
        await session.execute(
            update(UserStats)
            .where(UserStats.user_id == user_id)
            .values(
                inactivity_streaks=UserStats.inactivity_streaks + 1,
                version=UserStats.version + 1,
            )
            .execution_options(synchronize_session=False)
        )
        await session.commit()
        await recalculate_user_rank(session, user_id, force=True, now=now)
    except UserNotFoundError:
        raise
    except (SQLAlchemyError, RankError) as e:
        await session.rollback()
        logger.error("[RANK SERVICE] Error applying inactivity penalty to %s: %s", user_id, e)
        return SideEffectResult.failure("apply_inactivity_penalty", e)

    logger.info("[INACTIVITY] Applied penalty to user %s", user_id)
    return SideEffectResult.success("apply_inactivity_penalty")


async def get_user_rank_status(
    session: AsyncSession,
    user_id: str,
    now: Optional[datetime] = None,
) -> Optional[RankStatus]:
    """Read-only projection for the profile page (None for unknown users)"""
    now = now or utcnow()
    try:
        stats = await get_user_stats(session, user_id)
    except UserNotFoundError:
        return None

    calculation = calculate_rank_percentage(stats, now)
    tier = resolve_tier(stats)
    next_tier = get_next_tier(tier)

    # Very rough: current percentage spread over the days spent in this tier
    in_tier = days_in_tier(stats, now)
    percentage = stats.rank_percentage or 0.0
    progress_rate = percentage / in_tier if in_tier > 0 else 0.0

    return RankStatus(
        user_id=stats.user_id,
        current_tier=tier,
        rank_percentage=percentage,
        total_predictions=stats.total_predictions or 0,
        total_resolved_predictions=stats.total_resolved_predictions or 0,
        correct_predictions=stats.correct_predictions or 0,
        accuracy_rate=stats.accuracy_rate or 0.0,
        weekly_activity_count=stats.weekly_activity_count or 0,
        inactivity_streaks=stats.inactivity_streaks or 0,
        last_rank_update_at=stats.last_rank_update_at,
        calculation=calculation,
        next_tier_config=get_tier_config(next_tier) if next_tier else None,
        estimated_days_to_next_tier=estimate_days_to_next_tier(percentage, progress_rate),
    )


async def refresh_my_rank(
    session: AsyncSession,
    user_id: str,
    now: Optional[datetime] = None,
) -> RefreshResult:
    """User-triggered recalculation: a wait message instead of an error when too soon"""
    outcome = await recalculate_user_rank(session, user_id, force=False, now=now)
    stats = await get_user_stats(session, user_id)

    if isinstance(outcome, RateLimited):
        return RefreshResult(
            success=False,
            message=f"Rank was updated recently. Please try again in {outcome.retry_after_minutes} minutes.",
            current_tier=stats.current_tier,
            rank_percentage=stats.rank_percentage,
            next_update_in_minutes=outcome.retry_after_minutes,
        )

    return RefreshResult(
        success=True,
        message="Rank updated successfully",
        current_tier=stats.current_tier,
        rank_percentage=stats.rank_percentage,
        calculation=outcome,
    )


async def admin_recalculate(
    session: AsyncSession,
    user_id: str,
    now: Optional[datetime] = None,
) -> RankCalculationResult:
    """Admin-triggered recalculation, bypasses the rate limit"""
    return await recalculate_user_rank(session, user_id, force=True, now=now)


async def override_user_tier(
    session: AsyncSession,
    user_id: str,
    new_tier,
    note: Optional[str] = None,
    now: Optional[datetime] = None,
) -> RankUpgradeHistory:
    """
    Out-of-band manual override. The only path that may move a user
    backward or skip tiers.
    """
    now = now or utcnow()
    target = parse_tier(new_tier)
    if target is None:
        raise ValueError(f"Unknown tier: {new_tier!r}")

    stats = await get_user_stats(session, user_id)
    previous = resolve_tier(stats)
    if previous == target:
        raise ValueError(f"User {user_id} is already {target.value}")

    entry = RankUpgradeHistory(
        user_id=user_id,
        previous_tier=previous,
        new_tier=target,
        achieved_at=now,
        percentage_at_upgrade=stats.rank_percentage or 0.0,
        days_in_previous_tier=days_in_tier(stats, now),
        trigger=PromotionTrigger.MANUAL_OVERRIDE,
        note=note,
    )
    try:
        stats.current_tier = target
        stats.rank_percentage = 0.0
        stats.current_tier_start_date = now
        stats.last_rank_update_at = now
        session.add(entry)
        await session.commit()
    except SQLAlchemyError as e:
        await session.rollback()
        raise RankStoreError(f"Failed to override tier for {user_id}", e) from e

    logger.info("[RANK OVERRIDE] User %s: %s -> %s", user_id, previous.value, target.value)
    return entry


async def get_rank_history(session: AsyncSession, user_id: str) -> List[RankUpgradeHistory]:
    """Promotion history, oldest first"""
    await get_user_stats(session, user_id)
    result = await session.execute(
        select(RankUpgradeHistory)
        .where(RankUpgradeHistory.user_id == user_id)
        .order_by(RankUpgradeHistory.id.asc())
    )
    return list(result.scalars().all())
