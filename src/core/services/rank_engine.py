"""
Rank Engine
Pure, deterministic rank percentage calculation (no I/O)

Input is any stats snapshot exposing the user_stats attributes
(normally the ORM row); `now` is always passed in explicitly.
"""

import logging
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel

from src.core.clock import to_naive_utc, utcnow, whole_days_between
from src.core.errors import StatsValidationError
from src.core.ranks import (
    Tier,
    TierConfig,
    TierCriteria,
    CONTRARIAN_BONUS_CAP,
    INACTIVITY_PENALTY_PER_STREAK,
    MAX_INACTIVITY_PENALTY,
    get_next_tier,
    get_tier_config,
    parse_tier,
)
from src.core.config import get_settings

logger = logging.getLogger(__name__)


class ScoreBreakdown(BaseModel):
    time: float
    accuracy: float
    consistency: float
    volume: float
    inactivity_penalty: float
    account_age_days: int
    days_in_tier: int


class RankCalculationResult(BaseModel):
    percentage: float
    breakdown: ScoreBreakdown
    eligible_for_upgrade: bool
    next_tier: Optional[Tier]
    blockers: List[str]


class RankUpgrade(BaseModel):
    previous_tier: Tier
    new_tier: Tier
    achieved_at: datetime
    percentage_at_upgrade: float
    days_in_previous_tier: int
    message: str


# === Field access ===

def _count(stats, field: str) -> int:
    """Non-negative integer counter; malformed values count as 0"""
    value = getattr(stats, field, None)
    if value is None:
        return 0
    try:
        return max(0, int(value))
    except (TypeError, ValueError):
        logger.warning("Invalid %s=%r on stats for %s, using 0", field, value, getattr(stats, "user_id", "?"))
        return 0


def _days_since(value, now: datetime, field: str, user_id: str = "?") -> int:
    """Whole days since a timestamp; an invalid date is coerced to 0 with a warning"""
    try:
        then = to_naive_utc(value, field)
    except StatsValidationError as e:
        logger.warning("Coercing %s to 0 days for user %s: %s", field, user_id, e)
        return 0
    return whole_days_between(then, now)


def resolve_tier(stats) -> Tier:
    tier = parse_tier(getattr(stats, "current_tier", None))
    if tier is None:
        logger.warning(
            "Unknown tier %r for user %s, treating as %s",
            getattr(stats, "current_tier", None), getattr(stats, "user_id", "?"), Tier.NOVICE.value,
        )
        return Tier.NOVICE
    return tier


def account_age_days(stats, now: datetime) -> int:
    return _days_since(getattr(stats, "account_created_at", None), now, "account_created_at", getattr(stats, "user_id", "?"))


def days_in_tier(stats, now: datetime) -> int:
    start = getattr(stats, "current_tier_start_date", None)
    if start is None:
        start = getattr(stats, "account_created_at", None)
    return _days_since(start, now, "current_tier_start_date", getattr(stats, "user_id", "?"))


# === Component scores (0-100) ===

def calculate_time_score(age_days: int, tier: Tier) -> float:
    """Reaches 100 when the next tier's time gate is met"""
    next_tier = get_next_tier(tier)
    if next_tier is None:
        return 100.0

    gate = get_tier_config(next_tier).min_time_gate_days
    if age_days >= gate:
        return 100.0
    return min(100.0, age_days / gate * 100)


def calculate_accuracy_score(stats, criteria: TierCriteria) -> float:
    """
    Zero until the resolved-prediction floor is met.
    Contrarian wins add up to +10 points before rescaling
    the [min_accuracy, 100] band onto [0, 100].
    """
    resolved = _count(stats, "total_resolved_predictions")
    if resolved < criteria.min_resolved_predictions:
        return 0.0

    if resolved > 0:
        raw_accuracy = _count(stats, "correct_predictions") / resolved * 100
    else:
        raw_accuracy = float(getattr(stats, "accuracy_rate", 0) or 0)
    raw_accuracy = min(100.0, max(0.0, raw_accuracy))

    contrarian_bonus = min(
        CONTRARIAN_BONUS_CAP,
        _count(stats, "contrarian_wins_count") / max(1, resolved) * 10,
    )
    boosted = min(100.0, raw_accuracy + contrarian_bonus)

    if boosted < criteria.min_accuracy:
        return 0.0

    score = (boosted - criteria.min_accuracy) / (100 - criteria.min_accuracy) * 100
    return min(100.0, score)


def _threshold_score(value: int, minimum: int, full_multiplier: float) -> float:
    if value >= minimum * full_multiplier:
        return 100.0
    if value >= minimum:
        return 85.0
    return min(85.0, value / minimum * 85)


def calculate_consistency_score(stats, criteria: TierCriteria) -> float:
    return _threshold_score(_count(stats, "weekly_activity_count"), criteria.min_active_weeks, 1.5)


def calculate_volume_score(stats, criteria: TierCriteria) -> float:
    return _threshold_score(_count(stats, "total_predictions"), criteria.min_predictions, 2)


def calculate_inactivity_penalty(stats) -> float:
    """10 points per 30+ day gap, capped at 50"""
    return min(MAX_INACTIVITY_PENALTY, _count(stats, "inactivity_streaks") * INACTIVITY_PENALTY_PER_STREAK)


# === Main calculation ===

def calculate_rank_percentage(stats, now: Optional[datetime] = None) -> RankCalculationResult:
    """
    Weighted progress (0-100) toward the next tier.

    Percentage is capped at 100, but the upgrade additionally
    requires the next tier's time gate on account age.
    """
    now = now or utcnow()
    tier = resolve_tier(stats)
    config: TierConfig = get_tier_config(tier)
    criteria = config.criteria

    age = account_age_days(stats, now)
    in_tier = days_in_tier(stats, now)

    time_score = calculate_time_score(age, tier)
    accuracy_score = calculate_accuracy_score(stats, criteria)
    consistency_score = calculate_consistency_score(stats, criteria)
    volume_score = calculate_volume_score(stats, criteria)
    penalty = calculate_inactivity_penalty(stats)

    raw = (
        time_score * criteria.time_weight
        + accuracy_score * criteria.accuracy_weight
        + consistency_score * criteria.consistency_weight
        + volume_score * criteria.volume_weight
    )
    # Weight products carry float noise; strip it, but
    # eligibility still reads the unrounded score, never the 1-decimal display value
    final = min(100.0, max(0.0, round(raw - penalty, 6)))
    percentage = round(final, 1)

    next_tier = get_next_tier(tier)
    next_config = get_tier_config(next_tier) if next_tier else None
    meets_time_gate = next_config is not None and age >= next_config.min_time_gate_days

    eligible = final >= 100 and meets_time_gate and next_tier is not None

    blockers = []
    if final < 100:
        blockers.append(f"Need {max(0.1, 100 - final):.1f}% more progress")
    if next_config is not None and not meets_time_gate:
        blockers.append(f"Need {next_config.min_time_gate_days - age} more days on platform")
    if next_tier is None:
        blockers.append(f"Already at {config.display_name} rank (final rank)")

    return RankCalculationResult(
        percentage=percentage,
        breakdown=ScoreBreakdown(
            time=round(time_score, 1),
            accuracy=round(accuracy_score, 1),
            consistency=round(consistency_score, 1),
            volume=round(volume_score, 1),
            inactivity_penalty=penalty,
            account_age_days=age,
            days_in_tier=in_tier,
        ),
        eligible_for_upgrade=eligible,
        next_tier=next_tier,
        blockers=blockers,
    )


def determine_rank_eligibility(stats, now: Optional[datetime] = None) -> Optional[Tier]:
    """Next tier if the user may be promoted now, else None"""
    calculation = calculate_rank_percentage(stats, now)
    if calculation.eligible_for_upgrade and calculation.next_tier:
        return calculation.next_tier
    return None


def prepare_rank_upgrade(stats, new_tier: Tier, now: Optional[datetime] = None) -> RankUpgrade:
    """
    Build the promotion record without writing anything.
    Only a single step forward is accepted.
    """
    now = now or utcnow()
    previous_tier = resolve_tier(stats)
    if get_next_tier(previous_tier) != new_tier:
        raise ValueError(f"{new_tier.value} is not the tier after {previous_tier.value}")

    return RankUpgrade(
        previous_tier=previous_tier,
        new_tier=new_tier,
        achieved_at=now,
        percentage_at_upgrade=float(getattr(stats, "rank_percentage", 0) or 0),
        days_in_previous_tier=days_in_tier(stats, now),
        message=f"Congratulations! You've been promoted to {get_tier_config(new_tier).display_name}!",
    )


def calculate_inactivity_days(last_active_at, now: Optional[datetime] = None) -> int:
    return _days_since(last_active_at, now or utcnow(), "last_active_at")


def should_apply_inactivity_penalty(last_active_at, now: Optional[datetime] = None) -> bool:
    return calculate_inactivity_days(last_active_at, now) >= get_settings().inactivity_days
