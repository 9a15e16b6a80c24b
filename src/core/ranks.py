"""
Rank Configuration
Static tier ladder: time gates, thresholds and scoring weights
"""

import math
from enum import Enum
from types import MappingProxyType
from typing import Mapping, Optional

from pydantic import BaseModel, ConfigDict

from src.core.errors import RankConfigError


class Tier(str, Enum):
    """Tiers in ladder order (UPPERCASE to match DB)"""
    NOVICE = "NOVICE"
    AMATEUR = "AMATEUR"
    ANALYST = "ANALYST"
    PROFESSIONAL = "PROFESSIONAL"
    EXPERT = "EXPERT"
    MASTER = "MASTER"


class TierCriteria(BaseModel):
    model_config = ConfigDict(frozen=True)

    min_predictions: int
    min_accuracy: float  # percentage (0-100)
    min_resolved_predictions: int  # before accuracy counts
    min_active_weeks: int
    time_weight: float
    accuracy_weight: float
    consistency_weight: float
    volume_weight: float

    @property
    def weight_sum(self) -> float:
        return self.time_weight + self.accuracy_weight + self.consistency_weight + self.volume_weight


class TierConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    tier: Tier
    display_name: str
    display_color: str
    badge_icon: str
    min_time_gate_days: int  # account age required to enter this tier
    criteria: TierCriteria


# === System constants ===
INACTIVITY_PENALTY_PER_STREAK = 10.0
MAX_INACTIVITY_PENALTY = 50.0
CONTRARIAN_BONUS_CAP = 10.0
WEIGHT_SUM_TOLERANCE = 1e-9


TIER_ORDER: tuple = (
    Tier.NOVICE,
    Tier.AMATEUR,
    Tier.ANALYST,
    Tier.PROFESSIONAL,
    Tier.EXPERT,
    Tier.MASTER,
)


RANK_CONFIGS: Mapping[Tier, TierConfig] = MappingProxyType({
    Tier.NOVICE: TierConfig(
        tier=Tier.NOVICE,
        display_name="Novice",
        display_color="#EF4444",
        badge_icon="🌱",
        min_time_gate_days=0,
        criteria=TierCriteria(
            min_predictions=3,
            min_accuracy=50,
            min_resolved_predictions=5,
            min_active_weeks=1,
            time_weight=0.50,
            accuracy_weight=0.30,
            consistency_weight=0.15,
            volume_weight=0.05,
        ),
    ),
    Tier.AMATEUR: TierConfig(
        tier=Tier.AMATEUR,
        display_name="Amateur",
        display_color="#3B82F6",
        badge_icon="📊",
        min_time_gate_days=7,
        criteria=TierCriteria(
            min_predictions=10,
            min_accuracy=55,
            min_resolved_predictions=5,
            min_active_weeks=2,
            time_weight=0.50,
            accuracy_weight=0.30,
            consistency_weight=0.15,
            volume_weight=0.05,
        ),
    ),
    Tier.ANALYST: TierConfig(
        tier=Tier.ANALYST,
        display_name="Analyst",
        display_color="#A855F7",
        badge_icon="🔍",
        min_time_gate_days=60,
        criteria=TierCriteria(
            min_predictions=30,
            min_accuracy=60,
            min_resolved_predictions=10,
            min_active_weeks=8,
            time_weight=0.40,
            accuracy_weight=0.30,
            consistency_weight=0.20,
            volume_weight=0.10,
        ),
    ),
    Tier.PROFESSIONAL: TierConfig(
        tier=Tier.PROFESSIONAL,
        display_name="Professional",
        display_color="#F59E0B",
        badge_icon="⭐",
        min_time_gate_days=120,
        criteria=TierCriteria(
            min_predictions=60,
            min_accuracy=65,
            min_resolved_predictions=15,
            min_active_weeks=16,
            time_weight=0.35,
            accuracy_weight=0.30,
            consistency_weight=0.20,
            volume_weight=0.15,
        ),
    ),
    Tier.EXPERT: TierConfig(
        tier=Tier.EXPERT,
        display_name="Expert",
        display_color="#EC4899",
        badge_icon="🎯",
        min_time_gate_days=240,
        criteria=TierCriteria(
            min_predictions=100,
            min_accuracy=70,
            min_resolved_predictions=20,
            min_active_weeks=32,
            time_weight=0.30,
            accuracy_weight=0.30,
            consistency_weight=0.25,
            volume_weight=0.15,
        ),
    ),
    Tier.MASTER: TierConfig(
        tier=Tier.MASTER,
        display_name="Master",
        display_color="#22C55E",
        badge_icon="👑",
        min_time_gate_days=365,
        criteria=TierCriteria(
            min_predictions=150,
            min_accuracy=75,
            min_resolved_predictions=30,
            min_active_weeks=48,
            time_weight=0.25,
            accuracy_weight=0.30,
            consistency_weight=0.25,
            volume_weight=0.20,
        ),
    ),
})


def validate_rank_configs(configs: Mapping[Tier, TierConfig] = RANK_CONFIGS, order: tuple = TIER_ORDER) -> None:
    """
    Validate the ladder once at process start.

    Raises RankConfigError when a tier's weights do not sum to 1.0,
    when gates decrease along the ladder, or when order and table disagree.
    """
    if set(order) != set(configs.keys()) or len(order) != len(configs):
        raise RankConfigError("Tier order and rank config table disagree")

    previous_gate = -1
    for tier in order:
        config = configs[tier]
        if config.tier != tier:
            raise RankConfigError(f"Config for {tier.value} is labelled {config.tier.value}")

        total = config.criteria.weight_sum
        if abs(total - 1.0) > WEIGHT_SUM_TOLERANCE:
            raise RankConfigError(f"Weights for {tier.value} sum to {total}, expected 1.0")

        if config.min_time_gate_days < previous_gate:
            raise RankConfigError(f"Time gate for {tier.value} is lower than the previous tier")
        previous_gate = config.min_time_gate_days


def get_tier_config(tier: Tier) -> TierConfig:
    return RANK_CONFIGS[tier]


def tier_index(tier: Tier) -> int:
    return TIER_ORDER.index(tier)


def get_next_tier(tier: Tier) -> Optional[Tier]:
    """Next tier in the ladder (None for the terminal tier)"""
    index = tier_index(tier)
    if index == len(TIER_ORDER) - 1:
        return None
    return TIER_ORDER[index + 1]


def get_previous_tier(tier: Tier) -> Optional[Tier]:
    index = tier_index(tier)
    if index == 0:
        return None
    return TIER_ORDER[index - 1]


def parse_tier(value) -> Optional[Tier]:
    """
    Accept a Tier, its value, or a legacy display name in any case
    ("Novice", "novice", "NOVICE"). Returns None when unknown.
    """
    if isinstance(value, Tier):
        return value
    if not isinstance(value, str):
        return None
    normalized = value.strip().upper()
    try:
        return Tier(normalized)
    except ValueError:
        return None


def is_valid_tier(value) -> bool:
    return parse_tier(value) is not None


def estimate_days_to_next_tier(current_percentage: float, average_daily_progress: float) -> Optional[int]:
    """Rough UX estimate of the days left at the current progress rate"""
    if current_percentage >= 100 or average_daily_progress <= 0:
        return None

    remaining = 100 - current_percentage
    return math.ceil(remaining / average_daily_progress)


validate_rank_configs()
