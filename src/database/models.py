"""
Database Models
Per-user rank record, promotion history and leaderboard snapshots
"""

from enum import Enum

from sqlalchemy import (
    MetaData,
    Column, String, Integer, Float,
    DateTime, ForeignKey, Enum as SQLEnum, Boolean, Text, JSON,
    CheckConstraint, Index
)
from sqlalchemy.orm import DeclarativeBase, relationship

from src.core.clock import utcnow
from src.core.ranks import Tier


# === Naming Convention for Constraints (Standard) ===
NAMING_CONVENTION = {
    "ix": "ix_%(table_name)s_%(column_0_name)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}


class Base(DeclarativeBase):
    """Base class for all models"""
    metadata = MetaData(naming_convention=NAMING_CONVENTION)


# === Enums (UPPERCASE to match DB) ===

class PromotionTrigger(str, Enum):
    RECALCULATION = "RECALCULATION"
    AUTO_PROMOTION = "AUTO_PROMOTION"
    MANUAL_OVERRIDE = "MANUAL_OVERRIDE"


# === Models ===

class User(Base):
    """Account owned by the auth collaborator; read-only here"""
    __tablename__ = "users"

    id = Column(String(128), primary_key=True)
    display_name = Column(String(255), nullable=True)
    avatar_url = Column(String(1024), nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    is_system_user = Column(Boolean, default=False, nullable=False)

    stats = relationship("UserStats", back_populates="user", uselist=False)


class UserStats(Base):
    """Per-user rank record"""
    __tablename__ = "user_stats"
    __table_args__ = (
        CheckConstraint("rank_percentage >= 0 AND rank_percentage <= 100", name="check_rank_percentage_range"),
        CheckConstraint("inactivity_streaks >= 0", name="check_inactivity_streaks_non_negative"),
        Index("ix_user_stats_tier_percentage", "current_tier", "rank_percentage"),
    )

    user_id = Column(String(128), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    account_created_at = Column(DateTime, nullable=False)

    current_tier = Column(SQLEnum(Tier), default=Tier.NOVICE, nullable=False, index=True)
    rank_percentage = Column(Float, default=0.0, nullable=False)
    rank_breakdown = Column(JSON, nullable=True)
    current_tier_start_date = Column(DateTime, nullable=True)

    # Activity metrics
    total_predictions = Column(Integer, default=0, nullable=False)
    total_resolved_predictions = Column(Integer, default=0, nullable=False)
    correct_predictions = Column(Integer, default=0, nullable=False)
    accuracy_rate = Column(Float, default=0.0, nullable=False)
    contrarian_wins_count = Column(Integer, default=0, nullable=False)

    # Consistency metrics
    weekly_activity_count = Column(Integer, default=0, nullable=False)
    last_active_at = Column(DateTime, nullable=True, index=True)
    inactivity_streaks = Column(Integer, default=0, nullable=False)
    last_inactivity_check_at = Column(DateTime, nullable=True)
    reengagement_flagged_at = Column(DateTime, nullable=True)

    # Rate limiting
    last_rank_update_at = Column(DateTime, nullable=True)
    last_recalculation_at = Column(DateTime, nullable=True)

    version = Column(Integer, default=1, nullable=False)

    user = relationship("User", back_populates="stats")
    history = relationship(
        "RankUpgradeHistory",
        back_populates="stats",
        order_by="RankUpgradeHistory.id",
    )

    __mapper_args__ = {"version_id_col": version}


class RankUpgradeHistory(Base):
    """Append-only promotion log"""
    __tablename__ = "rank_upgrade_history"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(128), ForeignKey("user_stats.user_id", ondelete="CASCADE"), nullable=False, index=True)

    previous_tier = Column(SQLEnum(Tier), nullable=False)
    new_tier = Column(SQLEnum(Tier), nullable=False)
    achieved_at = Column(DateTime, default=utcnow, nullable=False)
    percentage_at_upgrade = Column(Float, nullable=False)
    days_in_previous_tier = Column(Integer, nullable=False)
    trigger = Column(SQLEnum(PromotionTrigger), nullable=False)
    note = Column(Text, nullable=True)

    stats = relationship("UserStats", back_populates="history")


class LeaderboardCache(Base):
    """Per-tier top-N snapshot, rebuilt whole"""
    __tablename__ = "leaderboard_cache"

    id = Column(String(64), primary_key=True)  # "<TIER>_TOP<N>"
    tier = Column(SQLEnum(Tier), nullable=False, index=True)
    size = Column(Integer, nullable=False)
    entries = Column(JSON, nullable=False)
    generated_at = Column(DateTime, nullable=False)
    expires_at = Column(DateTime, nullable=False)
