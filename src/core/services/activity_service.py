"""
Activity Service
Vote-cast and vote-resolution hooks that feed the rank record
"""

import logging
from collections import Counter
from datetime import datetime
from typing import Iterable, Optional

from pydantic import BaseModel
from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.core.clock import utcnow
from src.core.errors import RankError, RankStoreError
from src.core.services.rank_service import get_user_stats, on_prediction_resolved
from src.database.models import UserStats

logger = logging.getLogger(__name__)


class Vote(BaseModel):
    user_id: str
    option: str


class ResolutionSummary(BaseModel):
    voters: int
    correct: int
    contrarian_wins: int
    errors: int


def _iso_week(value: Optional[datetime]):
    if value is None:
        return None
    year, week, _ = value.isocalendar()
    return (year, week)


async def on_vote_cast(
    session: AsyncSession,
    user_id: str,
    now: Optional[datetime] = None,
) -> UserStats:
    """
    Count a new vote: total predictions +1, last active = now,
    and one more active week when this is the first vote of an ISO week.
    """
    now = now or utcnow()
    stats = await get_user_stats(session, user_id)
    new_week = _iso_week(stats.last_active_at) != _iso_week(now) or stats.total_predictions == 0

    try:
        await session.execute(
            update(UserStats)
            .where(UserStats.user_id == user_id)
            .values(
                total_predictions=UserStats.total_predictions + 1,
                weekly_activity_count=UserStats.weekly_activity_count + (1 if new_week else 0),
                last_active_at=now,
                version=UserStats.version + 1,
            )
            .execution_options(synchronize_session=False)
        )
        await session.commit()
    except SQLAlchemyError as e:
        await session.rollback()
        raise RankStoreError(f"Failed to record vote for {user_id}", e) from e

    return await get_user_stats(session, user_id)


def classify_votes(votes: Iterable[Vote], winning_option: str):
    """
    Yield (vote, was_correct, was_contrarian).
    Contrarian = voted for something other than the plurality option.
    A tie for first place has no plurality, so nobody is contrarian.
    """
    votes = list(votes)
    counts = Counter(v.option for v in votes)
    ranked = counts.most_common(2)
    majority = None
    if ranked and (len(ranked) == 1 or ranked[0][1] > ranked[1][1]):
        majority = ranked[0][0]

    for vote in votes:
        was_correct = vote.option == winning_option
        was_contrarian = majority is not None and vote.option != majority
        yield vote, was_correct, was_contrarian


async def resolve_prediction_votes(
    session_factory: async_sessionmaker,
    votes: Iterable[Vote],
    winning_option: str,
    now: Optional[datetime] = None,
) -> ResolutionSummary:
    """
    Feed one resolved question into every voter's rank record.
    Best effort per voter: failures are logged and counted so the
    resolution flow itself never fails because of ranking.
    """
    now = now or utcnow()
    voters = correct = contrarian_wins = errors = 0

    for vote, was_correct, was_contrarian in classify_votes(votes, winning_option):
        voters += 1
        if was_correct:
            correct += 1
            if was_contrarian:
                contrarian_wins += 1
        try:
            async with session_factory() as session:
                await on_prediction_resolved(session, vote.user_id, was_correct, was_contrarian, now=now)
        except (RankError, SQLAlchemyError) as e:
            errors += 1
            logger.error("[RANK SERVICE] Error handling resolution for %s: %s", vote.user_id, e)

    logger.info(
        "Prediction resolved: %s voters, %s correct, %s contrarian wins, %s errors",
        voters, correct, contrarian_wins, errors,
    )
    return ResolutionSummary(voters=voters, correct=correct, contrarian_wins=contrarian_wins, errors=errors)
