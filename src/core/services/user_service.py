"""
User Service
Signup-time creation of the account row and its rank record
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.clock import utcnow
from src.core.services.rank_service import create_user_stats
from src.database.models import User


async def get_or_create_user(
    session: AsyncSession,
    user_id: str,
    display_name: str = None,
    avatar_url: str = None,
    created_at: Optional[datetime] = None,
    is_system_user: bool = False,
) -> User:
    """
    Get or create a user and its stats record.
    A new record starts at the lowest tier with 0%.
    """

    # Does the user exist already?
    result = await session.execute(
        select(User).where(User.id == user_id)
    )
    user = result.scalar_one_or_none()

    if user:
        # Refresh profile fields
        if display_name is not None:
            user.display_name = display_name
        if avatar_url is not None:
            user.avatar_url = avatar_url
    else:
        created = created_at or utcnow()
        user = User(
            id=user_id,
            display_name=display_name,
            avatar_url=avatar_url,
            created_at=created,
            is_system_user=is_system_user,
        )
        session.add(user)
        await session.flush()

    # Rank record (no-op when it already exists)
    await create_user_stats(session, user_id, created_at=user.created_at)

    await session.commit()
    return user
