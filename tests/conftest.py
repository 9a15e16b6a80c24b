"""
Shared fixtures: one aiosqlite database file per test, seeded through
the same service calls production uses.
"""
import os

# Settings are read once at import time, so the environment goes first
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["ADMIN_SECRET"] = "test-admin-secret"
os.environ.pop("TELEGRAM_BOT_TOKEN", None)
os.environ.pop("ADMIN_TELEGRAM_CHAT_ID", None)

from datetime import datetime, timedelta

import pytest
import pytest_asyncio
from sqlalchemy import select, update

from src.core.config import get_settings
from src.core.services.alerts import clear_rank_upgrade_listeners
from src.core.services.user_service import get_or_create_user
from src.database.connection import build_engine, build_session_factory, init_db
from src.database.models import UserStats

# A Monday, so ISO-week arithmetic in the tests stays readable
NOW = datetime(2026, 3, 2, 12, 0, 0)


# =============================================================================
# Database
# =============================================================================

@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'rank.db'}", echo=False)
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest_asyncio.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session


# =============================================================================
# Seeding
# =============================================================================

@pytest.fixture
def make_user(session_factory):
    """Create a user aged `age_days` at NOW, then overwrite any stats columns given"""

    async def _make(user_id, age_days=0, display_name=None, is_system_user=False, now=NOW, **stats_fields):
        async with session_factory() as session:
            await get_or_create_user(
                session,
                user_id,
                display_name=display_name or user_id.title(),
                created_at=now - timedelta(days=age_days),
                is_system_user=is_system_user,
            )
            if stats_fields:
                await session.execute(
                    update(UserStats).where(UserStats.user_id == user_id).values(**stats_fields)
                )
                await session.commit()
        return user_id

    return _make


@pytest.fixture
def load_stats(session_factory):
    async def _load(user_id):
        async with session_factory() as session:
            result = await session.execute(select(UserStats).where(UserStats.user_id == user_id))
            return result.scalar_one_or_none()

    return _load


# =============================================================================
# Settings / hooks
# =============================================================================

@pytest.fixture
def settings(monkeypatch):
    """Cached settings object; tests patch attributes through monkeypatch"""
    return get_settings()


@pytest.fixture(autouse=True)
def reset_listeners():
    clear_rank_upgrade_listeners()
    yield
    clear_rank_upgrade_listeners()
