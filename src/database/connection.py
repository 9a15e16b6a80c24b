"""
Database Connection
Async engine and session factory
"""

from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker

from src.core.config import get_settings
from src.database.models import Base

settings = get_settings()

# Convert URL to its async driver form
DATABASE_URL = settings.database_url.replace(
    "postgresql://", "postgresql+asyncpg://"
)


def build_engine(database_url: str = DATABASE_URL, echo: bool = settings.debug):
    """SQLite gets driver defaults; server databases get a sized pool"""
    if database_url.startswith("sqlite"):
        return create_async_engine(
            database_url,
            echo=echo,
            connect_args={"timeout": 30.0},
        )
    return create_async_engine(
        database_url,
        echo=echo,
        pool_size=10,
        max_overflow=20,
        pool_pre_ping=True,
    )


def build_session_factory(bind) -> async_sessionmaker:
    return async_sessionmaker(
        bind,
        class_=AsyncSession,
        expire_on_commit=False
    )


engine = build_engine()

# Session Factory
async_session = build_session_factory(engine)


async def init_db(bind=engine):
    """Create tables"""
    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
