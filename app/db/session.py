"""Async database session management using SQLAlchemy."""

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from app.core.config import Settings, get_settings


def get_async_engine(settings: Settings | None = None) -> AsyncEngine:
    """Create and return the async database engine.

    Uses the asyncpg driver for PostgreSQL unless DATABASE_URL points
    somewhere else (tests use aiosqlite).
    """
    settings = settings or get_settings()
    return create_async_engine(
        settings.database_url,
        echo=settings.DEBUG,
        pool_pre_ping=True,
    )


def get_async_session_maker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create and return the async session maker bound to ``engine``."""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
