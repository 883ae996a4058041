"""Async SQLAlchemy engine configuration."""

from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from tablemin_api.config import Settings


def create_engine_from_settings(settings: Settings) -> AsyncEngine:
    """Create the process-wide async engine with a bounded pool."""
    return create_async_engine(
        settings.DATABASE_URL,
        echo=settings.DEBUG,
        pool_size=settings.POOL_SIZE,
        max_overflow=settings.MAX_OVERFLOW,
        pool_pre_ping=True,
        pool_recycle=3600,
    )
