"""
Database configuration.

Async SQLAlchemy engine and session factory for the main event loop.
Dramatiq actors use their own NullPool engines (see jobs.async_runner).
"""

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.config.settings import settings

async_engine = create_async_engine(
    settings.database_url,
    echo=settings.database_echo,
    pool_pre_ping=True,
)

async_session_maker = async_sessionmaker(
    async_engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)

# Alias used by shutdown code
engine = async_engine
