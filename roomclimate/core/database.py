"""
Room Climate Monitor - Database Configuration
Async SQLAlchemy; the engine is built at startup and handed to the app
"""

from collections.abc import AsyncIterator

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase

from roomclimate.core.config import Settings


def build_engine(settings: Settings) -> AsyncEngine:
    """Create the async engine with a bounded connection pool."""
    return create_async_engine(
        settings.sqlalchemy_url,
        echo=False,
        pool_pre_ping=True,
        pool_size=settings.db_pool_size,
    )


def build_session_maker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to the given engine."""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


async def get_db(request: Request) -> AsyncIterator[AsyncSession]:
    """Dependency for getting a request-scoped database session."""
    async with request.app.state.session_maker() as session:
        try:
            yield session
        finally:
            await session.close()
