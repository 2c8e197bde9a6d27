"""
Sentry Database Session Management

Async SQLAlchemy engine and session factory builders. Nothing is created
at import time; the API lifespan and the workers build their own engine
from settings and pass the session factory to the workflow engine.
"""

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from core.config import Settings


class Base(DeclarativeBase):
    """Declarative base for all SQLAlchemy models."""
    pass


def build_engine(settings: Settings) -> AsyncEngine:
    kwargs = {"echo": settings.database_echo, "pool_pre_ping": True}
    if not settings.database_url.startswith("sqlite"):
        kwargs.update(pool_size=20, max_overflow=10, pool_timeout=settings.database_pool_timeout)
    return create_async_engine(settings.database_url, **kwargs)


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


async def create_schema(engine: AsyncEngine) -> None:
    """Create all tables that do not exist yet."""
    import db.models  # noqa: F401  (register tables on Base.metadata)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
