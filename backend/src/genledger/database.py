"""Async SQLAlchemy engine, session factory and request-scoped sessions."""
from typing import Any, AsyncGenerator

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from genledger.config import settings


def build_engine(url: str, **overrides: Any) -> AsyncEngine:
    """
    Create the async engine for ``url``.

    Pool sizing only applies to server databases; SQLite (used by tests and
    local tooling) keeps SQLAlchemy's defaults.
    """
    options: dict[str, Any] = {"echo": settings.debug, "pool_pre_ping": True}
    if make_url(url).get_backend_name() != "sqlite":
        options.update(pool_size=settings.db_pool_size, max_overflow=settings.db_max_overflow)
    options.update(overrides)
    return create_async_engine(url, **options)


engine = build_engine(str(settings.database_url))

# Sessions keep loaded attributes after commit; services re-read rows explicitly
AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Request-scoped session, committed when the handler returns normally.

    Yields:
        AsyncSession: Database session for the request lifecycle
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


# Declarative base for all models
Base = declarative_base()
