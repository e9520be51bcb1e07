"""Database session management with async SQLAlchemy."""
from functools import lru_cache

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from recurring_billing.config import settings


@lru_cache(maxsize=1)
def get_engine() -> AsyncEngine:
    """
    Create the process-wide async engine on first use.

    Returns:
        AsyncEngine bound to the configured database URL
    """
    return create_async_engine(
        settings.database_url,
        echo=settings.debug,
        pool_pre_ping=True,
        pool_size=20,
        max_overflow=10,
    )


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """
    Build a session factory for the given engine.

    Sessions keep loaded objects usable after commit, since entities are
    passed between the repository and the billing services detached.
    """
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )


@lru_cache(maxsize=1)
def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Session factory bound to the process-wide engine."""
    return build_session_factory(get_engine())


# Declarative base for all models
Base = declarative_base()
