"""
Database session management with SQLAlchemy async
"""

from sqlalchemy.ext.asyncio import create_async_engine, AsyncEngine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import NullPool
from core.config import settings
import logging

logger = logging.getLogger(__name__)


def build_engine(database_url: str = None) -> AsyncEngine:
    """Create an async engine for the given URL (defaults to settings)"""
    return create_async_engine(
        database_url or settings.DATABASE_URL,
        echo=settings.ENVIRONMENT == "development" and settings.LOG_LEVEL.upper() == "DEBUG",
        poolclass=NullPool,  # For async, connection pooling handled differently
        future=True
    )


def build_session_maker(bind: AsyncEngine) -> async_sessionmaker:
    """Create a session factory bound to an engine"""
    return async_sessionmaker(
        bind,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False
    )


# Create async engine
engine = build_engine()

# Create session factory
async_session_maker = build_session_maker(engine)
