"""Database session management with async SQLAlchemy."""

from collections.abc import AsyncGenerator

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from outreach.core.config import settings

logger = structlog.get_logger()

# Create async engine
engine = create_async_engine(
    str(settings.DATABASE_URL),
    echo=False,
    future=True,
    pool_pre_ping=True,
    pool_size=20,
    max_overflow=20,
    pool_recycle=900,  # Recycle every 15 min
    pool_timeout=5,  # Fail fast if pool exhausted
    pool_use_lifo=True,
)

# Create async session factory
AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Dependency for getting async database sessions."""
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            logger.exception("database_session_error")
            raise
        finally:
            await session.close()
