"""
Database session configuration.

Async SQLAlchemy engine and session factory. Bookings, charge ledgers and
payments are written through one AsyncSession per request; whoever owns the
unit of work (endpoint or payment orchestrator) commits it.
"""

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import declarative_base
from backend.app.core.config import settings


def engine_options(database_url: str) -> dict:
    """Pool sizing applies to server databases only; SQLite uses its own pool."""
    options = {"echo": settings.db_echo, "future": True}
    if not make_url(database_url).drivername.startswith("sqlite"):
        options.update(pool_size=settings.db_pool_size, max_overflow=settings.db_max_overflow)
    return options


engine = create_async_engine(settings.database_url, **engine_options(settings.database_url))

# Objects stay readable after commit; ledger values are returned in responses
AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)

Base = declarative_base()


async def get_db():
    """
    FastAPI dependency for database sessions.

    Anything left uncommitted when the request ends is rolled back on close.
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()
