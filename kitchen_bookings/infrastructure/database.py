"""Database engine and session factory.

The engine is created lazily by asyncpg on first connect, so importing
this module never opens a connection; the in-memory booking store can
run without a database.
"""

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from kitchen_bookings.infrastructure.config import settings

engine = create_async_engine(
    settings.database_url,
    echo=settings.debug,
    pool_pre_ping=True,
)

async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)

# Base class for models
Base = declarative_base()


async def dispose_engine() -> None:
    """Close pooled connections on shutdown."""
    await engine.dispose()
