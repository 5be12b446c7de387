"""Database engine configuration with connection pooling."""

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from app.core.config import settings


def create_engine(database_url: str | None = None) -> AsyncEngine:
    """Create the async engine for the configured database.

    SQLite (aiosqlite) manages its own connections, so pool tuning only applies
    to server databases such as PostgreSQL (asyncpg).
    """
    url = database_url or settings.DATABASE_URL

    if url.startswith("sqlite"):
        return create_async_engine(url, echo=False)

    return create_async_engine(
        url,
        echo=False,
        # Connection pool settings (configurable via env vars)
        pool_size=settings.DATABASE_POOL_SIZE,  # Number of connections to maintain
        max_overflow=settings.DATABASE_MAX_OVERFLOW,  # Additional connections allowed beyond pool_size
        pool_timeout=30,  # Seconds to wait before giving up on getting a connection
        pool_recycle=3600,  # Recycle connections after 1 hour (prevents stale connections)
        pool_pre_ping=True,  # Verify connections before using them
    )


def create_session_maker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
