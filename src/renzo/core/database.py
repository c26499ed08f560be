"""Database session factory setup."""

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlmodel import SQLModel


def create_db_engine(db_url: str, pool_size: int = 20) -> AsyncEngine:
    """Create async engine for PostgreSQL (psycopg) or SQLite (aiosqlite).

    SQLite does not take pool sizing arguments, so they are only applied to
    server databases.
    """
    if db_url.startswith("sqlite"):
        return create_async_engine(db_url, echo=False)

    return create_async_engine(
        db_url,
        pool_size=pool_size,
        max_overflow=0,  # No overflow beyond pool_size
        pool_pre_ping=True,  # Verify connections before using
        echo=False,  # Don't log SQL queries (use structlog instead)
    )


def setup_db_session(db_url: str, pool_size: int = 20) -> async_sessionmaker[AsyncSession]:
    """Create async database session factory.

    Args:
        db_url: Connection URL (postgresql+psycopg://... or sqlite+aiosqlite:///...)
        pool_size: Maximum number of connections in the pool (default: 20)

    Returns:
        Async session factory for creating database sessions
    """
    engine = create_db_engine(db_url, pool_size)

    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,  # Prevent lazy loading issues after commit
    )


async def create_all_tables(engine: AsyncEngine) -> None:
    """Create every table registered on SQLModel metadata.

    Used for local SQLite databases and tests. PostgreSQL deployments use
    Alembic migrations instead.
    """
    import renzo.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
