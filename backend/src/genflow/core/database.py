"""Database session factory setup."""

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel


def create_engine(db_url: str, pool_size: int = 50) -> AsyncEngine:
    """Create the async engine for the ledger database.

    Args:
        db_url: PostgreSQL connection URL (postgresql+psycopg://...) or
            sqlite+aiosqlite:// URL for local runs and tests
        pool_size: Maximum number of connections in the pool (PostgreSQL only)

    Returns:
        Configured AsyncEngine
    """
    if db_url.startswith("sqlite"):
        # Single shared connection so in-memory databases survive across sessions
        return create_async_engine(
            db_url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
            echo=False,
        )

    return create_async_engine(
        db_url,
        pool_size=pool_size,
        max_overflow=0,  # No overflow beyond pool_size
        pool_pre_ping=True,  # Verify connections before using
        echo=False,  # Don't log SQL queries (use structlog instead)
    )


def setup_db_session(db_url: str, pool_size: int = 50) -> async_sessionmaker[AsyncSession]:
    """Create async database session factory.

    Args:
        db_url: Database connection URL
        pool_size: Maximum number of connections in the pool (default: 50)

    Returns:
        Async session factory for creating database sessions
    """
    engine = create_engine(db_url, pool_size=pool_size)

    session_factory = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,  # Prevent lazy loading issues after commit
    )

    return session_factory


async def create_all_tables(engine: AsyncEngine) -> None:
    """Create ledger tables from SQLModel metadata.

    Production schemas are managed by Alembic; this is for SQLite runs and tests.
    """
    # Register table models with the metadata before create_all
    import genflow.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
