from collections.abc import AsyncGenerator
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlmodel import SQLModel

from app.config import settings


def _engine_kwargs(url: str, command_timeout: int) -> dict[str, Any]:
    """Pool and driver options for a database URL.

    SQLite (used for local development and tests) has no connection pool
    sizing and no asyncpg connect args.
    """
    if url.startswith("sqlite"):
        return {}
    return {
        "pool_size": 10,
        "max_overflow": 20,  # total max = 30 connections
        "pool_pre_ping": True,  # Detects stale connections before use
        "pool_recycle": 300,  # Recycle connections every 5 min (pooler compatibility)
        "pool_timeout": 30,  # Wait up to 30s for a connection from pool
        "connect_args": {
            "statement_cache_size": 0,
            "command_timeout": command_timeout,  # Query timeout in seconds
        },
    }


# Pooled connection for request handling
engine = create_async_engine(
    settings.database_url,
    echo=False,
    future=True,
    **_engine_kwargs(settings.database_url, command_timeout=60),
)

# Direct connection for DDL, seeding and scheduled housekeeping
direct_engine = create_async_engine(
    settings.database_url_direct,
    echo=False,
    future=True,
    **_engine_kwargs(settings.database_url_direct, command_timeout=300),
)

async_session_maker = sessionmaker(  # type: ignore[call-overload]
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)

direct_session_maker = sessionmaker(  # type: ignore[call-overload]
    direct_engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Dependency that yields an async database session.

    The lifecycle engine commits its own unit of work; anything left pending
    by a handler is committed here, and everything is rolled back on error.
    """
    async with async_session_maker() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def init_db() -> None:
    """Create all tables (for development only - use Alembic in production)."""
    # Import models so they register with SQLModel.metadata
    import app.models  # noqa: F401

    async with direct_engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
