"""Database session configuration."""

from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from billflow.core.config import settings


def _engine_options(url: str) -> dict[str, Any]:
    """Pool options for the configured backend.

    SQLite (local development and tests) runs on a single connection, so the
    server-side pool and timeout options only apply to PostgreSQL.
    """
    if url.startswith("sqlite"):
        return {"connect_args": {"check_same_thread": False}}

    return {
        "pool_size": 10,
        "max_overflow": 10,
        "pool_pre_ping": True,
        "pool_recycle": 300,  # Recycle connections after 5 minutes
        "pool_timeout": 30,
        "isolation_level": "READ COMMITTED",
        "connect_args": {
            "server_settings": {
                "idle_in_transaction_session_timeout": "60000",
            },
            "command_timeout": 60,
        },
    }


async_engine = create_async_engine(
    settings.SQLALCHEMY_ASYNC_DATABASE_URI,
    echo=settings.DB_ECHO,
    **_engine_options(settings.SQLALCHEMY_ASYNC_DATABASE_URI),
)

# Services keep using loaded rows after commit, so attributes must not expire
AsyncSessionLocal = async_sessionmaker(
    autocommit=False, autoflush=False, expire_on_commit=False, bind=async_engine
)


@asynccontextmanager
async def get_db_context() -> AsyncGenerator[AsyncSession, None]:
    """Get an async database session that can be used as a context manager.

    Yields:
        AsyncSession: An async database session

    Example:
    -------
        async with get_db_context() as db:
            await billing_service.process_end_of_period_billing(db, subscription_id)

    """
    async with AsyncSessionLocal() as db:
        try:
            yield db
        finally:
            await db.close()


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Yield an async database session to be used in dependency injection.

    Yields:
    ------
        AsyncSession: An async database session

    """
    async with AsyncSessionLocal() as db:
        try:
            yield db
        finally:
            await db.close()
