"""Initialize the database schema."""

from sqlalchemy.ext.asyncio import AsyncEngine

from billflow import models  # noqa: F401
from billflow.core.logging import logger
from billflow.models._base import Base


async def init_db(engine: AsyncEngine) -> None:
    """Create any missing tables.

    Args:
    ----
        engine (AsyncEngine): The engine bound to the target database.

    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database schema is up to date")
