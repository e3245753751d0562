"""Health check endpoints."""

from fastapi import Depends
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from billflow.api import deps
from billflow.api.router import TrailingSlashRouter
from billflow.core.config import settings

router = TrailingSlashRouter()


@router.get("")
async def health_check() -> dict[str, str]:
    """Liveness check.

    Returns:
    --------
        dict: ``{"status": "healthy"}`` while the process serves requests.
    """
    return {"status": "healthy"}


@router.get("/ready")
async def readiness_check(db: AsyncSession = Depends(deps.get_db)) -> dict:
    """Readiness check: the database answers and which gateways are enabled."""
    await db.execute(text("SELECT 1"))
    return {
        "status": "ready",
        "gateways": {"stripe": settings.STRIPE_ENABLED, "ramp": settings.RAMP_ENABLED},
    }
