"""CRUD operations for plans."""

from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from billflow.crud._base import CRUDBase
from billflow.models.plan import Plan
from billflow.schemas.plan import PlanCreate, PlanUpdate


class CRUDPlan(CRUDBase[Plan, PlanCreate, PlanUpdate]):
    """CRUD operations for plans."""

    async def get_many(self, db: AsyncSession, ids: set) -> dict:
        """Load several plans at once, keyed by id."""
        if not ids:
            return {}
        plans = await self.get_multi(db, limit=None, filters=[Plan.id.in_(ids)])
        return {plan.id: plan for plan in plans}

    async def get_by_stripe_price_id(
        self, db: AsyncSession, stripe_price_id: str
    ) -> Optional[Plan]:
        """The plan priced by a payment gateway price, if any."""
        result = await db.execute(
            select(Plan).where(Plan.stripe_price_id == stripe_price_id).limit(1)
        )
        return result.scalar_one_or_none()

    def build_filters(self, active: Optional[bool] = None) -> list:
        """Filters for list endpoints."""
        return [] if active is None else [Plan.active.is_(active)]


plan = CRUDPlan(Plan)
