"""CRUD operations for refunds."""

from datetime import datetime
from typing import Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from billflow.crud._base import CRUDBase
from billflow.models.refund import Refund


class CRUDRefund(CRUDBase[Refund, dict, dict]):
    """CRUD operations for refunds. Refunds are never updated."""

    async def get_for_payment(self, db: AsyncSession, payment_id: UUID) -> list[Refund]:
        """Refunds issued against a payment."""
        return await self.get_multi(db, limit=None, filters=[Refund.payment_id == payment_id])

    async def get_created_between(
        self, db: AsyncSession, start: datetime, end: datetime, currency: Optional[str] = None
    ) -> list[Refund]:
        """Refunds created within ``[start, end)``."""
        filters = [Refund.created_at >= start, Refund.created_at < end]
        if currency:
            filters.append(Refund.currency == currency)
        return await self.get_multi(db, limit=None, filters=filters)


refund = CRUDRefund(Refund)
