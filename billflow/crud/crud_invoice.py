"""CRUD operations for invoices."""

from datetime import datetime
from typing import Optional
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from billflow.crud._base import CRUDBase
from billflow.models.invoice import Invoice
from billflow.schemas.invoice import InvoiceCreate, InvoiceStatus, InvoiceUpdate


class CRUDInvoice(CRUDBase[Invoice, InvoiceCreate, InvoiceUpdate]):
    """CRUD operations for invoices."""

    async def get_by_number(self, db: AsyncSession, number: str) -> Optional[Invoice]:
        """Get an invoice by its human readable number."""
        result = await db.execute(select(Invoice).where(Invoice.number == number))
        return result.scalar_one_or_none()

    async def get_by_stripe_id(
        self, db: AsyncSession, stripe_invoice_id: str
    ) -> Optional[Invoice]:
        """Get an invoice by payment gateway id."""
        result = await db.execute(
            select(Invoice).where(Invoice.stripe_invoice_id == stripe_invoice_id)
        )
        return result.scalar_one_or_none()

    async def get_for_period(
        self, db: AsyncSession, subscription_id: UUID, period_start: datetime
    ) -> Optional[Invoice]:
        """The invoice already raised for a subscription period, if any."""
        result = await db.execute(
            select(Invoice).where(
                Invoice.subscription_id == subscription_id,
                Invoice.period_start == period_start,
            )
        )
        return result.scalar_one_or_none()

    async def get_latest_number_with_prefix(self, db: AsyncSession, prefix: str) -> Optional[str]:
        """Highest invoice number starting with ``prefix``."""
        result = await db.execute(
            select(func.max(Invoice.number)).where(Invoice.number.like(f"{prefix}%"))
        )
        return result.scalar_one_or_none()

    def build_filters(
        self,
        status: Optional[InvoiceStatus] = None,
        customer_id: Optional[UUID] = None,
        subscription_id: Optional[UUID] = None,
    ) -> list:
        """Filters for list endpoints."""
        filters = []
        if status is not None:
            filters.append(Invoice.status == InvoiceStatus(status).value)
        if customer_id is not None:
            filters.append(Invoice.customer_id == customer_id)
        if subscription_id is not None:
            filters.append(Invoice.subscription_id == subscription_id)
        return filters

    def overdue_filters(self, now: datetime) -> list:
        """Open invoices past their due date."""
        return [
            Invoice.status == InvoiceStatus.OPEN.value,
            Invoice.due_date.is_not(None),
            Invoice.due_date < now,
        ]

    async def get_overdue(self, db: AsyncSession, now: datetime) -> list[Invoice]:
        """All open invoices past their due date."""
        return await self.get_multi(db, limit=None, filters=self.overdue_filters(now))

    async def get_open(self, db: AsyncSession, currency: str) -> list[Invoice]:
        """Open invoices in a currency."""
        return await self.get_multi(
            db,
            limit=None,
            filters=[Invoice.status == InvoiceStatus.OPEN.value, Invoice.currency == currency],
        )

    async def get_created_between(
        self, db: AsyncSession, start: datetime, end: datetime, currency: Optional[str] = None
    ) -> list[Invoice]:
        """Invoices created within ``[start, end)``."""
        filters = [Invoice.created_at >= start, Invoice.created_at < end]
        if currency:
            filters.append(Invoice.currency == currency)
        return await self.get_multi(db, limit=None, filters=filters)


invoice = CRUDInvoice(Invoice)
