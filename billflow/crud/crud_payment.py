"""CRUD operations for payments."""

from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from billflow.crud._base import CRUDBase
from billflow.db.unit_of_work import UnitOfWork
from billflow.models.payment import Payment
from billflow.schemas.payment import PaymentCreate, PaymentStatus

REFUNDABLE_STATUSES = (PaymentStatus.SUCCEEDED.value, PaymentStatus.PARTIALLY_REFUNDED.value)
COLLECTED_STATUSES = REFUNDABLE_STATUSES + (PaymentStatus.REFUNDED.value,)


class CRUDPayment(CRUDBase[Payment, PaymentCreate, dict]):
    """CRUD operations for payments."""

    async def get_by_intent_id(
        self, db: AsyncSession, stripe_payment_intent_id: str
    ) -> Optional[Payment]:
        """Get a payment by payment intent id."""
        result = await db.execute(
            select(Payment).where(Payment.stripe_payment_intent_id == stripe_payment_intent_id)
        )
        return result.scalar_one_or_none()

    async def compare_and_set_refunded(
        self,
        db: AsyncSession,
        *,
        payment_id: UUID,
        expected_refunded: Decimal,
        new_refunded: Decimal,
        new_status: PaymentStatus,
        uow: UnitOfWork,
    ) -> bool:
        """Move ``refunded_amount`` forward only if nobody else has touched it.

        The update applies when the row still holds ``expected_refunded`` and is in
        a refundable status. Returns whether a row was updated.
        """
        result = await db.execute(
            update(Payment)
            .where(
                Payment.id == payment_id,
                Payment.refunded_amount == expected_refunded,
                Payment.status.in_(REFUNDABLE_STATUSES),
            )
            .values(refunded_amount=new_refunded, status=PaymentStatus(new_status).value)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def build_filters(
        self,
        status: Optional[PaymentStatus] = None,
        customer_id: Optional[UUID] = None,
        invoice_id: Optional[UUID] = None,
    ) -> list:
        """Filters for list endpoints."""
        filters = []
        if status is not None:
            filters.append(Payment.status == PaymentStatus(status).value)
        if customer_id is not None:
            filters.append(Payment.customer_id == customer_id)
        if invoice_id is not None:
            filters.append(Payment.invoice_id == invoice_id)
        return filters

    async def get_collected(
        self,
        db: AsyncSession,
        currency: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> list[Payment]:
        """Payments that were charged in a currency, refunded or not, optionally in a window."""
        filters = [Payment.status.in_(COLLECTED_STATUSES), Payment.currency == currency]
        if start is not None:
            filters.append(Payment.created_at >= start)
        if end is not None:
            filters.append(Payment.created_at < end)
        return await self.get_multi(db, limit=None, filters=filters)

    async def get_created_between(
        self, db: AsyncSession, start: datetime, end: datetime
    ) -> list[Payment]:
        """Payments created within ``[start, end)``."""
        return await self.get_multi(
            db, limit=None, filters=[Payment.created_at >= start, Payment.created_at < end]
        )

    async def get_by_customer(self, db: AsyncSession, customer_id: UUID) -> list[Payment]:
        """All payments of a customer."""
        return await self.get_multi(db, limit=None, filters=[Payment.customer_id == customer_id])


payment = CRUDPayment(Payment)
