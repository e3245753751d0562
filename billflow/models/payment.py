"""Payment model."""

from decimal import Decimal
from typing import Optional
from uuid import UUID

from sqlalchemy import ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.schema import CheckConstraint, Index

from billflow.models._base import Base, JSONDict, Money


class Payment(Base):
    """A charge attempt against a customer, optionally settling an invoice."""

    __tablename__ = "payment"

    customer_id: Mapped[UUID] = mapped_column(ForeignKey("customer.id"), nullable=False)
    invoice_id: Mapped[Optional[UUID]] = mapped_column(ForeignKey("invoice.id"), nullable=True)

    amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    status: Mapped[str] = mapped_column(String(30), nullable=False, default="pending")
    refunded_amount: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))

    payment_method: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    failure_code: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    failure_message: Mapped[Optional[str]] = mapped_column(String, nullable=True)

    stripe_payment_intent_id: Mapped[Optional[str]] = mapped_column(
        String, nullable=True, unique=True
    )

    meta: Mapped[dict] = mapped_column("metadata", JSONDict, nullable=False, default=dict)

    __table_args__ = (
        CheckConstraint("refunded_amount <= amount", name="check_payment_refund_bound"),
        CheckConstraint("refunded_amount >= 0", name="check_payment_refund_non_negative"),
        Index("ix_payment_customer_status", "customer_id", "status"),
    )
