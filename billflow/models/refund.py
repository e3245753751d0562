"""Refund model."""

from decimal import Decimal
from typing import Optional
from uuid import UUID

from sqlalchemy import ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column

from billflow.models._base import Base, JSONDict, Money


class Refund(Base):
    """A refund issued against a payment. Never updated once written."""

    __tablename__ = "refund"

    payment_id: Mapped[UUID] = mapped_column(ForeignKey("payment.id"), nullable=False, index=True)
    customer_id: Mapped[UUID] = mapped_column(ForeignKey("customer.id"), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="succeeded")
    reason: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    stripe_refund_id: Mapped[Optional[str]] = mapped_column(String, nullable=True)

    meta: Mapped[dict] = mapped_column("metadata", JSONDict, nullable=False, default=dict)
