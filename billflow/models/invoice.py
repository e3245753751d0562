"""Invoice model."""

from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from sqlalchemy import JSON, DateTime, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.schema import CheckConstraint, Index, UniqueConstraint

from billflow.models._base import Base, JSONDict, Money


class Invoice(Base):
    """A bill for a customer, optionally generated from a subscription period."""

    __tablename__ = "invoice"

    customer_id: Mapped[UUID] = mapped_column(ForeignKey("customer.id"), nullable=False)
    # Weak back-reference, the invoice may outlive the subscription
    subscription_id: Mapped[Optional[UUID]] = mapped_column(nullable=True)

    number: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="draft")
    currency: Mapped[str] = mapped_column(String(3), nullable=False)

    subtotal: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    tax: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    total: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    amount_paid: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    amount_due: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))

    # Ordered line items, stored as JSON documents
    line_items: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

    due_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=False), nullable=True)
    period_start: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=False), nullable=True
    )
    period_end: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=False), nullable=True)
    finalized_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=False), nullable=True
    )
    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=False), nullable=True)
    voided_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=False), nullable=True)

    stripe_invoice_id: Mapped[Optional[str]] = mapped_column(String, nullable=True, unique=True)

    meta: Mapped[dict] = mapped_column("metadata", JSONDict, nullable=False, default=dict)

    __table_args__ = (
        CheckConstraint("amount_due >= 0", name="check_invoice_amount_due_non_negative"),
        # One period invoice per subscription period
        UniqueConstraint("subscription_id", "period_start", name="uq_invoice_subscription_period"),
        Index("ix_invoice_customer_status", "customer_id", "status"),
        Index("ix_invoice_status_due_date", "status", "due_date"),
    )
