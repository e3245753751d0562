"""Subscription model."""

from datetime import datetime
from typing import Optional
from uuid import UUID

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.schema import CheckConstraint, Index

from billflow.models._base import Base, JSONDict


class Subscription(Base):
    """A customer's recurring commitment to a plan."""

    __tablename__ = "subscription"

    customer_id: Mapped[UUID] = mapped_column(ForeignKey("customer.id"), nullable=False)
    plan_id: Mapped[UUID] = mapped_column(ForeignKey("plan.id"), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    status: Mapped[str] = mapped_column(String(30), nullable=False)

    # Current period boundaries (inclusive start, exclusive end)
    current_period_start: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    current_period_end: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)

    cancel_at_period_end: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    canceled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=False), nullable=True)
    ended_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=False), nullable=True)
    trial_start: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=False), nullable=True)
    trial_end: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=False), nullable=True)

    pause_behavior: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    stripe_subscription_id: Mapped[Optional[str]] = mapped_column(
        String, nullable=True, unique=True
    )

    # Append-only audit trail of lifecycle events, shallow merged
    meta: Mapped[dict] = mapped_column("metadata", JSONDict, nullable=False, default=dict)

    __table_args__ = (
        CheckConstraint(
            "current_period_end > current_period_start", name="check_subscription_period_order"
        ),
        CheckConstraint("quantity >= 1", name="check_subscription_quantity_positive"),
        Index("ix_subscription_customer_status", "customer_id", "status"),
        Index("ix_subscription_status_trial_end", "status", "trial_end"),
    )
