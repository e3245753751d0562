"""Plan model."""

from decimal import Decimal
from typing import Optional

from sqlalchemy import Boolean, Integer, String
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.schema import CheckConstraint

from billflow.models._base import Base, JSONDict, Money


class Plan(Base):
    """Pricing template referenced by subscriptions.

    Only ``active`` may change once a live subscription references the plan.
    """

    __tablename__ = "plan"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    interval: Mapped[str] = mapped_column(String(10), nullable=False)
    interval_count: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    trial_days: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    # Price per metered unit, charged at period end
    usage_unit_amount: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))

    stripe_price_id: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    meta: Mapped[dict] = mapped_column("metadata", JSONDict, nullable=False, default=dict)

    __table_args__ = (
        CheckConstraint("interval_count >= 1", name="check_plan_interval_count_positive"),
        CheckConstraint("amount >= 0", name="check_plan_amount_non_negative"),
    )
