"""Usage record model."""

from datetime import datetime
from typing import Optional
from uuid import UUID

from sqlalchemy import DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.schema import Index, UniqueConstraint

from billflow.models._base import Base


class UsageRecord(Base):
    """Append-only metering event for a subscription."""

    __tablename__ = "usage_record"

    subscription_id: Mapped[UUID] = mapped_column(ForeignKey("subscription.id"), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    action: Mapped[str] = mapped_column(String(10), nullable=False, default="increment")
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    idempotency_key: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    __table_args__ = (
        UniqueConstraint(
            "subscription_id", "idempotency_key", name="uq_usage_record_idempotency_key"
        ),
        Index("ix_usage_record_subscription_timestamp", "subscription_id", "timestamp"),
    )
