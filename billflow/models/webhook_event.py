"""Processed webhook event model."""

from datetime import datetime

from sqlalchemy import DateTime, String
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.schema import UniqueConstraint

from billflow.core.datetime_utils import utc_now_naive
from billflow.models._base import Base


class WebhookEvent(Base):
    """Delivery log used to skip events that were already processed."""

    __tablename__ = "webhook_event"

    source: Mapped[str] = mapped_column(String(20), nullable=False)
    event_id: Mapped[str] = mapped_column(String(255), nullable=False)
    event_type: Mapped[str] = mapped_column(String(100), nullable=False)
    processed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=False), nullable=False, default=utc_now_naive
    )

    __table_args__ = (UniqueConstraint("source", "event_id", name="uq_webhook_event_source_id"),)
