"""Local mirror of ledger gateway items."""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import JSON, DateTime, String
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.schema import Index, UniqueConstraint

from billflow.models._base import Base, Money


class LedgerRecord(Base):
    """A transaction, bill or reimbursement pulled from the ledger gateway."""

    __tablename__ = "ledger_record"

    kind: Mapped[str] = mapped_column(String(20), nullable=False)
    external_id: Mapped[str] = mapped_column(String(255), nullable=False)
    business_id: Mapped[str] = mapped_column(String(255), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    state: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    occurred_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=False), nullable=True)
    payload: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)

    __table_args__ = (
        UniqueConstraint("kind", "external_id", name="uq_ledger_record_kind_external_id"),
        Index("ix_ledger_record_business_kind", "business_id", "kind"),
    )
