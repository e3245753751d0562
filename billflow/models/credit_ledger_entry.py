"""Customer credit ledger model."""

from decimal import Decimal
from typing import Optional
from uuid import UUID

from sqlalchemy import ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column

from billflow.models._base import Base, Money


class CreditLedgerEntry(Base):
    """Signed movement of customer credit.

    Grants are positive, applications to invoices are negative. The available
    balance of a customer is the sum of its entries.
    """

    __tablename__ = "credit_ledger_entry"

    customer_id: Mapped[UUID] = mapped_column(ForeignKey("customer.id"), nullable=False, index=True)
    amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    reason: Mapped[str] = mapped_column(String(255), nullable=False)
    invoice_id: Mapped[Optional[UUID]] = mapped_column(ForeignKey("invoice.id"), nullable=True)
