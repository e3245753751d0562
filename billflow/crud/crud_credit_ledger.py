"""CRUD operations for the customer credit ledger."""

from decimal import Decimal
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from billflow.core.money import round_money
from billflow.crud._base import CRUDBase
from billflow.models.credit_ledger_entry import CreditLedgerEntry


class CRUDCreditLedger(CRUDBase[CreditLedgerEntry, dict, dict]):
    """Append-only access to credit ledger entries."""

    async def get_balance(self, db: AsyncSession, customer_id: UUID, currency: str) -> Decimal:
        """Available credit of a customer in one currency."""
        entries = await self.get_multi(
            db,
            limit=None,
            filters=[
                CreditLedgerEntry.customer_id == customer_id,
                CreditLedgerEntry.currency == currency.upper(),
            ],
        )
        return round_money(sum((entry.amount for entry in entries), Decimal("0")))


credit_ledger = CRUDCreditLedger(CreditLedgerEntry)
