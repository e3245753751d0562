"""Ledger gateway (Ramp) resource schemas.

Only the fields the sync engine relies on are declared; everything else the
gateway sends is kept because ``extra="allow"``.
"""

from datetime import datetime
from decimal import Decimal
from typing import Generic, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field

T = TypeVar("T")


class LedgerModel(BaseModel):
    """Base for gateway payloads."""

    model_config = ConfigDict(extra="allow")


class PageInfo(LedgerModel):
    """Cursor block of a paginated response."""

    next: Optional[str] = None


class LedgerPage(LedgerModel, Generic[T]):
    """A page of gateway results."""

    data: list[T] = Field(default_factory=list)
    page: PageInfo = Field(default_factory=PageInfo)


class LedgerTransaction(LedgerModel):
    """A card transaction."""

    id: str = Field(..., min_length=1)
    amount: Decimal
    currency_code: str = "USD"
    merchant_name: Optional[str] = None
    state: Optional[str] = None
    user_transaction_time: Optional[datetime] = None
    card_id: Optional[str] = None
    card_holder: Optional[dict] = None
    sk_category_name: Optional[str] = None
    memo: Optional[str] = None


class LedgerBill(LedgerModel):
    """A vendor bill."""

    id: str = Field(..., min_length=1)
    amount: Decimal
    currency_code: str = "USD"
    status: Optional[str] = None
    vendor_id: Optional[str] = None
    due_at: Optional[datetime] = None
    issued_at: Optional[datetime] = None
    invoice_number: Optional[str] = None


class LedgerReimbursement(LedgerModel):
    """An employee reimbursement."""

    id: str = Field(..., min_length=1)
    amount: Decimal
    currency: str = "USD"
    state: Optional[str] = None
    user_id: Optional[str] = None
    merchant: Optional[str] = None
    created_at: Optional[datetime] = None
    transaction_date: Optional[datetime] = None


class LedgerBusiness(LedgerModel):
    """The business behind an API client."""

    id: str
    business_name_legal: Optional[str] = None
    business_name_on_card: Optional[str] = None


class LedgerUser(LedgerModel):
    """A user of the ledger business."""

    id: str
    email: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    role: Optional[str] = None
    status: Optional[str] = None


class LedgerCard(LedgerModel):
    """A card issued by the ledger business."""

    id: str
    display_name: Optional[str] = None
    last_four: Optional[str] = None
    cardholder_id: Optional[str] = None
    state: Optional[str] = None


class CreateLedgerUser(BaseModel):
    """Invite a user to the ledger business."""

    email: str
    first_name: str
    last_name: str
    role: str = "BUSINESS_USER"
    department_id: Optional[str] = None
    location_id: Optional[str] = None


class CreateLedgerCard(BaseModel):
    """Issue a virtual card."""

    user_id: str
    display_name: str
    spending_restrictions: Optional[dict] = None
    spend_program_id: Optional[str] = None
