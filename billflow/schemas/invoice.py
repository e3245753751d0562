"""Invoice schemas."""

import uuid
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field

from billflow.schemas.common import metadata_field


class InvoiceStatus(str, Enum):
    """Status of an invoice."""

    DRAFT = "draft"  # Mutable, line items can change
    OPEN = "open"  # Finalized and awaiting payment
    PAID = "paid"
    VOID = "void"
    UNCOLLECTIBLE = "uncollectible"
    PAST_DUE = "past_due"  # Open and past its due date


class LineItemKind(str, Enum):
    """Origin of a line item."""

    SUBSCRIPTION = "subscription"
    USAGE = "usage"
    ONE_TIME = "one_time"


class InvoiceLineItemCreate(BaseModel):
    """Schema for adding a line item."""

    description: str
    quantity: Decimal = Field(Decimal("1"), ge=0)
    unit_price: Decimal = Field(..., description="Price per unit in major units")
    tax_rate: Optional[Decimal] = Field(None, ge=0, le=100, description="Percent")
    kind: LineItemKind = LineItemKind.ONE_TIME
    period_start: Optional[datetime] = None
    period_end: Optional[datetime] = None
    metadata: dict = Field(default_factory=dict)


class InvoiceLineItem(InvoiceLineItemCreate):
    """Line item as stored on the invoice."""

    id: UUID = Field(default_factory=uuid.uuid4)
    amount: Decimal
    tax_amount: Decimal = Decimal("0")


class InvoiceCreate(BaseModel):
    """Schema for creating a draft invoice."""

    customer_id: UUID
    subscription_id: Optional[UUID] = None
    currency: Optional[str] = Field(None, description="Defaults to the configured currency")
    due_date: Optional[datetime] = None
    days_until_due: Optional[int] = Field(None, ge=0)
    line_items: list[InvoiceLineItemCreate] = Field(default_factory=list)
    auto_finalize: bool = False
    metadata: dict = metadata_field()


class InvoiceUpdate(BaseModel):
    """Schema for updating an invoice."""

    due_date: Optional[datetime] = None
    metadata: Optional[dict] = None


class InvoiceInDBBase(BaseModel):
    """Base schema for invoice in database."""

    model_config = {"from_attributes": True}

    id: UUID
    customer_id: UUID
    subscription_id: Optional[UUID] = None
    number: str
    status: InvoiceStatus
    currency: str
    subtotal: Decimal
    tax: Decimal
    total: Decimal
    amount_paid: Decimal
    amount_due: Decimal
    line_items: list[InvoiceLineItem] = Field(default_factory=list)
    due_date: Optional[datetime] = None
    period_start: Optional[datetime] = None
    period_end: Optional[datetime] = None
    finalized_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None
    voided_at: Optional[datetime] = None
    stripe_invoice_id: Optional[str] = None
    metadata: dict = metadata_field()
    created_at: datetime
    modified_at: datetime


class Invoice(InvoiceInDBBase):
    """Complete invoice representation."""

    pass


class PayInvoiceRequest(BaseModel):
    """Request body for paying an invoice."""

    payment_method_id: Optional[str] = None
