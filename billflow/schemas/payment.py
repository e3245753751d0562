"""Payment and refund schemas."""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field

from billflow.schemas.common import metadata_field


class PaymentStatus(str, Enum):
    """Status of a payment. Transitions only move forward, except failed to pending on retry."""

    PENDING = "pending"
    PROCESSING = "processing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELED = "canceled"
    REFUNDED = "refunded"
    PARTIALLY_REFUNDED = "partially_refunded"


class RefundReason(str, Enum):
    """Refund reasons understood by the payment gateway."""

    DUPLICATE = "duplicate"
    FRAUDULENT = "fraudulent"
    REQUESTED_BY_CUSTOMER = "requested_by_customer"


class PaymentCreate(BaseModel):
    """Schema for creating a payment."""

    customer_id: UUID
    invoice_id: Optional[UUID] = None
    amount: Decimal = Field(..., gt=0)
    currency: Optional[str] = None
    payment_method_id: Optional[str] = None
    confirm: bool = False
    capture_method: str = Field("automatic", pattern="^(automatic|manual)$")
    description: Optional[str] = None
    metadata: dict = metadata_field()


class PaymentInDBBase(BaseModel):
    """Base schema for payment in database."""

    model_config = {"from_attributes": True}

    id: UUID
    customer_id: UUID
    invoice_id: Optional[UUID] = None
    amount: Decimal
    currency: str
    status: PaymentStatus
    refunded_amount: Decimal = Decimal("0")
    payment_method: Optional[str] = None
    failure_code: Optional[str] = None
    failure_message: Optional[str] = None
    stripe_payment_intent_id: Optional[str] = None
    metadata: dict = metadata_field()
    created_at: datetime
    modified_at: datetime


class Payment(PaymentInDBBase):
    """Complete payment representation."""

    pass


class ConfirmPaymentRequest(BaseModel):
    """Request body for confirming or retrying a payment."""

    payment_method_id: Optional[str] = None


class CapturePaymentRequest(BaseModel):
    """Request body for capturing a payment."""

    amount_to_capture: Optional[Decimal] = Field(None, gt=0)


class RefundCreate(BaseModel):
    """Schema for refunding a payment."""

    payment_id: UUID
    amount: Optional[Decimal] = Field(None, description="Defaults to the refundable remainder")
    reason: Optional[RefundReason] = None
    metadata: dict = metadata_field()


class Refund(BaseModel):
    """Refund representation."""

    model_config = {"from_attributes": True}

    id: UUID
    payment_id: UUID
    customer_id: UUID
    amount: Decimal
    currency: str
    status: str
    reason: Optional[str] = None
    stripe_refund_id: Optional[str] = None
    metadata: dict = metadata_field()
    created_at: datetime


class PaymentSummary(BaseModel):
    """Per-customer payment totals."""

    total_paid: Decimal = Decimal("0")
    total_refunded: Decimal = Decimal("0")
    pending_amount: Decimal = Decimal("0")
    failed_amount: Decimal = Decimal("0")
    currency: str
