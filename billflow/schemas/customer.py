"""Customer schemas."""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field

from billflow.schemas.common import metadata_field


class CustomerStatus(str, Enum):
    """Lifecycle status of a customer."""

    ACTIVE = "active"
    INACTIVE = "inactive"
    SUSPENDED = "suspended"
    PENDING = "pending"


class CustomerBase(BaseModel):
    """Base customer schema."""

    name: str = Field(..., description="Display name")
    email: str = Field(..., description="Billing contact email")
    stripe_customer_id: Optional[str] = Field(None, description="Payment gateway customer id")
    ramp_business_id: Optional[str] = Field(None, description="Ledger gateway business id")


class CustomerCreate(CustomerBase):
    """Schema for creating a customer."""

    status: CustomerStatus = CustomerStatus.ACTIVE
    metadata: dict = metadata_field()


class CustomerUpdate(BaseModel):
    """Schema for updating a customer."""

    name: Optional[str] = None
    email: Optional[str] = None
    status: Optional[CustomerStatus] = None
    stripe_customer_id: Optional[str] = None
    ramp_business_id: Optional[str] = None
    metadata: Optional[dict] = None


class CustomerInDBBase(CustomerBase):
    """Base schema for customer in database."""

    model_config = {"from_attributes": True}

    id: UUID
    status: CustomerStatus
    metadata: dict = metadata_field()
    created_at: datetime
    modified_at: datetime


class Customer(CustomerInDBBase):
    """Complete customer representation."""

    pass


class CreditGrant(BaseModel):
    """Request to add credit to a customer's balance."""

    amount: Decimal = Field(..., gt=0, description="Credit amount in major units")
    currency: Optional[str] = Field(None, description="Defaults to the configured currency")
    reason: str = Field("manual_grant", description="Why the credit was granted")


class CreditBalance(BaseModel):
    """Available credit of a customer in one currency."""

    customer_id: UUID
    currency: str
    available: Decimal
