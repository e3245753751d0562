"""Plan schemas."""

from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from billflow.core.periods import BillingInterval
from billflow.schemas.common import metadata_field


class PlanBase(BaseModel):
    """Base plan schema."""

    name: str = Field(..., description="Plan name")
    amount: Decimal = Field(..., ge=0, description="Price per interval in major units")
    currency: str = Field(..., min_length=3, max_length=3, description="ISO currency code")
    interval: BillingInterval = Field(..., description="Billing interval unit")
    interval_count: int = Field(1, ge=1, description="Number of units per period")
    trial_days: Optional[int] = Field(None, ge=0, description="Default trial length")
    usage_unit_amount: Decimal = Field(
        Decimal("0"), ge=0, description="Price per metered usage unit"
    )
    stripe_price_id: Optional[str] = Field(None, description="Payment gateway price id")

    @field_validator("currency", mode="before")
    def upper_currency(cls, v: str) -> str:
        """Currencies are kept as upper-case ISO codes."""
        return str(v).upper()


class PlanCreate(PlanBase):
    """Schema for creating a plan."""

    active: bool = True
    metadata: dict = metadata_field()


class PlanUpdate(BaseModel):
    """Schema for updating a plan. Pricing is immutable once referenced."""

    name: Optional[str] = None
    active: Optional[bool] = None
    metadata: Optional[dict] = None


class PlanInDBBase(PlanBase):
    """Base schema for plan in database."""

    model_config = {"from_attributes": True}

    id: UUID
    active: bool
    metadata: dict = metadata_field()
    created_at: datetime
    modified_at: datetime


class Plan(PlanInDBBase):
    """Complete plan representation."""

    pass
