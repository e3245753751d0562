"""Subscription schemas."""

from datetime import datetime
from enum import Enum
from typing import Literal, Optional, Union
from uuid import UUID

from pydantic import BaseModel, Field

from billflow.schemas.common import metadata_field
from billflow.schemas.plan import Plan


class SubscriptionStatus(str, Enum):
    """States of the subscription state machine."""

    INCOMPLETE = "incomplete"
    TRIALING = "trialing"
    ACTIVE = "active"
    PAST_DUE = "past_due"
    UNPAID = "unpaid"
    PAUSED = "paused"
    CANCELED = "canceled"  # Terminal
    INCOMPLETE_EXPIRED = "incomplete_expired"


class PauseBehavior(str, Enum):
    """How the payment gateway treats invoices raised while paused."""

    KEEP_AS_DRAFT = "keep_as_draft"
    MARK_UNCOLLECTIBLE = "mark_uncollectible"
    VOID = "void"


class PauseCollection(BaseModel):
    """Pause request."""

    behavior: PauseBehavior = Field(..., description="Treatment of invoices while paused")
    resumes_at: Optional[datetime] = Field(None, description="When collection resumes")


class SubscriptionCreate(BaseModel):
    """Schema for creating a subscription."""

    customer_id: UUID = Field(..., description="Subscribing customer")
    plan_id: UUID = Field(..., description="Plan subscribed to")
    quantity: int = Field(1, ge=1, description="Number of seats/units")
    trial_days: Optional[int] = Field(None, ge=0, description="Overrides the plan's trial")
    payment_method_id: Optional[str] = Field(None, description="Default payment method")
    cancel_at_period_end: bool = False
    coupon_id: Optional[str] = Field(None, description="Gateway coupon to apply")
    metadata: dict = metadata_field()


class SubscriptionUpdate(BaseModel):
    """Schema for updating a subscription."""

    plan_id: Optional[UUID] = None
    quantity: Optional[int] = Field(None, ge=1)
    cancel_at_period_end: Optional[bool] = None
    trial_end: Optional[Union[Literal["now"], datetime]] = Field(
        None, description="New trial end, or 'now' to end the trial immediately"
    )
    pause_collection: Optional[PauseCollection] = None
    metadata: Optional[dict] = Field(None, description="Shallow merged into existing metadata")


class SubscriptionInDBBase(BaseModel):
    """Base schema for subscription in database."""

    model_config = {"from_attributes": True}

    id: UUID
    customer_id: UUID
    plan_id: UUID
    quantity: int
    currency: str
    status: SubscriptionStatus
    current_period_start: datetime = Field(..., description="Period start (inclusive)")
    current_period_end: datetime = Field(..., description="Period end (exclusive)")
    cancel_at_period_end: bool = False
    canceled_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    trial_start: Optional[datetime] = None
    trial_end: Optional[datetime] = None
    pause_behavior: Optional[PauseBehavior] = None
    stripe_subscription_id: Optional[str] = None
    metadata: dict = metadata_field()
    created_at: datetime
    modified_at: datetime


class Subscription(SubscriptionInDBBase):
    """Complete subscription representation."""

    pass


class SubscriptionWithPlan(BaseModel):
    """Subscription together with its plan."""

    subscription: Subscription
    plan: Plan


class CancelRequest(BaseModel):
    """Cancellation request."""

    immediate: bool = Field(False, description="Cancel now instead of at period end")


class ChangePlanRequest(BaseModel):
    """Plan change request."""

    plan_id: UUID
    prorate: bool = True


class UpdateQuantityRequest(BaseModel):
    """Quantity change request. Validated by the service so the error maps to 400."""

    quantity: int
    prorate: bool = True
