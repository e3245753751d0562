"""Usage record schemas."""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field


class UsageAction(str, Enum):
    """How a usage record combines with earlier records of the period."""

    INCREMENT = "increment"  # Add to the running total
    SET = "set"  # Replace the running total


class UsageRecordCreate(BaseModel):
    """Schema for recording usage."""

    quantity: int = Field(..., ge=0, description="Metered units")
    action: UsageAction = UsageAction.INCREMENT
    timestamp: Optional[datetime] = Field(None, description="Defaults to now")
    idempotency_key: Optional[str] = Field(
        None, description="Repeated keys return the original record instead of appending"
    )


class UsageRecord(BaseModel):
    """Recorded usage."""

    model_config = {"from_attributes": True}

    id: UUID
    subscription_id: UUID
    quantity: int
    action: UsageAction
    timestamp: datetime
    idempotency_key: Optional[str] = None
    created_at: datetime
