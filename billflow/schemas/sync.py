"""Ledger sync run reports. Returned to callers and logged, never persisted."""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from billflow.core.datetime_utils import utc_now_naive


class LedgerResource(str, Enum):
    """Resource types synced from the ledger gateway."""

    TRANSACTION = "transaction"
    BILL = "bill"
    REIMBURSEMENT = "reimbursement"


class SyncError(BaseModel):
    """A non-fatal failure recorded during a sync run."""

    type: str = Field(..., description="Resource type the failure belongs to")
    id: str = Field(..., description="Item id, or business id for a page failure")
    message: str
    timestamp: datetime = Field(default_factory=utc_now_naive)


class TransactionSyncOptions(BaseModel):
    """Filters for a transaction sync."""

    from_date: Optional[datetime] = None
    to_date: Optional[datetime] = None
    state: Optional[str] = None
    include_pending: bool = True
    include_cleared: bool = True


class SyncResult(BaseModel):
    """Outcome of syncing one resource type."""

    resource: LedgerResource
    success: bool = True
    synced: int = 0
    failed: int = 0
    pages: int = 0
    cancelled: bool = False
    errors: list[SyncError] = Field(default_factory=list)
    started_at: datetime = Field(default_factory=utc_now_naive)
    finished_at: Optional[datetime] = None


class FullSyncResult(BaseModel):
    """Outcome of syncing every resource type of a business."""

    business_id: str
    success: bool
    transactions: Optional[SyncResult] = None
    bills: Optional[SyncResult] = None
    reimbursements: Optional[SyncResult] = None
    errors: list[SyncError] = Field(default_factory=list)
    started_at: datetime
    finished_at: datetime


class SyncStatus(BaseModel):
    """Current mirror state for a business."""

    business_id: str
    last_sync_at: Optional[datetime] = None
    total_transactions: int = 0
    total_bills: int = 0
    total_reimbursements: int = 0
    sync_in_progress: bool = False


class IntegrityDiscrepancy(BaseModel):
    """A problem found in gateway data."""

    transaction_id: str
    issue: str


class IntegrityReport(BaseModel):
    """Outcome of a transaction integrity check."""

    valid: bool
    discrepancies: list[IntegrityDiscrepancy] = Field(default_factory=list)


class IncrementalSyncRequest(BaseModel):
    """Request body for an incremental sync."""

    since: datetime
