"""API endpoints for the ledger gateway mirror."""

from typing import Optional

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from billflow import schemas
from billflow.api import deps
from billflow.api.router import TrailingSlashRouter
from billflow.platform.sync.ledger_sync import LedgerSyncService

router = TrailingSlashRouter()


@router.post(
    "/{business_id}/sync/transactions", response_model=schemas.ApiResponse[schemas.SyncResult]
)
async def sync_transactions(
    business_id: str,
    options: Optional[schemas.TransactionSyncOptions] = None,
    db: AsyncSession = Depends(deps.get_db),
    service: LedgerSyncService = Depends(deps.get_ledger_sync_service),
) -> schemas.ApiResponse[schemas.SyncResult]:
    """Pull card transactions of a business."""
    result = await service.sync_transactions(db, business_id, options)
    return schemas.ApiResponse(success=result.success, data=result)


@router.post("/{business_id}/sync/bills", response_model=schemas.ApiResponse[schemas.SyncResult])
async def sync_bills(
    business_id: str,
    db: AsyncSession = Depends(deps.get_db),
    service: LedgerSyncService = Depends(deps.get_ledger_sync_service),
) -> schemas.ApiResponse[schemas.SyncResult]:
    """Pull vendor bills of a business."""
    result = await service.sync_bills(db, business_id)
    return schemas.ApiResponse(success=result.success, data=result)


@router.post(
    "/{business_id}/sync/reimbursements",
    response_model=schemas.ApiResponse[schemas.SyncResult],
)
async def sync_reimbursements(
    business_id: str,
    db: AsyncSession = Depends(deps.get_db),
    service: LedgerSyncService = Depends(deps.get_ledger_sync_service),
) -> schemas.ApiResponse[schemas.SyncResult]:
    """Pull employee reimbursements of a business."""
    result = await service.sync_reimbursements(db, business_id)
    return schemas.ApiResponse(success=result.success, data=result)


@router.post("/{business_id}/sync", response_model=schemas.ApiResponse[schemas.FullSyncResult])
async def full_sync(
    business_id: str,
    db: AsyncSession = Depends(deps.get_db),
    service: LedgerSyncService = Depends(deps.get_ledger_sync_service),
) -> schemas.ApiResponse[schemas.FullSyncResult]:
    """Pull transactions, bills and reimbursements in turn."""
    result = await service.full_sync(db, business_id)
    return schemas.ApiResponse(success=result.success, data=result)


@router.post(
    "/{business_id}/sync/incremental",
    response_model=schemas.ApiResponse[schemas.FullSyncResult],
)
async def incremental_sync(
    business_id: str,
    sync_in: schemas.IncrementalSyncRequest,
    db: AsyncSession = Depends(deps.get_db),
    service: LedgerSyncService = Depends(deps.get_ledger_sync_service),
) -> schemas.ApiResponse[schemas.FullSyncResult]:
    """Pull everything that changed since ``since``."""
    result = await service.incremental_sync(db, business_id, sync_in.since)
    return schemas.ApiResponse(success=result.success, data=result)


@router.get("/{business_id}/status", response_model=schemas.ApiResponse[schemas.SyncStatus])
async def get_sync_status(
    business_id: str,
    db: AsyncSession = Depends(deps.get_db),
    service: LedgerSyncService = Depends(deps.get_ledger_sync_service),
) -> schemas.ApiResponse[schemas.SyncStatus]:
    """Mirror counts and whether a sync is running."""
    return schemas.ApiResponse(data=await service.get_sync_status(db, business_id))


@router.get(
    "/{business_id}/integrity", response_model=schemas.ApiResponse[schemas.IntegrityReport]
)
async def validate_integrity(
    business_id: str,
    service: LedgerSyncService = Depends(deps.get_ledger_sync_service),
) -> schemas.ApiResponse[schemas.IntegrityReport]:
    """Check the latest gateway transactions for missing fields."""
    report = await service.validate_transaction_integrity(business_id)
    return schemas.ApiResponse(data=report)
