"""API endpoints for payments and refunds."""

from datetime import datetime
from typing import Optional
from uuid import UUID

from fastapi import Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from billflow import schemas
from billflow.api import deps
from billflow.api.router import TrailingSlashRouter
from billflow.platform.billing.payment_service import PaymentService

router = TrailingSlashRouter()


@router.post("", response_model=schemas.ApiResponse[schemas.Payment], status_code=201)
async def create_payment(
    payment_in: schemas.PaymentCreate,
    db: AsyncSession = Depends(deps.get_db),
    service: PaymentService = Depends(deps.get_payment_service),
) -> schemas.ApiResponse[schemas.Payment]:
    """Create a payment, optionally against an invoice."""
    return schemas.ApiResponse(data=await service.create(db, payment_in))


@router.get("", response_model=schemas.PaginatedResponse[schemas.Payment])
async def list_payments(
    status: Optional[schemas.PaymentStatus] = Query(None),
    customer_id: Optional[UUID] = Query(None),
    invoice_id: Optional[UUID] = Query(None),
    pagination: schemas.PaginationParams = Depends(deps.get_pagination),
    db: AsyncSession = Depends(deps.get_db),
    service: PaymentService = Depends(deps.get_payment_service),
) -> schemas.PaginatedResponse[schemas.Payment]:
    """List payments, newest first."""
    page = await service.list_payments(db, pagination, status, customer_id, invoice_id)
    return schemas.PaginatedResponse(data=page.items, pagination=page.pagination)


@router.get("/by-date", response_model=schemas.PaginatedResponse[schemas.Payment])
async def list_payments_by_date(
    start: datetime = Query(...),
    end: datetime = Query(...),
    pagination: schemas.PaginationParams = Depends(deps.get_pagination),
    db: AsyncSession = Depends(deps.get_db),
    service: PaymentService = Depends(deps.get_payment_service),
) -> schemas.PaginatedResponse[schemas.Payment]:
    """Payments created in ``[start, end)``."""
    page = await service.list_by_date_range(
        db, schemas.DateRange(start=start, end=end), pagination
    )
    return schemas.PaginatedResponse(data=page.items, pagination=page.pagination)


@router.post("/refunds", response_model=schemas.ApiResponse[schemas.Refund], status_code=201)
async def create_refund(
    refund_in: schemas.RefundCreate,
    db: AsyncSession = Depends(deps.get_db),
    service: PaymentService = Depends(deps.get_payment_service),
) -> schemas.ApiResponse[schemas.Refund]:
    """Refund all or part of a succeeded payment."""
    return schemas.ApiResponse(data=await service.refund(db, refund_in))


@router.get("/{payment_id}", response_model=schemas.ApiResponse[schemas.Payment])
async def get_payment(
    payment_id: UUID,
    db: AsyncSession = Depends(deps.get_db),
    service: PaymentService = Depends(deps.get_payment_service),
) -> schemas.ApiResponse[schemas.Payment]:
    """Get a payment."""
    return schemas.ApiResponse(data=await service.get(db, payment_id))


@router.get("/{payment_id}/refunds", response_model=schemas.ApiResponse[list[schemas.Refund]])
async def list_refunds(
    payment_id: UUID,
    db: AsyncSession = Depends(deps.get_db),
    service: PaymentService = Depends(deps.get_payment_service),
) -> schemas.ApiResponse[list[schemas.Refund]]:
    """Refunds issued against a payment."""
    return schemas.ApiResponse(data=await service.list_refunds(db, payment_id))


@router.post("/{payment_id}/confirm", response_model=schemas.ApiResponse[schemas.Payment])
async def confirm_payment(
    payment_id: UUID,
    confirm_in: schemas.ConfirmPaymentRequest,
    db: AsyncSession = Depends(deps.get_db),
    service: PaymentService = Depends(deps.get_payment_service),
) -> schemas.ApiResponse[schemas.Payment]:
    """Confirm a pending payment on the gateway."""
    payment = await service.confirm(db, payment_id, confirm_in.payment_method_id)
    return schemas.ApiResponse(data=payment)


@router.post("/{payment_id}/capture", response_model=schemas.ApiResponse[schemas.Payment])
async def capture_payment(
    payment_id: UUID,
    capture_in: schemas.CapturePaymentRequest,
    db: AsyncSession = Depends(deps.get_db),
    service: PaymentService = Depends(deps.get_payment_service),
) -> schemas.ApiResponse[schemas.Payment]:
    """Capture an authorized payment, in full or in part."""
    payment = await service.capture(db, payment_id, capture_in.amount_to_capture)
    return schemas.ApiResponse(data=payment)


@router.post("/{payment_id}/cancel", response_model=schemas.ApiResponse[schemas.Payment])
async def cancel_payment(
    payment_id: UUID,
    db: AsyncSession = Depends(deps.get_db),
    service: PaymentService = Depends(deps.get_payment_service),
) -> schemas.ApiResponse[schemas.Payment]:
    """Cancel a payment that has not settled."""
    return schemas.ApiResponse(data=await service.cancel(db, payment_id))


@router.post("/{payment_id}/retry", response_model=schemas.ApiResponse[schemas.Payment])
async def retry_payment(
    payment_id: UUID,
    retry_in: schemas.ConfirmPaymentRequest,
    db: AsyncSession = Depends(deps.get_db),
    service: PaymentService = Depends(deps.get_payment_service),
) -> schemas.ApiResponse[schemas.Payment]:
    """Retry a failed payment with a new payment intent."""
    payment = await service.retry(db, payment_id, retry_in.payment_method_id)
    return schemas.ApiResponse(data=payment)
