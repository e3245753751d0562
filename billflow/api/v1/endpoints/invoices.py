"""API endpoints for invoices."""

from datetime import datetime
from typing import Optional
from uuid import UUID

from fastapi import Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from billflow import schemas
from billflow.api import deps
from billflow.api.router import TrailingSlashRouter
from billflow.platform.billing.billing_service import BillingService
from billflow.platform.billing.invoice_service import InvoiceService

router = TrailingSlashRouter()


@router.post("", response_model=schemas.ApiResponse[schemas.Invoice], status_code=201)
async def create_invoice(
    invoice_in: schemas.InvoiceCreate,
    db: AsyncSession = Depends(deps.get_db),
    service: InvoiceService = Depends(deps.get_invoice_service),
) -> schemas.ApiResponse[schemas.Invoice]:
    """Create a draft invoice, finalized right away when ``auto_finalize`` is set."""
    return schemas.ApiResponse(data=await service.create(db, invoice_in))


@router.get("", response_model=schemas.PaginatedResponse[schemas.Invoice])
async def list_invoices(
    status: Optional[schemas.InvoiceStatus] = Query(None),
    customer_id: Optional[UUID] = Query(None),
    subscription_id: Optional[UUID] = Query(None),
    pagination: schemas.PaginationParams = Depends(deps.get_pagination),
    db: AsyncSession = Depends(deps.get_db),
    service: InvoiceService = Depends(deps.get_invoice_service),
) -> schemas.PaginatedResponse[schemas.Invoice]:
    """List invoices, newest first."""
    page = await service.list_invoices(db, pagination, status, customer_id, subscription_id)
    return schemas.PaginatedResponse(data=page.items, pagination=page.pagination)


@router.get("/overdue", response_model=schemas.PaginatedResponse[schemas.Invoice])
async def list_overdue_invoices(
    pagination: schemas.PaginationParams = Depends(deps.get_pagination),
    db: AsyncSession = Depends(deps.get_db),
    service: InvoiceService = Depends(deps.get_invoice_service),
) -> schemas.PaginatedResponse[schemas.Invoice]:
    """Open invoices past their due date."""
    page = await service.list_overdue(db, pagination)
    return schemas.PaginatedResponse(data=page.items, pagination=page.pagination)


@router.get("/by-date", response_model=schemas.PaginatedResponse[schemas.Invoice])
async def list_invoices_by_date(
    start: datetime = Query(...),
    end: datetime = Query(...),
    pagination: schemas.PaginationParams = Depends(deps.get_pagination),
    db: AsyncSession = Depends(deps.get_db),
    service: InvoiceService = Depends(deps.get_invoice_service),
) -> schemas.PaginatedResponse[schemas.Invoice]:
    """Invoices created in ``[start, end)``."""
    page = await service.list_by_date_range(
        db, schemas.DateRange(start=start, end=end), pagination
    )
    return schemas.PaginatedResponse(data=page.items, pagination=page.pagination)


@router.post("/process-overdue", response_model=schemas.ApiResponse[schemas.BatchResult])
async def process_overdue_invoices(
    db: AsyncSession = Depends(deps.get_db),
    service: InvoiceService = Depends(deps.get_invoice_service),
) -> schemas.ApiResponse[schemas.BatchResult]:
    """Move every open invoice past its due date to past due."""
    return schemas.ApiResponse(data=await service.process_overdue_invoices(db))


@router.get("/number/{number}", response_model=schemas.ApiResponse[schemas.Invoice])
async def get_invoice_by_number(
    number: str,
    db: AsyncSession = Depends(deps.get_db),
    service: InvoiceService = Depends(deps.get_invoice_service),
) -> schemas.ApiResponse[schemas.Invoice]:
    """Get an invoice by its number."""
    return schemas.ApiResponse(data=await service.get_by_number(db, number))


@router.get("/{invoice_id}", response_model=schemas.ApiResponse[schemas.Invoice])
async def get_invoice(
    invoice_id: UUID,
    db: AsyncSession = Depends(deps.get_db),
    service: InvoiceService = Depends(deps.get_invoice_service),
) -> schemas.ApiResponse[schemas.Invoice]:
    """Get an invoice."""
    return schemas.ApiResponse(data=await service.get(db, invoice_id))


@router.patch("/{invoice_id}", response_model=schemas.ApiResponse[schemas.Invoice])
async def update_invoice(
    invoice_id: UUID,
    invoice_in: schemas.InvoiceUpdate,
    db: AsyncSession = Depends(deps.get_db),
    service: InvoiceService = Depends(deps.get_invoice_service),
) -> schemas.ApiResponse[schemas.Invoice]:
    """Update the due date or metadata of a draft."""
    return schemas.ApiResponse(data=await service.update(db, invoice_id, invoice_in))


@router.post("/{invoice_id}/line-items", response_model=schemas.ApiResponse[schemas.Invoice])
async def add_line_item(
    invoice_id: UUID,
    item_in: schemas.InvoiceLineItemCreate,
    db: AsyncSession = Depends(deps.get_db),
    service: InvoiceService = Depends(deps.get_invoice_service),
) -> schemas.ApiResponse[schemas.Invoice]:
    """Add a line item to a draft."""
    return schemas.ApiResponse(data=await service.add_line_item(db, invoice_id, item_in))


@router.delete(
    "/{invoice_id}/line-items/{line_item_id}",
    response_model=schemas.ApiResponse[schemas.Invoice],
)
async def remove_line_item(
    invoice_id: UUID,
    line_item_id: UUID,
    db: AsyncSession = Depends(deps.get_db),
    service: InvoiceService = Depends(deps.get_invoice_service),
) -> schemas.ApiResponse[schemas.Invoice]:
    """Remove a line item from a draft."""
    invoice = await service.remove_line_item(db, invoice_id, line_item_id)
    return schemas.ApiResponse(data=invoice)


@router.post("/{invoice_id}/duplicate", response_model=schemas.ApiResponse[schemas.Invoice])
async def duplicate_invoice(
    invoice_id: UUID,
    db: AsyncSession = Depends(deps.get_db),
    service: InvoiceService = Depends(deps.get_invoice_service),
) -> schemas.ApiResponse[schemas.Invoice]:
    """Copy an invoice's line items into a new draft."""
    return schemas.ApiResponse(data=await service.duplicate(db, invoice_id))


@router.post("/{invoice_id}/finalize", response_model=schemas.ApiResponse[schemas.Invoice])
async def finalize_invoice(
    invoice_id: UUID,
    db: AsyncSession = Depends(deps.get_db),
    service: InvoiceService = Depends(deps.get_invoice_service),
) -> schemas.ApiResponse[schemas.Invoice]:
    """Open a draft for payment."""
    return schemas.ApiResponse(data=await service.finalize(db, invoice_id))


@router.post("/{invoice_id}/pay", response_model=schemas.ApiResponse[schemas.Invoice])
async def pay_invoice(
    invoice_id: UUID,
    pay_in: schemas.PayInvoiceRequest,
    db: AsyncSession = Depends(deps.get_db),
    service: InvoiceService = Depends(deps.get_invoice_service),
) -> schemas.ApiResponse[schemas.Invoice]:
    """Collect an invoice in full."""
    invoice = await service.pay(db, invoice_id, pay_in.payment_method_id)
    return schemas.ApiResponse(data=invoice)


@router.post("/{invoice_id}/void", response_model=schemas.ApiResponse[schemas.Invoice])
async def void_invoice(
    invoice_id: UUID,
    db: AsyncSession = Depends(deps.get_db),
    service: InvoiceService = Depends(deps.get_invoice_service),
) -> schemas.ApiResponse[schemas.Invoice]:
    """Void an unpaid invoice."""
    return schemas.ApiResponse(data=await service.void(db, invoice_id))


@router.post(
    "/{invoice_id}/mark-uncollectible", response_model=schemas.ApiResponse[schemas.Invoice]
)
async def mark_uncollectible(
    invoice_id: UUID,
    db: AsyncSession = Depends(deps.get_db),
    service: InvoiceService = Depends(deps.get_invoice_service),
) -> schemas.ApiResponse[schemas.Invoice]:
    """Write an open or past due invoice off."""
    return schemas.ApiResponse(data=await service.mark_uncollectible(db, invoice_id))


@router.post(
    "/{invoice_id}/retry-payment", response_model=schemas.ApiResponse[schemas.Payment]
)
async def retry_invoice_payment(
    invoice_id: UUID,
    retry_in: schemas.RetryInvoicePaymentRequest,
    db: AsyncSession = Depends(deps.get_db),
    billing_service: BillingService = Depends(deps.get_billing_service),
) -> schemas.ApiResponse[schemas.Payment]:
    """Attempt collection of an unpaid invoice again."""
    payment = await billing_service.retry_failed_payment(
        db, invoice_id, retry_in.payment_method_id
    )
    return schemas.ApiResponse(data=payment)
