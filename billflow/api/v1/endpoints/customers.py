"""API endpoints for customers and their credit balance."""

from typing import Optional
from uuid import UUID

from fastapi import Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from billflow import crud, schemas
from billflow.api import deps
from billflow.api.router import TrailingSlashRouter
from billflow.core.exceptions import InvalidStateError, NotFoundException
from billflow.models.customer import Customer
from billflow.platform.billing.billing_service import BillingService
from billflow.platform.billing.payment_service import PaymentService

router = TrailingSlashRouter()


async def _get_customer(db: AsyncSession, customer_id: UUID):
    customer = await crud.customer.get(db, customer_id)
    if not customer:
        raise NotFoundException(f"Customer {customer_id} not found")
    return customer


@router.post("", response_model=schemas.ApiResponse[schemas.Customer], status_code=201)
async def create_customer(
    customer_in: schemas.CustomerCreate,
    db: AsyncSession = Depends(deps.get_db),
) -> schemas.ApiResponse[schemas.Customer]:
    """Create a customer.

    Raises:
        InvalidStateError: If a customer with the same email exists
    """
    if await crud.customer.get_by_email(db, customer_in.email):
        raise InvalidStateError(f"Customer with email {customer_in.email} already exists")

    customer = await crud.customer.create(db, obj_in=customer_in.model_dump(mode="json"))
    return schemas.ApiResponse(data=schemas.Customer.model_validate(customer))


@router.get("", response_model=schemas.PaginatedResponse[schemas.Customer])
async def list_customers(
    status: Optional[schemas.CustomerStatus] = Query(None),
    pagination: schemas.PaginationParams = Depends(deps.get_pagination),
    db: AsyncSession = Depends(deps.get_db),
) -> schemas.PaginatedResponse[schemas.Customer]:
    """List customers, newest first."""
    filters = [Customer.status == status.value] if status else []
    customers = await crud.customer.get_multi(
        db, skip=pagination.skip, limit=pagination.limit, filters=filters
    )
    total = await crud.customer.count(db, filters=filters)
    return schemas.PaginatedResponse(
        data=[schemas.Customer.model_validate(customer) for customer in customers],
        pagination=schemas.Pagination.build(pagination, total),
    )


@router.get("/{customer_id}", response_model=schemas.ApiResponse[schemas.Customer])
async def get_customer(
    customer_id: UUID,
    db: AsyncSession = Depends(deps.get_db),
) -> schemas.ApiResponse[schemas.Customer]:
    """Get a customer."""
    customer = await _get_customer(db, customer_id)
    return schemas.ApiResponse(data=schemas.Customer.model_validate(customer))


@router.patch("/{customer_id}", response_model=schemas.ApiResponse[schemas.Customer])
async def update_customer(
    customer_id: UUID,
    customer_in: schemas.CustomerUpdate,
    db: AsyncSession = Depends(deps.get_db),
) -> schemas.ApiResponse[schemas.Customer]:
    """Update a customer's contact details, status or gateway ids."""
    customer = await _get_customer(db, customer_id)
    customer = await crud.customer.update(
        db, db_obj=customer, obj_in=customer_in.model_dump(exclude_unset=True, mode="json")
    )
    return schemas.ApiResponse(data=schemas.Customer.model_validate(customer))


@router.get(
    "/{customer_id}/credits", response_model=schemas.ApiResponse[schemas.CreditBalance]
)
async def get_credit_balance(
    customer_id: UUID,
    currency: Optional[str] = Query(None, min_length=3, max_length=3),
    db: AsyncSession = Depends(deps.get_db),
    billing_service: BillingService = Depends(deps.get_billing_service),
) -> schemas.ApiResponse[schemas.CreditBalance]:
    """Available credit of a customer in one currency."""
    balance = await billing_service.get_credit_balance(db, customer_id, currency)
    return schemas.ApiResponse(data=balance)


@router.post(
    "/{customer_id}/credits", response_model=schemas.ApiResponse[schemas.CreditBalance]
)
async def add_credits(
    customer_id: UUID,
    grant: schemas.CreditGrant,
    db: AsyncSession = Depends(deps.get_db),
    billing_service: BillingService = Depends(deps.get_billing_service),
) -> schemas.ApiResponse[schemas.CreditBalance]:
    """Grant credit to a customer."""
    balance = await billing_service.add_credits(db, customer_id, grant)
    return schemas.ApiResponse(data=balance)


@router.post(
    "/{customer_id}/invoices/{invoice_id}/apply-credits",
    response_model=schemas.ApiResponse[schemas.Invoice],
)
async def apply_credits(
    customer_id: UUID,
    invoice_id: UUID,
    db: AsyncSession = Depends(deps.get_db),
    billing_service: BillingService = Depends(deps.get_billing_service),
) -> schemas.ApiResponse[schemas.Invoice]:
    """Apply available credit to one of the customer's invoices."""
    invoice = await billing_service.apply_credits(db, customer_id, invoice_id)
    return schemas.ApiResponse(data=invoice)


@router.get(
    "/{customer_id}/payment-summary",
    response_model=schemas.ApiResponse[schemas.PaymentSummary],
)
async def get_payment_summary(
    customer_id: UUID,
    db: AsyncSession = Depends(deps.get_db),
    payment_service: PaymentService = Depends(deps.get_payment_service),
) -> schemas.ApiResponse[schemas.PaymentSummary]:
    """Paid, refunded, pending and failed totals of a customer."""
    summary = await payment_service.get_summary(db, customer_id)
    return schemas.ApiResponse(data=summary)


@router.post(
    "/{customer_id}/sync-stripe", response_model=schemas.ApiResponse[schemas.BatchResult]
)
async def sync_with_stripe(
    customer_id: UUID,
    db: AsyncSession = Depends(deps.get_db),
    billing_service: BillingService = Depends(deps.get_billing_service),
) -> schemas.ApiResponse[schemas.BatchResult]:
    """Reconcile the customer's subscriptions with the payment gateway."""
    result = await billing_service.sync_billing_with_stripe(db, customer_id)
    return schemas.ApiResponse(data=result)
