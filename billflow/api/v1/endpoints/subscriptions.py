"""API endpoints for the subscription lifecycle."""

from typing import Optional
from uuid import UUID

from fastapi import Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from billflow import schemas
from billflow.api import deps
from billflow.api.router import TrailingSlashRouter
from billflow.platform.billing.billing_service import BillingService
from billflow.platform.billing.subscription_service import SubscriptionService

router = TrailingSlashRouter()


@router.post("", response_model=schemas.ApiResponse[schemas.Subscription], status_code=201)
async def create_subscription(
    subscription_in: schemas.SubscriptionCreate,
    db: AsyncSession = Depends(deps.get_db),
    service: SubscriptionService = Depends(deps.get_subscription_service),
) -> schemas.ApiResponse[schemas.Subscription]:
    """Subscribe a customer to a plan."""
    return schemas.ApiResponse(data=await service.create(db, subscription_in))


@router.get("", response_model=schemas.PaginatedResponse[schemas.Subscription])
async def list_subscriptions(
    status: Optional[schemas.SubscriptionStatus] = Query(None),
    customer_id: Optional[UUID] = Query(None),
    pagination: schemas.PaginationParams = Depends(deps.get_pagination),
    db: AsyncSession = Depends(deps.get_db),
    service: SubscriptionService = Depends(deps.get_subscription_service),
) -> schemas.PaginatedResponse[schemas.Subscription]:
    """List subscriptions, newest first."""
    page = await service.list_subscriptions(db, pagination, status, customer_id)
    return schemas.PaginatedResponse(data=page.items, pagination=page.pagination)


@router.get("/ending-soon", response_model=schemas.ApiResponse[list[schemas.Subscription]])
async def list_ending_soon(
    days: int = Query(7, ge=1, le=365),
    pagination: schemas.PaginationParams = Depends(deps.get_pagination),
    db: AsyncSession = Depends(deps.get_db),
    service: SubscriptionService = Depends(deps.get_subscription_service),
) -> schemas.ApiResponse[list[schemas.Subscription]]:
    """Active subscriptions whose period ends within ``days``."""
    return schemas.ApiResponse(data=await service.list_ending_soon(db, days, pagination))


@router.get(
    "/trials-ending-soon", response_model=schemas.ApiResponse[list[schemas.Subscription]]
)
async def list_trials_ending_soon(
    days: int = Query(3, ge=1, le=365),
    pagination: schemas.PaginationParams = Depends(deps.get_pagination),
    db: AsyncSession = Depends(deps.get_db),
    service: SubscriptionService = Depends(deps.get_subscription_service),
) -> schemas.ApiResponse[list[schemas.Subscription]]:
    """Trialing subscriptions whose trial ends within ``days``."""
    return schemas.ApiResponse(data=await service.list_trials_ending_soon(db, days, pagination))


@router.post(
    "/process-expired-trials", response_model=schemas.ApiResponse[schemas.BatchResult]
)
async def process_expired_trials(
    db: AsyncSession = Depends(deps.get_db),
    service: SubscriptionService = Depends(deps.get_subscription_service),
) -> schemas.ApiResponse[schemas.BatchResult]:
    """Move every trial that has ended to active."""
    return schemas.ApiResponse(data=await service.process_expired_trials(db))


@router.get(
    "/{subscription_id}", response_model=schemas.ApiResponse[schemas.SubscriptionWithPlan]
)
async def get_subscription(
    subscription_id: UUID,
    db: AsyncSession = Depends(deps.get_db),
    service: SubscriptionService = Depends(deps.get_subscription_service),
) -> schemas.ApiResponse[schemas.SubscriptionWithPlan]:
    """Get a subscription together with its plan."""
    return schemas.ApiResponse(data=await service.get_with_plan(db, subscription_id))


@router.patch("/{subscription_id}", response_model=schemas.ApiResponse[schemas.Subscription])
async def update_subscription(
    subscription_id: UUID,
    subscription_in: schemas.SubscriptionUpdate,
    db: AsyncSession = Depends(deps.get_db),
    service: SubscriptionService = Depends(deps.get_subscription_service),
) -> schemas.ApiResponse[schemas.Subscription]:
    """Update plan, quantity, flags, trial end, pause collection or metadata."""
    return schemas.ApiResponse(data=await service.update(db, subscription_id, subscription_in))


@router.post(
    "/{subscription_id}/cancel", response_model=schemas.ApiResponse[schemas.Subscription]
)
async def cancel_subscription(
    subscription_id: UUID,
    cancel_in: schemas.CancelRequest,
    db: AsyncSession = Depends(deps.get_db),
    service: SubscriptionService = Depends(deps.get_subscription_service),
) -> schemas.ApiResponse[schemas.Subscription]:
    """Cancel now or at the end of the current period."""
    subscription = await service.cancel(db, subscription_id, immediate=cancel_in.immediate)
    return schemas.ApiResponse(data=subscription)


@router.post(
    "/{subscription_id}/resume", response_model=schemas.ApiResponse[schemas.Subscription]
)
async def resume_subscription(
    subscription_id: UUID,
    db: AsyncSession = Depends(deps.get_db),
    service: SubscriptionService = Depends(deps.get_subscription_service),
) -> schemas.ApiResponse[schemas.Subscription]:
    """Undo a pending cancellation at period end."""
    return schemas.ApiResponse(data=await service.resume(db, subscription_id))


@router.post(
    "/{subscription_id}/pause", response_model=schemas.ApiResponse[schemas.Subscription]
)
async def pause_subscription(
    subscription_id: UUID,
    pause_in: schemas.PauseCollection,
    db: AsyncSession = Depends(deps.get_db),
    service: SubscriptionService = Depends(deps.get_subscription_service),
) -> schemas.ApiResponse[schemas.Subscription]:
    """Pause payment collection."""
    subscription = await service.pause(
        db, subscription_id, behavior=pause_in.behavior, resumes_at=pause_in.resumes_at
    )
    return schemas.ApiResponse(data=subscription)


@router.post(
    "/{subscription_id}/unpause", response_model=schemas.ApiResponse[schemas.Subscription]
)
async def unpause_subscription(
    subscription_id: UUID,
    db: AsyncSession = Depends(deps.get_db),
    service: SubscriptionService = Depends(deps.get_subscription_service),
) -> schemas.ApiResponse[schemas.Subscription]:
    """Resume payment collection."""
    return schemas.ApiResponse(data=await service.unpause(db, subscription_id))


@router.post(
    "/{subscription_id}/change-plan", response_model=schemas.ApiResponse[schemas.Subscription]
)
async def change_plan(
    subscription_id: UUID,
    change_in: schemas.ChangePlanRequest,
    db: AsyncSession = Depends(deps.get_db),
    service: SubscriptionService = Depends(deps.get_subscription_service),
) -> schemas.ApiResponse[schemas.Subscription]:
    """Move the subscription to another plan."""
    subscription = await service.change_plan(
        db, subscription_id, change_in.plan_id, prorate=change_in.prorate
    )
    return schemas.ApiResponse(data=subscription)


@router.post(
    "/{subscription_id}/quantity", response_model=schemas.ApiResponse[schemas.Subscription]
)
async def update_quantity(
    subscription_id: UUID,
    quantity_in: schemas.UpdateQuantityRequest,
    db: AsyncSession = Depends(deps.get_db),
    service: SubscriptionService = Depends(deps.get_subscription_service),
) -> schemas.ApiResponse[schemas.Subscription]:
    """Change the number of seats or units."""
    subscription = await service.update_quantity(
        db, subscription_id, quantity_in.quantity, prorate=quantity_in.prorate
    )
    return schemas.ApiResponse(data=subscription)


@router.post(
    "/{subscription_id}/usage",
    response_model=schemas.ApiResponse[schemas.UsageRecord],
    status_code=201,
)
async def record_usage(
    subscription_id: UUID,
    usage_in: schemas.UsageRecordCreate,
    db: AsyncSession = Depends(deps.get_db),
    service: SubscriptionService = Depends(deps.get_subscription_service),
) -> schemas.ApiResponse[schemas.UsageRecord]:
    """Record metered usage for the current period."""
    return schemas.ApiResponse(data=await service.record_usage(db, subscription_id, usage_in))


@router.get(
    "/{subscription_id}/proration", response_model=schemas.ApiResponse[schemas.ProrationResult]
)
async def preview_proration(
    subscription_id: UUID,
    new_plan_id: UUID = Query(..., description="Plan to price the change against"),
    db: AsyncSession = Depends(deps.get_db),
    billing_service: BillingService = Depends(deps.get_billing_service),
) -> schemas.ApiResponse[schemas.ProrationResult]:
    """Preview the credit and charge of a plan change made now."""
    result = await billing_service.calculate_proration(db, subscription_id, new_plan_id)
    return schemas.ApiResponse(data=result)


@router.post(
    "/{subscription_id}/bill-period", response_model=schemas.ApiResponse[schemas.Invoice]
)
async def bill_period(
    subscription_id: UUID,
    db: AsyncSession = Depends(deps.get_db),
    billing_service: BillingService = Depends(deps.get_billing_service),
) -> schemas.ApiResponse[schemas.Invoice]:
    """Invoice the current period and advance the subscription.

    ``data`` is null when the subscription is not active.
    """
    invoice = await billing_service.process_end_of_period_billing(db, subscription_id)
    return schemas.ApiResponse(data=invoice)
