"""API endpoints for plans."""

from typing import Optional
from uuid import UUID

from fastapi import Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from billflow import crud, schemas
from billflow.api import deps
from billflow.api.router import TrailingSlashRouter
from billflow.core.exceptions import NotFoundException

router = TrailingSlashRouter()


async def _get_plan(db: AsyncSession, plan_id: UUID):
    plan = await crud.plan.get(db, plan_id)
    if not plan:
        raise NotFoundException(f"Plan {plan_id} not found")
    return plan


@router.post("", response_model=schemas.ApiResponse[schemas.Plan], status_code=201)
async def create_plan(
    plan_in: schemas.PlanCreate,
    db: AsyncSession = Depends(deps.get_db),
) -> schemas.ApiResponse[schemas.Plan]:
    """Create a plan."""
    values = plan_in.model_dump()
    values["interval"] = plan_in.interval.value
    plan = await crud.plan.create(db, obj_in=values)
    return schemas.ApiResponse(data=schemas.Plan.model_validate(plan))


@router.get("", response_model=schemas.PaginatedResponse[schemas.Plan])
async def list_plans(
    active: Optional[bool] = Query(None, description="Only active or only retired plans"),
    pagination: schemas.PaginationParams = Depends(deps.get_pagination),
    db: AsyncSession = Depends(deps.get_db),
) -> schemas.PaginatedResponse[schemas.Plan]:
    """List plans, newest first."""
    filters = crud.plan.build_filters(active=active)
    plans = await crud.plan.get_multi(
        db, skip=pagination.skip, limit=pagination.limit, filters=filters
    )
    total = await crud.plan.count(db, filters=filters)
    return schemas.PaginatedResponse(
        data=[schemas.Plan.model_validate(plan) for plan in plans],
        pagination=schemas.Pagination.build(pagination, total),
    )


@router.get("/{plan_id}", response_model=schemas.ApiResponse[schemas.Plan])
async def get_plan(
    plan_id: UUID,
    db: AsyncSession = Depends(deps.get_db),
) -> schemas.ApiResponse[schemas.Plan]:
    """Get a plan."""
    plan = await _get_plan(db, plan_id)
    return schemas.ApiResponse(data=schemas.Plan.model_validate(plan))


@router.patch("/{plan_id}", response_model=schemas.ApiResponse[schemas.Plan])
async def update_plan(
    plan_id: UUID,
    plan_in: schemas.PlanUpdate,
    db: AsyncSession = Depends(deps.get_db),
) -> schemas.ApiResponse[schemas.Plan]:
    """Rename a plan, toggle it or replace its metadata. Pricing never changes."""
    plan = await _get_plan(db, plan_id)
    plan = await crud.plan.update(db, db_obj=plan, obj_in=plan_in)
    return schemas.ApiResponse(data=schemas.Plan.model_validate(plan))


@router.post("/{plan_id}/deactivate", response_model=schemas.ApiResponse[schemas.Plan])
async def deactivate_plan(
    plan_id: UUID,
    db: AsyncSession = Depends(deps.get_db),
) -> schemas.ApiResponse[schemas.Plan]:
    """Retire a plan. Existing subscriptions keep it; new ones cannot use it."""
    plan = await _get_plan(db, plan_id)
    plan = await crud.plan.update(db, db_obj=plan, obj_in={"active": False})
    return schemas.ApiResponse(data=schemas.Plan.model_validate(plan))
