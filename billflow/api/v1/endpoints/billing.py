"""API endpoints for billing analytics and reports.

This module provides the HTTP interface for billing reads,
delegating all computation to the billing service.
"""

from datetime import datetime
from typing import Literal, Optional

from fastapi import Depends, Query
from fastapi.responses import PlainTextResponse
from sqlalchemy.ext.asyncio import AsyncSession

from billflow import schemas
from billflow.api import deps
from billflow.api.router import TrailingSlashRouter
from billflow.core.exceptions import InvalidInputError
from billflow.platform.billing.billing_service import BillingService

router = TrailingSlashRouter()


def _check_range(start: datetime, end: datetime) -> None:
    if end <= start:
        raise InvalidInputError("end must be after start")


@router.get("/overview", response_model=schemas.ApiResponse[schemas.BillingOverview])
async def get_overview(
    currency: Optional[str] = Query(None, min_length=3, max_length=3),
    db: AsyncSession = Depends(deps.get_db),
    service: BillingService = Depends(deps.get_billing_service),
) -> schemas.ApiResponse[schemas.BillingOverview]:
    """Revenue, outstanding balance, MRR, ARR and churn."""
    return schemas.ApiResponse(data=await service.get_billing_overview(db, currency))


@router.get("/revenue", response_model=schemas.ApiResponse[schemas.RevenueBreakdown])
async def get_revenue_breakdown(
    start: datetime = Query(...),
    end: datetime = Query(...),
    currency: Optional[str] = Query(None, min_length=3, max_length=3),
    db: AsyncSession = Depends(deps.get_db),
    service: BillingService = Depends(deps.get_billing_service),
) -> schemas.ApiResponse[schemas.RevenueBreakdown]:
    """Revenue split by subscription, one-time, usage and refunds."""
    _check_range(start, end)
    breakdown = await service.get_revenue_breakdown(db, start, end, currency)
    return schemas.ApiResponse(data=breakdown)


@router.get("/metrics", response_model=schemas.ApiResponse[schemas.BillingMetrics])
async def get_metrics(
    start: datetime = Query(...),
    end: datetime = Query(...),
    currency: Optional[str] = Query(None, min_length=3, max_length=3),
    db: AsyncSession = Depends(deps.get_db),
    service: BillingService = Depends(deps.get_billing_service),
) -> schemas.ApiResponse[schemas.BillingMetrics]:
    """Overview, breakdown, top customers and revenue by plan."""
    _check_range(start, end)
    return schemas.ApiResponse(data=await service.get_billing_metrics(db, start, end, currency))


@router.get("/report", response_model=schemas.ApiResponse[schemas.BillingReport])
async def get_report(
    start: datetime = Query(...),
    end: datetime = Query(...),
    format: Literal["json", "csv"] = Query("json"),
    db: AsyncSession = Depends(deps.get_db),
    service: BillingService = Depends(deps.get_billing_service),
):
    """Invoices, payments and refunds of a period, as JSON or CSV."""
    _check_range(start, end)
    report = await service.generate_billing_report(db, start, end, format=format)
    if format == "csv":
        return PlainTextResponse(
            report,
            media_type="text/csv",
            headers={"Content-Disposition": "attachment; filename=billing-report.csv"},
        )
    return schemas.ApiResponse(data=report)
