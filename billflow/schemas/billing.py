"""Billing analytics and proration schemas."""

from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field, model_validator

from billflow.schemas.customer import Customer
from billflow.schemas.plan import Plan


class ProrationResult(BaseModel):
    """Mid-cycle adjustment for a plan or quantity change, rounded to cents."""

    credit: Decimal = Field(..., description="Unused portion of the current period")
    charge: Decimal = Field(..., description="Remaining portion priced at the new plan")
    net_amount: Decimal = Field(..., description="charge - credit")


class DateRange(BaseModel):
    """Half-open time window [start, end)."""

    start: datetime
    end: datetime

    @model_validator(mode="after")
    def check_order(self) -> "DateRange":
        """Reject inverted windows."""
        if self.end < self.start:
            raise ValueError("end must not be before start")
        return self


class BillingOverview(BaseModel):
    """Headline revenue figures for one currency."""

    currency: str
    total_revenue: Decimal
    total_outstanding: Decimal
    active_subscriptions: int
    mrr: Decimal
    arr: Decimal
    churn_rate: Decimal = Field(..., description="Percent of subscriptions lost in the window")
    average_revenue_per_customer: Decimal


class RevenueBreakdown(BaseModel):
    """Revenue buckets over a window. Refunds are negative and subtracted from total."""

    currency: str
    start: datetime
    end: datetime
    subscriptions: Decimal
    one_time: Decimal
    usage: Decimal
    refunds: Decimal
    total: Decimal


class CustomerRevenue(BaseModel):
    """Revenue attributed to one customer."""

    customer: Customer
    revenue: Decimal


class PlanRevenue(BaseModel):
    """Recurring revenue attributed to one plan."""

    plan: Plan
    revenue: Decimal
    customer_count: int


class BillingMetrics(BaseModel):
    """Combined analytics payload."""

    overview: BillingOverview
    revenue_breakdown: RevenueBreakdown
    top_customers: list[CustomerRevenue]
    revenue_by_plan: list[PlanRevenue]


class ReportSummary(BaseModel):
    """Counts for a billing report."""

    total_invoices: int
    total_payments: int
    total_refunds: int
    new_subscriptions: int
    canceled_subscriptions: int


class ReportInvoiceRow(BaseModel):
    """Invoice row of a billing report."""

    id: UUID
    number: str
    customer_id: UUID
    amount: Decimal
    status: str
    created_at: datetime


class ReportPaymentRow(BaseModel):
    """Payment row of a billing report."""

    id: UUID
    customer_id: UUID
    amount: Decimal
    status: str
    created_at: datetime


class ReportRefundRow(BaseModel):
    """Refund row of a billing report."""

    id: UUID
    payment_id: UUID
    amount: Decimal
    reason: Optional[str] = None
    created_at: datetime


class BillingReport(BaseModel):
    """Billing activity within a window."""

    period: DateRange
    generated_at: datetime
    summary: ReportSummary
    invoices: list[ReportInvoiceRow]
    payments: list[ReportPaymentRow]
    refunds: list[ReportRefundRow]


class RetryInvoicePaymentRequest(BaseModel):
    """Request body for retrying payment of an invoice."""

    payment_method_id: Optional[str] = None
