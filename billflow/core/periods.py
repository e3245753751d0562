"""Billing period arithmetic."""

from datetime import datetime, timedelta
from decimal import Decimal
from enum import Enum

from dateutil.relativedelta import relativedelta

from billflow.core.exceptions import InvalidInputError


class BillingInterval(str, Enum):
    """Recurrence unit of a plan."""

    DAY = "day"
    WEEK = "week"
    MONTH = "month"
    YEAR = "year"


_MONTHLY_FACTORS = {
    BillingInterval.DAY: Decimal(30),
    BillingInterval.WEEK: Decimal(4),
    BillingInterval.MONTH: Decimal(1),
    BillingInterval.YEAR: Decimal(1) / Decimal(12),
}


def add_interval(start: datetime, interval: BillingInterval | str, count: int = 1) -> datetime:
    """Advance ``start`` by ``count`` plan intervals.

    Month and year steps are calendar aware: Jan 31 + 1 month is Feb 28/29.
    """
    if count < 1:
        raise InvalidInputError(f"Interval count must be at least 1, got {count}")

    interval = BillingInterval(interval)
    if interval == BillingInterval.DAY:
        return start + relativedelta(days=count)
    if interval == BillingInterval.WEEK:
        return start + relativedelta(weeks=count)
    if interval == BillingInterval.MONTH:
        return start + relativedelta(months=count)
    return start + relativedelta(years=count)


def days_between(start: datetime, end: datetime) -> int:
    """Whole days from ``start`` to ``end``, truncated toward zero."""
    return int((end - start) / timedelta(days=1))


def clamp_to_period(moment: datetime, period_start: datetime, period_end: datetime) -> datetime:
    """Clamp ``moment`` into ``[period_start, period_end]``."""
    return min(max(moment, period_start), period_end)


def normalize_to_monthly(
    amount: Decimal, interval: BillingInterval | str, interval_count: int = 1
) -> Decimal:
    """Express a per-period amount as a monthly figure.

    day x30, week x4, month x1, year /12, divided by the interval count.
    """
    factor = _MONTHLY_FACTORS[BillingInterval(interval)]
    return Decimal(amount) * factor / Decimal(max(interval_count, 1))
