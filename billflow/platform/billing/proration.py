"""Proration arithmetic for mid-period plan and quantity changes."""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from billflow.core.datetime_utils import utc_now_naive
from billflow.core.exceptions import InvalidInputError
from billflow.core.money import Number, round_money, to_decimal
from billflow.core.periods import days_between
from billflow.schemas.billing import ProrationResult


def calculate_proration(
    period_start: datetime,
    period_end: datetime,
    current_quantity: Number,
    new_plan_amount: Number,
    change_date: Optional[datetime] = None,
) -> ProrationResult:
    """Split the rest of a period between the old price and the new one.

    The unused share of ``current_quantity`` is credited and the same share of
    ``new_plan_amount`` is charged, measured in whole days from ``change_date`` to
    ``period_end``. Starting the change at ``period_start`` credits the full
    ``current_quantity``; at ``period_end`` nothing is credited.

    Args:
    ----
        period_start (datetime): Start of the current period (inclusive).
        period_end (datetime): End of the current period (exclusive).
        current_quantity (Number): The subscription's quantity before the change.
        new_plan_amount (Number): What a full period costs at the new price.
        change_date (datetime, optional): Moment of the change, defaults to now.
            Must lie within ``[period_start, period_end]``; callers clamp.

    Returns:
    -------
        ProrationResult: credit, charge and net amount rounded to cents.

    Raises:
    ------
        InvalidInputError: If ``change_date`` lies outside the period.

    """
    change_date = change_date or utc_now_naive()
    if not period_start <= change_date <= period_end:
        raise InvalidInputError(
            f"Change date {change_date.isoformat()} is outside the period "
            f"[{period_start.isoformat()}, {period_end.isoformat()}]"
        )

    current = to_decimal(current_quantity)
    new_amount = to_decimal(new_plan_amount)

    total_days = days_between(period_start, period_end)
    if total_days == 0:
        # Same-day period: nothing left to credit, the new price applies in full
        return ProrationResult(
            credit=Decimal("0.00"),
            charge=round_money(new_amount),
            net_amount=round_money(new_amount),
        )

    remaining_days = Decimal(days_between(change_date, period_end))
    credit = current / total_days * remaining_days
    charge = new_amount / total_days * remaining_days

    return ProrationResult(
        credit=round_money(credit),
        charge=round_money(charge),
        net_amount=round_money(charge - credit),
    )
