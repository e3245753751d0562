"""Pure invoice arithmetic.

Line item amounts, totals, invoice numbering and settlement rules, kept apart
from the database and the payment gateway.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Iterable, Optional

from billflow.core.exceptions import InvalidStateError
from billflow.core.money import round_money
from billflow.models import Invoice
from billflow.schemas.invoice import InvoiceLineItem, InvoiceLineItemCreate, InvoiceStatus
from billflow.schemas.usage import UsageAction

INVOICE_NUMBER_PREFIX = "INV"

# Statuses that no longer accept payments or edits
SETTLED_STATUSES = (InvoiceStatus.PAID.value, InvoiceStatus.VOID.value)


@dataclass
class InvoiceTotals:
    """Sums over an invoice's line items."""

    subtotal: Decimal
    tax: Decimal
    total: Decimal


def build_line_item(item: InvoiceLineItemCreate) -> InvoiceLineItem:
    """Price a line item: amount is quantity x unit price, tax is a percentage of it."""
    amount = round_money(item.quantity * item.unit_price)
    tax_amount = round_money(amount * item.tax_rate / 100) if item.tax_rate else Decimal("0.00")
    return InvoiceLineItem(**item.model_dump(), amount=amount, tax_amount=tax_amount)


def compute_totals(items: Iterable[InvoiceLineItem]) -> InvoiceTotals:
    """Subtotal, tax and total of a set of line items."""
    subtotal = Decimal("0")
    tax = Decimal("0")
    for item in items:
        subtotal += item.amount
        tax += item.tax_amount
    return InvoiceTotals(
        subtotal=round_money(subtotal), tax=round_money(tax), total=round_money(subtotal + tax)
    )


def dump_line_items(items: Iterable[InvoiceLineItem]) -> list[dict[str, Any]]:
    """Line items as JSON documents for the ``line_items`` column."""
    return [item.model_dump(mode="json") for item in items]


def load_line_items(raw: Optional[list[dict[str, Any]]]) -> list[InvoiceLineItem]:
    """Line items parsed back from the ``line_items`` column."""
    return [InvoiceLineItem.model_validate(item) for item in raw or []]


def totals_changes(items: list[InvoiceLineItem], amount_paid: Decimal) -> dict[str, Any]:
    """Column values after the line items changed, keeping paid + due == total.

    Raises:
    ------
        InvalidStateError: If the new total is below what was already paid.

    """
    totals = compute_totals(items)
    if totals.total < amount_paid:
        raise InvalidStateError(
            f"Invoice total {totals.total} would fall below the amount paid {amount_paid}"
        )
    return {
        "line_items": dump_line_items(items),
        "subtotal": totals.subtotal,
        "tax": totals.tax,
        "total": totals.total,
        "amount_due": round_money(totals.total - amount_paid),
    }


def payment_changes(invoice: Invoice, amount: Decimal, now: datetime) -> dict[str, Any]:
    """Column values after ``amount`` is applied to an invoice.

    The paid amount is capped at the total so the amount due never goes negative;
    the invoice becomes paid when nothing is left to pay.
    """
    amount_paid = min(round_money(invoice.amount_paid + amount), invoice.total)
    amount_due = round_money(invoice.total - amount_paid)
    changes: dict[str, Any] = {"amount_paid": amount_paid, "amount_due": amount_due}
    if amount_due == 0:
        changes["status"] = InvoiceStatus.PAID.value
        changes["paid_at"] = now
    return changes


def paid_in_full_changes(invoice: Invoice, now: datetime) -> dict[str, Any]:
    """Column values of an invoice settled in full. Applying it twice changes nothing."""
    return {
        "status": InvoiceStatus.PAID.value,
        "amount_paid": invoice.total,
        "amount_due": Decimal("0.00"),
        "paid_at": invoice.paid_at or now,
    }


def invoice_number_prefix(moment: datetime) -> str:
    """Prefix shared by every invoice numbered in the month of ``moment``."""
    return f"{INVOICE_NUMBER_PREFIX}-{moment:%Y%m}-"


def next_invoice_number(moment: datetime, latest_number: Optional[str]) -> str:
    """Next number in the month's sequence, e.g. ``INV-202401-00042``."""
    prefix = invoice_number_prefix(moment)
    sequence = 1
    if latest_number and latest_number.startswith(prefix):
        sequence = int(latest_number[len(prefix) :]) + 1
    return f"{prefix}{sequence:05d}"


def aggregate_usage(records: Iterable[Any]) -> int:
    """Usage total of a period from records in the order they happened.

    A ``set`` record replaces the running total, an ``increment`` adds to it.
    """
    total = 0
    for record in records:
        if UsageAction(record.action) == UsageAction.SET:
            total = record.quantity
        else:
            total += record.quantity
    return total
