"""Invoice service.

Drafts, finalizes, settles and voids invoices. Draft invoices are mutable; once
finalized only status transitions and payments touch them.
"""

from datetime import datetime, timedelta
from typing import Any, Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from billflow import crud, schemas
from billflow.core.config import settings
from billflow.core.datetime_utils import to_naive_utc, utc_now_naive
from billflow.core.exceptions import InvalidStateError, NotFoundException
from billflow.core.logging import ContextualLogger, logger
from billflow.integrations.stripe_client import StripeClient
from billflow.models import Customer, Invoice
from billflow.platform.billing.invoice_logic import (
    SETTLED_STATUSES,
    build_line_item,
    invoice_number_prefix,
    load_line_items,
    next_invoice_number,
    paid_in_full_changes,
    totals_changes,
)
from billflow.schemas.common import Page, Pagination, PaginationParams
from billflow.schemas.invoice import InvoiceStatus

# Key under which a line item remembers its gateway invoice item
GATEWAY_ITEM_KEY = "stripe_invoice_item_id"


async def allocate_invoice_number(db: AsyncSession, moment: datetime) -> str:
    """Next free number in the month's invoice sequence."""
    latest = await crud.invoice.get_latest_number_with_prefix(db, invoice_number_prefix(moment))
    return next_invoice_number(moment, latest)


class InvoiceService:
    """Service for invoice lifecycle operations."""

    def __init__(self, payment_gateway: Optional[StripeClient] = None):
        """Initialize the invoice service.

        Args:
        ----
            payment_gateway (StripeClient, optional): Gateway mirror, None when Stripe is off.

        """
        self.gateway = payment_gateway

    def _log(self, invoice_id: UUID) -> ContextualLogger:
        return logger.with_context(invoice_id=str(invoice_id))

    async def _get_invoice(self, db: AsyncSession, invoice_id: UUID) -> Invoice:
        invoice = await crud.invoice.get(db, invoice_id)
        if not invoice:
            raise NotFoundException(f"Invoice {invoice_id} not found")
        return invoice

    async def _get_draft(self, db: AsyncSession, invoice_id: UUID) -> Invoice:
        invoice = await self._get_invoice(db, invoice_id)
        if invoice.status != InvoiceStatus.DRAFT.value:
            raise InvalidStateError(
                f"Invoice {invoice.number} is {invoice.status}, only drafts can be edited"
            )
        return invoice

    async def _get_linked_customer(self, db: AsyncSession, customer_id: UUID) -> Customer:
        customer = await crud.customer.get(db, customer_id)
        if not customer:
            raise NotFoundException(f"Customer {customer_id} not found")
        return customer

    @staticmethod
    def _to_schema(invoice: Invoice) -> schemas.Invoice:
        return schemas.Invoice.model_validate(invoice, from_attributes=True)

    async def _push_line_item(
        self,
        customer: Customer,
        stripe_invoice_id: str,
        currency: str,
        item: schemas.InvoiceLineItem,
    ) -> schemas.InvoiceLineItem:
        """Mirror a line item on the gateway invoice and remember the gateway id."""
        gateway_item = await self.gateway.create_invoice_item(
            customer_id=customer.stripe_customer_id,
            invoice_id=stripe_invoice_id,
            amount=item.amount + item.tax_amount,
            currency=currency,
            description=item.description,
        )
        metadata = {**item.metadata, GATEWAY_ITEM_KEY: gateway_item["id"]}
        return item.model_copy(update={"metadata": metadata})

    # ------------------------------ Reads ------------------------------ #

    async def get(self, db: AsyncSession, invoice_id: UUID) -> schemas.Invoice:
        """Get an invoice."""
        return self._to_schema(await self._get_invoice(db, invoice_id))

    async def get_by_number(self, db: AsyncSession, number: str) -> schemas.Invoice:
        """Get an invoice by its number."""
        invoice = await crud.invoice.get_by_number(db, number)
        if not invoice:
            raise NotFoundException(f"Invoice {number} not found")
        return self._to_schema(invoice)

    async def _page(
        self, db: AsyncSession, params: PaginationParams, filters: list
    ) -> Page[schemas.Invoice]:
        rows = await crud.invoice.get_multi(
            db, skip=params.skip, limit=params.limit, filters=filters
        )
        total = await crud.invoice.count(db, filters=filters)
        return Page(
            items=[self._to_schema(row) for row in rows],
            pagination=Pagination.build(params, total),
        )

    async def list_invoices(
        self,
        db: AsyncSession,
        params: PaginationParams,
        status: Optional[InvoiceStatus] = None,
        customer_id: Optional[UUID] = None,
        subscription_id: Optional[UUID] = None,
    ) -> Page[schemas.Invoice]:
        """List invoices, newest first."""
        filters = crud.invoice.build_filters(
            status=status, customer_id=customer_id, subscription_id=subscription_id
        )
        return await self._page(db, params, filters)

    async def list_overdue(
        self, db: AsyncSession, params: PaginationParams
    ) -> Page[schemas.Invoice]:
        """Open invoices past their due date."""
        return await self._page(db, params, crud.invoice.overdue_filters(utc_now_naive()))

    async def list_by_date_range(
        self, db: AsyncSession, date_range: schemas.DateRange, params: PaginationParams
    ) -> Page[schemas.Invoice]:
        """Invoices created within the window."""
        filters = [
            Invoice.created_at >= to_naive_utc(date_range.start),
            Invoice.created_at < to_naive_utc(date_range.end),
        ]
        return await self._page(db, params, filters)

    # ------------------------------ Drafting ------------------------------ #

    async def create(self, db: AsyncSession, obj_in: schemas.InvoiceCreate) -> schemas.Invoice:
        """Create a draft invoice from line items.

        When the customer is linked to the payment gateway a gateway invoice is
        drafted alongside and every line item is mirrored onto it.
        """
        customer = await self._get_linked_customer(db, obj_in.customer_id)
        now = utc_now_naive()
        currency = (obj_in.currency or settings.DEFAULT_CURRENCY).upper()
        days_until_due = (
            obj_in.days_until_due
            if obj_in.days_until_due is not None
            else settings.INVOICE_DAYS_UNTIL_DUE
        )
        due_date = to_naive_utc(obj_in.due_date) or now + timedelta(days=days_until_due)
        items = [build_line_item(item) for item in obj_in.line_items]

        invoice = await crud.invoice.create(
            db,
            obj_in={
                "customer_id": customer.id,
                "subscription_id": obj_in.subscription_id,
                "number": await allocate_invoice_number(db, now),
                "status": InvoiceStatus.DRAFT.value,
                "currency": currency,
                "amount_paid": 0,
                "due_date": due_date,
                "meta": dict(obj_in.metadata),
                **totals_changes(items, amount_paid=0),
            },
        )
        log = self._log(invoice.id)

        if self.gateway and customer.stripe_customer_id:
            gateway_invoice = await self.gateway.create_invoice(
                customer_id=customer.stripe_customer_id,
                collection_method="send_invoice",
                days_until_due=days_until_due,
                metadata={**obj_in.metadata, "invoice_id": str(invoice.id)},
            )
            items = [
                await self._push_line_item(customer, gateway_invoice["id"], currency, item)
                for item in items
            ]
            invoice = await crud.invoice.update(
                db,
                db_obj=invoice,
                obj_in={
                    "stripe_invoice_id": gateway_invoice["id"],
                    **totals_changes(items, amount_paid=invoice.amount_paid),
                },
            )
            log.info(f"Mirrored invoice {invoice.number} as {gateway_invoice['id']}")

        log.info(f"Created draft invoice {invoice.number} with {len(items)} line items")
        if obj_in.auto_finalize:
            return await self.finalize(db, invoice.id)
        return self._to_schema(invoice)

    async def update(
        self, db: AsyncSession, invoice_id: UUID, obj_in: schemas.InvoiceUpdate
    ) -> schemas.Invoice:
        """Change the due date or merge metadata of a draft."""
        invoice = await self._get_draft(db, invoice_id)
        changes: dict[str, Any] = {}
        if obj_in.due_date is not None:
            changes["due_date"] = to_naive_utc(obj_in.due_date)
        if obj_in.metadata:
            changes["meta"] = {**(invoice.meta or {}), **obj_in.metadata}
        invoice = await crud.invoice.update(db, db_obj=invoice, obj_in=changes)
        return self._to_schema(invoice)

    async def add_line_item(
        self, db: AsyncSession, invoice_id: UUID, obj_in: schemas.InvoiceLineItemCreate
    ) -> schemas.Invoice:
        """Append a line item to a draft and recompute its totals."""
        invoice = await self._get_draft(db, invoice_id)
        item = build_line_item(obj_in)

        if self.gateway and invoice.stripe_invoice_id:
            customer = await self._get_linked_customer(db, invoice.customer_id)
            item = await self._push_line_item(
                customer, invoice.stripe_invoice_id, invoice.currency, item
            )

        items = load_line_items(invoice.line_items) + [item]
        invoice = await crud.invoice.update(
            db, db_obj=invoice, obj_in=totals_changes(items, invoice.amount_paid)
        )
        self._log(invoice_id).info(f"Added line item {item.id}")
        return self._to_schema(invoice)

    async def remove_line_item(
        self, db: AsyncSession, invoice_id: UUID, line_item_id: UUID
    ) -> schemas.Invoice:
        """Drop a line item from a draft and recompute its totals.

        Raises:
        ------
            NotFoundException: If the invoice or line item does not exist.
            InvalidStateError: If the invoice is not a draft, or the new total would
                fall below the amount already paid.

        """
        invoice = await self._get_draft(db, invoice_id)
        items = load_line_items(invoice.line_items)
        removed = next((item for item in items if item.id == line_item_id), None)
        if removed is None:
            raise NotFoundException(f"Line item {line_item_id} not found on invoice {invoice_id}")

        remaining = [item for item in items if item.id != line_item_id]
        changes = totals_changes(remaining, invoice.amount_paid)

        gateway_item_id = removed.metadata.get(GATEWAY_ITEM_KEY)
        if self.gateway and gateway_item_id:
            await self.gateway.delete_invoice_item(gateway_item_id)

        invoice = await crud.invoice.update(db, db_obj=invoice, obj_in=changes)
        self._log(invoice_id).info(f"Removed line item {line_item_id}")
        return self._to_schema(invoice)

    async def duplicate(self, db: AsyncSession, invoice_id: UUID) -> schemas.Invoice:
        """Create a new draft carrying the same line items."""
        invoice = await self._get_invoice(db, invoice_id)
        line_items = [
            schemas.InvoiceLineItemCreate(
                description=item.description,
                quantity=item.quantity,
                unit_price=item.unit_price,
                tax_rate=item.tax_rate,
                kind=item.kind,
                period_start=item.period_start,
                period_end=item.period_end,
                metadata={k: v for k, v in item.metadata.items() if k != GATEWAY_ITEM_KEY},
            )
            for item in load_line_items(invoice.line_items)
        ]
        return await self.create(
            db,
            schemas.InvoiceCreate(
                customer_id=invoice.customer_id,
                currency=invoice.currency,
                line_items=line_items,
                metadata={"duplicatedFrom": str(invoice.id)},
            ),
        )

    # ------------------------------ Transitions ------------------------------ #

    async def finalize(self, db: AsyncSession, invoice_id: UUID) -> schemas.Invoice:
        """Move a draft to open so it can be paid."""
        invoice = await self._get_draft(db, invoice_id)

        if self.gateway and invoice.stripe_invoice_id:
            await self.gateway.finalize_invoice(invoice.stripe_invoice_id)

        invoice = await crud.invoice.update(
            db,
            db_obj=invoice,
            obj_in={"status": InvoiceStatus.OPEN.value, "finalized_at": utc_now_naive()},
        )
        self._log(invoice_id).info(f"Finalized invoice {invoice.number}")
        return self._to_schema(invoice)

    async def pay(
        self, db: AsyncSession, invoice_id: UUID, payment_method_id: Optional[str] = None
    ) -> schemas.Invoice:
        """Settle an invoice in full.

        Raises:
        ------
            InvalidStateError: If the invoice is already paid or void.

        """
        invoice = await self._get_invoice(db, invoice_id)
        if invoice.status in SETTLED_STATUSES:
            raise InvalidStateError(f"Invoice {invoice.number} is already {invoice.status}")

        if self.gateway and invoice.stripe_invoice_id:
            await self.gateway.pay_invoice(invoice.stripe_invoice_id, payment_method_id)

        invoice = await crud.invoice.update(
            db, db_obj=invoice, obj_in=paid_in_full_changes(invoice, utc_now_naive())
        )
        self._log(invoice_id).info(f"Paid invoice {invoice.number}")
        return self._to_schema(invoice)

    async def void(self, db: AsyncSession, invoice_id: UUID) -> schemas.Invoice:
        """Void an unpaid invoice.

        Raises:
        ------
            InvalidStateError: If the invoice is paid or already void.

        """
        invoice = await self._get_invoice(db, invoice_id)
        if invoice.status in SETTLED_STATUSES:
            raise InvalidStateError(f"Cannot void invoice {invoice.number}: it is {invoice.status}")

        if self.gateway and invoice.stripe_invoice_id:
            await self.gateway.void_invoice(invoice.stripe_invoice_id)

        invoice = await crud.invoice.update(
            db,
            db_obj=invoice,
            obj_in={"status": InvoiceStatus.VOID.value, "voided_at": utc_now_naive()},
        )
        self._log(invoice_id).info(f"Voided invoice {invoice.number}")
        return self._to_schema(invoice)

    async def mark_uncollectible(self, db: AsyncSession, invoice_id: UUID) -> schemas.Invoice:
        """Write off an open or past due invoice."""
        invoice = await self._get_invoice(db, invoice_id)
        if invoice.status not in (InvoiceStatus.OPEN.value, InvoiceStatus.PAST_DUE.value):
            raise InvalidStateError(
                f"Only open or past due invoices can be marked uncollectible, "
                f"invoice {invoice.number} is {invoice.status}"
            )

        if self.gateway and invoice.stripe_invoice_id:
            await self.gateway.mark_invoice_uncollectible(invoice.stripe_invoice_id)

        invoice = await crud.invoice.update(
            db, db_obj=invoice, obj_in={"status": InvoiceStatus.UNCOLLECTIBLE.value}
        )
        self._log(invoice_id).info(f"Marked invoice {invoice.number} uncollectible")
        return self._to_schema(invoice)

    async def process_overdue_invoices(self, db: AsyncSession) -> schemas.BatchResult:
        """Move open invoices past their due date to past due, one commit each."""
        overdue = await crud.invoice.get_overdue(db, utc_now_naive())
        overdue_ids = [invoice.id for invoice in overdue]
        result = schemas.BatchResult()

        for invoice_id in overdue_ids:
            try:
                invoice = await crud.invoice.get(db, invoice_id)
                await crud.invoice.update(
                    db, db_obj=invoice, obj_in={"status": InvoiceStatus.PAST_DUE.value}
                )
                result.processed += 1
            except Exception as e:
                await db.rollback()
                result.failed += 1
                self._log(invoice_id).error(f"Failed to mark invoice past due: {e}")

        logger.info(
            f"Processed overdue invoices: {result.processed} past due, {result.failed} failed"
        )
        return result
