"""Integration tests for invoice drafting and status transitions."""

from datetime import timedelta
from decimal import Decimal

import pytest

from billflow import crud, schemas
from billflow.core.datetime_utils import utc_now_naive
from billflow.core.exceptions import InvalidStateError, NotFoundException
from billflow.platform.billing.invoice_service import InvoiceService


@pytest.fixture
def service():
    """An invoice service without a payment gateway."""
    return InvoiceService()


def _item(description: str, unit_price: str, quantity: str = "1", tax_rate=None):
    return schemas.InvoiceLineItemCreate(
        description=description,
        quantity=Decimal(quantity),
        unit_price=Decimal(unit_price),
        tax_rate=Decimal(tax_rate) if tax_rate else None,
    )


def _balanced(invoice: schemas.Invoice) -> bool:
    return invoice.amount_paid + invoice.amount_due == invoice.total


class TestDrafts:
    """Tests for creating and editing draft invoices."""

    async def test_create_draft_with_totals(self, db, service, make_customer):
        """A new draft carries priced line items and a balanced total."""
        # Arrange
        customer = await make_customer()

        # Act
        invoice = await service.create(
            db,
            schemas.InvoiceCreate(
                customer_id=customer.id,
                line_items=[_item("Setup", "50"), _item("Seats", "10", "3", tax_rate="10")],
            ),
        )

        # Assert
        assert invoice.status == schemas.InvoiceStatus.DRAFT
        assert invoice.number.startswith("INV-")
        assert invoice.subtotal == Decimal("80.00")
        assert invoice.tax == Decimal("3.00")
        assert invoice.total == Decimal("83.00")
        assert _balanced(invoice)

    async def test_numbers_are_sequential(self, db, service, make_customer):
        """Invoices of the same month get consecutive numbers."""
        customer = await make_customer()

        first = await service.create(db, schemas.InvoiceCreate(customer_id=customer.id))
        second = await service.create(db, schemas.InvoiceCreate(customer_id=customer.id))

        assert int(second.number.rsplit("-", 1)[1]) == int(first.number.rsplit("-", 1)[1]) + 1

    async def test_line_item_edits_recompute_totals(self, db, service, make_customer):
        """Adding and removing line items keeps the balance consistent."""
        # Arrange
        customer = await make_customer()
        invoice = await service.create(
            db, schemas.InvoiceCreate(customer_id=customer.id, line_items=[_item("A", "20")])
        )

        # Act
        added = await service.add_line_item(db, invoice.id, _item("B", "5"))
        removed = await service.remove_line_item(db, invoice.id, added.line_items[0].id)

        # Assert
        assert added.total == Decimal("25.00")
        assert removed.total == Decimal("5.00")
        assert [item.description for item in removed.line_items] == ["B"]
        assert _balanced(added) and _balanced(removed)

    async def test_removing_unknown_line_item(self, db, service, make_customer):
        """An id that is not on the invoice is not found."""
        customer = await make_customer()
        invoice = await service.create(db, schemas.InvoiceCreate(customer_id=customer.id))

        with pytest.raises(NotFoundException):
            await service.remove_line_item(db, invoice.id, invoice.id)

    async def test_removal_cannot_drop_total_below_amount_paid(self, db, service, make_customer):
        """A draft that already collected money keeps a total at least that large."""
        # Arrange
        customer = await make_customer()
        invoice = await service.create(
            db,
            schemas.InvoiceCreate(
                customer_id=customer.id, line_items=[_item("Seats", "80"), _item("Setup", "20")]
            ),
        )
        stored = await crud.invoice.get(db, invoice.id)
        await crud.invoice.update(
            db,
            db_obj=stored,
            obj_in={"amount_paid": Decimal("90.00"), "amount_due": Decimal("10.00")},
        )

        # Act
        with pytest.raises(InvalidStateError):
            await service.remove_line_item(db, invoice.id, invoice.line_items[0].id)

        # Assert
        unchanged = await service.get(db, invoice.id)
        assert unchanged.total == Decimal("100.00")
        assert len(unchanged.line_items) == 2
        assert _balanced(unchanged)

    async def test_only_drafts_can_be_edited(self, db, service, make_customer):
        """Finalized invoices reject line item changes."""
        customer = await make_customer()
        invoice = await service.create(
            db,
            schemas.InvoiceCreate(
                customer_id=customer.id, line_items=[_item("A", "20")], auto_finalize=True
            ),
        )

        assert invoice.status == schemas.InvoiceStatus.OPEN
        with pytest.raises(InvalidStateError):
            await service.add_line_item(db, invoice.id, _item("B", "5"))

    async def test_duplicate_copies_line_items(self, db, service, make_customer):
        """The copy is a new draft with the same charges."""
        customer = await make_customer()
        original = await service.create(
            db,
            schemas.InvoiceCreate(
                customer_id=customer.id, line_items=[_item("A", "20")], auto_finalize=True
            ),
        )

        copy = await service.duplicate(db, original.id)

        assert copy.id != original.id
        assert copy.status == schemas.InvoiceStatus.DRAFT
        assert copy.total == original.total
        assert copy.metadata["duplicatedFrom"] == str(original.id)


class TestTransitions:
    """Tests for pay, void, uncollectible and overdue processing."""

    async def test_pay_then_void_is_rejected(self, db, service, make_customer):
        """A paid invoice is settled and can no longer be voided."""
        # Arrange
        customer = await make_customer()
        invoice = await service.create(
            db,
            schemas.InvoiceCreate(
                customer_id=customer.id, line_items=[_item("A", "40")], auto_finalize=True
            ),
        )

        # Act
        paid = await service.pay(db, invoice.id)

        # Assert
        assert paid.status == schemas.InvoiceStatus.PAID
        assert paid.amount_paid == Decimal("40.00")
        assert paid.amount_due == Decimal("0.00")
        assert paid.paid_at is not None
        with pytest.raises(InvalidStateError):
            await service.void(db, invoice.id)
        with pytest.raises(InvalidStateError):
            await service.pay(db, invoice.id)

    async def test_void_open_invoice(self, db, service, make_customer):
        """Open invoices can be voided."""
        customer = await make_customer()
        invoice = await service.create(
            db, schemas.InvoiceCreate(customer_id=customer.id, auto_finalize=True)
        )

        voided = await service.void(db, invoice.id)

        assert voided.status == schemas.InvoiceStatus.VOID
        assert voided.voided_at is not None

    async def test_draft_cannot_be_marked_uncollectible(self, db, service, make_customer):
        """Only open or past due invoices can be written off."""
        customer = await make_customer()
        invoice = await service.create(db, schemas.InvoiceCreate(customer_id=customer.id))

        with pytest.raises(InvalidStateError):
            await service.mark_uncollectible(db, invoice.id)

    async def test_process_overdue_invoices(self, db, service, make_customer):
        """Open invoices past their due date become past due; others stay open."""
        # Arrange
        customer = await make_customer()
        now = utc_now_naive()
        late = await service.create(
            db,
            schemas.InvoiceCreate(
                customer_id=customer.id,
                due_date=now - timedelta(days=2),
                line_items=[_item("A", "10")],
                auto_finalize=True,
            ),
        )
        current = await service.create(
            db,
            schemas.InvoiceCreate(
                customer_id=customer.id,
                due_date=now + timedelta(days=10),
                line_items=[_item("B", "10")],
                auto_finalize=True,
            ),
        )

        # Act
        result = await service.process_overdue_invoices(db)

        # Assert
        assert (result.processed, result.failed) == (1, 0)
        assert (await crud.invoice.get(db, late.id)).status == "past_due"
        assert (await crud.invoice.get(db, current.id)).status == "open"
