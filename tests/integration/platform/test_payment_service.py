"""Integration tests for payments, refunds and gateway status updates."""

from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from billflow import crud, schemas
from billflow.core.exceptions import InvalidInputError, InvalidStateError
from billflow.platform.billing.payment_service import PaymentService, map_gateway_status


@pytest.fixture
def service():
    """A payment service without a payment gateway."""
    return PaymentService()


async def _open_invoice(db, customer, total: str = "100.00"):
    return await crud.invoice.create(
        db,
        obj_in={
            "customer_id": customer.id,
            "number": "INV-PAY-00001",
            "status": "open",
            "currency": "USD",
            "subtotal": Decimal(total),
            "total": Decimal(total),
            "amount_paid": Decimal("0"),
            "amount_due": Decimal(total),
            "line_items": [],
            "meta": {},
        },
    )


class TestRefunds:
    """Tests for PaymentService.refund."""

    async def test_full_refund_then_second_attempt_fails(
        self, db, service, make_customer, make_payment
    ):
        """A fully refunded payment accepts no further refunds."""
        # Arrange
        payment = await make_payment(await make_customer(), amount=Decimal("100.00"))

        # Act
        refund = await service.refund(
            db, schemas.RefundCreate(payment_id=payment.id, amount=Decimal("100"))
        )

        # Assert
        assert refund.amount == Decimal("100.00")
        refunded = await service.get(db, payment.id)
        assert refunded.status == schemas.PaymentStatus.REFUNDED
        assert refunded.refunded_amount == Decimal("100.00")
        with pytest.raises(InvalidStateError):
            await service.refund(
                db, schemas.RefundCreate(payment_id=payment.id, amount=Decimal("1"))
            )

    async def test_partial_refunds_stay_within_the_amount(
        self, db, service, make_customer, make_payment
    ):
        """Partial refunds accumulate and can never exceed the payment."""
        # Arrange
        payment = await make_payment(await make_customer(), amount=Decimal("100.00"))

        # Act
        await service.refund(db, schemas.RefundCreate(payment_id=payment.id, amount=Decimal("30")))
        partial = await service.get(db, payment.id)
        with pytest.raises(InvalidInputError):
            await service.refund(
                db, schemas.RefundCreate(payment_id=payment.id, amount=Decimal("70.01"))
            )
        unchanged = await service.get(db, payment.id)
        await service.refund(db, schemas.RefundCreate(payment_id=payment.id))
        final = await service.get(db, payment.id)

        # Assert
        assert partial.status == schemas.PaymentStatus.PARTIALLY_REFUNDED
        assert partial.refunded_amount == Decimal("30.00")
        assert unchanged.refunded_amount == Decimal("30.00")
        assert final.status == schemas.PaymentStatus.REFUNDED
        assert final.refunded_amount == Decimal("100.00")
        refunds = await service.list_refunds(db, payment.id)
        assert sorted(refund.amount for refund in refunds) == [
            Decimal("30.00"),
            Decimal("70.00"),
        ]

    async def test_pending_payment_cannot_be_refunded(
        self, db, service, make_customer, make_payment
    ):
        """Only settled payments are refundable."""
        payment = await make_payment(await make_customer(), status="pending")

        with pytest.raises(InvalidStateError):
            await service.refund(db, schemas.RefundCreate(payment_id=payment.id))

    async def test_gateway_refund_is_issued(
        self, db, make_customer, make_payment, mock_stripe_gateway
    ):
        """Payments with an intent are refunded on the gateway too."""
        # Arrange
        mock_stripe_gateway.create_refund.return_value = {"id": "re_123"}
        service = PaymentService(mock_stripe_gateway)
        payment = await make_payment(await make_customer(), stripe_payment_intent_id="pi_1")

        # Act
        refund = await service.refund(
            db, schemas.RefundCreate(payment_id=payment.id, amount=Decimal("25"))
        )

        # Assert
        assert refund.stripe_refund_id == "re_123"
        kwargs = mock_stripe_gateway.create_refund.call_args.kwargs
        assert kwargs["payment_intent_id"] == "pi_1"
        assert kwargs["amount"] == Decimal("25.00")


class TestGatewayStatusUpdates:
    """Tests for PaymentService.process_webhook_update."""

    async def test_success_settles_invoice_once(self, db, service, make_customer, make_payment):
        """Repeating the succeeded notification credits the invoice only once."""
        # Arrange
        customer = await make_customer()
        invoice = await _open_invoice(db, customer)
        await make_payment(
            customer,
            invoice_id=invoice.id,
            status="pending",
            stripe_payment_intent_id="pi_settle",
        )

        # Act
        await service.process_webhook_update(db, "pi_settle", "succeeded")
        once = await crud.invoice.get(db, invoice.id)
        once_state = (once.status, once.amount_paid, once.amount_due)
        await service.process_webhook_update(db, "pi_settle", "succeeded")
        twice = await crud.invoice.get(db, invoice.id)

        # Assert
        assert once_state == ("paid", Decimal("100.00"), Decimal("0.00"))
        assert (twice.status, twice.amount_paid, twice.amount_due) == once_state

    async def test_failure_records_decline(self, db, service, make_customer, make_payment):
        """A failed intent keeps the decline code and message."""
        await make_payment(await make_customer(), status="pending", stripe_payment_intent_id="pi_x")

        payment = await service.process_webhook_update(
            db,
            "pi_x",
            "failed",
            failure={"decline_code": "insufficient_funds", "message": "Card declined"},
        )

        assert payment.status == schemas.PaymentStatus.FAILED
        assert payment.failure_code == "insufficient_funds"
        assert payment.failure_message == "Card declined"

    async def test_refunded_payment_keeps_its_status(
        self, db, service, make_customer, make_payment
    ):
        """Late intent notifications do not overwrite a refund."""
        await make_payment(
            await make_customer(),
            status="refunded",
            stripe_payment_intent_id="pi_r",
            refunded_amount=Decimal("100.00"),
        )

        payment = await service.process_webhook_update(db, "pi_r", "succeeded")

        assert payment.status == schemas.PaymentStatus.REFUNDED

    async def test_late_report_cannot_move_payment_backward(
        self, db, service, make_customer, make_payment
    ):
        """A processing report after success is dropped and the invoice is credited once."""
        # Arrange
        customer = await make_customer()
        invoice = await _open_invoice(db, customer)
        await make_payment(
            customer,
            invoice_id=invoice.id,
            amount=Decimal("40.00"),
            status="pending",
            stripe_payment_intent_id="pi_late",
        )

        # Act
        await service.process_webhook_update(db, "pi_late", "succeeded")
        late = await service.process_webhook_update(db, "pi_late", "processing")
        retried = await service.process_webhook_update(db, "pi_late", "requires_payment_method")
        await service.process_webhook_update(db, "pi_late", "succeeded")

        # Assert
        assert late.status == schemas.PaymentStatus.SUCCEEDED
        assert retried.status == schemas.PaymentStatus.SUCCEEDED
        settled = await crud.invoice.get(db, invoice.id)
        assert settled.amount_paid == Decimal("40.00")
        assert settled.amount_due == Decimal("60.00")
        assert settled.amount_paid + settled.amount_due == settled.total

    async def test_failed_payment_is_not_revived_by_a_report(
        self, db, service, make_customer, make_payment
    ):
        """Leaving failed takes an explicit retry."""
        await make_payment(await make_customer(), status="failed", stripe_payment_intent_id="pi_f")

        payment = await service.process_webhook_update(db, "pi_f", "requires_action")

        assert payment.status == schemas.PaymentStatus.FAILED

    async def test_unknown_intent_is_ignored(self, db, service):
        """An intent without a local payment is skipped."""
        assert await service.process_webhook_update(db, "pi_missing", "succeeded") is None

    @pytest.mark.parametrize(
        "gateway_status, expected",
        [
            ("succeeded", schemas.PaymentStatus.SUCCEEDED),
            ("requires_action", schemas.PaymentStatus.PENDING),
            ("processing", schemas.PaymentStatus.PROCESSING),
            ("requires_capture", schemas.PaymentStatus.PENDING),
            ("canceled", schemas.PaymentStatus.CANCELED),
            ("something_new", schemas.PaymentStatus.FAILED),
        ],
    )
    def test_map_gateway_status(self, gateway_status, expected):
        """Gateway statuses map onto local ones; unknown values are failures.

        An authorized intent waiting for a manual capture stays pending so it can be captured."""
        assert map_gateway_status(gateway_status) == expected


class TestManualCapture:
    """Tests for authorizing now and capturing later."""

    async def test_authorized_payment_can_be_captured(
        self, db, make_customer, mock_stripe_gateway
    ):
        """An intent waiting for capture is pending, and capturing it succeeds."""
        # Arrange
        mock_stripe_gateway.create_payment_intent.return_value = {
            "id": "pi_auth",
            "status": "requires_capture",
        }
        mock_stripe_gateway.capture_payment_intent = AsyncMock(return_value={"id": "pi_auth"})
        service = PaymentService(mock_stripe_gateway)
        customer = await make_customer(stripe_customer_id="cus_auth")

        # Act
        authorized = await service.create(
            db,
            schemas.PaymentCreate(
                customer_id=customer.id,
                amount=Decimal("50"),
                confirm=True,
                capture_method="manual",
            ),
        )
        captured = await service.capture(db, authorized.id, amount=Decimal("30"))

        # Assert
        assert authorized.status == schemas.PaymentStatus.PENDING
        assert captured.status == schemas.PaymentStatus.SUCCEEDED
        assert captured.amount == Decimal("30.00")
        assert mock_stripe_gateway.capture_payment_intent.call_args.args == ("pi_auth",)
