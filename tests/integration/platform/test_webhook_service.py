"""Integration tests for the webhook pipeline."""

import hashlib
import hmac
import json
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Optional
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from billflow import crud
from billflow.core.datetime_utils import utc_now_naive
from billflow.core.exceptions import WebhookProcessingError, WebhookSignatureError
from billflow.integrations.ramp_client import RampClient
from billflow.platform.billing.payment_service import PaymentService
from billflow.platform.webhooks.webhook_service import WebhookService
from billflow.schemas.webhook import WebhookSource

VALID_SIGNATURE = "t=1,v1=valid"


def _verify(payload: bytes, signature: Optional[str]) -> dict:
    if signature != VALID_SIGNATURE:
        raise WebhookSignatureError("stripe", "Signature mismatch")
    return json.loads(payload)


def _intent_event(event_id: str, intent_id: str, event_type="payment_intent.succeeded") -> bytes:
    return json.dumps(
        {
            "id": event_id,
            "type": event_type,
            "data": {"object": {"id": intent_id, "status": "succeeded", "amount": 10000}},
        }
    ).encode()


@pytest.fixture
def stripe_gateway(mock_stripe_gateway):
    """Stripe double that accepts only VALID_SIGNATURE."""
    mock_stripe_gateway.verify_webhook_signature.side_effect = _verify
    return mock_stripe_gateway


@pytest.fixture
def service(stripe_gateway):
    """Webhook service with a Stripe double and no Ramp client."""
    return WebhookService(stripe_gateway, None, PaymentService(stripe_gateway))


@pytest.fixture
async def settled_setup(db, make_customer, make_payment):
    """An open invoice and the pending payment that will settle it."""
    customer = await make_customer()
    invoice = await crud.invoice.create(
        db,
        obj_in={
            "customer_id": customer.id,
            "number": "INV-HOOK-00001",
            "status": "open",
            "currency": "USD",
            "subtotal": Decimal("100.00"),
            "total": Decimal("100.00"),
            "amount_paid": Decimal("0"),
            "amount_due": Decimal("100.00"),
            "line_items": [],
            "meta": {},
        },
    )
    payment = await make_payment(
        customer, invoice_id=invoice.id, status="pending", stripe_payment_intent_id="pi_hook"
    )
    return invoice, payment


class TestStripeDeliveries:
    """Tests for Stripe webhook handling."""

    async def test_duplicate_delivery_is_acknowledged_once(self, db, service, settled_setup):
        """The same succeeded event twice leaves the invoice as after one delivery."""
        # Arrange
        invoice, payment = settled_setup
        body = _intent_event("evt_1", "pi_hook")

        # Act
        first = await service.receive(db, WebhookSource.STRIPE, body, VALID_SIGNATURE)
        after_one = await crud.invoice.get(db, invoice.id)
        state_after_one = (after_one.status, after_one.amount_paid, after_one.amount_due)
        second = await service.receive(db, "stripe", body, VALID_SIGNATURE)
        after_two = await crud.invoice.get(db, invoice.id)

        # Assert
        assert (first.received, first.duplicate) == (True, False)
        assert second.duplicate is True
        assert state_after_one == ("paid", Decimal("100.00"), Decimal("0.00"))
        assert (after_two.status, after_two.amount_paid, after_two.amount_due) == state_after_one
        stored = await crud.payment.get(db, payment.id)
        assert stored.status == "succeeded"

    async def test_new_event_for_same_intent_does_not_pay_twice(
        self, db, service, settled_setup
    ):
        """A second event id asserting the same status does not credit the invoice again."""
        invoice, _ = settled_setup

        await service.receive(db, "stripe", _intent_event("evt_a", "pi_hook"), VALID_SIGNATURE)
        ack = await service.receive(
            db, "stripe", _intent_event("evt_b", "pi_hook"), VALID_SIGNATURE
        )

        assert ack.duplicate is False
        stored = await crud.invoice.get(db, invoice.id)
        assert stored.amount_paid == Decimal("100.00")

    async def test_bad_signature_writes_nothing(self, db, service, settled_setup):
        """A rejected delivery records no event and changes no payment."""
        _, payment = settled_setup

        with pytest.raises(WebhookSignatureError):
            await service.receive(db, "stripe", _intent_event("evt_x", "pi_hook"), "forged")

        assert await crud.webhook_event.get_by_event(db, "stripe", "evt_x") is None
        assert (await crud.payment.get(db, payment.id)).status == "pending"

    async def test_handler_failure_is_retried_by_redelivery(
        self, db, stripe_gateway, settled_setup
    ):
        """A failing handler leaves no processed-event row, so redelivery runs again."""
        # Arrange
        failing_payments = MagicMock(spec=PaymentService)
        failing_payments.process_webhook_update = AsyncMock(side_effect=RuntimeError("boom"))
        failing = WebhookService(stripe_gateway, None, failing_payments)
        body = _intent_event("evt_retry", "pi_hook")

        # Act
        with pytest.raises(WebhookProcessingError) as exc_info:
            await failing.receive(db, "stripe", body, VALID_SIGNATURE)
        recorded_after_failure = await crud.webhook_event.get_by_event(db, "stripe", "evt_retry")
        working = WebhookService(stripe_gateway, None, PaymentService(stripe_gateway))
        ack = await working.receive(db, "stripe", body, VALID_SIGNATURE)

        # Assert
        assert isinstance(exc_info.value.__cause__, RuntimeError)
        assert recorded_after_failure is None
        assert ack.duplicate is False
        assert await crud.webhook_event.get_by_event(db, "stripe", "evt_retry") is not None

    async def test_unknown_event_type_is_acknowledged(self, db, service):
        """Types without a handler are recorded and acknowledged."""
        body = json.dumps({"id": "evt_u", "type": "product.created", "data": {}}).encode()

        ack = await service.receive(db, "stripe", body, VALID_SIGNATURE)

        assert ack.duplicate is False
        recorded = await crud.webhook_event.get_by_event(db, "stripe", "evt_u")
        assert recorded.event_type == "product.created"

    async def test_malformed_event_is_a_processing_error(self, db, service):
        """A verified body that is not an event fails processing and records nothing."""
        with pytest.raises(WebhookProcessingError) as exc_info:
            await service.receive(db, "stripe", b'{"type": "invoice.paid"}', VALID_SIGNATURE)

        assert exc_info.value.source == "stripe"

    async def test_subscription_update_adopts_gateway_state(
        self, db, service, make_customer, make_plan, make_subscription
    ):
        """A customer.subscription.updated event overwrites status and period."""
        # Arrange
        subscription = await make_subscription(
            await make_customer(), await make_plan(), stripe_subscription_id="sub_gw"
        )
        period_start = datetime(2030, 1, 1, tzinfo=timezone.utc)
        period_end = datetime(2030, 2, 1, tzinfo=timezone.utc)
        body = json.dumps(
            {
                "id": "evt_sub",
                "type": "customer.subscription.updated",
                "data": {
                    "object": {
                        "id": "sub_gw",
                        "status": "past_due",
                        "current_period_start": int(period_start.timestamp()),
                        "current_period_end": int(period_end.timestamp()),
                        "cancel_at_period_end": True,
                    }
                },
            }
        ).encode()

        # Act
        await service.receive(db, "stripe", body, VALID_SIGNATURE)

        # Assert
        stored = await crud.subscription.get(db, subscription.id)
        assert stored.status == "past_due"
        assert stored.current_period_start == datetime(2030, 1, 1)
        assert stored.current_period_end == datetime(2030, 2, 1)
        assert stored.cancel_at_period_end is True


class TestRampDeliveries:
    """Tests for Ramp webhook handling."""

    @pytest.fixture
    def ramp_service(self, stripe_gateway):
        """Webhook service with a Ramp client holding a known secret."""
        ramp = RampClient(
            client_id="client",
            client_secret="secret",
            webhook_secret="ramp-secret",
            http_client=httpx.AsyncClient(),
        )
        return WebhookService(stripe_gateway, ramp, PaymentService(stripe_gateway))

    async def test_ledger_event_is_acknowledged(self, db, ramp_service):
        """Signed ledger events are recorded and acknowledged."""
        body = json.dumps(
            {"id": "ramp_evt_1", "type": "transaction.created", "data": {"id": "txn_1"}}
        ).encode()
        signature = hmac.new(b"ramp-secret", body, hashlib.sha256).hexdigest()

        ack = await ramp_service.receive(db, WebhookSource.RAMP, body, signature)

        assert ack.duplicate is False
        recorded = await crud.webhook_event.get_by_event(db, "ramp", "ramp_evt_1")
        assert recorded.processed_at <= utc_now_naive() + timedelta(seconds=1)

    async def test_unconfigured_source_is_rejected(self, db, service):
        """Without a Ramp client every Ramp delivery fails verification."""
        with pytest.raises(WebhookSignatureError):
            await service.receive(db, WebhookSource.RAMP, b"{}", "sig")
