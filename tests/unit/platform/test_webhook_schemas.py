"""Unit tests for typed webhook event parsing."""

import pytest
from pydantic import ValidationError

from billflow.schemas.webhook import (
    ChargeEvent,
    InvoiceEvent,
    PaymentIntentEvent,
    RampLedgerEvent,
    SubscriptionEvent,
    UnknownRampEvent,
    UnknownStripeEvent,
    ramp_event_adapter,
    stripe_event_adapter,
)


class TestStripeEvents:
    """Tests for the Stripe event union."""

    def test_payment_intent_event(self):
        """payment_intent.* events carry a typed payment intent."""
        event = stripe_event_adapter.validate_python(
            {
                "id": "evt_1",
                "type": "payment_intent.payment_failed",
                "data": {
                    "object": {
                        "id": "pi_1",
                        "status": "requires_payment_method",
                        "last_payment_error": {"code": "card_declined"},
                    }
                },
            }
        )

        assert isinstance(event, PaymentIntentEvent)
        assert event.data.object.id == "pi_1"
        assert event.data.object.last_payment_error == {"code": "card_declined"}

    @pytest.mark.parametrize(
        "event_type, data_object, expected",
        [
            ("invoice.paid", {"id": "in_1"}, InvoiceEvent),
            (
                "customer.subscription.deleted",
                {"id": "sub_1", "status": "canceled"},
                SubscriptionEvent,
            ),
            ("charge.refunded", {"id": "ch_1"}, ChargeEvent),
        ],
    )
    def test_known_types_select_their_model(self, event_type, data_object, expected):
        """The event type string picks the variant."""
        event = stripe_event_adapter.validate_python(
            {"id": "evt_2", "type": event_type, "data": {"object": data_object}}
        )
        assert isinstance(event, expected)

    def test_unknown_type_is_accepted(self):
        """Types without a model parse as the unknown variant."""
        event = stripe_event_adapter.validate_python({"id": "evt_3", "type": "price.created"})

        assert isinstance(event, UnknownStripeEvent)
        assert event.type == "price.created"

    def test_known_type_with_malformed_object_is_rejected(self):
        """A payment intent event without an intent id fails validation."""
        with pytest.raises(ValidationError):
            stripe_event_adapter.validate_python(
                {
                    "id": "evt_4",
                    "type": "payment_intent.succeeded",
                    "data": {"object": {"status": "succeeded"}},
                }
            )


class TestRampEvents:
    """Tests for the Ramp event union."""

    def test_ledger_event(self):
        """Transaction, card, user, reimbursement and bill events are ledger events."""
        event = ramp_event_adapter.validate_python(
            {"id": "re_1", "type": "transaction.created", "business_id": "biz_1"}
        )

        assert isinstance(event, RampLedgerEvent)
        assert event.business_id == "biz_1"

    def test_unknown_ramp_event(self):
        """Other types parse as the unknown variant."""
        event = ramp_event_adapter.validate_python({"id": "re_2", "type": "vendor.created"})
        assert isinstance(event, UnknownRampEvent)
