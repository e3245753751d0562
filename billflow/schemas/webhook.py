"""Typed webhook events.

Payloads are validated at the boundary into closed unions keyed on the event
type string. Types without a dedicated model fall through to an ``Unknown*``
variant so they can be acknowledged without being rejected.
"""

from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union, get_args

from pydantic import BaseModel, ConfigDict, Discriminator, Field, Tag, TypeAdapter


class WebhookSource(str, Enum):
    """Origin of a webhook delivery."""

    STRIPE = "stripe"
    RAMP = "ramp"


class _EventModel(BaseModel):
    model_config = ConfigDict(extra="allow")


# Stripe


class PaymentIntentObject(_EventModel):
    """The payment intent carried by payment_intent.* events."""

    id: str
    status: str
    amount: Optional[int] = None
    currency: Optional[str] = None
    invoice: Optional[str] = None
    last_payment_error: Optional[dict[str, Any]] = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class StripeInvoiceObject(_EventModel):
    """The invoice carried by invoice.* events."""

    id: str
    status: Optional[str] = None
    amount_paid: Optional[int] = None
    amount_due: Optional[int] = None
    total: Optional[int] = None
    currency: Optional[str] = None
    subscription: Optional[str] = None
    status_transitions: dict[str, Any] = Field(default_factory=dict)


class StripeSubscriptionObject(_EventModel):
    """The subscription carried by customer.subscription.* events."""

    id: str
    status: str
    customer: Optional[str] = None
    current_period_start: Optional[int] = None
    current_period_end: Optional[int] = None
    cancel_at_period_end: bool = False
    canceled_at: Optional[int] = None
    ended_at: Optional[int] = None
    trial_start: Optional[int] = None
    trial_end: Optional[int] = None
    items: dict[str, Any] = Field(default_factory=dict)


class _StripeEvent(_EventModel):
    id: str
    created: Optional[int] = None
    livemode: bool = False


class _PaymentIntentData(_EventModel):
    object: PaymentIntentObject


class _InvoiceData(_EventModel):
    object: StripeInvoiceObject


class _SubscriptionData(_EventModel):
    object: StripeSubscriptionObject


class _GenericData(_EventModel):
    object: dict[str, Any] = Field(default_factory=dict)


class PaymentIntentEvent(_StripeEvent):
    """payment_intent.* lifecycle event."""

    type: Literal[
        "payment_intent.succeeded",
        "payment_intent.payment_failed",
        "payment_intent.processing",
        "payment_intent.canceled",
        "payment_intent.requires_action",
    ]
    data: _PaymentIntentData


class InvoiceEvent(_StripeEvent):
    """invoice.* lifecycle event."""

    type: Literal["invoice.paid", "invoice.payment_failed", "invoice.finalized"]
    data: _InvoiceData


class SubscriptionEvent(_StripeEvent):
    """customer.subscription.* lifecycle event."""

    type: Literal[
        "customer.subscription.created",
        "customer.subscription.updated",
        "customer.subscription.deleted",
        "customer.subscription.trial_will_end",
    ]
    data: _SubscriptionData


class ChargeEvent(_StripeEvent):
    """charge.* notifications that are only recorded."""

    type: Literal["charge.refunded", "charge.dispute.created"]
    data: _GenericData


class UnknownStripeEvent(_StripeEvent):
    """Any Stripe event type without a dedicated model."""

    type: str
    data: _GenericData = Field(default_factory=_GenericData)


_STRIPE_TAG_BY_TYPE = {
    event_type: tag
    for tag, model in (
        ("payment_intent", PaymentIntentEvent),
        ("invoice", InvoiceEvent),
        ("subscription", SubscriptionEvent),
        ("charge", ChargeEvent),
    )
    for event_type in get_args(model.model_fields["type"].annotation)
}


def _event_type(value: Any) -> str:
    if isinstance(value, dict):
        return str(value.get("type", ""))
    return str(getattr(value, "type", ""))


def _stripe_event_tag(value: Any) -> str:
    return _STRIPE_TAG_BY_TYPE.get(_event_type(value), "unknown")


StripeEvent = Annotated[
    Union[
        Annotated[PaymentIntentEvent, Tag("payment_intent")],
        Annotated[InvoiceEvent, Tag("invoice")],
        Annotated[SubscriptionEvent, Tag("subscription")],
        Annotated[ChargeEvent, Tag("charge")],
        Annotated[UnknownStripeEvent, Tag("unknown")],
    ],
    Discriminator(_stripe_event_tag),
]

stripe_event_adapter: TypeAdapter[StripeEvent] = TypeAdapter(StripeEvent)


# Ramp


class _RampEvent(_EventModel):
    id: str
    business_id: Optional[str] = None
    created_at: Optional[str] = None
    data: dict[str, Any] = Field(default_factory=dict)


class RampLedgerEvent(_RampEvent):
    """Transaction, card, user, reimbursement and bill lifecycle events."""

    type: Literal[
        "transaction.created",
        "transaction.updated",
        "card.created",
        "card.updated",
        "card.suspended",
        "card.terminated",
        "user.created",
        "user.updated",
        "reimbursement.created",
        "reimbursement.updated",
        "bill.created",
        "bill.updated",
        "bill.paid",
    ]


class UnknownRampEvent(_RampEvent):
    """Any Ramp event type without a dedicated model."""

    type: str


RAMP_LEDGER_EVENT_TYPES = frozenset(get_args(RampLedgerEvent.model_fields["type"].annotation))


def _ramp_event_tag(value: Any) -> str:
    return "ledger" if _event_type(value) in RAMP_LEDGER_EVENT_TYPES else "unknown"


RampEvent = Annotated[
    Union[
        Annotated[RampLedgerEvent, Tag("ledger")],
        Annotated[UnknownRampEvent, Tag("unknown")],
    ],
    Discriminator(_ramp_event_tag),
]

ramp_event_adapter: TypeAdapter[RampEvent] = TypeAdapter(RampEvent)


class WebhookAck(BaseModel):
    """Body returned to the gateway once a delivery is handled."""

    received: bool = True
    duplicate: bool = False
