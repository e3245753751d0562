"""Processor for payment gateway (Stripe) webhook events.

Every handler writes absolute state keyed on gateway ids, never deltas, so a
delivery processed twice ends in the same state as one processed once.
"""

from typing import Awaitable, Callable

from sqlalchemy.ext.asyncio import AsyncSession

from billflow import crud
from billflow.core.datetime_utils import utc_now_naive
from billflow.core.logging import ContextualLogger
from billflow.db.unit_of_work import UnitOfWork
from billflow.platform.billing.invoice_logic import paid_in_full_changes
from billflow.platform.billing.payment_service import PaymentService
from billflow.platform.billing.subscription_service import subscription_fields_from_gateway
from billflow.schemas.invoice import InvoiceStatus
from billflow.schemas.subscription import SubscriptionStatus
from billflow.schemas.webhook import (
    InvoiceEvent,
    PaymentIntentEvent,
    StripeEvent,
    SubscriptionEvent,
)

EventHandler = Callable[[AsyncSession, StripeEvent, UnitOfWork, ContextualLogger], Awaitable[None]]

# The intent status each event asserts. A failed attempt leaves the intent in
# requires_payment_method, which on its own would read as pending.
_INTENT_STATUS_BY_EVENT = {
    "payment_intent.succeeded": "succeeded",
    "payment_intent.payment_failed": "failed",
    "payment_intent.processing": "processing",
    "payment_intent.canceled": "canceled",
    "payment_intent.requires_action": "requires_action",
}


class StripeEventProcessor:
    """Apply Stripe webhook events to local state."""

    def __init__(self, payment_service: PaymentService):
        """Initialize the processor.

        Args:
        ----
            payment_service (PaymentService): Applies payment intent status changes.

        """
        self.payment_service = payment_service

        # Event handler mapping
        self.handlers: dict[str, EventHandler] = {
            **{event_type: self._handle_payment_intent for event_type in _INTENT_STATUS_BY_EVENT},
            "invoice.paid": self._handle_invoice_paid,
            "invoice.payment_failed": self._handle_invoice_payment_failed,
            "invoice.finalized": self._handle_invoice_finalized,
            "customer.subscription.created": self._handle_subscription_changed,
            "customer.subscription.updated": self._handle_subscription_changed,
            "customer.subscription.deleted": self._handle_subscription_deleted,
            "customer.subscription.trial_will_end": self._log_only,
            "charge.refunded": self._log_only,
            "charge.dispute.created": self._log_only,
        }

    async def process_event(
        self, db: AsyncSession, event: StripeEvent, uow: UnitOfWork, log: ContextualLogger
    ) -> None:
        """Dispatch an event to its handler; unknown types are only logged."""
        handler = self.handlers.get(event.type)
        if handler is None:
            log.info(f"Unhandled webhook event type: {event.type}")
            return

        log.info(f"Processing webhook event: {event.type}")
        await handler(db, event, uow, log)

    # Event handlers

    async def _handle_payment_intent(
        self, db: AsyncSession, event: PaymentIntentEvent, uow: UnitOfWork, log: ContextualLogger
    ) -> None:
        intent = event.data.object
        await self.payment_service.process_webhook_update(
            db,
            intent.id,
            _INTENT_STATUS_BY_EVENT[event.type],
            failure=intent.last_payment_error,
            uow=uow,
        )

    async def _handle_invoice_paid(
        self, db: AsyncSession, event: InvoiceEvent, uow: UnitOfWork, log: ContextualLogger
    ) -> None:
        """Settle the local invoice in full."""
        invoice = await crud.invoice.get_by_stripe_id(db, event.data.object.id)
        if not invoice:
            log.warning(f"No local invoice for {event.data.object.id}")
            return
        if invoice.status == InvoiceStatus.VOID.value:
            log.warning(f"Invoice {invoice.number} is void, ignoring payment")
            return

        await crud.invoice.update(
            db, db_obj=invoice, obj_in=paid_in_full_changes(invoice, utc_now_naive()), uow=uow
        )
        log.info(f"Invoice {invoice.number} paid")

    async def _handle_invoice_payment_failed(
        self, db: AsyncSession, event: InvoiceEvent, uow: UnitOfWork, log: ContextualLogger
    ) -> None:
        """Move an open invoice to past due."""
        invoice = await crud.invoice.get_by_stripe_id(db, event.data.object.id)
        if not invoice:
            log.warning(f"No local invoice for {event.data.object.id}")
            return
        if invoice.status != InvoiceStatus.OPEN.value:
            log.info(f"Invoice {invoice.number} is {invoice.status}, leaving it")
            return

        await crud.invoice.update(
            db, db_obj=invoice, obj_in={"status": InvoiceStatus.PAST_DUE.value}, uow=uow
        )
        log.info(f"Invoice {invoice.number} past due after failed payment")

    async def _handle_invoice_finalized(
        self, db: AsyncSession, event: InvoiceEvent, uow: UnitOfWork, log: ContextualLogger
    ) -> None:
        """Open a local draft the gateway finalized."""
        invoice = await crud.invoice.get_by_stripe_id(db, event.data.object.id)
        if not invoice:
            log.warning(f"No local invoice for {event.data.object.id}")
            return
        if invoice.status != InvoiceStatus.DRAFT.value:
            return

        await crud.invoice.update(
            db,
            db_obj=invoice,
            obj_in={"status": InvoiceStatus.OPEN.value, "finalized_at": utc_now_naive()},
            uow=uow,
        )
        log.info(f"Invoice {invoice.number} finalized")

    async def _handle_subscription_changed(
        self, db: AsyncSession, event: SubscriptionEvent, uow: UnitOfWork, log: ContextualLogger
    ) -> None:
        """Adopt the gateway's status, period and flags."""
        gateway_subscription = event.data.object
        subscription = await crud.subscription.get_by_stripe_id(db, gateway_subscription.id)
        if not subscription:
            log.info(f"Subscription {gateway_subscription.id} is not tracked locally")
            return

        fields = subscription_fields_from_gateway(gateway_subscription.model_dump())
        await crud.subscription.update(db, db_obj=subscription, obj_in=fields, uow=uow)
        log.info(f"Subscription {subscription.id} is {fields['status']}")

    async def _handle_subscription_deleted(
        self, db: AsyncSession, event: SubscriptionEvent, uow: UnitOfWork, log: ContextualLogger
    ) -> None:
        """Cancel the local subscription."""
        gateway_subscription = event.data.object
        subscription = await crud.subscription.get_by_stripe_id(db, gateway_subscription.id)
        if not subscription:
            log.info(f"Subscription {gateway_subscription.id} is not tracked locally")
            return

        fields = subscription_fields_from_gateway(gateway_subscription.model_dump())
        now = utc_now_naive()
        fields["status"] = SubscriptionStatus.CANCELED.value
        fields["ended_at"] = fields.get("ended_at") or subscription.ended_at or now
        fields["canceled_at"] = fields.get("canceled_at") or subscription.canceled_at or now
        await crud.subscription.update(db, db_obj=subscription, obj_in=fields, uow=uow)
        log.info(f"Subscription {subscription.id} canceled by the gateway")

    async def _log_only(
        self, db: AsyncSession, event: StripeEvent, uow: UnitOfWork, log: ContextualLogger
    ) -> None:
        event_object = event.data.object
        object_id = (
            event_object.get("id") if isinstance(event_object, dict) else event_object.id
        )
        log.info(f"Recorded {event.type} for {object_id}")
