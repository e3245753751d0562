"""Webhook reconciliation pipeline.

A delivery is verified over the exact bytes received, parsed into a typed event,
checked against the log of processed events and dispatched. The handler's writes
and the processed-event row are committed together, so a handler failure leaves
no trace and the gateway's retry runs it again.
"""

from typing import Any, Optional, Union

from pydantic import ValidationError
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from billflow import crud
from billflow.core.datetime_utils import utc_now_naive
from billflow.core.exceptions import WebhookProcessingError, WebhookSignatureError
from billflow.core.logging import logger
from billflow.db.unit_of_work import UnitOfWork
from billflow.integrations.ramp_client import RampClient
from billflow.integrations.stripe_client import StripeClient
from billflow.platform.billing.payment_service import PaymentService
from billflow.platform.webhooks.ramp_events import RampEventProcessor
from billflow.platform.webhooks.stripe_events import StripeEventProcessor
from billflow.schemas.webhook import (
    RampEvent,
    StripeEvent,
    WebhookAck,
    WebhookSource,
    ramp_event_adapter,
    stripe_event_adapter,
)


class WebhookService:
    """Receive, deduplicate and dispatch gateway webhook deliveries."""

    def __init__(
        self,
        stripe_gateway: Optional[StripeClient],
        ramp_gateway: Optional[RampClient],
        payment_service: PaymentService,
    ):
        """Initialize the webhook service.

        Args:
        ----
            stripe_gateway (StripeClient, optional): Verifies Stripe signatures.
            ramp_gateway (RampClient, optional): Verifies Ramp signatures.
            payment_service (PaymentService): Applies payment intent updates.

        """
        self.stripe_gateway = stripe_gateway
        self.ramp_gateway = ramp_gateway
        self.processors = {
            WebhookSource.STRIPE: StripeEventProcessor(payment_service),
            WebhookSource.RAMP: RampEventProcessor(),
        }

    def _verify(self, source: WebhookSource, raw_body: bytes, signature: Optional[str]) -> Any:
        gateway = self.stripe_gateway if source == WebhookSource.STRIPE else self.ramp_gateway
        if gateway is None:
            raise WebhookSignatureError(source.value, "Webhook source is not configured")
        return gateway.verify_webhook_signature(raw_body, signature)

    @staticmethod
    def _parse(source: WebhookSource, payload: Any) -> Union[StripeEvent, RampEvent]:
        adapter = stripe_event_adapter if source == WebhookSource.STRIPE else ramp_event_adapter
        try:
            return adapter.validate_python(payload)
        except ValidationError as e:
            raise WebhookProcessingError(source.value, f"Malformed event: {e}") from e

    async def receive(
        self,
        db: AsyncSession,
        source: Union[WebhookSource, str],
        raw_body: bytes,
        signature: Optional[str],
    ) -> WebhookAck:
        """Handle one webhook delivery.

        Args:
        ----
            db (AsyncSession): The database session.
            source (WebhookSource): Which gateway sent the delivery.
            raw_body (bytes): The request body exactly as received.
            signature (str, optional): The signature header.

        Returns:
        -------
            WebhookAck: ``duplicate`` is set when the event was already processed.

        Raises:
        ------
            WebhookSignatureError: If verification fails; nothing is written.
            WebhookProcessingError: If the verified body is not a well-formed event
                or the handler fails; nothing is written and the gateway retries.

        """
        source = WebhookSource(source)
        event = self._parse(source, self._verify(source, raw_body, signature))
        log = logger.with_context(
            source=source.value, event_id=event.id, event_type=event.type
        )

        if await crud.webhook_event.get_by_event(db, source.value, event.id):
            log.info("Duplicate delivery, already processed")
            return WebhookAck(duplicate=True)

        try:
            async with UnitOfWork(db) as uow:
                await self.processors[source].process_event(db, event, uow, log)
                await crud.webhook_event.create(
                    db,
                    obj_in={
                        "source": source.value,
                        "event_id": event.id,
                        "event_type": event.type,
                        "processed_at": utc_now_naive(),
                    },
                    uow=uow,
                )
                await uow.commit()
        except IntegrityError as e:
            # A concurrent delivery of the same event committed first
            if await crud.webhook_event.get_by_event(db, source.value, event.id):
                log.info("Duplicate delivery, processed concurrently")
                return WebhookAck(duplicate=True)
            raise WebhookProcessingError(source.value, f"Could not record {event.id}") from e
        except Exception as e:
            log.error(f"Error handling {event.type}: {e}", exc_info=True)
            raise WebhookProcessingError(
                source.value, f"Error handling {event.type} {event.id}: {e}"
            ) from e

        return WebhookAck()
