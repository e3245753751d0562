"""Webhook receivers for the payment and ledger gateways.

Signatures are computed over the raw body, so the body is read as bytes and
never parsed before verification.
"""

from typing import Optional

from fastapi import Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession

from billflow import schemas
from billflow.api import deps
from billflow.api.router import TrailingSlashRouter
from billflow.platform.webhooks.webhook_service import WebhookService

router = TrailingSlashRouter()


@router.post("/stripe", response_model=schemas.WebhookAck)
async def stripe_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(None, alias="stripe-signature"),
    db: AsyncSession = Depends(deps.get_db),
    service: WebhookService = Depends(deps.get_webhook_service),
) -> schemas.WebhookAck:
    """Receive a Stripe event.

    Unknown event types are acknowledged. A processing failure answers 500 so
    Stripe delivers the event again.
    """
    payload = await request.body()
    return await service.receive(db, schemas.WebhookSource.STRIPE, payload, stripe_signature)


@router.post("/ramp", response_model=schemas.WebhookAck)
async def ramp_webhook(
    request: Request,
    ramp_signature: Optional[str] = Header(None, alias="x-ramp-signature"),
    db: AsyncSession = Depends(deps.get_db),
    service: WebhookService = Depends(deps.get_webhook_service),
) -> schemas.WebhookAck:
    """Receive a Ramp event."""
    payload = await request.body()
    return await service.receive(db, schemas.WebhookSource.RAMP, payload, ramp_signature)
