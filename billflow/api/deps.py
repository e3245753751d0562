"""Dependencies that are used in the API endpoints.

Gateways are built once from settings. Services are cheap and built per request
around them, except the ledger sync service, which tracks running syncs and is
therefore shared. Tests replace any of these through ``app.dependency_overrides``.
"""

from functools import lru_cache
from typing import Optional

from fastapi import Depends, Query

from billflow import schemas
from billflow.core.config import settings
from billflow.core.exceptions import InvalidStateError
from billflow.core.logging import logger
from billflow.db.session import get_db  # noqa: F401
from billflow.integrations.ramp_client import RampClient
from billflow.integrations.stripe_client import StripeClient
from billflow.platform.billing.billing_service import BillingService
from billflow.platform.billing.invoice_service import InvoiceService
from billflow.platform.billing.payment_service import PaymentService
from billflow.platform.billing.subscription_service import SubscriptionService
from billflow.platform.sync.ledger_sync import LedgerSyncService
from billflow.platform.webhooks.webhook_service import WebhookService


@lru_cache
def get_payment_gateway() -> Optional[StripeClient]:
    """The Stripe client, or None when Stripe is disabled."""
    if not settings.STRIPE_ENABLED:
        logger.info("Stripe is disabled, running without a payment gateway")
        return None
    return StripeClient()


@lru_cache
def get_ledger_gateway() -> Optional[RampClient]:
    """The Ramp client, or None when Ramp is disabled."""
    if not settings.RAMP_ENABLED:
        logger.info("Ramp is disabled, running without a ledger gateway")
        return None
    return RampClient()


async def close_gateways() -> None:
    """Release gateway resources that were actually created."""
    if get_ledger_gateway.cache_info().currsize:
        ledger_gateway = get_ledger_gateway()
        if ledger_gateway is not None:
            await ledger_gateway.aclose()
    get_ledger_gateway.cache_clear()
    get_payment_gateway.cache_clear()
    _ledger_sync_service.cache_clear()


def get_pagination(
    page: int = Query(1, ge=1, description="1-based page number"),
    limit: int = Query(20, ge=1, le=100, description="Items per page"),
) -> schemas.PaginationParams:
    """Pagination query parameters."""
    return schemas.PaginationParams(page=page, limit=limit)


def get_subscription_service(
    gateway: Optional[StripeClient] = Depends(get_payment_gateway),
) -> SubscriptionService:
    """Subscription lifecycle service."""
    return SubscriptionService(gateway)


def get_invoice_service(
    gateway: Optional[StripeClient] = Depends(get_payment_gateway),
) -> InvoiceService:
    """Invoice service."""
    return InvoiceService(gateway)


def get_payment_service(
    gateway: Optional[StripeClient] = Depends(get_payment_gateway),
) -> PaymentService:
    """Payment and refund service."""
    return PaymentService(gateway)


def get_billing_service(
    gateway: Optional[StripeClient] = Depends(get_payment_gateway),
) -> BillingService:
    """Billing reconciliation and analytics service."""
    return BillingService(gateway)


def get_webhook_service(
    stripe_gateway: Optional[StripeClient] = Depends(get_payment_gateway),
    ramp_gateway: Optional[RampClient] = Depends(get_ledger_gateway),
    payment_service: PaymentService = Depends(get_payment_service),
) -> WebhookService:
    """Webhook pipeline for both gateways."""
    return WebhookService(stripe_gateway, ramp_gateway, payment_service)


@lru_cache
def _ledger_sync_service(ledger_gateway: RampClient) -> LedgerSyncService:
    return LedgerSyncService(ledger_gateway)


def get_ledger_sync_service(
    ledger_gateway: Optional[RampClient] = Depends(get_ledger_gateway),
) -> LedgerSyncService:
    """The shared ledger sync service.

    Raises:
    ------
        InvalidStateError: If the ledger gateway is not configured.

    """
    if ledger_gateway is None:
        raise InvalidStateError("Ledger gateway is not configured")
    return _ledger_sync_service(ledger_gateway)

