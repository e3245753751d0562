"""Stripe API client for payment gateway operations.

This module provides a clean interface to the Stripe API, handling all direct
Stripe interactions without business logic. Amounts cross this boundary in
major units and are converted to Stripe's minor units here.
"""

import json
from decimal import Decimal
from typing import Any, Awaitable, Dict, Optional, TypeVar

import stripe
from stripe.error import SignatureVerificationError, StripeError

from billflow.core.config import settings
from billflow.core.exceptions import (
    ExternalServiceError,
    InvalidInputError,
    WebhookSignatureError,
)
from billflow.core.logging import logger
from billflow.core.money import to_minor_units

T = TypeVar("T")

stripe_logger = logger.with_context(component="stripe_client")


class StripeClient:
    """Client for Stripe API operations."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        webhook_secret: Optional[str] = None,
        webhook_tolerance: Optional[int] = None,
    ):
        """Initialize Stripe client.

        Args:
            api_key: Secret key, defaults to STRIPE_SECRET_KEY.
            webhook_secret: Signing secret, defaults to STRIPE_WEBHOOK_SECRET.
            webhook_tolerance: Max age of a signed payload in seconds.
        """
        api_key = api_key or settings.STRIPE_SECRET_KEY
        if not api_key:
            raise ValueError("Stripe is not configured: STRIPE_SECRET_KEY is empty")

        stripe.api_key = api_key
        self.webhook_secret = webhook_secret or settings.STRIPE_WEBHOOK_SECRET
        self.webhook_tolerance = webhook_tolerance or settings.STRIPE_WEBHOOK_TOLERANCE

    def _clean_metadata(self, metadata: Optional[Dict[str, Any]]) -> Dict[str, str]:
        """Stripe metadata only holds ASCII strings."""
        if not metadata:
            return {}

        return {
            str(key).encode("ascii", "replace").decode("ascii"): str(value)
            .encode("ascii", "replace")
            .decode("ascii")
            for key, value in metadata.items()
        }

    async def _request(self, action: str, call: Awaitable[T]) -> T:
        """Await a Stripe call, wrapping SDK failures."""
        try:
            return await call
        except StripeError as e:
            stripe_logger.error(f"Stripe call failed: {action}: {e}")
            raise ExternalServiceError(
                service_name="Stripe",
                message=f"Failed to {action}: {str(e)}",
            ) from e

    # Customer operations

    async def create_customer(
        self, email: str, name: str, metadata: Optional[Dict[str, Any]] = None
    ) -> stripe.Customer:
        """Create a Stripe customer."""
        return await self._request(
            "create customer",
            stripe.Customer.create_async(
                email=email, name=name, metadata=self._clean_metadata(metadata)
            ),
        )

    async def get_customer(self, customer_id: str) -> stripe.Customer:
        """Retrieve a Stripe customer."""
        return await self._request(
            "retrieve customer", stripe.Customer.retrieve_async(customer_id)
        )

    async def update_customer(self, customer_id: str, **params: Any) -> stripe.Customer:
        """Update a Stripe customer."""
        if "metadata" in params:
            params["metadata"] = self._clean_metadata(params["metadata"])
        return await self._request(
            "update customer", stripe.Customer.modify_async(customer_id, **params)
        )

    async def delete_customer(self, customer_id: str) -> None:
        """Delete a Stripe customer."""
        await self._request("delete customer", stripe.Customer.delete_async(customer_id))

    # Subscription operations

    async def create_subscription(
        self,
        customer_id: str,
        price_id: str,
        quantity: int = 1,
        trial_period_days: Optional[int] = None,
        default_payment_method: Optional[str] = None,
        cancel_at_period_end: bool = False,
        coupon_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> stripe.Subscription:
        """Create a subscription directly (no checkout)."""
        params: Dict[str, Any] = {
            "customer": customer_id,
            "items": [{"price": price_id, "quantity": quantity}],
            "cancel_at_period_end": cancel_at_period_end,
            "metadata": self._clean_metadata(metadata),
        }
        if trial_period_days:
            params["trial_period_days"] = trial_period_days
        if default_payment_method:
            params["default_payment_method"] = default_payment_method
        if coupon_id:
            params["coupon"] = coupon_id

        return await self._request(
            "create subscription", stripe.Subscription.create_async(**params)
        )

    async def get_subscription(self, subscription_id: str) -> stripe.Subscription:
        """Retrieve a subscription."""
        return await self._request(
            "retrieve subscription", stripe.Subscription.retrieve_async(subscription_id)
        )

    async def get_first_item_id(self, subscription_id: str) -> str:
        """Id of the subscription's first item, which carries its price and quantity."""
        subscription = await self.get_subscription(subscription_id)
        items_data = (subscription.get("items") or {}).get("data") or []
        if not items_data:
            raise ExternalServiceError(
                service_name="Stripe",
                message=f"Subscription {subscription_id} has no items",
            )
        return items_data[0]["id"]

    async def update_subscription(
        self,
        subscription_id: str,
        price_id: Optional[str] = None,
        quantity: Optional[int] = None,
        cancel_at_period_end: Optional[bool] = None,
        trial_end: Optional[int | str] = None,
        pause_collection: Optional[Dict[str, Any] | str] = None,
        proration_behavior: str = "create_prorations",
        metadata: Optional[Dict[str, Any]] = None,
    ) -> stripe.Subscription:
        """Update a subscription.

        Price and quantity changes apply to the first subscription item, whose id
        is looked up fresh before the change is pushed. ``pause_collection=""``
        clears a pause.
        """
        update_params: Dict[str, Any] = {"proration_behavior": proration_behavior}

        if price_id or quantity is not None:
            item: Dict[str, Any] = {"id": await self.get_first_item_id(subscription_id)}
            if price_id:
                item["price"] = price_id
            if quantity is not None:
                item["quantity"] = quantity
            update_params["items"] = [item]

        if cancel_at_period_end is not None:
            update_params["cancel_at_period_end"] = cancel_at_period_end
        if trial_end is not None:
            update_params["trial_end"] = trial_end
        if pause_collection is not None:
            update_params["pause_collection"] = pause_collection
        if metadata:
            update_params["metadata"] = self._clean_metadata(metadata)

        return await self._request(
            "update subscription",
            stripe.Subscription.modify_async(subscription_id, **update_params),
        )

    async def cancel_subscription(
        self, subscription_id: str, at_period_end: bool = True
    ) -> stripe.Subscription:
        """Cancel a subscription, either at period end or immediately."""
        if at_period_end:
            call = stripe.Subscription.modify_async(subscription_id, cancel_at_period_end=True)
        else:
            call = stripe.Subscription.cancel_async(subscription_id)
        return await self._request("cancel subscription", call)

    async def resume_subscription(self, subscription_id: str) -> stripe.Subscription:
        """Undo a pending cancellation at period end."""
        return await self._request(
            "resume subscription",
            stripe.Subscription.modify_async(subscription_id, cancel_at_period_end=False),
        )

    async def list_subscriptions(self, customer_id: str, status: str = "all") -> list[Any]:
        """List the subscriptions of a customer."""
        result = await self._request(
            "list subscriptions",
            stripe.Subscription.list_async(customer=customer_id, status=status, limit=100),
        )
        return list(result.get("data") or [])

    async def create_usage_record(
        self, subscription_item_id: str, quantity: int, timestamp: int, action: str = "increment"
    ) -> Any:
        """Report metered usage for a subscription item."""
        return await self._request(
            "create usage record",
            stripe.SubscriptionItem.create_usage_record_async(
                subscription_item_id, quantity=quantity, timestamp=timestamp, action=action
            ),
        )

    # Invoice operations

    async def create_invoice(
        self,
        customer_id: str,
        subscription_id: Optional[str] = None,
        collection_method: str = "charge_automatically",
        days_until_due: Optional[int] = None,
        auto_advance: bool = False,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> stripe.Invoice:
        """Create a draft invoice."""
        params: Dict[str, Any] = {
            "customer": customer_id,
            "collection_method": collection_method,
            "auto_advance": auto_advance,
            "metadata": self._clean_metadata(metadata),
        }
        if subscription_id:
            params["subscription"] = subscription_id
        if collection_method == "send_invoice":
            params["days_until_due"] = days_until_due or settings.INVOICE_DAYS_UNTIL_DUE

        return await self._request("create invoice", stripe.Invoice.create_async(**params))

    async def create_invoice_item(
        self,
        customer_id: str,
        invoice_id: str,
        amount: Decimal,
        currency: str,
        description: str,
    ) -> stripe.InvoiceItem:
        """Add an item to a draft invoice."""
        return await self._request(
            "create invoice item",
            stripe.InvoiceItem.create_async(
                customer=customer_id,
                invoice=invoice_id,
                amount=to_minor_units(amount, currency),
                currency=currency.lower(),
                description=description,
            ),
        )

    async def delete_invoice_item(self, invoice_item_id: str) -> None:
        """Remove an item from a draft invoice."""
        await self._request("delete invoice item", stripe.InvoiceItem.delete_async(invoice_item_id))

    async def finalize_invoice(self, invoice_id: str) -> stripe.Invoice:
        """Finalize a draft invoice."""
        return await self._request(
            "finalize invoice", stripe.Invoice.finalize_invoice_async(invoice_id)
        )

    async def pay_invoice(
        self, invoice_id: str, payment_method_id: Optional[str] = None
    ) -> stripe.Invoice:
        """Attempt to collect an open invoice."""
        params: Dict[str, Any] = {}
        if payment_method_id:
            params["payment_method"] = payment_method_id
        return await self._request("pay invoice", stripe.Invoice.pay_async(invoice_id, **params))

    async def void_invoice(self, invoice_id: str) -> stripe.Invoice:
        """Void a finalized invoice."""
        return await self._request("void invoice", stripe.Invoice.void_invoice_async(invoice_id))

    async def mark_invoice_uncollectible(self, invoice_id: str) -> stripe.Invoice:
        """Write an invoice off."""
        return await self._request(
            "mark invoice uncollectible", stripe.Invoice.mark_uncollectible_async(invoice_id)
        )

    # Payment intent operations

    async def create_payment_intent(
        self,
        amount: Decimal,
        currency: str,
        customer_id: str,
        payment_method_id: Optional[str] = None,
        confirm: bool = False,
        capture_method: str = "automatic",
        description: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> stripe.PaymentIntent:
        """Create a payment intent."""
        params: Dict[str, Any] = {
            "amount": to_minor_units(amount, currency),
            "currency": currency.lower(),
            "customer": customer_id,
            "capture_method": capture_method,
            "metadata": self._clean_metadata(metadata),
        }
        if payment_method_id:
            params["payment_method"] = payment_method_id
        if confirm:
            params["confirm"] = True
            params["off_session"] = True
        if description:
            params["description"] = description

        return await self._request(
            "create payment intent", stripe.PaymentIntent.create_async(**params)
        )

    async def get_payment_intent(self, payment_intent_id: str) -> stripe.PaymentIntent:
        """Retrieve a payment intent."""
        return await self._request(
            "retrieve payment intent", stripe.PaymentIntent.retrieve_async(payment_intent_id)
        )

    async def confirm_payment_intent(
        self, payment_intent_id: str, payment_method_id: Optional[str] = None
    ) -> stripe.PaymentIntent:
        """Confirm a payment intent."""
        params: Dict[str, Any] = {}
        if payment_method_id:
            params["payment_method"] = payment_method_id
        return await self._request(
            "confirm payment intent",
            stripe.PaymentIntent.confirm_async(payment_intent_id, **params),
        )

    async def capture_payment_intent(
        self, payment_intent_id: str, amount: Optional[Decimal] = None, currency: str = "USD"
    ) -> stripe.PaymentIntent:
        """Capture an authorized payment intent."""
        params: Dict[str, Any] = {}
        if amount is not None:
            params["amount_to_capture"] = to_minor_units(amount, currency)
        return await self._request(
            "capture payment intent",
            stripe.PaymentIntent.capture_async(payment_intent_id, **params),
        )

    async def cancel_payment_intent(self, payment_intent_id: str) -> stripe.PaymentIntent:
        """Cancel a payment intent."""
        return await self._request(
            "cancel payment intent", stripe.PaymentIntent.cancel_async(payment_intent_id)
        )

    # Refund operations

    async def create_refund(
        self,
        payment_intent_id: str,
        amount: Decimal,
        currency: str,
        reason: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> stripe.Refund:
        """Refund (part of) a payment intent."""
        params: Dict[str, Any] = {
            "payment_intent": payment_intent_id,
            "amount": to_minor_units(amount, currency),
            "metadata": self._clean_metadata(metadata),
        }
        if reason:
            params["reason"] = reason
        return await self._request("create refund", stripe.Refund.create_async(**params))

    async def get_refund(self, refund_id: str) -> stripe.Refund:
        """Retrieve a refund."""
        return await self._request("retrieve refund", stripe.Refund.retrieve_async(refund_id))

    # Payment method operations

    async def attach_payment_method(
        self, payment_method_id: str, customer_id: str
    ) -> stripe.PaymentMethod:
        """Attach a payment method to a customer."""
        return await self._request(
            "attach payment method",
            stripe.PaymentMethod.attach_async(payment_method_id, customer=customer_id),
        )

    async def detach_payment_method(self, payment_method_id: str) -> stripe.PaymentMethod:
        """Detach a payment method from its customer."""
        return await self._request(
            "detach payment method", stripe.PaymentMethod.detach_async(payment_method_id)
        )

    async def list_payment_methods(self, customer_id: str, type: str = "card") -> list[Any]:
        """List a customer's payment methods."""
        result = await self._request(
            "list payment methods",
            stripe.PaymentMethod.list_async(customer=customer_id, type=type),
        )
        return list(result.get("data") or [])

    # Catalog operations

    async def create_product(
        self, name: str, metadata: Optional[Dict[str, Any]] = None
    ) -> stripe.Product:
        """Create a product."""
        return await self._request(
            "create product",
            stripe.Product.create_async(name=name, metadata=self._clean_metadata(metadata)),
        )

    async def get_product(self, product_id: str) -> stripe.Product:
        """Retrieve a product."""
        return await self._request("retrieve product", stripe.Product.retrieve_async(product_id))

    async def create_price(
        self,
        product_id: str,
        amount: Decimal,
        currency: str,
        interval: str,
        interval_count: int = 1,
        usage_type: str = "licensed",
    ) -> stripe.Price:
        """Create a recurring price."""
        return await self._request(
            "create price",
            stripe.Price.create_async(
                product=product_id,
                unit_amount=to_minor_units(amount, currency),
                currency=currency.lower(),
                recurring={
                    "interval": interval,
                    "interval_count": interval_count,
                    "usage_type": usage_type,
                },
            ),
        )

    async def get_price(self, price_id: str) -> stripe.Price:
        """Retrieve a price."""
        return await self._request("retrieve price", stripe.Price.retrieve_async(price_id))

    # Webhooks

    def verify_webhook_signature(self, payload: bytes, signature: Optional[str]) -> dict:
        """Verify a webhook delivery against the exact bytes received and decode it.

        Raises:
            WebhookSignatureError: If the header is missing, malformed or does not match.
        """
        if not signature:
            raise WebhookSignatureError("stripe", "Missing stripe-signature header")
        try:
            stripe.WebhookSignature.verify_header(
                payload.decode("utf-8"), signature, self.webhook_secret, self.webhook_tolerance
            )
        except (SignatureVerificationError, UnicodeDecodeError) as e:
            raise WebhookSignatureError("stripe", f"Invalid webhook signature: {e}") from e

        try:
            return json.loads(payload)
        except ValueError as e:
            raise InvalidInputError(f"Invalid Stripe webhook payload: {e}") from e
