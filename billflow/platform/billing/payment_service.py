"""Payment service.

Creates, confirms, captures, cancels and refunds payments. Payments linked to an
invoice settle it when they succeed; the invoice is only ever credited on the
transition into ``succeeded`` so repeated notifications do not double count.
"""

from decimal import Decimal
from typing import Any, Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from billflow import crud, schemas
from billflow.core.config import settings
from billflow.core.datetime_utils import to_naive_utc, utc_now_naive
from billflow.core.exceptions import InvalidInputError, InvalidStateError, NotFoundException
from billflow.core.logging import ContextualLogger, logger
from billflow.core.money import round_money
from billflow.crud.crud_payment import REFUNDABLE_STATUSES
from billflow.db.unit_of_work import UnitOfWork
from billflow.integrations.stripe_client import StripeClient
from billflow.models import Payment
from billflow.platform.billing.invoice_logic import SETTLED_STATUSES, payment_changes
from billflow.schemas.common import Page, Pagination, PaginationParams
from billflow.schemas.payment import PaymentStatus

_GATEWAY_STATUS_MAP = {
    "succeeded": PaymentStatus.SUCCEEDED,
    "processing": PaymentStatus.PROCESSING,
    "requires_payment_method": PaymentStatus.PENDING,
    "requires_confirmation": PaymentStatus.PENDING,
    "requires_action": PaymentStatus.PENDING,
    "requires_capture": PaymentStatus.PENDING,  # Authorized, waiting for a manual capture
    "canceled": PaymentStatus.CANCELED,
}

# Position in the forward-only payment lifecycle; terminal outcomes share a rank
_STATUS_RANK = {
    PaymentStatus.PENDING.value: 0,
    PaymentStatus.PROCESSING.value: 1,
    PaymentStatus.SUCCEEDED.value: 2,
    PaymentStatus.FAILED.value: 2,
    PaymentStatus.CANCELED.value: 2,
    PaymentStatus.PARTIALLY_REFUNDED.value: 3,
    PaymentStatus.REFUNDED.value: 3,
}

# Statuses a payment cannot be canceled from
_UNCANCELABLE_STATUSES = (
    PaymentStatus.SUCCEEDED.value,
    PaymentStatus.REFUNDED.value,
    PaymentStatus.PARTIALLY_REFUNDED.value,
    PaymentStatus.CANCELED.value,
)


def map_gateway_status(gateway_status: Optional[str]) -> PaymentStatus:
    """Local payment status for a gateway payment intent status. Unknown values are failures."""
    return _GATEWAY_STATUS_MAP.get(gateway_status or "", PaymentStatus.FAILED)


def is_forward_transition(current: str, new: str) -> bool:
    """Whether a gateway report may move a payment from ``current`` to ``new``.

    Repeating the current status is allowed. Failed to pending only happens through
    an explicit retry, never through a gateway report.
    """
    return current == new or _STATUS_RANK[new] > _STATUS_RANK[current]


def failure_fields(intent: Any) -> dict[str, Optional[str]]:
    """Failure code and message carried by a payment intent, empty when it did not fail."""
    error = intent.get("last_payment_error") or {}
    if not error:
        return {}
    return {
        "failure_code": error.get("decline_code") or error.get("code"),
        "failure_message": error.get("message"),
    }


class PaymentService:
    """Service for payment and refund operations."""

    def __init__(self, payment_gateway: Optional[StripeClient] = None):
        """Initialize the payment service.

        Args:
        ----
            payment_gateway (StripeClient, optional): Gateway mirror, None when Stripe is off.

        """
        self.gateway = payment_gateway

    # ------------------------------ Helpers (internal) ------------------------------ #

    def _log(self, payment_id: UUID) -> ContextualLogger:
        return logger.with_context(payment_id=str(payment_id))

    async def _get_payment(self, db: AsyncSession, payment_id: UUID) -> Payment:
        payment = await crud.payment.get(db, payment_id)
        if not payment:
            raise NotFoundException(f"Payment {payment_id} not found")
        return payment

    def _require_intent(self, payment: Payment) -> str:
        if not (self.gateway and payment.stripe_payment_intent_id):
            raise InvalidStateError(f"Payment {payment.id} has no payment intent on the gateway")
        return payment.stripe_payment_intent_id

    @staticmethod
    def _to_schema(payment: Payment) -> schemas.Payment:
        return schemas.Payment.model_validate(payment, from_attributes=True)

    async def apply_to_invoice(
        self, db: AsyncSession, invoice_id: UUID, amount: Decimal, uow: UnitOfWork
    ) -> None:
        """Credit ``amount`` to an invoice, settling it once nothing is left to pay."""
        invoice = await crud.invoice.get(db, invoice_id)
        if not invoice:
            logger.warning(f"Invoice {invoice_id} not found, payment not applied")
            return
        if invoice.status in SETTLED_STATUSES:
            logger.warning(
                f"Invoice {invoice.number} is {invoice.status}, payment of {amount} not applied"
            )
            return
        await crud.invoice.update(
            db, db_obj=invoice, obj_in=payment_changes(invoice, amount, utc_now_naive()), uow=uow
        )

    async def _set_status(
        self,
        db: AsyncSession,
        payment: Payment,
        changes: dict[str, Any],
        uow: UnitOfWork,
        settled_amount: Optional[Decimal] = None,
    ) -> Payment:
        """Write ``changes``; entering succeeded applies the payment to its invoice."""
        entering_success = (
            changes.get("status") == PaymentStatus.SUCCEEDED.value
            and payment.status != PaymentStatus.SUCCEEDED.value
        )
        invoice_id = payment.invoice_id
        amount = settled_amount if settled_amount is not None else payment.amount

        payment = await crud.payment.update(db, db_obj=payment, obj_in=changes, uow=uow)
        if entering_success and invoice_id:
            await self.apply_to_invoice(db, invoice_id, amount, uow)
        return payment

    # ------------------------------ Reads ------------------------------ #

    async def get(self, db: AsyncSession, payment_id: UUID) -> schemas.Payment:
        """Get a payment."""
        return self._to_schema(await self._get_payment(db, payment_id))

    async def list_payments(
        self,
        db: AsyncSession,
        params: PaginationParams,
        status: Optional[PaymentStatus] = None,
        customer_id: Optional[UUID] = None,
        invoice_id: Optional[UUID] = None,
    ) -> Page[schemas.Payment]:
        """List payments, newest first."""
        filters = crud.payment.build_filters(
            status=status, customer_id=customer_id, invoice_id=invoice_id
        )
        return await self._page(db, params, filters)

    async def list_by_date_range(
        self, db: AsyncSession, date_range: schemas.DateRange, params: PaginationParams
    ) -> Page[schemas.Payment]:
        """Payments created within the window."""
        filters = [
            Payment.created_at >= to_naive_utc(date_range.start),
            Payment.created_at < to_naive_utc(date_range.end),
        ]
        return await self._page(db, params, filters)

    async def _page(
        self, db: AsyncSession, params: PaginationParams, filters: list
    ) -> Page[schemas.Payment]:
        rows = await crud.payment.get_multi(
            db, skip=params.skip, limit=params.limit, filters=filters
        )
        total = await crud.payment.count(db, filters=filters)
        return Page(
            items=[self._to_schema(row) for row in rows],
            pagination=Pagination.build(params, total),
        )

    async def list_refunds(self, db: AsyncSession, payment_id: UUID) -> list[schemas.Refund]:
        """Refunds issued against a payment."""
        await self._get_payment(db, payment_id)
        refunds = await crud.refund.get_for_payment(db, payment_id)
        return [schemas.Refund.model_validate(refund, from_attributes=True) for refund in refunds]

    async def get_summary(self, db: AsyncSession, customer_id: UUID) -> schemas.PaymentSummary:
        """Paid, refunded, pending and failed totals of a customer."""
        if not await crud.customer.get(db, customer_id):
            raise NotFoundException(f"Customer {customer_id} not found")

        payments = await crud.payment.get_by_customer(db, customer_id)
        summary = schemas.PaymentSummary(
            currency=payments[0].currency if payments else settings.DEFAULT_CURRENCY
        )
        for payment in payments:
            if payment.status in REFUNDABLE_STATUSES:
                summary.total_paid += payment.amount - payment.refunded_amount
                summary.total_refunded += payment.refunded_amount
            elif payment.status == PaymentStatus.REFUNDED.value:
                summary.total_refunded += payment.amount
            elif payment.status in (PaymentStatus.PENDING.value, PaymentStatus.PROCESSING.value):
                summary.pending_amount += payment.amount
            elif payment.status == PaymentStatus.FAILED.value:
                summary.failed_amount += payment.amount

        summary.total_paid = round_money(summary.total_paid)
        summary.total_refunded = round_money(summary.total_refunded)
        summary.pending_amount = round_money(summary.pending_amount)
        summary.failed_amount = round_money(summary.failed_amount)
        return summary

    # ------------------------------ Lifecycle ------------------------------ #

    async def create(self, db: AsyncSession, obj_in: schemas.PaymentCreate) -> schemas.Payment:
        """Create a payment, charging the gateway when the customer is linked to it.

        Args:
        ----
            db (AsyncSession): The database session.
            obj_in (PaymentCreate): Amount in major units and charge options.

        Returns:
        -------
            Payment: The stored payment; pending unless the gateway reported an outcome.

        Raises:
        ------
            NotFoundException: If the customer or invoice does not exist.
            InvalidStateError: If the invoice is already paid or void.
            InvalidInputError: If the invoice belongs to another customer.

        """
        customer = await crud.customer.get(db, obj_in.customer_id)
        if not customer:
            raise NotFoundException(f"Customer {obj_in.customer_id} not found")

        currency = obj_in.currency
        if obj_in.invoice_id:
            invoice = await crud.invoice.get(db, obj_in.invoice_id)
            if not invoice:
                raise NotFoundException(f"Invoice {obj_in.invoice_id} not found")
            if invoice.customer_id != customer.id:
                raise InvalidInputError(
                    f"Invoice {invoice.number} does not belong to customer {customer.id}"
                )
            if invoice.status in SETTLED_STATUSES:
                raise InvalidStateError(f"Invoice {invoice.number} is already {invoice.status}")
            currency = currency or invoice.currency
        currency = (currency or settings.DEFAULT_CURRENCY).upper()
        amount = round_money(obj_in.amount)

        values: dict[str, Any] = {
            "customer_id": customer.id,
            "invoice_id": obj_in.invoice_id,
            "amount": amount,
            "currency": currency,
            "status": PaymentStatus.PENDING.value,
            "refunded_amount": Decimal("0"),
            "payment_method": obj_in.payment_method_id,
            "meta": dict(obj_in.metadata),
        }

        if self.gateway and customer.stripe_customer_id:
            intent = await self.gateway.create_payment_intent(
                amount=amount,
                currency=currency,
                customer_id=customer.stripe_customer_id,
                payment_method_id=obj_in.payment_method_id,
                confirm=obj_in.confirm,
                capture_method=obj_in.capture_method,
                description=obj_in.description,
                metadata=obj_in.metadata,
            )
            values["stripe_payment_intent_id"] = intent["id"]
            values["status"] = map_gateway_status(intent.get("status")).value
            values.update(failure_fields(intent))

        async with UnitOfWork(db) as uow:
            payment = await crud.payment.create(db, obj_in=values, uow=uow)
            if payment.status == PaymentStatus.SUCCEEDED.value and payment.invoice_id:
                await self.apply_to_invoice(db, payment.invoice_id, amount, uow)
            await uow.commit()

        self._log(payment.id).info(f"Created payment of {amount} {currency}: {payment.status}")
        return self._to_schema(payment)

    async def confirm(
        self, db: AsyncSession, payment_id: UUID, payment_method_id: Optional[str] = None
    ) -> schemas.Payment:
        """Confirm a pending payment on the gateway.

        Raises:
        ------
            InvalidStateError: If the payment is not pending or processing, or has no intent.

        """
        payment = await self._get_payment(db, payment_id)
        if payment.status not in (PaymentStatus.PENDING.value, PaymentStatus.PROCESSING.value):
            raise InvalidStateError(f"Payment {payment_id} cannot be confirmed: {payment.status}")
        intent_id = self._require_intent(payment)

        intent = await self.gateway.confirm_payment_intent(intent_id, payment_method_id)
        changes: dict[str, Any] = {
            "status": map_gateway_status(intent.get("status")).value,
            **failure_fields(intent),
        }
        if payment_method_id:
            changes["payment_method"] = payment_method_id

        async with UnitOfWork(db) as uow:
            payment = await self._set_status(db, payment, changes, uow)
            await uow.commit()

        self._log(payment_id).info(f"Confirmed payment: {payment.status}")
        return self._to_schema(payment)

    async def capture(
        self, db: AsyncSession, payment_id: UUID, amount: Optional[Decimal] = None
    ) -> schemas.Payment:
        """Capture an authorized payment, optionally for less than the authorized amount.

        Raises:
        ------
            InvalidStateError: If the payment is not pending or processing, or has no intent.
            InvalidInputError: If ``amount`` exceeds the authorized amount.

        """
        payment = await self._get_payment(db, payment_id)
        if payment.status not in (PaymentStatus.PENDING.value, PaymentStatus.PROCESSING.value):
            raise InvalidStateError(f"Payment {payment_id} cannot be captured: {payment.status}")
        intent_id = self._require_intent(payment)

        captured = round_money(amount) if amount is not None else payment.amount
        if captured <= 0 or captured > payment.amount:
            raise InvalidInputError(
                f"Capture amount {captured} must be positive and at most {payment.amount}"
            )

        await self.gateway.capture_payment_intent(
            intent_id, amount=captured if amount is not None else None, currency=payment.currency
        )

        async with UnitOfWork(db) as uow:
            payment = await self._set_status(
                db,
                payment,
                {"status": PaymentStatus.SUCCEEDED.value, "amount": captured},
                uow,
                settled_amount=captured,
            )
            await uow.commit()

        self._log(payment_id).info(f"Captured {captured} {payment.currency}")
        return self._to_schema(payment)

    async def cancel(self, db: AsyncSession, payment_id: UUID) -> schemas.Payment:
        """Cancel a payment that has not settled.

        Raises:
        ------
            InvalidStateError: If the payment succeeded, was refunded or is already canceled.

        """
        payment = await self._get_payment(db, payment_id)
        if payment.status in _UNCANCELABLE_STATUSES:
            raise InvalidStateError(f"Payment {payment_id} cannot be canceled: {payment.status}")

        if self.gateway and payment.stripe_payment_intent_id:
            await self.gateway.cancel_payment_intent(payment.stripe_payment_intent_id)

        payment = await crud.payment.update(
            db, db_obj=payment, obj_in={"status": PaymentStatus.CANCELED.value}
        )
        self._log(payment_id).info("Canceled payment")
        return self._to_schema(payment)

    async def refund(self, db: AsyncSession, obj_in: schemas.RefundCreate) -> schemas.Refund:
        """Refund part or all of a settled payment.

        The refunded amount is reserved with a conditional update on the value read,
        so two concurrent refunds cannot both pass the bound check. The gateway refund
        is issued inside the same transaction; if it fails the reservation is rolled back.

        Args:
        ----
            db (AsyncSession): The database session.
            obj_in (RefundCreate): Payment, amount (defaults to the remainder) and reason.

        Returns:
        -------
            Refund: The stored refund.

        Raises:
        ------
            NotFoundException: If the payment does not exist.
            InvalidStateError: If the payment is not refundable or changed concurrently.
            InvalidInputError: If the amount is not positive or exceeds the remainder.

        """
        payment = await self._get_payment(db, obj_in.payment_id)
        log = self._log(payment.id)
        if payment.status not in REFUNDABLE_STATUSES:
            raise InvalidStateError(f"Payment {payment.id} cannot be refunded: {payment.status}")

        seen_refunded = round_money(payment.refunded_amount)
        remaining = round_money(payment.amount - seen_refunded)
        amount = round_money(obj_in.amount) if obj_in.amount is not None else remaining
        if amount <= 0:
            raise InvalidInputError(f"Refund amount must be positive, got {amount}")
        if amount > remaining:
            raise InvalidInputError(
                f"Refund amount {amount} exceeds the refundable remainder {remaining}"
            )

        new_refunded = seen_refunded + amount
        new_status = (
            PaymentStatus.REFUNDED
            if new_refunded >= round_money(payment.amount)
            else PaymentStatus.PARTIALLY_REFUNDED
        )

        async with UnitOfWork(db) as uow:
            reserved = await crud.payment.compare_and_set_refunded(
                db,
                payment_id=payment.id,
                expected_refunded=seen_refunded,
                new_refunded=new_refunded,
                new_status=new_status,
                uow=uow,
            )
            if not reserved:
                raise InvalidStateError(f"Payment {payment.id} changed while refunding, retry")

            stripe_refund_id = None
            if self.gateway and payment.stripe_payment_intent_id:
                gateway_refund = await self.gateway.create_refund(
                    payment_intent_id=payment.stripe_payment_intent_id,
                    amount=amount,
                    currency=payment.currency,
                    reason=obj_in.reason.value if obj_in.reason else None,
                    metadata={**obj_in.metadata, "payment_id": str(payment.id)},
                )
                stripe_refund_id = gateway_refund["id"]

            refund = await crud.refund.create(
                db,
                obj_in={
                    "payment_id": payment.id,
                    "customer_id": payment.customer_id,
                    "amount": amount,
                    "currency": payment.currency,
                    "status": "succeeded",
                    "reason": obj_in.reason.value if obj_in.reason else None,
                    "stripe_refund_id": stripe_refund_id,
                    "meta": dict(obj_in.metadata),
                },
                uow=uow,
            )
            await uow.commit()

        # The reservation bypassed the identity map
        await db.refresh(payment)
        log.info(f"Refunded {amount} {payment.currency}, payment is now {payment.status}")
        return schemas.Refund.model_validate(refund, from_attributes=True)

    async def retry(
        self, db: AsyncSession, payment_id: UUID, payment_method_id: Optional[str] = None
    ) -> schemas.Payment:
        """Charge a failed payment again through a new payment intent.

        The payment moves back to pending; the outcome arrives through the gateway's
        payment intent notifications.

        Raises:
        ------
            InvalidStateError: If the payment did not fail or the customer is not linked.

        """
        payment = await self._get_payment(db, payment_id)
        if payment.status != PaymentStatus.FAILED.value:
            raise InvalidStateError(f"Only failed payments can be retried, got {payment.status}")

        customer = await crud.customer.get(db, payment.customer_id)
        if not (self.gateway and customer and customer.stripe_customer_id):
            raise InvalidStateError(
                f"Customer of payment {payment_id} is not linked to the gateway"
            )

        intent = await self.gateway.create_payment_intent(
            amount=payment.amount,
            currency=payment.currency,
            customer_id=customer.stripe_customer_id,
            payment_method_id=payment_method_id,
            confirm=True,
            metadata={"originalPaymentId": str(payment.id)},
        )
        changes: dict[str, Any] = {
            "stripe_payment_intent_id": intent["id"],
            "status": PaymentStatus.PENDING.value,
            "failure_code": None,
            "failure_message": None,
        }
        if payment_method_id:
            changes["payment_method"] = payment_method_id

        payment = await crud.payment.update(db, db_obj=payment, obj_in=changes)
        self._log(payment_id).info(f"Retrying payment with intent {intent['id']}")
        return self._to_schema(payment)

    async def process_webhook_update(
        self,
        db: AsyncSession,
        stripe_payment_intent_id: str,
        gateway_status: str,
        failure: Optional[dict[str, Any]] = None,
        uow: Optional[UnitOfWork] = None,
    ) -> Optional[schemas.Payment]:
        """Apply a payment intent status reported by the gateway.

        Writing the same status twice changes nothing, and the linked invoice is only
        credited on the transition into succeeded. Reports that would move the payment
        backward, such as a late ``processing`` after ``succeeded``, are ignored.

        Args:
        ----
            db (AsyncSession): The database session.
            stripe_payment_intent_id (str): Gateway id of the payment intent.
            gateway_status (str): Gateway status of the payment intent.
            failure (dict, optional): The intent's ``last_payment_error``.
            uow (UnitOfWork, optional): Enclosing transaction; committed here when omitted.

        Returns:
        -------
            Optional[Payment]: The payment, or None if no local payment uses the intent.

        """
        payment = await crud.payment.get_by_intent_id(db, stripe_payment_intent_id)
        if not payment:
            logger.warning(f"No payment for payment intent {stripe_payment_intent_id}, skipping")
            return None

        log = self._log(payment.id)
        new_status = map_gateway_status(gateway_status)
        if not is_forward_transition(payment.status, new_status.value):
            log.info(f"Ignoring late {new_status.value} update for a {payment.status} payment")
            return self._to_schema(payment)

        changes: dict[str, Any] = {"status": new_status.value}
        if failure:
            changes.update(failure_fields({"last_payment_error": failure}))

        if uow is None:
            async with UnitOfWork(db) as own_uow:
                payment = await self._set_status(db, payment, changes, own_uow)
                await own_uow.commit()
        else:
            payment = await self._set_status(db, payment, changes, uow)

        log.info(f"Payment intent {stripe_payment_intent_id} is now {payment.status}")
        return self._to_schema(payment)
