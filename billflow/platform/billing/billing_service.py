"""Billing reconciliation engine.

End-of-period invoicing, revenue analytics, billing reports, payment retries,
customer credits and reconciliation of local subscriptions with the payment
gateway.
"""

import csv
import io
from collections import defaultdict
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Callable, Literal, Optional, Union
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from billflow import crud, schemas
from billflow.core.config import settings
from billflow.core.datetime_utils import from_unix, to_naive_utc, utc_now_naive
from billflow.core.exceptions import InvalidStateError, NotFoundException
from billflow.core.logging import ContextualLogger, logger
from billflow.core.money import round_money
from billflow.core.periods import add_interval, clamp_to_period, normalize_to_monthly
from billflow.db.unit_of_work import UnitOfWork
from billflow.integrations.stripe_client import StripeClient
from billflow.models import Invoice, Plan, Subscription
from billflow.platform.billing.invoice_logic import (
    SETTLED_STATUSES,
    aggregate_usage,
    build_line_item,
    load_line_items,
    paid_in_full_changes,
    payment_changes,
    totals_changes,
)
from billflow.platform.billing.invoice_service import allocate_invoice_number
from billflow.platform.billing.payment_service import failure_fields, map_gateway_status
from billflow.platform.billing.proration import calculate_proration
from billflow.platform.billing.subscription_service import subscription_fields_from_gateway
from billflow.schemas.invoice import InvoiceStatus, LineItemKind
from billflow.schemas.payment import PaymentStatus
from billflow.schemas.subscription import SubscriptionStatus

ZERO = Decimal("0.00")
TOP_CUSTOMERS_LIMIT = 10


class BillingService:
    """Service for billing runs, analytics and reconciliation."""

    def __init__(
        self,
        payment_gateway: Optional[StripeClient] = None,
        proration_calculator: Callable[..., schemas.ProrationResult] = calculate_proration,
    ):
        """Initialize the billing service.

        Args:
        ----
            payment_gateway (StripeClient, optional): Gateway mirror, None when Stripe is off.
            proration_calculator (Callable): Pure proration function.

        """
        self.gateway = payment_gateway
        self.calculate_proration_amounts = proration_calculator

    # ------------------------------ Helpers (internal) ------------------------------ #

    def _log(self, **context: Any) -> ContextualLogger:
        return logger.with_context(**{key: str(value) for key, value in context.items()})

    async def _get_subscription(self, db: AsyncSession, subscription_id: UUID) -> Subscription:
        subscription = await crud.subscription.get(db, subscription_id)
        if not subscription:
            raise NotFoundException(f"Subscription {subscription_id} not found")
        return subscription

    async def _get_plan(self, db: AsyncSession, plan_id: UUID) -> Plan:
        plan = await crud.plan.get(db, plan_id)
        if not plan:
            raise NotFoundException(f"Plan {plan_id} not found")
        return plan

    async def _get_invoice(self, db: AsyncSession, invoice_id: UUID) -> Invoice:
        invoice = await crud.invoice.get(db, invoice_id)
        if not invoice:
            raise NotFoundException(f"Invoice {invoice_id} not found")
        return invoice

    @staticmethod
    def _to_invoice_schema(invoice: Invoice) -> schemas.Invoice:
        return schemas.Invoice.model_validate(invoice, from_attributes=True)

    @staticmethod
    def _net(payment: Any) -> Decimal:
        return payment.amount - payment.refunded_amount

    # ------------------------------ Billing runs ------------------------------ #

    async def process_end_of_period_billing(
        self, db: AsyncSession, subscription_id: UUID
    ) -> Optional[schemas.Invoice]:
        """Invoice the closing period of a subscription and move it to the next one.

        The invoice and the period change are written in one transaction. If an
        invoice already exists for the closing period it is reused, so replaying a
        run that failed after invoicing only completes the period change. A
        subscription set to cancel at period end is invoiced and then canceled.

        Args:
        ----
            db (AsyncSession): The database session.
            subscription_id (UUID): The subscription to bill.

        Returns:
        -------
            Optional[Invoice]: The period invoice, or None if the subscription is not active.

        Raises:
        ------
            NotFoundException: If the subscription or its plan does not exist.

        """
        subscription = await self._get_subscription(db, subscription_id)
        log = self._log(subscription_id=subscription_id)
        if subscription.status != SubscriptionStatus.ACTIVE.value:
            log.warning(f"Subscription is {subscription.status}, skipping billing")
            return None

        plan = await self._get_plan(db, subscription.plan_id)
        period_start = subscription.current_period_start
        period_end = subscription.current_period_end
        now = utc_now_naive()

        usage_records = await crud.usage_record.get_for_period(
            db, subscription.id, period_start, period_end
        )
        usage = aggregate_usage(usage_records)

        async with UnitOfWork(db) as uow:
            invoice = await crud.invoice.get_for_period(db, subscription.id, period_start)
            if invoice is None:
                invoice = await self._create_period_invoice(
                    db, subscription, plan, usage, now, uow
                )
                log.info(f"Created period invoice {invoice.number} for {invoice.total}")
            else:
                log.info(f"Reusing period invoice {invoice.number}")

            if subscription.cancel_at_period_end:
                changes = {
                    "status": SubscriptionStatus.CANCELED.value,
                    "ended_at": period_end,
                    "canceled_at": subscription.canceled_at or now,
                }
            else:
                changes = {
                    "current_period_start": period_end,
                    "current_period_end": add_interval(
                        period_end, plan.interval, plan.interval_count
                    ),
                }
            await crud.subscription.update(db, db_obj=subscription, obj_in=changes, uow=uow)
            await uow.commit()

        if subscription.status == SubscriptionStatus.CANCELED.value:
            log.info(f"Subscription ended at period end {period_end.isoformat()}")
        else:
            log.info(f"Advanced period to {subscription.current_period_end.isoformat()}")
        return self._to_invoice_schema(invoice)

    async def _create_period_invoice(
        self,
        db: AsyncSession,
        subscription: Subscription,
        plan: Plan,
        usage: int,
        now: datetime,
        uow: UnitOfWork,
    ) -> Invoice:
        period_start = subscription.current_period_start
        period_end = subscription.current_period_end
        items = [
            build_line_item(
                schemas.InvoiceLineItemCreate(
                    description=f"{plan.name} x {subscription.quantity}",
                    quantity=subscription.quantity,
                    unit_price=plan.amount,
                    kind=LineItemKind.SUBSCRIPTION,
                    period_start=period_start,
                    period_end=period_end,
                )
            )
        ]
        if usage:
            items.append(
                build_line_item(
                    schemas.InvoiceLineItemCreate(
                        description=f"{plan.name} usage",
                        quantity=usage,
                        unit_price=plan.usage_unit_amount,
                        kind=LineItemKind.USAGE,
                        period_start=period_start,
                        period_end=period_end,
                    )
                )
            )

        return await crud.invoice.create(
            db,
            obj_in={
                "customer_id": subscription.customer_id,
                "subscription_id": subscription.id,
                "number": await allocate_invoice_number(db, now),
                "status": InvoiceStatus.OPEN.value,
                "currency": subscription.currency,
                "amount_paid": ZERO,
                "due_date": now + timedelta(days=settings.INVOICE_DAYS_UNTIL_DUE),
                "period_start": period_start,
                "period_end": period_end,
                "finalized_at": now,
                "meta": {"billingRun": now.isoformat()},
                **totals_changes(items, amount_paid=ZERO),
            },
            uow=uow,
        )

    # ------------------------------ Analytics ------------------------------ #

    async def _total_revenue(self, db: AsyncSession, currency: str) -> Decimal:
        payments = await crud.payment.get_collected(db, currency)
        return round_money(sum((self._net(payment) for payment in payments), ZERO))

    async def _mrr(self, db: AsyncSession, currency: str) -> tuple[Decimal, list[Subscription]]:
        subscriptions = await crud.subscription.get_active(db, currency)
        plans = await crud.plan.get_many(db, {sub.plan_id for sub in subscriptions})
        mrr = Decimal("0")
        for subscription in subscriptions:
            plan = plans.get(subscription.plan_id)
            if plan is None:
                continue
            mrr += normalize_to_monthly(
                plan.amount * subscription.quantity, plan.interval, plan.interval_count
            )
        return round_money(mrr), subscriptions

    async def _churn_rate(self, db: AsyncSession, now: datetime) -> Decimal:
        window_start = now - timedelta(days=settings.CHURN_WINDOW_DAYS)
        canceled = await crud.subscription.count_canceled_between(db, window_start, now)
        active_at_start = await crud.subscription.count_active_at(db, window_start)
        if not active_at_start:
            return ZERO
        return round_money(Decimal(canceled) / Decimal(active_at_start) * 100)

    async def get_billing_overview(
        self, db: AsyncSession, currency: Optional[str] = None
    ) -> schemas.BillingOverview:
        """Revenue, outstanding balance, MRR/ARR, churn and ARPC in one currency."""
        currency = (currency or settings.DEFAULT_CURRENCY).upper()
        now = utc_now_naive()

        total_revenue = await self._total_revenue(db, currency)
        open_invoices = await crud.invoice.get_open(db, currency)
        total_outstanding = round_money(sum((inv.amount_due for inv in open_invoices), ZERO))
        mrr, active = await self._mrr(db, currency)
        churn_rate = await self._churn_rate(db, now)
        active_customers = await crud.customer.count_active(db)
        arpc = round_money(total_revenue / active_customers) if active_customers else ZERO

        return schemas.BillingOverview(
            currency=currency,
            total_revenue=total_revenue,
            total_outstanding=total_outstanding,
            active_subscriptions=await crud.subscription.count(
                db, filters=crud.subscription.build_filters(status=SubscriptionStatus.ACTIVE)
            ),
            mrr=mrr,
            arr=round_money(mrr * 12),
            churn_rate=churn_rate,
            average_revenue_per_customer=arpc,
        )

    async def get_revenue_breakdown(
        self,
        db: AsyncSession,
        start: datetime,
        end: datetime,
        currency: Optional[str] = None,
    ) -> schemas.RevenueBreakdown:
        """Subscription, one-time, usage and refund revenue within ``[start, end)``."""
        currency = (currency or settings.DEFAULT_CURRENCY).upper()
        start, end = to_naive_utc(start), to_naive_utc(end)

        payments = await crud.payment.get_collected(db, currency, start, end)
        # Gross amounts; refunds are subtracted once below
        subscription_revenue = sum(
            (payment.amount for payment in payments if payment.invoice_id), ZERO
        )
        one_time = sum((payment.amount for payment in payments if not payment.invoice_id), ZERO)

        usage = ZERO
        for invoice in await crud.invoice.get_created_between(db, start, end, currency):
            if invoice.status == InvoiceStatus.VOID.value:
                continue
            usage += sum(
                (
                    item.amount
                    for item in load_line_items(invoice.line_items)
                    if item.kind == LineItemKind.USAGE
                ),
                ZERO,
            )

        refunds = await crud.refund.get_created_between(db, start, end, currency)
        refunded = round_money(sum((refund.amount for refund in refunds), ZERO))

        return schemas.RevenueBreakdown(
            currency=currency,
            start=start,
            end=end,
            subscriptions=round_money(subscription_revenue),
            one_time=round_money(one_time),
            usage=round_money(usage),
            refunds=-refunded,
            total=round_money(subscription_revenue + one_time + usage - refunded),
        )

    async def _top_customers(
        self, db: AsyncSession, currency: str, start: datetime, end: datetime
    ) -> list[schemas.CustomerRevenue]:
        revenue_by_customer: dict[UUID, Decimal] = defaultdict(Decimal)
        for payment in await crud.payment.get_collected(db, currency, start, end):
            revenue_by_customer[payment.customer_id] += self._net(payment)

        ranked = sorted(revenue_by_customer.items(), key=lambda pair: pair[1], reverse=True)
        top = []
        for customer_id, revenue in ranked[:TOP_CUSTOMERS_LIMIT]:
            customer = await crud.customer.get(db, customer_id)
            if customer is None:
                continue
            top.append(
                schemas.CustomerRevenue(
                    customer=schemas.Customer.model_validate(customer, from_attributes=True),
                    revenue=round_money(revenue),
                )
            )
        return top

    async def _revenue_by_plan(
        self, db: AsyncSession, subscriptions: list[Subscription]
    ) -> list[schemas.PlanRevenue]:
        plans = await crud.plan.get_many(db, {sub.plan_id for sub in subscriptions})
        revenue: dict[UUID, Decimal] = defaultdict(Decimal)
        customers: dict[UUID, set] = defaultdict(set)
        for subscription in subscriptions:
            plan = plans.get(subscription.plan_id)
            if plan is None:
                continue
            revenue[plan.id] += normalize_to_monthly(
                plan.amount * subscription.quantity, plan.interval, plan.interval_count
            )
            customers[plan.id].add(subscription.customer_id)

        rows = [
            schemas.PlanRevenue(
                plan=schemas.Plan.model_validate(plans[plan_id], from_attributes=True),
                revenue=round_money(amount),
                customer_count=len(customers[plan_id]),
            )
            for plan_id, amount in revenue.items()
        ]
        return sorted(rows, key=lambda row: row.revenue, reverse=True)

    async def get_billing_metrics(
        self,
        db: AsyncSession,
        start: datetime,
        end: datetime,
        currency: Optional[str] = None,
    ) -> schemas.BillingMetrics:
        """Overview, revenue breakdown, top customers and monthly revenue per plan."""
        currency = (currency or settings.DEFAULT_CURRENCY).upper()
        start, end = to_naive_utc(start), to_naive_utc(end)
        _, active = await self._mrr(db, currency)

        return schemas.BillingMetrics(
            overview=await self.get_billing_overview(db, currency),
            revenue_breakdown=await self.get_revenue_breakdown(db, start, end, currency),
            top_customers=await self._top_customers(db, currency, start, end),
            revenue_by_plan=await self._revenue_by_plan(db, active),
        )

    # ------------------------------ Reports ------------------------------ #

    async def generate_billing_report(
        self,
        db: AsyncSession,
        start: datetime,
        end: datetime,
        format: Literal["json", "csv"] = "json",
    ) -> Union[schemas.BillingReport, str]:
        """Billing activity within ``[start, end)``.

        Args:
        ----
            db (AsyncSession): The database session.
            start (datetime): Window start (inclusive).
            end (datetime): Window end (exclusive).
            format (str): ``json`` for a BillingReport, ``csv`` for one CSV document
                with a section per table.

        Returns:
        -------
            Union[BillingReport, str]: The report in the requested format.

        """
        start, end = to_naive_utc(start), to_naive_utc(end)
        invoices = await crud.invoice.get_created_between(db, start, end)
        payments = await crud.payment.get_created_between(db, start, end)
        refunds = await crud.refund.get_created_between(db, start, end)
        subscriptions = await crud.subscription.get_created_or_canceled_between(db, start, end)

        report = schemas.BillingReport(
            period=schemas.DateRange(start=start, end=end),
            generated_at=utc_now_naive(),
            summary=schemas.ReportSummary(
                total_invoices=len(invoices),
                total_payments=len(payments),
                total_refunds=len(refunds),
                new_subscriptions=sum(1 for sub in subscriptions if start <= sub.created_at < end),
                canceled_subscriptions=sum(
                    1 for sub in subscriptions if sub.canceled_at and start <= sub.canceled_at < end
                ),
            ),
            invoices=[
                schemas.ReportInvoiceRow(
                    id=inv.id,
                    number=inv.number,
                    customer_id=inv.customer_id,
                    amount=inv.total,
                    status=inv.status,
                    created_at=inv.created_at,
                )
                for inv in invoices
            ],
            payments=[
                schemas.ReportPaymentRow(
                    id=pay.id,
                    customer_id=pay.customer_id,
                    amount=pay.amount,
                    status=pay.status,
                    created_at=pay.created_at,
                )
                for pay in payments
            ],
            refunds=[
                schemas.ReportRefundRow(
                    id=ref.id,
                    payment_id=ref.payment_id,
                    amount=ref.amount,
                    reason=ref.reason,
                    created_at=ref.created_at,
                )
                for ref in refunds
            ],
        )
        logger.info(
            f"Generated {format} billing report: {len(invoices)} invoices, "
            f"{len(payments)} payments, {len(refunds)} refunds"
        )

        if format == "csv":
            return report_to_csv(report)
        return report

    # ------------------------------ Adjustments ------------------------------ #

    async def calculate_proration(
        self,
        db: AsyncSession,
        subscription_id: UUID,
        new_plan_id: UUID,
        change_date: Optional[datetime] = None,
    ) -> schemas.ProrationResult:
        """Proration of moving a subscription to another plan at ``change_date``.

        The change date defaults to now and is clamped into the current period.
        """
        subscription = await self._get_subscription(db, subscription_id)
        new_plan = await self._get_plan(db, new_plan_id)

        moment = clamp_to_period(
            to_naive_utc(change_date) or utc_now_naive(),
            subscription.current_period_start,
            subscription.current_period_end,
        )
        return self.calculate_proration_amounts(
            subscription.current_period_start,
            subscription.current_period_end,
            subscription.quantity,
            new_plan.amount,
            moment,
        )

    async def retry_failed_payment(
        self, db: AsyncSession, invoice_id: UUID, payment_method_id: Optional[str] = None
    ) -> schemas.Payment:
        """Collect an unpaid invoice again.

        The invoice is marked paid only when the gateway confirms the charge;
        any other outcome is recorded on the payment and leaves the invoice as is.

        Raises:
        ------
            NotFoundException: If the invoice does not exist.
            InvalidStateError: If the invoice is paid or void, or the customer is
                not linked to the payment gateway.

        """
        invoice = await self._get_invoice(db, invoice_id)
        log = self._log(invoice_id=invoice_id)
        if invoice.status in SETTLED_STATUSES:
            raise InvalidStateError(f"Invoice {invoice.number} is already {invoice.status}")

        customer = await crud.customer.get(db, invoice.customer_id)
        if not (self.gateway and customer and customer.stripe_customer_id):
            raise InvalidStateError(
                f"Customer of invoice {invoice.number} is not linked to the payment gateway"
            )

        amount = invoice.amount_due
        if invoice.stripe_invoice_id:
            gateway_invoice = await self.gateway.pay_invoice(
                invoice.stripe_invoice_id, payment_method_id
            )
            succeeded = gateway_invoice.get("status") == "paid"
            status = PaymentStatus.SUCCEEDED if succeeded else PaymentStatus.FAILED
            intent_id = gateway_invoice.get("payment_intent")
            failure: dict[str, Any] = {}
        else:
            intent = await self.gateway.create_payment_intent(
                amount=amount,
                currency=invoice.currency,
                customer_id=customer.stripe_customer_id,
                payment_method_id=payment_method_id,
                confirm=True,
                description=f"Invoice {invoice.number}",
                metadata={"invoice_id": str(invoice.id)},
            )
            status = map_gateway_status(intent.get("status"))
            intent_id = intent["id"]
            failure = failure_fields(intent)

        now = utc_now_naive()
        async with UnitOfWork(db) as uow:
            payment = await crud.payment.create(
                db,
                obj_in={
                    "customer_id": invoice.customer_id,
                    "invoice_id": invoice.id,
                    "amount": amount,
                    "currency": invoice.currency,
                    "status": status.value,
                    "refunded_amount": ZERO,
                    "payment_method": payment_method_id,
                    "stripe_payment_intent_id": intent_id if isinstance(intent_id, str) else None,
                    "meta": {"retryOf": str(invoice.id)},
                    **failure,
                },
                uow=uow,
            )
            if status == PaymentStatus.SUCCEEDED:
                await crud.invoice.update(
                    db, db_obj=invoice, obj_in=paid_in_full_changes(invoice, now), uow=uow
                )
            await uow.commit()

        log.info(f"Retried payment of invoice {invoice.number}: {status.value}")
        return schemas.Payment.model_validate(payment, from_attributes=True)

    async def apply_credits(
        self, db: AsyncSession, customer_id: UUID, invoice_id: UUID
    ) -> schemas.Invoice:
        """Pay as much of an invoice as the customer's credit balance covers.

        Only credit in the invoice currency counts. The invoice update and the
        ledger debit are written in one transaction.

        Raises:
        ------
            InvalidStateError: If the invoice is not open or past due.

        """
        customer = await crud.customer.get(db, customer_id)
        if not customer:
            raise NotFoundException(f"Customer {customer_id} not found")
        invoice = await self._get_invoice(db, invoice_id)
        if invoice.customer_id != customer.id:
            raise InvalidStateError(f"Invoice {invoice.number} belongs to another customer")
        if invoice.status not in (InvoiceStatus.OPEN.value, InvoiceStatus.PAST_DUE.value):
            raise InvalidStateError(
                f"Credit applies to open or past due invoices, invoice {invoice.number} "
                f"is {invoice.status}"
            )

        available = await crud.credit_ledger.get_balance(db, customer.id, invoice.currency)
        credit = min(available, round_money(invoice.amount_due))
        if credit <= 0:
            return self._to_invoice_schema(invoice)

        async with UnitOfWork(db) as uow:
            invoice = await crud.invoice.update(
                db,
                db_obj=invoice,
                obj_in=payment_changes(invoice, credit, utc_now_naive()),
                uow=uow,
            )
            await crud.credit_ledger.create(
                db,
                obj_in={
                    "customer_id": customer.id,
                    "amount": -credit,
                    "currency": invoice.currency,
                    "reason": f"Applied to invoice {invoice.number}",
                    "invoice_id": invoice.id,
                },
                uow=uow,
            )
            await uow.commit()

        self._log(customer_id=customer_id, invoice_id=invoice_id).info(
            f"Applied {credit} credit to invoice {invoice.number}"
        )
        return self._to_invoice_schema(invoice)

    async def add_credits(
        self, db: AsyncSession, customer_id: UUID, obj_in: schemas.CreditGrant
    ) -> schemas.CreditBalance:
        """Grant credit to a customer and return the new balance."""
        customer = await crud.customer.get(db, customer_id)
        if not customer:
            raise NotFoundException(f"Customer {customer_id} not found")

        currency = (obj_in.currency or settings.DEFAULT_CURRENCY).upper()
        await crud.credit_ledger.create(
            db,
            obj_in={
                "customer_id": customer.id,
                "amount": round_money(obj_in.amount),
                "currency": currency,
                "reason": obj_in.reason,
            },
        )
        balance = await crud.credit_ledger.get_balance(db, customer.id, currency)
        self._log(customer_id=customer_id).info(
            f"Granted {obj_in.amount} {currency} credit ({obj_in.reason})"
        )
        return schemas.CreditBalance(customer_id=customer.id, currency=currency, available=balance)

    async def get_credit_balance(
        self, db: AsyncSession, customer_id: UUID, currency: Optional[str] = None
    ) -> schemas.CreditBalance:
        """Available credit of a customer in ``currency``, the configured one by default."""
        if not await crud.customer.get(db, customer_id):
            raise NotFoundException(f"Customer {customer_id} not found")
        currency = (currency or settings.DEFAULT_CURRENCY).upper()
        balance = await crud.credit_ledger.get_balance(db, customer_id, currency)
        return schemas.CreditBalance(customer_id=customer_id, currency=currency, available=balance)

    # ------------------------------ Reconciliation ------------------------------ #

    async def sync_billing_with_stripe(
        self, db: AsyncSession, customer_id: UUID
    ) -> schemas.BatchResult:
        """Pull a customer's gateway subscriptions into the local records.

        Known subscriptions are matched by gateway id and take the gateway's
        status, period and flags. Unknown ones are created when their price maps to
        a local plan; the rest are counted as failed. Each subscription is written
        on its own.

        Raises:
        ------
            NotFoundException: If the customer does not exist.
            InvalidStateError: If the customer is not linked to the payment gateway.

        """
        customer = await crud.customer.get(db, customer_id)
        if not customer:
            raise NotFoundException(f"Customer {customer_id} not found")
        if not (self.gateway and customer.stripe_customer_id):
            raise InvalidStateError(f"Customer {customer_id} is not linked to the payment gateway")

        customer_pk = customer.id
        log = self._log(customer_id=customer_id)
        gateway_subscriptions = await self.gateway.list_subscriptions(customer.stripe_customer_id)
        result = schemas.BatchResult()

        for gateway_subscription in gateway_subscriptions:
            gateway_id = gateway_subscription["id"]
            try:
                await self._sync_gateway_subscription(db, customer_pk, gateway_subscription)
                result.processed += 1
            except Exception as e:
                await db.rollback()
                result.failed += 1
                log.error(f"Failed to sync gateway subscription {gateway_id}: {e}")

        log.info(f"Synced gateway subscriptions: {result.processed} ok, {result.failed} failed")
        return result

    async def _sync_gateway_subscription(
        self, db: AsyncSession, customer_id: UUID, gateway_subscription: Any
    ) -> Subscription:
        fields = subscription_fields_from_gateway(gateway_subscription)
        existing = await crud.subscription.get_by_stripe_id(db, gateway_subscription["id"])
        if existing is not None:
            return await crud.subscription.update(db, db_obj=existing, obj_in=fields)

        items = (gateway_subscription.get("items") or {}).get("data") or []
        if not items:
            raise InvalidStateError(
                f"Gateway subscription {gateway_subscription['id']} has no items"
            )
        price_id = items[0]["price"]["id"]
        plan = await crud.plan.get_by_stripe_price_id(db, price_id)
        if plan is None:
            raise NotFoundException(f"No plan for gateway price {price_id}")

        now = utc_now_naive()
        period_start = fields.pop("current_period_start", None) or from_unix(
            gateway_subscription.get("start_date")
        ) or now
        period_end = fields.pop("current_period_end", None) or add_interval(
            period_start, plan.interval, plan.interval_count
        )
        return await crud.subscription.create(
            db,
            obj_in={
                **fields,
                "customer_id": customer_id,
                "plan_id": plan.id,
                "quantity": items[0].get("quantity") or 1,
                "currency": (gateway_subscription.get("currency") or plan.currency).upper(),
                "current_period_start": period_start,
                "current_period_end": period_end,
                "stripe_subscription_id": gateway_subscription["id"],
                "meta": {"syncedFromGateway": now.isoformat()},
            },
        )


def report_to_csv(report: schemas.BillingReport) -> str:
    """Render a billing report as one CSV document with a section per table."""
    buffer = io.StringIO()
    writer = csv.writer(buffer)

    writer.writerow(["Billing Report"])
    writer.writerow(["Period", report.period.start.isoformat(), report.period.end.isoformat()])
    writer.writerow(["Generated", report.generated_at.isoformat()])
    writer.writerow([])

    writer.writerow(["Summary"])
    for field, value in report.summary.model_dump().items():
        writer.writerow([field, value])
    writer.writerow([])

    sections = (
        ("Invoices", schemas.ReportInvoiceRow, report.invoices),
        ("Payments", schemas.ReportPaymentRow, report.payments),
        ("Refunds", schemas.ReportRefundRow, report.refunds),
    )
    for title, row_model, rows in sections:
        columns = list(row_model.model_fields)
        writer.writerow([title])
        writer.writerow(columns)
        for row in rows:
            data = row.model_dump(mode="json")
            writer.writerow(["" if data[column] is None else data[column] for column in columns])
        writer.writerow([])

    return buffer.getvalue()
