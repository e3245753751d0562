"""Subscription lifecycle engine.

Owns the subscription state machine: creation with or without a trial, plan and
quantity changes, cancellation, pausing, metered usage and trial expiry. When a
subscription is mirrored on the payment gateway every change is pushed there
first and the local record is written only after the gateway accepted it.
"""

from datetime import datetime, timedelta
from typing import Any, Callable, Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from billflow import crud, schemas
from billflow.core.datetime_utils import from_unix, to_naive_utc, to_unix, utc_now_naive
from billflow.core.exceptions import InvalidInputError, InvalidStateError, NotFoundException
from billflow.core.logging import ContextualLogger, logger
from billflow.core.periods import add_interval, clamp_to_period
from billflow.integrations.stripe_client import StripeClient
from billflow.models import Plan, Subscription
from billflow.platform.billing.proration import calculate_proration
from billflow.schemas.common import Page, Pagination, PaginationParams
from billflow.schemas.subscription import PauseBehavior, SubscriptionStatus
from billflow.schemas.usage import UsageAction

_GATEWAY_TIMESTAMPS = (
    "current_period_start",
    "current_period_end",
    "trial_start",
    "trial_end",
    "canceled_at",
    "ended_at",
)


def subscription_fields_from_gateway(gateway_subscription: Any) -> dict[str, Any]:
    """Column values adopted from a gateway subscription object.

    The gateway is the source of truth for status, period boundaries and trial
    window of a mirrored subscription. Missing fields are left out.
    """
    fields: dict[str, Any] = {"status": SubscriptionStatus(gateway_subscription["status"]).value}

    for column in _GATEWAY_TIMESTAMPS:
        if column in gateway_subscription:
            fields[column] = from_unix(gateway_subscription.get(column))
    if gateway_subscription.get("cancel_at_period_end") is not None:
        fields["cancel_at_period_end"] = bool(gateway_subscription["cancel_at_period_end"])

    # A period the gateway did not report must not erase the local one
    for column in ("current_period_start", "current_period_end"):
        if fields.get(column) is None:
            fields.pop(column, None)
    return fields


class SubscriptionService:
    """Service for the subscription state machine."""

    def __init__(
        self,
        payment_gateway: Optional[StripeClient] = None,
        proration_calculator: Callable[..., schemas.ProrationResult] = calculate_proration,
    ):
        """Initialize the subscription service.

        Args:
        ----
            payment_gateway (StripeClient, optional): Gateway mirror, None when Stripe is off.
            proration_calculator (Callable): Pure proration function.

        """
        self.gateway = payment_gateway
        self.calculate_proration = proration_calculator

    # ------------------------------ Helpers (internal) ------------------------------ #

    def _log(self, subscription_id: UUID) -> ContextualLogger:
        return logger.with_context(subscription_id=str(subscription_id))

    async def _get_subscription(self, db: AsyncSession, subscription_id: UUID) -> Subscription:
        subscription = await crud.subscription.get(db, subscription_id)
        if not subscription:
            raise NotFoundException(f"Subscription {subscription_id} not found")
        return subscription

    async def _get_mutable_subscription(
        self, db: AsyncSession, subscription_id: UUID
    ) -> Subscription:
        subscription = await self._get_subscription(db, subscription_id)
        if subscription.status == SubscriptionStatus.CANCELED.value:
            raise InvalidStateError(f"Subscription {subscription_id} is canceled")
        return subscription

    async def _get_active_plan(self, db: AsyncSession, plan_id: UUID) -> Plan:
        plan = await crud.plan.get(db, plan_id)
        if not plan:
            raise NotFoundException(f"Plan {plan_id} not found")
        if not plan.active:
            raise InvalidStateError(f"Plan {plan_id} is not active")
        return plan

    def _is_mirrored(self, subscription: Subscription) -> bool:
        return bool(self.gateway and subscription.stripe_subscription_id)

    @staticmethod
    def _with_metadata(subscription: Subscription, **entries: Any) -> dict:
        """Shallow merge ``entries`` into the subscription's metadata, as a new dict."""
        merged = dict(subscription.meta or {})
        merged.update(entries)
        return merged

    @staticmethod
    def _to_schema(subscription: Subscription) -> schemas.Subscription:
        return schemas.Subscription.model_validate(subscription, from_attributes=True)

    # ------------------------------ Reads ------------------------------ #

    async def get(self, db: AsyncSession, subscription_id: UUID) -> schemas.Subscription:
        """Get a subscription."""
        return self._to_schema(await self._get_subscription(db, subscription_id))

    async def get_with_plan(
        self, db: AsyncSession, subscription_id: UUID
    ) -> schemas.SubscriptionWithPlan:
        """Get a subscription together with its plan."""
        subscription = await self._get_subscription(db, subscription_id)
        plan = await crud.plan.get(db, subscription.plan_id)
        if not plan:
            raise NotFoundException(f"Plan {subscription.plan_id} not found")
        return schemas.SubscriptionWithPlan(
            subscription=self._to_schema(subscription),
            plan=schemas.Plan.model_validate(plan, from_attributes=True),
        )

    async def list_subscriptions(
        self,
        db: AsyncSession,
        params: PaginationParams,
        status: Optional[SubscriptionStatus] = None,
        customer_id: Optional[UUID] = None,
    ) -> Page[schemas.Subscription]:
        """List subscriptions, newest first."""
        filters = crud.subscription.build_filters(status=status, customer_id=customer_id)
        rows = await crud.subscription.get_multi(
            db, skip=params.skip, limit=params.limit, filters=filters
        )
        total = await crud.subscription.count(db, filters=filters)
        return Page(
            items=[self._to_schema(row) for row in rows],
            pagination=Pagination.build(params, total),
        )

    async def list_ending_soon(
        self, db: AsyncSession, days: int, params: PaginationParams
    ) -> list[schemas.Subscription]:
        """Live subscriptions whose period ends within ``days``."""
        horizon = utc_now_naive() + timedelta(days=days)
        rows = await crud.subscription.get_ending_before(
            db, horizon, skip=params.skip, limit=params.limit
        )
        return [self._to_schema(row) for row in rows]

    async def list_trials_ending_soon(
        self, db: AsyncSession, days: int, params: PaginationParams
    ) -> list[schemas.Subscription]:
        """Trialing subscriptions whose trial ends within ``days``."""
        horizon = utc_now_naive() + timedelta(days=days)
        rows = await crud.subscription.get_trials_ending_before(
            db, horizon, skip=params.skip, limit=params.limit
        )
        return [self._to_schema(row) for row in rows]

    # ------------------------------ Lifecycle ------------------------------ #

    async def create(
        self, db: AsyncSession, obj_in: schemas.SubscriptionCreate
    ) -> schemas.Subscription:
        """Create a subscription.

        The gateway subscription is created when both the customer and the plan are
        linked to the gateway; its status, period and trial window are then adopted.
        Otherwise the subscription is local: trialing when a trial applies, active
        if not.

        Raises:
        ------
            NotFoundException: If the customer or plan does not exist.
            InvalidStateError: If the plan is inactive.

        """
        customer = await crud.customer.get(db, obj_in.customer_id)
        if not customer:
            raise NotFoundException(f"Customer {obj_in.customer_id} not found")
        plan = await self._get_active_plan(db, obj_in.plan_id)

        now = utc_now_naive()
        values: dict[str, Any] = {
            "customer_id": customer.id,
            "plan_id": plan.id,
            "quantity": obj_in.quantity,
            "currency": plan.currency,
            "cancel_at_period_end": obj_in.cancel_at_period_end,
            "current_period_start": now,
            "current_period_end": add_interval(now, plan.interval, plan.interval_count),
            "meta": dict(obj_in.metadata),
        }
        trial_days = obj_in.trial_days if obj_in.trial_days is not None else plan.trial_days

        if self.gateway and customer.stripe_customer_id and plan.stripe_price_id:
            gateway_subscription = await self.gateway.create_subscription(
                customer_id=customer.stripe_customer_id,
                price_id=plan.stripe_price_id,
                quantity=obj_in.quantity,
                trial_period_days=trial_days or None,
                default_payment_method=obj_in.payment_method_id,
                cancel_at_period_end=obj_in.cancel_at_period_end,
                coupon_id=obj_in.coupon_id,
                metadata={**obj_in.metadata, "customer_id": str(customer.id)},
            )
            values["stripe_subscription_id"] = gateway_subscription["id"]
            values.update(subscription_fields_from_gateway(gateway_subscription))
        elif trial_days and trial_days > 0:
            values["status"] = SubscriptionStatus.TRIALING.value
            values["trial_start"] = now
            values["trial_end"] = now + timedelta(days=trial_days)
        else:
            values["status"] = SubscriptionStatus.ACTIVE.value

        subscription = await crud.subscription.create(db, obj_in=values)
        self._log(subscription.id).info(
            f"Created subscription for customer {customer.id} on plan {plan.id} "
            f"with status {subscription.status}"
        )
        return self._to_schema(subscription)

    async def update(
        self, db: AsyncSession, subscription_id: UUID, obj_in: schemas.SubscriptionUpdate
    ) -> schemas.Subscription:
        """Apply a partial update.

        Raises:
        ------
            NotFoundException: If the subscription or new plan does not exist.
            InvalidStateError: If the subscription is canceled or the new plan inactive.
            InvalidInputError: If ``trial_end`` lies in the past.

        """
        subscription = await self._get_mutable_subscription(db, subscription_id)
        now = utc_now_naive()
        changes: dict[str, Any] = {}
        gateway_params: dict[str, Any] = {}

        if obj_in.plan_id is not None:
            plan = await self._get_active_plan(db, obj_in.plan_id)
            changes["plan_id"] = plan.id
            changes["currency"] = plan.currency
            if plan.stripe_price_id:
                gateway_params["price_id"] = plan.stripe_price_id

        if obj_in.quantity is not None:
            changes["quantity"] = obj_in.quantity
            gateway_params["quantity"] = obj_in.quantity

        if obj_in.cancel_at_period_end is not None:
            changes["cancel_at_period_end"] = obj_in.cancel_at_period_end
            changes["canceled_at"] = now if obj_in.cancel_at_period_end else None
            gateway_params["cancel_at_period_end"] = obj_in.cancel_at_period_end

        if obj_in.trial_end == "now":
            changes["trial_end"] = now
            changes["status"] = SubscriptionStatus.ACTIVE.value
            gateway_params["trial_end"] = "now"
        elif obj_in.trial_end is not None:
            trial_end = to_naive_utc(obj_in.trial_end)
            if trial_end < now:
                raise InvalidInputError("trial_end must not be in the past")
            changes["trial_end"] = trial_end
            gateway_params["trial_end"] = to_unix(trial_end)

        if obj_in.pause_collection is not None:
            changes["status"] = SubscriptionStatus.PAUSED.value
            changes["pause_behavior"] = obj_in.pause_collection.behavior.value
            pause: dict[str, Any] = {"behavior": obj_in.pause_collection.behavior.value}
            if obj_in.pause_collection.resumes_at:
                pause["resumes_at"] = to_unix(obj_in.pause_collection.resumes_at)
            gateway_params["pause_collection"] = pause

        if obj_in.metadata:
            changes["meta"] = self._with_metadata(subscription, **obj_in.metadata)
            gateway_params["metadata"] = obj_in.metadata

        if self._is_mirrored(subscription) and gateway_params:
            await self.gateway.update_subscription(
                subscription.stripe_subscription_id, **gateway_params
            )

        subscription = await crud.subscription.update(db, db_obj=subscription, obj_in=changes)
        self._log(subscription_id).info(f"Updated subscription fields {sorted(changes)}")
        return self._to_schema(subscription)

    async def cancel(
        self, db: AsyncSession, subscription_id: UUID, immediate: bool = False
    ) -> schemas.Subscription:
        """Cancel at period end, or immediately when ``immediate`` is set."""
        subscription = await self._get_mutable_subscription(db, subscription_id)
        now = utc_now_naive()

        if self._is_mirrored(subscription):
            await self.gateway.cancel_subscription(
                subscription.stripe_subscription_id, at_period_end=not immediate
            )

        changes: dict[str, Any] = {"canceled_at": now}
        if immediate:
            changes["status"] = SubscriptionStatus.CANCELED.value
            changes["ended_at"] = now
        else:
            changes["cancel_at_period_end"] = True

        subscription = await crud.subscription.update(db, db_obj=subscription, obj_in=changes)
        self._log(subscription_id).info(f"Canceled subscription (immediate={immediate})")
        return self._to_schema(subscription)

    async def resume(self, db: AsyncSession, subscription_id: UUID) -> schemas.Subscription:
        """Withdraw a pending cancellation.

        Raises:
        ------
            InvalidStateError: If the subscription is already canceled.

        """
        subscription = await self._get_mutable_subscription(db, subscription_id)

        if self._is_mirrored(subscription):
            await self.gateway.resume_subscription(subscription.stripe_subscription_id)

        subscription = await crud.subscription.update(
            db,
            db_obj=subscription,
            obj_in={"cancel_at_period_end": False, "canceled_at": None},
        )
        self._log(subscription_id).info("Resumed subscription")
        return self._to_schema(subscription)

    async def pause(
        self,
        db: AsyncSession,
        subscription_id: UUID,
        behavior: PauseBehavior = PauseBehavior.KEEP_AS_DRAFT,
        resumes_at: Optional[datetime] = None,
    ) -> schemas.Subscription:
        """Pause payment collection."""
        subscription = await self._get_mutable_subscription(db, subscription_id)
        behavior = PauseBehavior(behavior)
        resumes_at = to_naive_utc(resumes_at)

        if self._is_mirrored(subscription):
            pause: dict[str, Any] = {"behavior": behavior.value}
            if resumes_at:
                pause["resumes_at"] = to_unix(resumes_at)
            await self.gateway.update_subscription(
                subscription.stripe_subscription_id, pause_collection=pause
            )

        subscription = await crud.subscription.update(
            db,
            db_obj=subscription,
            obj_in={
                "status": SubscriptionStatus.PAUSED.value,
                "pause_behavior": behavior.value,
                "meta": self._with_metadata(
                    subscription,
                    pausedAt=utc_now_naive().isoformat(),
                    pauseBehavior=behavior.value,
                    resumesAt=resumes_at.isoformat() if resumes_at else None,
                ),
            },
        )
        self._log(subscription_id).info(f"Paused subscription with behavior {behavior.value}")
        return self._to_schema(subscription)

    async def unpause(self, db: AsyncSession, subscription_id: UUID) -> schemas.Subscription:
        """Resume payment collection of a paused subscription."""
        subscription = await self._get_mutable_subscription(db, subscription_id)
        if subscription.status != SubscriptionStatus.PAUSED.value:
            raise InvalidStateError(f"Subscription {subscription_id} is not paused")

        if self._is_mirrored(subscription):
            # An empty value clears the gateway's pause
            await self.gateway.update_subscription(
                subscription.stripe_subscription_id, pause_collection=""
            )

        subscription = await crud.subscription.update(
            db,
            db_obj=subscription,
            obj_in={
                "status": SubscriptionStatus.ACTIVE.value,
                "pause_behavior": None,
                "meta": self._with_metadata(subscription, unpausedAt=utc_now_naive().isoformat()),
            },
        )
        self._log(subscription_id).info("Unpaused subscription")
        return self._to_schema(subscription)

    async def change_plan(
        self, db: AsyncSession, subscription_id: UUID, new_plan_id: UUID, prorate: bool = True
    ) -> schemas.Subscription:
        """Move a subscription to another plan.

        When prorating, the adjustment for the rest of the current period is stored
        in metadata under ``proration``. ``plan_id`` and ``currency`` are updated
        whether or not the subscription is mirrored on the gateway.
        """
        subscription = await self._get_mutable_subscription(db, subscription_id)
        new_plan = await self._get_active_plan(db, new_plan_id)
        log = self._log(subscription_id)
        now = utc_now_naive()

        audit: dict[str, Any] = {
            "previousPlanId": str(subscription.plan_id),
            "planChangedAt": now.isoformat(),
        }

        if prorate:
            proration = self.calculate_proration(
                subscription.current_period_start,
                subscription.current_period_end,
                subscription.quantity,
                new_plan.amount,
                clamp_to_period(
                    now, subscription.current_period_start, subscription.current_period_end
                ),
            )
            audit["proration"] = {
                "credit": str(proration.credit),
                "charge": str(proration.charge),
                "netAmount": str(proration.net_amount),
            }
            log.info(f"Proration for plan change: net {proration.net_amount}")

        if self._is_mirrored(subscription) and new_plan.stripe_price_id:
            await self.gateway.update_subscription(
                subscription.stripe_subscription_id,
                price_id=new_plan.stripe_price_id,
                proration_behavior="create_prorations" if prorate else "none",
            )

        subscription = await crud.subscription.update(
            db,
            db_obj=subscription,
            obj_in={
                "plan_id": new_plan.id,
                "currency": new_plan.currency,
                "meta": self._with_metadata(subscription, **audit),
            },
        )
        log.info(f"Changed plan to {new_plan.id}")
        return self._to_schema(subscription)

    async def update_quantity(
        self, db: AsyncSession, subscription_id: UUID, quantity: int, prorate: bool = True
    ) -> schemas.Subscription:
        """Change the number of units billed.

        Raises:
        ------
            InvalidInputError: If ``quantity`` is below 1.

        """
        if quantity < 1:
            raise InvalidInputError("Quantity must be at least 1")
        subscription = await self._get_mutable_subscription(db, subscription_id)

        if self._is_mirrored(subscription):
            await self.gateway.update_subscription(
                subscription.stripe_subscription_id,
                quantity=quantity,
                proration_behavior="create_prorations" if prorate else "none",
            )

        subscription = await crud.subscription.update(
            db,
            db_obj=subscription,
            obj_in={
                "quantity": quantity,
                "meta": self._with_metadata(
                    subscription,
                    previousQuantity=subscription.quantity,
                    quantityChangedAt=utc_now_naive().isoformat(),
                ),
            },
        )
        self._log(subscription_id).info(f"Updated quantity to {quantity}")
        return self._to_schema(subscription)

    async def record_usage(
        self, db: AsyncSession, subscription_id: UUID, obj_in: schemas.UsageRecordCreate
    ) -> schemas.UsageRecord:
        """Append a metered usage record.

        A repeated ``idempotency_key`` returns the record written the first time and
        appends nothing. Without a key every call appends.
        """
        subscription = await self._get_mutable_subscription(db, subscription_id)
        log = self._log(subscription_id)

        if obj_in.idempotency_key:
            existing = await crud.usage_record.get_by_idempotency_key(
                db, subscription.id, obj_in.idempotency_key
            )
            if existing:
                log.info(f"Usage with key {obj_in.idempotency_key} already recorded")
                return schemas.UsageRecord.model_validate(existing, from_attributes=True)

        timestamp = to_naive_utc(obj_in.timestamp) or utc_now_naive()
        action = UsageAction(obj_in.action)

        if self._is_mirrored(subscription):
            item_id = await self.gateway.get_first_item_id(subscription.stripe_subscription_id)
            await self.gateway.create_usage_record(
                item_id, quantity=obj_in.quantity, timestamp=to_unix(timestamp), action=action.value
            )

        record = await crud.usage_record.create(
            db,
            obj_in={
                "subscription_id": subscription.id,
                "quantity": obj_in.quantity,
                "action": action.value,
                "timestamp": timestamp,
                "idempotency_key": obj_in.idempotency_key,
            },
        )
        log.info(f"Recorded usage {action.value} {obj_in.quantity}")
        return schemas.UsageRecord.model_validate(record, from_attributes=True)

    async def process_expired_trials(self, db: AsyncSession) -> schemas.BatchResult:
        """Activate every trialing subscription whose trial has ended.

        Each subscription commits on its own; one failure is logged, counted and
        does not stop the batch.
        """
        expired = await crud.subscription.get_expired_trials(db, utc_now_naive())
        expired_ids = [subscription.id for subscription in expired]
        result = schemas.BatchResult()

        for subscription_id in expired_ids:
            try:
                # Reload, a rollback of an earlier item expires every loaded row
                subscription = await crud.subscription.get(db, subscription_id)
                await crud.subscription.update(
                    db,
                    db_obj=subscription,
                    obj_in={"status": SubscriptionStatus.ACTIVE.value, "trial_end": None},
                )
                result.processed += 1
            except Exception as e:
                await db.rollback()
                result.failed += 1
                self._log(subscription_id).error(f"Failed to end trial: {e}")

        logger.info(
            f"Processed expired trials: {result.processed} activated, {result.failed} failed"
        )
        return result
