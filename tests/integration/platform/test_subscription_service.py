"""Integration tests for the subscription lifecycle against a real database."""

from datetime import timedelta
from decimal import Decimal

import pytest

from billflow import crud, schemas
from billflow.core.datetime_utils import utc_now_naive
from billflow.core.exceptions import InvalidInputError, InvalidStateError, NotFoundException
from billflow.core.periods import add_interval
from billflow.platform.billing.subscription_service import SubscriptionService


@pytest.fixture
def service():
    """A subscription service without a payment gateway."""
    return SubscriptionService()


class TestCreateSubscription:
    """Tests for SubscriptionService.create."""

    async def test_monthly_plan_without_trial_is_active(
        self, db, service, make_customer, make_plan
    ):
        """A plan without a trial starts active for exactly one calendar month."""
        # Arrange
        customer = await make_customer()
        plan = await make_plan(amount=Decimal("99.00"), interval="month")

        # Act
        subscription = await service.create(
            db, schemas.SubscriptionCreate(customer_id=customer.id, plan_id=plan.id)
        )

        # Assert
        assert subscription.status == schemas.SubscriptionStatus.ACTIVE
        assert subscription.current_period_end == add_interval(
            subscription.current_period_start, "month"
        )
        assert subscription.currency == "USD"
        assert subscription.trial_end is None

    async def test_plan_trial_starts_trialing(self, db, service, make_customer, make_plan):
        """A plan trial puts the subscription in trialing with a trial window."""
        customer = await make_customer()
        plan = await make_plan(trial_days=14)

        subscription = await service.create(
            db, schemas.SubscriptionCreate(customer_id=customer.id, plan_id=plan.id)
        )

        assert subscription.status == schemas.SubscriptionStatus.TRIALING
        assert subscription.trial_end - subscription.trial_start == timedelta(days=14)

    async def test_zero_trial_override_starts_active(self, db, service, make_customer, make_plan):
        """An explicit zero-day trial overrides the plan's trial."""
        customer = await make_customer()
        plan = await make_plan(trial_days=14)

        subscription = await service.create(
            db,
            schemas.SubscriptionCreate(customer_id=customer.id, plan_id=plan.id, trial_days=0),
        )

        assert subscription.status == schemas.SubscriptionStatus.ACTIVE

    async def test_inactive_plan_is_rejected(self, db, service, make_customer, make_plan):
        """New subscriptions cannot reference an inactive plan."""
        customer = await make_customer()
        plan = await make_plan(active=False)

        with pytest.raises(InvalidStateError):
            await service.create(
                db, schemas.SubscriptionCreate(customer_id=customer.id, plan_id=plan.id)
            )

    async def test_unknown_customer(self, db, service, make_plan):
        """A missing customer is reported as not found."""
        plan = await make_plan()

        with pytest.raises(NotFoundException):
            await service.create(
                db,
                schemas.SubscriptionCreate(
                    customer_id="00000000-0000-0000-0000-000000000001", plan_id=plan.id
                ),
            )


class TestCancellation:
    """Tests for cancel and resume."""

    async def test_cancel_at_period_end_then_resume(
        self, db, service, make_customer, make_plan, make_subscription
    ):
        """A pending cancellation can be withdrawn."""
        # Arrange
        subscription = await make_subscription(await make_customer(), await make_plan())

        # Act
        canceled = await service.cancel(db, subscription.id)
        resumed = await service.resume(db, subscription.id)

        # Assert
        assert canceled.cancel_at_period_end is True
        assert canceled.status == schemas.SubscriptionStatus.ACTIVE
        assert resumed.cancel_at_period_end is False
        assert resumed.canceled_at is None

    async def test_canceled_subscription_cannot_resume(
        self, db, service, make_customer, make_plan, make_subscription
    ):
        """Cancellation is terminal."""
        subscription = await make_subscription(await make_customer(), await make_plan())

        canceled = await service.cancel(db, subscription.id, immediate=True)

        assert canceled.status == schemas.SubscriptionStatus.CANCELED
        assert canceled.ended_at is not None
        with pytest.raises(InvalidStateError):
            await service.resume(db, subscription.id)
        with pytest.raises(InvalidStateError):
            await service.update_quantity(db, subscription.id, 3)


class TestChanges:
    """Tests for quantity, plan and usage changes."""

    async def test_update_quantity_keeps_audit_trail(
        self, db, service, make_customer, make_plan, make_subscription
    ):
        """The previous quantity is kept in metadata."""
        subscription = await make_subscription(await make_customer(), await make_plan())

        updated = await service.update_quantity(db, subscription.id, 5)

        assert updated.quantity == 5
        assert updated.metadata["previousQuantity"] == 1

    async def test_update_quantity_rejects_zero(
        self, db, service, make_customer, make_plan, make_subscription
    ):
        """Quantities below one are invalid input."""
        subscription = await make_subscription(await make_customer(), await make_plan())

        with pytest.raises(InvalidInputError):
            await service.update_quantity(db, subscription.id, 0)

    async def test_change_plan_records_proration(
        self, db, service, make_customer, make_plan, make_subscription
    ):
        """Switching plans stores the previous plan and the proration amounts."""
        # Arrange
        customer = await make_customer()
        basic = await make_plan(name="Basic", amount=Decimal("30.00"))
        pro = await make_plan(name="Pro", amount=Decimal("60.00"))
        subscription = await make_subscription(customer, basic)

        # Act
        changed = await service.change_plan(db, subscription.id, pro.id)

        # Assert
        assert changed.plan_id == pro.id
        assert changed.metadata["previousPlanId"] == str(basic.id)
        proration = changed.metadata["proration"]
        assert Decimal(proration["charge"]) >= Decimal(proration["credit"])

    async def test_usage_idempotency_key(
        self, db, service, make_customer, make_plan, make_subscription
    ):
        """A repeated key returns the first record and appends nothing."""
        subscription = await make_subscription(await make_customer(), await make_plan())
        usage = schemas.UsageRecordCreate(quantity=7, idempotency_key="import-1")

        first = await service.record_usage(db, subscription.id, usage)
        second = await service.record_usage(db, subscription.id, usage)

        assert first.id == second.id
        records = await crud.usage_record.get_for_period(
            db,
            subscription.id,
            subscription.current_period_start,
            subscription.current_period_end,
        )
        assert len(records) == 1


class TestPauseCollection:
    """Tests for pausing and unpausing collection."""

    async def test_pause_then_unpause(
        self, db, service, make_customer, make_plan, make_subscription
    ):
        """Pausing records the behavior; unpausing makes the subscription active again."""
        # Arrange
        subscription = await make_subscription(await make_customer(), await make_plan())
        resumes_at = utc_now_naive() + timedelta(days=14)

        # Act
        paused = await service.pause(
            db, subscription.id, schemas.PauseBehavior.VOID, resumes_at=resumes_at
        )
        resumed = await service.unpause(db, subscription.id)

        # Assert
        assert paused.status == schemas.SubscriptionStatus.PAUSED
        assert paused.pause_behavior == schemas.PauseBehavior.VOID
        assert paused.metadata["resumesAt"] == resumes_at.isoformat()
        assert resumed.status == schemas.SubscriptionStatus.ACTIVE
        assert resumed.pause_behavior is None
        assert "unpausedAt" in resumed.metadata
        assert resumed.metadata["pauseBehavior"] == "void"

    async def test_unpause_requires_a_paused_subscription(
        self, db, service, make_customer, make_plan, make_subscription
    ):
        """An active subscription cannot be unpaused."""
        subscription = await make_subscription(await make_customer(), await make_plan())

        with pytest.raises(InvalidStateError):
            await service.unpause(db, subscription.id)

    async def test_mirrored_pause_reaches_the_gateway(
        self, db, mock_stripe_gateway, make_customer, make_plan, make_subscription
    ):
        """The gateway receives the pause and an empty value to clear it."""
        subscription = await make_subscription(
            await make_customer(), await make_plan(), stripe_subscription_id="sub_paused"
        )
        mirrored = SubscriptionService(mock_stripe_gateway)

        await mirrored.pause(db, subscription.id)
        await mirrored.unpause(db, subscription.id)

        first, second = mock_stripe_gateway.update_subscription.await_args_list
        assert first.args == ("sub_paused",)
        assert first.kwargs == {"pause_collection": {"behavior": "keep_as_draft"}}
        assert second.kwargs == {"pause_collection": ""}


class TestPartialUpdate:
    """Tests for SubscriptionService.update."""

    async def test_trial_end_now_activates(
        self, db, service, make_customer, make_plan, make_subscription
    ):
        """Ending the trial now makes the subscription active immediately."""
        subscription = await make_subscription(
            await make_customer(),
            await make_plan(),
            status="trialing",
            trial_end=utc_now_naive() + timedelta(days=7),
        )

        updated = await service.update(
            db, subscription.id, schemas.SubscriptionUpdate(trial_end="now")
        )

        assert updated.status == schemas.SubscriptionStatus.ACTIVE
        assert updated.trial_end <= utc_now_naive()

    async def test_past_trial_end_is_rejected(
        self, db, service, make_customer, make_plan, make_subscription
    ):
        """A trial cannot be moved into the past."""
        subscription = await make_subscription(
            await make_customer(), await make_plan(), status="trialing"
        )

        with pytest.raises(InvalidInputError):
            await service.update(
                db,
                subscription.id,
                schemas.SubscriptionUpdate(trial_end=utc_now_naive() - timedelta(days=1)),
            )

    async def test_plan_change_adopts_plan_and_currency(
        self, db, mock_stripe_gateway, make_customer, make_plan, make_subscription
    ):
        """A new plan brings its currency and its gateway price along."""
        # Arrange
        subscription = await make_subscription(
            await make_customer(), await make_plan(), stripe_subscription_id="sub_upd"
        )
        euro_plan = await make_plan(
            name="Euro", currency="EUR", amount=Decimal("89.00"), stripe_price_id="price_eur"
        )

        # Act
        updated = await SubscriptionService(mock_stripe_gateway).update(
            db,
            subscription.id,
            schemas.SubscriptionUpdate(plan_id=euro_plan.id, quantity=2, metadata={"team": "a"}),
        )

        # Assert
        assert updated.plan_id == euro_plan.id
        assert updated.currency == "EUR"
        assert updated.quantity == 2
        assert updated.metadata["team"] == "a"
        mock_stripe_gateway.update_subscription.assert_awaited_once_with(
            "sub_upd", price_id="price_eur", quantity=2, metadata={"team": "a"}
        )

    async def test_inactive_plan_is_rejected(
        self, db, service, make_customer, make_plan, make_subscription
    ):
        """Only active plans can be moved to."""
        subscription = await make_subscription(await make_customer(), await make_plan())
        retired = await make_plan(name="Legacy", active=False)

        with pytest.raises(InvalidStateError):
            await service.update(
                db, subscription.id, schemas.SubscriptionUpdate(plan_id=retired.id)
            )


class TestProcessExpiredTrials:
    """Tests for the expired trial batch."""

    async def test_activates_only_expired_trials(
        self, db, service, make_customer, make_plan, make_subscription
    ):
        """Two of three trials have ended; only those two are activated."""
        # Arrange
        customer = await make_customer()
        plan = await make_plan()
        now = utc_now_naive()
        expired = [
            await make_subscription(
                customer, plan, status="trialing", trial_end=now - timedelta(hours=hours)
            )
            for hours in (1, 5)
        ]
        running = await make_subscription(
            customer, plan, status="trialing", trial_end=now + timedelta(days=3)
        )

        # Act
        result = await service.process_expired_trials(db)

        # Assert
        assert (result.processed, result.failed) == (2, 0)
        for subscription in expired:
            reloaded = await crud.subscription.get(db, subscription.id)
            assert reloaded.status == "active"
            assert reloaded.trial_end is None
        untouched = await crud.subscription.get(db, running.id)
        assert untouched.status == "trialing"
        assert untouched.trial_end is not None
