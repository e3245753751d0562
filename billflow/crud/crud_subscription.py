"""CRUD operations for subscriptions."""

from datetime import datetime
from typing import Optional
from uuid import UUID

from sqlalchemy import and_, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from billflow.crud._base import CRUDBase
from billflow.models.subscription import Subscription
from billflow.schemas.subscription import (
    SubscriptionCreate,
    SubscriptionStatus,
    SubscriptionUpdate,
)

# Statuses that still bill or may bill again
LIVE_STATUSES = (
    SubscriptionStatus.TRIALING.value,
    SubscriptionStatus.ACTIVE.value,
    SubscriptionStatus.PAST_DUE.value,
    SubscriptionStatus.UNPAID.value,
    SubscriptionStatus.PAUSED.value,
)


class CRUDSubscription(CRUDBase[Subscription, SubscriptionCreate, SubscriptionUpdate]):
    """CRUD operations for subscriptions."""

    async def get_by_stripe_id(
        self, db: AsyncSession, stripe_subscription_id: str
    ) -> Optional[Subscription]:
        """Get a subscription by payment gateway id."""
        result = await db.execute(
            select(Subscription).where(
                Subscription.stripe_subscription_id == stripe_subscription_id
            )
        )
        return result.scalar_one_or_none()

    def build_filters(
        self, status: Optional[SubscriptionStatus] = None, customer_id: Optional[UUID] = None
    ) -> list:
        """Filters for list endpoints."""
        filters = []
        if status is not None:
            filters.append(Subscription.status == SubscriptionStatus(status).value)
        if customer_id is not None:
            filters.append(Subscription.customer_id == customer_id)
        return filters

    async def get_expired_trials(self, db: AsyncSession, now: datetime) -> list[Subscription]:
        """Trialing subscriptions whose trial has ended."""
        query = (
            select(Subscription)
            .where(
                Subscription.status == SubscriptionStatus.TRIALING.value,
                Subscription.trial_end.is_not(None),
                Subscription.trial_end <= now,
            )
            .order_by(Subscription.trial_end)
        )
        result = await db.execute(query)
        return list(result.scalars().all())

    async def get_ending_before(
        self, db: AsyncSession, end: datetime, *, skip: int = 0, limit: Optional[int] = 100
    ) -> list[Subscription]:
        """Live subscriptions whose current period ends before ``end``."""
        return await self.get_multi(
            db,
            skip=skip,
            limit=limit,
            filters=[
                Subscription.status.in_(LIVE_STATUSES),
                Subscription.current_period_end <= end,
            ],
        )

    async def get_trials_ending_before(
        self, db: AsyncSession, end: datetime, *, skip: int = 0, limit: Optional[int] = 100
    ) -> list[Subscription]:
        """Trialing subscriptions whose trial ends before ``end``."""
        return await self.get_multi(
            db,
            skip=skip,
            limit=limit,
            filters=[
                Subscription.status == SubscriptionStatus.TRIALING.value,
                Subscription.trial_end.is_not(None),
                Subscription.trial_end <= end,
            ],
        )

    async def get_active(
        self, db: AsyncSession, currency: Optional[str] = None
    ) -> list[Subscription]:
        """All subscriptions in status active, optionally in one currency."""
        filters = [Subscription.status == SubscriptionStatus.ACTIVE.value]
        if currency:
            filters.append(Subscription.currency == currency)
        return await self.get_multi(db, limit=None, filters=filters)

    async def count_canceled_between(self, db: AsyncSession, start: datetime, end: datetime) -> int:
        """Subscriptions canceled within ``[start, end)``."""
        return await self.count(
            db,
            filters=[
                Subscription.canceled_at.is_not(None),
                Subscription.canceled_at >= start,
                Subscription.canceled_at < end,
            ],
        )

    async def count_active_at(self, db: AsyncSession, moment: datetime) -> int:
        """Subscriptions that existed at ``moment`` and had not been canceled or ended yet."""
        return await self.count(
            db,
            filters=[
                Subscription.created_at <= moment,
                or_(Subscription.canceled_at.is_(None), Subscription.canceled_at > moment),
                or_(Subscription.ended_at.is_(None), Subscription.ended_at > moment),
            ],
        )

    async def get_created_or_canceled_between(
        self, db: AsyncSession, start: datetime, end: datetime
    ) -> list[Subscription]:
        """Subscriptions created or canceled within ``[start, end)``."""
        return await self.get_multi(
            db,
            limit=None,
            filters=[
                or_(
                    and_(Subscription.created_at >= start, Subscription.created_at < end),
                    and_(Subscription.canceled_at >= start, Subscription.canceled_at < end),
                )
            ],
        )


subscription = CRUDSubscription(Subscription)
