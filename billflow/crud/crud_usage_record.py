"""CRUD operations for usage records."""

from datetime import datetime
from typing import Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from billflow.crud._base import CRUDBase
from billflow.models.usage_record import UsageRecord


class CRUDUsageRecord(CRUDBase[UsageRecord, dict, dict]):
    """Append-only access to usage records."""

    async def get_by_idempotency_key(
        self, db: AsyncSession, subscription_id: UUID, idempotency_key: str
    ) -> Optional[UsageRecord]:
        """The record previously written with ``idempotency_key``."""
        result = await db.execute(
            select(UsageRecord).where(
                UsageRecord.subscription_id == subscription_id,
                UsageRecord.idempotency_key == idempotency_key,
            )
        )
        return result.scalar_one_or_none()

    async def get_for_period(
        self, db: AsyncSession, subscription_id: UUID, start: datetime, end: datetime
    ) -> list[UsageRecord]:
        """Usage within ``[start, end)`` in the order it happened."""
        result = await db.execute(
            select(UsageRecord)
            .where(
                UsageRecord.subscription_id == subscription_id,
                UsageRecord.timestamp >= start,
                UsageRecord.timestamp < end,
            )
            .order_by(UsageRecord.timestamp, UsageRecord.created_at)
        )
        return list(result.scalars().all())


usage_record = CRUDUsageRecord(UsageRecord)
