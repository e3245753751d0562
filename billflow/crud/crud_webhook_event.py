"""CRUD operations for processed webhook events."""

from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from billflow.crud._base import CRUDBase
from billflow.models.webhook_event import WebhookEvent


class CRUDWebhookEvent(CRUDBase[WebhookEvent, dict, dict]):
    """CRUD operations for processed webhook events."""

    async def get_by_event(
        self, db: AsyncSession, source: str, event_id: str
    ) -> Optional[WebhookEvent]:
        """The processed delivery with this id, if any."""
        result = await db.execute(
            select(WebhookEvent).where(
                WebhookEvent.source == source, WebhookEvent.event_id == event_id
            )
        )
        return result.scalar_one_or_none()


webhook_event = CRUDWebhookEvent(WebhookEvent)
