"""Processor for ledger gateway (Ramp) webhook events."""

from sqlalchemy.ext.asyncio import AsyncSession

from billflow.core.logging import ContextualLogger
from billflow.db.unit_of_work import UnitOfWork
from billflow.schemas.webhook import RampEvent, RampLedgerEvent


class RampEventProcessor:
    """Acknowledge Ramp webhook events.

    Ledger state is pulled by the sync engine, so pushed ledger events are not
    wired to local state yet: they are recorded in the log and acknowledged.
    """

    async def process_event(
        self, db: AsyncSession, event: RampEvent, uow: UnitOfWork, log: ContextualLogger
    ) -> None:
        """Dispatch an event; unknown types are only logged."""
        if isinstance(event, RampLedgerEvent):
            await self._handle_unwired_ledger_event(event, log)
            return
        log.info(f"Unhandled webhook event type: {event.type}")

    async def _handle_unwired_ledger_event(
        self, event: RampLedgerEvent, log: ContextualLogger
    ) -> None:
        resource_id = event.data.get("id", "unknown")
        log.info(
            f"Ledger event {event.type} for {resource_id} acknowledged; "
            "ledger events are not wired to local state"
        )
