"""Cursor-driven sync of ledger gateway data into the local mirror.

Each resource type is pulled page by page. Items are written one at a time with
their own commit, so a bad item is recorded as a SyncError and the run goes on.
Transaction page fetches are retried with a linear backoff; a page that still
fails after the last attempt aborts that resource's run.
"""

import asyncio
from collections import Counter
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Awaitable, Callable, Optional

from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession
from tenacity import AsyncRetrying, stop_after_attempt, wait_incrementing

from billflow import crud
from billflow.core.config import settings
from billflow.core.datetime_utils import to_naive_utc, utc_now_naive
from billflow.core.exceptions import InvalidInputError
from billflow.core.logging import ContextualLogger, logger
from billflow.core.money import round_money
from billflow.integrations.ramp_client import RampClient
from billflow.schemas.ledger import LedgerBill, LedgerReimbursement, LedgerTransaction
from billflow.schemas.sync import (
    FullSyncResult,
    IntegrityDiscrepancy,
    IntegrityReport,
    LedgerResource,
    SyncError,
    SyncResult,
    SyncStatus,
    TransactionSyncOptions,
)

PageFetcher = Callable[..., Awaitable[dict[str, Any]]]

_PENDING_STATES = {"PENDING"}
_CLEARED_STATES = {"CLEARED"}


def _page_items(page: dict[str, Any]) -> list[Any]:
    """Items of a page; transaction listings use ``transactions``, the rest ``data``."""
    items = page.get("transactions")
    if items is None:
        items = page.get("data")
    return list(items or [])


def _next_cursor(page: dict[str, Any]) -> Optional[str]:
    page_info = page.get("page") or {}
    return page_info.get("next") or None


def _item_id(item: Any) -> str:
    if isinstance(item, dict) and item.get("id"):
        return str(item["id"])
    return "unknown"


def _date_filters(
    from_date: Optional[datetime], to_date: Optional[datetime]
) -> dict[str, Optional[str]]:
    return {
        "from_date": from_date.isoformat() if from_date else None,
        "to_date": to_date.isoformat() if to_date else None,
    }


# ------------------------------ Record mapping ------------------------------ #


def transaction_values(business_id: str, transaction: LedgerTransaction) -> dict[str, Any]:
    """Mirror columns for a transaction."""
    return {
        "business_id": business_id,
        "amount": round_money(transaction.amount),
        "currency": transaction.currency_code,
        "state": transaction.state,
        "occurred_at": to_naive_utc(transaction.user_transaction_time),
        "payload": transaction.model_dump(mode="json"),
    }


def bill_values(business_id: str, bill: LedgerBill) -> dict[str, Any]:
    """Mirror columns for a bill."""
    return {
        "business_id": business_id,
        "amount": round_money(bill.amount),
        "currency": bill.currency_code,
        "state": bill.status,
        "occurred_at": to_naive_utc(bill.issued_at or bill.due_at),
        "payload": bill.model_dump(mode="json"),
    }


def reimbursement_values(business_id: str, reimbursement: LedgerReimbursement) -> dict[str, Any]:
    """Mirror columns for a reimbursement."""
    return {
        "business_id": business_id,
        "amount": round_money(reimbursement.amount),
        "currency": reimbursement.currency,
        "state": reimbursement.state,
        "occurred_at": to_naive_utc(reimbursement.transaction_date or reimbursement.created_at),
        "payload": reimbursement.model_dump(mode="json"),
    }


_RESOURCE_SCHEMAS: dict[LedgerResource, tuple[type[BaseModel], Callable[..., dict]]] = {
    LedgerResource.TRANSACTION: (LedgerTransaction, transaction_values),
    LedgerResource.BILL: (LedgerBill, bill_values),
    LedgerResource.REIMBURSEMENT: (LedgerReimbursement, reimbursement_values),
}


class LedgerSyncService:
    """Pull transactions, bills and reimbursements from the ledger gateway."""

    def __init__(
        self,
        ledger_gateway: RampClient,
        retry_base_delay: Optional[float] = None,
        max_attempts: Optional[int] = None,
        page_size: Optional[int] = None,
    ):
        """Initialize the sync service.

        Args:
        ----
            ledger_gateway (RampClient): Source of the paginated listings.
            retry_base_delay (float, optional): Seconds; attempt n waits ``n`` times this.
            max_attempts (int, optional): Attempts per transaction page fetch.
            page_size (int, optional): Page size requested from the gateway.

        """
        self.ledger_gateway = ledger_gateway
        self.retry_base_delay = (
            retry_base_delay if retry_base_delay is not None else settings.SYNC_RETRY_DELAY_SECONDS
        )
        self.max_attempts = max_attempts or settings.SYNC_MAX_RETRIES
        self.page_size = page_size or settings.SYNC_PAGE_SIZE
        self._running: Counter[str] = Counter()

    @asynccontextmanager
    async def _track(self, business_id: str):
        self._running[business_id] += 1
        try:
            yield
        finally:
            self._running[business_id] -= 1
            if self._running[business_id] <= 0:
                del self._running[business_id]

    def is_running(self, business_id: str) -> bool:
        """Whether a sync for the business is in progress in this process."""
        return self._running[business_id] > 0

    # ------------------------------ Helpers (internal) ------------------------------ #

    async def _fetch_with_retry(
        self, fetch: PageFetcher, log: ContextualLogger, **kwargs: Any
    ) -> dict[str, Any]:
        """Fetch one page, retrying with delay ``base × attempt`` and re-raising at the end."""

        def _log_retry(retry_state) -> None:
            log.warning(
                f"Page fetch attempt {retry_state.attempt_number} failed: "
                f"{retry_state.outcome.exception()}; retrying"
            )

        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_incrementing(start=self.retry_base_delay, increment=self.retry_base_delay),
            before_sleep=_log_retry,
            reraise=True,
        ):
            with attempt:
                return await fetch(**kwargs)

    async def _store_item(
        self,
        db: AsyncSession,
        business_id: str,
        resource: LedgerResource,
        item: Any,
    ) -> None:
        schema, to_values = _RESOURCE_SCHEMAS[resource]
        record = schema.model_validate(item)
        await crud.ledger_record.upsert(
            db,
            kind=resource.value,
            external_id=record.id,
            values=to_values(business_id, record),
        )

    async def _run(
        self,
        db: AsyncSession,
        business_id: str,
        resource: LedgerResource,
        fetch: PageFetcher,
        filters: dict[str, Any],
        retry: bool = False,
        cancel_event: Optional[asyncio.Event] = None,
        keep: Optional[Callable[[Any], bool]] = None,
    ) -> SyncResult:
        """Run the cursor loop for one resource type."""
        log = logger.with_context(business_id=business_id, resource=resource.value)
        result = SyncResult(resource=resource)
        cursor: Optional[str] = None

        while True:
            if cancel_event is not None and cancel_event.is_set():
                log.info(f"Sync cancelled after {result.pages} pages")
                result.cancelled = True
                break

            kwargs = {"start_cursor": cursor, "page_size": self.page_size, **filters}
            if retry:
                page = await self._fetch_with_retry(fetch, log, business_id=business_id, **kwargs)
            else:
                page = await fetch(business_id=business_id, **kwargs)
            result.pages += 1

            for item in _page_items(page):
                if keep is not None and not keep(item):
                    continue
                try:
                    await self._store_item(db, business_id, resource, item)
                    result.synced += 1
                except Exception as e:
                    await db.rollback()
                    item_id = _item_id(item)
                    log.warning(f"Failed to sync {resource.value} {item_id}: {e}")
                    result.failed += 1
                    result.errors.append(
                        SyncError(type=resource.value, id=item_id, message=str(e))
                    )

            cursor = _next_cursor(page)
            if not cursor:
                break

        result.success = not result.errors
        result.finished_at = utc_now_naive()
        log.info(
            f"Synced {result.synced} {resource.value} items over {result.pages} pages "
            f"({result.failed} failed)"
        )
        return result

    @staticmethod
    def _state_filter(options: TransactionSyncOptions) -> Optional[Callable[[Any], bool]]:
        if options.include_pending and options.include_cleared:
            return None

        excluded = set()
        if not options.include_pending:
            excluded |= _PENDING_STATES
        if not options.include_cleared:
            excluded |= _CLEARED_STATES

        def keep(item: Any) -> bool:
            state = item.get("state") if isinstance(item, dict) else None
            return (state or "").upper() not in excluded

        return keep

    # ------------------------------ Resource syncs ------------------------------ #

    async def sync_transactions(
        self,
        db: AsyncSession,
        business_id: str,
        options: Optional[TransactionSyncOptions] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> SyncResult:
        """Sync card transactions.

        Args:
        ----
            db (AsyncSession): The database session.
            business_id (str): The ledger business to sync.
            options (TransactionSyncOptions, optional): Date range and state filters.
            cancel_event (asyncio.Event, optional): Checked before every page fetch.

        Returns:
        -------
            SyncResult: Counts and the per-item errors of the run.

        Raises:
        ------
            InvalidInputError: If no business id is given.
            ExternalServiceError: If a page fetch still fails after the last attempt.

        """
        if not business_id:
            raise InvalidInputError("business_id is required")
        options = options or TransactionSyncOptions()
        filters = {**_date_filters(options.from_date, options.to_date), "state": options.state}

        async with self._track(business_id):
            return await self._run(
                db,
                business_id,
                LedgerResource.TRANSACTION,
                self.ledger_gateway.list_transactions,
                filters,
                retry=True,
                cancel_event=cancel_event,
                keep=self._state_filter(options),
            )

    async def sync_bills(
        self,
        db: AsyncSession,
        business_id: str,
        from_date: Optional[datetime] = None,
        to_date: Optional[datetime] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> SyncResult:
        """Sync vendor bills."""
        if not business_id:
            raise InvalidInputError("business_id is required")
        async with self._track(business_id):
            return await self._run(
                db,
                business_id,
                LedgerResource.BILL,
                self.ledger_gateway.list_bills,
                _date_filters(from_date, to_date),
                cancel_event=cancel_event,
            )

    async def sync_reimbursements(
        self,
        db: AsyncSession,
        business_id: str,
        from_date: Optional[datetime] = None,
        to_date: Optional[datetime] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> SyncResult:
        """Sync employee reimbursements."""
        if not business_id:
            raise InvalidInputError("business_id is required")
        async with self._track(business_id):
            return await self._run(
                db,
                business_id,
                LedgerResource.REIMBURSEMENT,
                self.ledger_gateway.list_reimbursements,
                _date_filters(from_date, to_date),
                cancel_event=cancel_event,
            )

    # ------------------------------ Full and incremental ------------------------------ #

    async def _full_sync(
        self,
        db: AsyncSession,
        business_id: str,
        from_date: Optional[datetime],
        to_date: Optional[datetime],
        cancel_event: Optional[asyncio.Event],
    ) -> FullSyncResult:
        if not business_id:
            raise InvalidInputError("business_id is required")

        log = logger.with_context(business_id=business_id)
        started_at = utc_now_naive()
        errors: list[SyncError] = []
        results: dict[LedgerResource, SyncResult] = {}

        steps = (
            (
                LedgerResource.TRANSACTION,
                lambda: self.sync_transactions(
                    db,
                    business_id,
                    TransactionSyncOptions(from_date=from_date, to_date=to_date),
                    cancel_event,
                ),
            ),
            (
                LedgerResource.BILL,
                lambda: self.sync_bills(db, business_id, from_date, to_date, cancel_event),
            ),
            (
                LedgerResource.REIMBURSEMENT,
                lambda: self.sync_reimbursements(
                    db, business_id, from_date, to_date, cancel_event
                ),
            ),
        )

        async with self._track(business_id):
            for resource, run in steps:
                try:
                    result = await run()
                except Exception as e:
                    log.error(f"{resource.value} sync failed, stopping the full sync: {e}")
                    raise
                results[resource] = result
                errors.extend(result.errors)

        full = FullSyncResult(
            business_id=business_id,
            success=not errors,
            transactions=results.get(LedgerResource.TRANSACTION),
            bills=results.get(LedgerResource.BILL),
            reimbursements=results.get(LedgerResource.REIMBURSEMENT),
            errors=errors,
            started_at=started_at,
            finished_at=utc_now_naive(),
        )
        log.info(f"Full sync finished with {len(errors)} errors")
        return full

    async def full_sync(
        self,
        db: AsyncSession,
        business_id: str,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> FullSyncResult:
        """Sync transactions, then bills, then reimbursements.

        Per-item failures are collected in ``errors``. A page fetch that still fails
        after its retries stops the run and propagates; the resources already
        synced stay written.
        """
        return await self._full_sync(db, business_id, None, None, cancel_event)

    async def incremental_sync(
        self,
        db: AsyncSession,
        business_id: str,
        since: datetime,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> FullSyncResult:
        """Full sync restricted to items between ``since`` and now."""
        if since is None:
            raise InvalidInputError("since is required for an incremental sync")
        since = to_naive_utc(since)
        now = utc_now_naive()
        if since >= now:
            raise InvalidInputError("since must be in the past")
        return await self._full_sync(db, business_id, since, now, cancel_event)

    # ------------------------------ Status and checks ------------------------------ #

    async def get_sync_status(self, db: AsyncSession, business_id: str) -> SyncStatus:
        """Mirror counts, last write time and whether a sync is running."""
        counts = await crud.ledger_record.count_by_kind(db, business_id)
        return SyncStatus(
            business_id=business_id,
            last_sync_at=await crud.ledger_record.get_last_synced_at(db, business_id),
            total_transactions=counts.get(LedgerResource.TRANSACTION.value, 0),
            total_bills=counts.get(LedgerResource.BILL.value, 0),
            total_reimbursements=counts.get(LedgerResource.REIMBURSEMENT.value, 0),
            sync_in_progress=self.is_running(business_id),
        )

    async def validate_transaction_integrity(self, business_id: str) -> IntegrityReport:
        """Check one page of gateway transactions for missing required fields."""
        page = await self.ledger_gateway.list_transactions(
            business_id=business_id, page_size=self.page_size
        )
        discrepancies: list[IntegrityDiscrepancy] = []
        for item in _page_items(page):
            transaction_id = _item_id(item)
            if transaction_id == "unknown":
                discrepancies.append(
                    IntegrityDiscrepancy(transaction_id=transaction_id, issue="Missing id")
                )
            if item.get("amount") is None:
                discrepancies.append(
                    IntegrityDiscrepancy(transaction_id=transaction_id, issue="Missing amount")
                )
            if not item.get("merchant_name"):
                discrepancies.append(
                    IntegrityDiscrepancy(
                        transaction_id=transaction_id, issue="Missing merchant name"
                    )
                )

        return IntegrityReport(valid=not discrepancies, discrepancies=discrepancies)
