"""Integration tests for the ledger sync engine with a fake ledger gateway."""

import asyncio
from datetime import timedelta

import pytest

from billflow import crud
from billflow.core.datetime_utils import utc_now_naive
from billflow.core.exceptions import ExternalServiceError, InvalidInputError
from billflow.platform.sync.ledger_sync import LedgerSyncService
from billflow.schemas.sync import TransactionSyncOptions

BUSINESS_ID = "biz_123"


def _transaction(transaction_id: str, amount: float = 10.0, state: str = "CLEARED") -> dict:
    return {
        "id": transaction_id,
        "amount": amount,
        "currency_code": "USD",
        "merchant_name": "Coffee Shop",
        "state": state,
        "user_transaction_time": "2024-05-01T10:00:00+00:00",
    }


def _page(items: list, next_cursor=None) -> dict:
    return {"data": items, "page": {"next": next_cursor}}


@pytest.fixture
def sync_service(mock_ledger_gateway):
    """A sync service that retries without waiting."""
    return LedgerSyncService(mock_ledger_gateway, retry_base_delay=0, max_attempts=3, page_size=2)


class TestSyncTransactions:
    """Tests for LedgerSyncService.sync_transactions."""

    async def test_page_retry_is_transparent_and_bad_items_are_reported(
        self, db, sync_service, mock_ledger_gateway
    ):
        """A page that fails twice is retried; a malformed item still yields a SyncError."""
        # Arrange
        flaky = ExternalServiceError("Ramp", "Failed to list transactions: 502")
        mock_ledger_gateway.list_transactions.side_effect = [
            _page([_transaction("txn_1"), _transaction("txn_2")], "cursor-2"),
            flaky,
            flaky,
            _page([_transaction("txn_3"), {"id": "txn_bad", "merchant_name": "?"}], "cursor-3"),
            _page([_transaction("txn_4")]),
        ]

        # Act
        result = await sync_service.sync_transactions(db, BUSINESS_ID)

        # Assert
        assert result.pages == 3
        assert result.synced == 4
        assert result.failed == 1
        assert [error.id for error in result.errors] == ["txn_bad"]
        assert result.success is False
        assert mock_ledger_gateway.list_transactions.await_count == 5
        cursors = [
            call.kwargs["start_cursor"]
            for call in mock_ledger_gateway.list_transactions.await_args_list
        ]
        assert cursors == [None, "cursor-2", "cursor-2", "cursor-2", "cursor-3"]
        stored = await crud.ledger_record.get_by_external_id(db, "transaction", "txn_4")
        assert stored.business_id == BUSINESS_ID

    async def test_page_failing_every_attempt_aborts(self, db, sync_service, mock_ledger_gateway):
        """After the last attempt the page error propagates."""
        mock_ledger_gateway.list_transactions.side_effect = ExternalServiceError("Ramp", "down")

        with pytest.raises(ExternalServiceError):
            await sync_service.sync_transactions(db, BUSINESS_ID)

        assert mock_ledger_gateway.list_transactions.await_count == 3

    async def test_resync_updates_existing_records(self, db, sync_service, mock_ledger_gateway):
        """Syncing the same item twice keeps a single mirrored record."""
        mock_ledger_gateway.list_transactions.side_effect = [
            _page([_transaction("txn_1", amount=10.0)]),
            _page([_transaction("txn_1", amount=12.5)]),
        ]

        await sync_service.sync_transactions(db, BUSINESS_ID)
        await sync_service.sync_transactions(db, BUSINESS_ID)

        status = await sync_service.get_sync_status(db, BUSINESS_ID)
        assert status.total_transactions == 1
        stored = await crud.ledger_record.get_by_external_id(db, "transaction", "txn_1")
        assert str(stored.amount) == "12.50"

    async def test_pending_transactions_can_be_excluded(
        self, db, sync_service, mock_ledger_gateway
    ):
        """With include_pending off only cleared transactions are stored."""
        mock_ledger_gateway.list_transactions.return_value = _page(
            [_transaction("txn_p", state="PENDING"), _transaction("txn_c", state="CLEARED")]
        )

        result = await sync_service.sync_transactions(
            db, BUSINESS_ID, TransactionSyncOptions(include_pending=False)
        )

        assert result.synced == 1
        assert await crud.ledger_record.get_by_external_id(db, "transaction", "txn_p") is None

    async def test_cancelled_before_first_page(self, db, sync_service, mock_ledger_gateway):
        """A set cancel event stops the run before any fetch."""
        cancel_event = asyncio.Event()
        cancel_event.set()

        result = await sync_service.sync_transactions(db, BUSINESS_ID, cancel_event=cancel_event)

        assert result.cancelled is True
        assert result.pages == 0
        mock_ledger_gateway.list_transactions.assert_not_awaited()

    async def test_business_id_is_required(self, db, sync_service):
        """An empty business id is invalid input."""
        with pytest.raises(InvalidInputError):
            await sync_service.sync_transactions(db, "")


class TestFullSync:
    """Tests for full and incremental syncs."""

    async def test_page_failure_after_retries_stops_the_run(
        self, db, sync_service, mock_ledger_gateway
    ):
        """An exhausted transaction fetch propagates and later resources are not synced."""
        # Arrange
        mock_ledger_gateway.list_transactions.side_effect = ExternalServiceError("Ramp", "down")

        # Act
        with pytest.raises(ExternalServiceError):
            await sync_service.full_sync(db, BUSINESS_ID)

        # Assert
        assert mock_ledger_gateway.list_transactions.await_count == 3
        mock_ledger_gateway.list_bills.assert_not_awaited()
        mock_ledger_gateway.list_reimbursements.assert_not_awaited()
        assert not sync_service.is_running(BUSINESS_ID)

    async def test_bill_failure_keeps_synced_transactions(
        self, db, sync_service, mock_ledger_gateway
    ):
        """Resources synced before the failing one stay written."""
        # Arrange
        mock_ledger_gateway.list_transactions.return_value = _page([_transaction("txn_kept")])
        mock_ledger_gateway.list_bills.side_effect = ExternalServiceError("Ramp", "down")

        # Act
        with pytest.raises(ExternalServiceError):
            await sync_service.incremental_sync(
                db, BUSINESS_ID, utc_now_naive() - timedelta(days=1)
            )

        # Assert
        status = await sync_service.get_sync_status(db, BUSINESS_ID)
        assert status.total_transactions == 1
        assert status.total_bills == 0
        mock_ledger_gateway.list_reimbursements.assert_not_awaited()

    async def test_item_errors_are_collected(self, db, sync_service, mock_ledger_gateway):
        """Per-item failures are reported without failing the run."""
        # Arrange
        mock_ledger_gateway.list_transactions.return_value = _page([{"amount": 5}])
        mock_ledger_gateway.list_bills.return_value = _page(
            [{"id": "bill_1", "amount": 500, "currency_code": "USD", "status": "OPEN"}]
        )
        mock_ledger_gateway.list_reimbursements.return_value = _page(
            [{"id": "reimb_1", "amount": 42, "currency": "USD", "state": "APPROVED"}]
        )

        # Act
        result = await sync_service.full_sync(db, BUSINESS_ID)

        # Assert
        assert result.success is False
        assert [error.type for error in result.errors] == ["transaction"]
        assert result.bills.synced == 1
        assert result.reimbursements.synced == 1

    async def test_incremental_sync_filters_by_date(self, db, sync_service, mock_ledger_gateway):
        """Every resource is asked for items since the given moment."""
        mock_ledger_gateway.list_transactions.return_value = _page([])
        since = utc_now_naive() - timedelta(days=1)

        result = await sync_service.incremental_sync(db, BUSINESS_ID, since)

        assert result.success is True
        kwargs = mock_ledger_gateway.list_bills.await_args.kwargs
        assert kwargs["from_date"] == since.isoformat()
        assert kwargs["to_date"] is not None

    async def test_incremental_sync_rejects_future_since(self, db, sync_service):
        """``since`` must lie in the past."""
        with pytest.raises(InvalidInputError):
            await sync_service.incremental_sync(
                db, BUSINESS_ID, utc_now_naive() + timedelta(hours=1)
            )


class TestIntegrity:
    """Tests for validate_transaction_integrity."""

    async def test_reports_missing_fields(self, sync_service, mock_ledger_gateway):
        """Missing amounts and merchant names are reported per transaction."""
        mock_ledger_gateway.list_transactions.return_value = _page(
            [
                _transaction("txn_ok"),
                {"id": "txn_no_amount", "merchant_name": "Shop"},
                {"id": "txn_no_merchant", "amount": 3},
            ]
        )

        report = await sync_service.validate_transaction_integrity(BUSINESS_ID)

        assert report.valid is False
        assert [(d.transaction_id, d.issue) for d in report.discrepancies] == [
            ("txn_no_amount", "Missing amount"),
            ("txn_no_merchant", "Missing merchant name"),
        ]
