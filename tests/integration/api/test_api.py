"""API tests: routing, error envelopes and webhook receivers."""

import uuid
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from billflow import schemas
from billflow.api import deps
from billflow.core.exceptions import WebhookProcessingError
from billflow.main import app
from billflow.platform.billing.billing_service import BillingService
from billflow.platform.billing.payment_service import PaymentService
from billflow.platform.webhooks.webhook_service import WebhookService


async def _fake_db():
    yield AsyncMock()


@pytest.fixture
def client():
    """A test client with the database replaced; overrides are reset afterwards."""
    app.dependency_overrides[deps.get_db] = _fake_db
    yield TestClient(app)
    app.dependency_overrides.clear()


class TestHealth:
    """Tests for the health endpoints."""

    def test_health_check(self, client):
        """The liveness check answers healthy with and without a trailing slash."""
        for path in ("/health", "/health/"):
            response = client.get(path)

            assert response.status_code == 200
            assert response.json() == {"status": "healthy"}

    def test_request_id_is_returned(self, client):
        """A caller-supplied request id is echoed back."""
        response = client.get("/health", headers={"X-Request-ID": "req-42"})

        assert response.headers["X-Request-ID"] == "req-42"


class TestErrorEnvelope:
    """Tests for domain errors mapped onto HTTP responses."""

    def test_missing_customer_is_404(self, client):
        """NotFoundException becomes a NOT_FOUND envelope."""
        with patch("billflow.crud.customer.get", AsyncMock(return_value=None)):
            response = client.get(f"/api/v1/customers/{uuid.uuid4()}")

        assert response.status_code == 404
        body = response.json()
        assert body["success"] is False
        assert body["error"]["code"] == "NOT_FOUND"

    def test_request_validation_is_422(self, client):
        """Schema violations list the offending fields."""
        response = client.post(
            "/api/v1/subscriptions",
            json={"customer_id": str(uuid.uuid4()), "plan_id": str(uuid.uuid4()), "quantity": 0},
        )

        assert response.status_code == 422
        error = response.json()["error"]
        assert error["code"] == "VALIDATION_ERROR"
        assert any("body.quantity" in detail for detail in error["details"])

    def test_inverted_date_range_is_400(self, client):
        """A range whose end precedes its start is invalid input."""
        app.dependency_overrides[deps.get_billing_service] = lambda: MagicMock(
            spec=BillingService
        )

        response = client.get(
            "/api/v1/billing/revenue",
            params={"start": "2024-02-01T00:00:00", "end": "2024-01-01T00:00:00"},
        )

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "INVALID_INPUT"

    def test_ledger_without_gateway_is_409(self, client):
        """Ledger endpoints report an unconfigured gateway as an invalid state."""
        app.dependency_overrides[deps.get_ledger_gateway] = lambda: None

        response = client.get("/api/v1/ledger/biz_1/status")

        assert response.status_code == 409
        assert response.json()["error"]["code"] == "INVALID_STATE"


class TestWebhookReceivers:
    """Tests for the webhook endpoints."""

    def test_unverifiable_delivery_is_401(self, client):
        """Without a configured gateway the signature cannot be verified."""
        app.dependency_overrides[deps.get_webhook_service] = lambda: WebhookService(
            None, None, PaymentService()
        )

        response = client.post(
            "/webhooks/stripe",
            content=b'{"id": "evt_1", "type": "invoice.paid"}',
            headers={"stripe-signature": "t=1,v1=abc"},
        )

        assert response.status_code == 401
        assert response.json()["error"]["code"] == "INVALID_SIGNATURE"

    def test_raw_body_and_signature_reach_the_service(self, client):
        """The receiver passes the exact bytes and header through."""
        # Arrange
        service = MagicMock(spec=WebhookService)
        service.receive = AsyncMock(return_value=schemas.WebhookAck())
        app.dependency_overrides[deps.get_webhook_service] = lambda: service
        raw = b'{"id":"re_1","type":"bill.paid"}'

        # Act
        response = client.post(
            "/webhooks/ramp/", content=raw, headers={"x-ramp-signature": "deadbeef"}
        )

        # Assert
        assert response.status_code == 200
        assert response.json() == {"received": True, "duplicate": False}
        _, source, body, signature = service.receive.await_args.args
        assert source == schemas.WebhookSource.RAMP
        assert body == raw
        assert signature == "deadbeef"

    def test_malformed_verified_delivery_is_500(self, client):
        """A verified body that is not an event is answered 500 so the gateway retries."""
        # Arrange
        gateway = MagicMock()
        gateway.verify_webhook_signature.return_value = {"type": "invoice.paid"}
        app.dependency_overrides[deps.get_webhook_service] = lambda: WebhookService(
            gateway, None, PaymentService()
        )

        # Act
        response = client.post(
            "/webhooks/stripe",
            content=b'{"type": "invoice.paid"}',
            headers={"stripe-signature": "t=1,v1=abc"},
        )

        # Assert
        assert response.status_code == 500
        assert response.json()["error"]["code"] == "WEBHOOK_PROCESSING_FAILED"

    def test_handler_failure_is_500(self, client):
        """Handler errors reach the gateway as a 500, never a 4xx."""
        service = MagicMock(spec=WebhookService)
        service.receive = AsyncMock(
            side_effect=WebhookProcessingError("ramp", "Error handling bill.paid re_2")
        )
        app.dependency_overrides[deps.get_webhook_service] = lambda: service

        response = client.post(
            "/webhooks/ramp", content=b"{}", headers={"x-ramp-signature": "deadbeef"}
        )

        assert response.status_code == 500
        assert response.json()["error"]["code"] == "WEBHOOK_PROCESSING_FAILED"
