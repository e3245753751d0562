"""Unit tests for the Ramp client and its token manager."""

import hashlib
import hmac
import json

import httpx
import pytest

from billflow.core.exceptions import (
    ExternalServiceError,
    InvalidInputError,
    TokenRefreshError,
    WebhookSignatureError,
)
from billflow.integrations.ramp_client import RampClient
from billflow.integrations.token_manager import ClientCredentialsTokenManager

BASE_URL = "https://ramp.test/developer/v1"
TOKEN_URL = f"{BASE_URL}/token"
WEBHOOK_SECRET = "ramp-secret"


class FakeRamp:
    """Records requests and answers them like the Ramp API."""

    def __init__(self, api_status: int = 200, unauthorized_once: bool = False):
        self.requests: list[httpx.Request] = []
        self.token_calls = 0
        self.api_status = api_status
        self.unauthorized_once = unauthorized_once

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if str(request.url) == TOKEN_URL:
            self.token_calls += 1
            return httpx.Response(
                200, json={"access_token": f"token-{self.token_calls}", "expires_in": 3600}
            )
        if self.unauthorized_once:
            self.unauthorized_once = False
            return httpx.Response(401, json={"error": "expired"})
        if self.api_status != 200:
            return httpx.Response(self.api_status, json={"error": "boom"})
        return httpx.Response(
            200, json={"data": [{"id": "txn_1", "amount": 12.5}], "page": {"next": None}}
        )


def _client(fake: FakeRamp) -> RampClient:
    return RampClient(
        client_id="client",
        client_secret="secret",
        base_url=BASE_URL,
        token_url=TOKEN_URL,
        webhook_secret=WEBHOOK_SECRET,
        scopes="transactions:read",
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(fake)),
    )


def _sign(body: bytes) -> str:
    return hmac.new(WEBHOOK_SECRET.encode(), body, hashlib.sha256).hexdigest()


class TestRampClientRequests:
    """Tests for authenticated API calls."""

    async def test_list_transactions_sends_bearer_token_and_filters(self):
        """The token is attached and unset filters are not sent."""
        # Arrange
        fake = FakeRamp()
        client = _client(fake)

        # Act
        page = await client.list_transactions("biz_1", page_size=50, state="CLEARED")

        # Assert
        assert page["data"][0]["id"] == "txn_1"
        api_request = fake.requests[-1]
        assert api_request.url.path == "/developer/v1/businesses/biz_1/transactions"
        assert api_request.headers["Authorization"] == "Bearer token-1"
        assert api_request.url.params["page_size"] == "50"
        assert api_request.url.params["state"] == "CLEARED"
        assert "start" not in api_request.url.params

    async def test_token_is_reused_across_calls(self):
        """A fresh token is fetched once."""
        fake = FakeRamp()
        client = _client(fake)

        await client.list_transactions("biz_1")
        await client.list_bills("biz_1")

        assert fake.token_calls == 1

    async def test_unauthorized_refreshes_token_once(self):
        """A 401 forces a refresh and the request is sent again."""
        fake = FakeRamp(unauthorized_once=True)
        client = _client(fake)

        page = await client.list_reimbursements("biz_1")

        assert page["data"]
        assert fake.token_calls == 2
        assert fake.requests[-1].headers["Authorization"] == "Bearer token-2"

    async def test_http_error_becomes_external_service_error(self):
        """Server errors surface as ExternalServiceError with the httpx cause."""
        client = _client(FakeRamp(api_status=503))

        with pytest.raises(ExternalServiceError) as exc_info:
            await client.get_business("biz_1")

        assert exc_info.value.service_name == "Ramp"
        assert isinstance(exc_info.value.__cause__, httpx.HTTPStatusError)

    def test_missing_credentials_are_rejected(self, monkeypatch):
        """The client cannot be built without client credentials."""
        monkeypatch.setattr("billflow.core.config.settings.RAMP_CLIENT_ID", None)
        monkeypatch.setattr("billflow.core.config.settings.RAMP_CLIENT_SECRET", None)

        with pytest.raises(ValueError):
            RampClient(http_client=httpx.AsyncClient())


class TestRampWebhookSignature:
    """Tests for HMAC webhook verification."""

    def test_valid_signature_returns_payload(self):
        """A correctly signed body is decoded."""
        body = json.dumps({"id": "re_1", "type": "bill.paid"}).encode()

        payload = _client(FakeRamp()).verify_webhook_signature(body, _sign(body))

        assert payload["type"] == "bill.paid"

    def test_tampered_body_is_rejected(self):
        """A signature over different bytes does not verify."""
        body = b'{"id": "re_1"}'

        with pytest.raises(WebhookSignatureError):
            _client(FakeRamp()).verify_webhook_signature(b'{"id": "re_2"}', _sign(body))

    def test_missing_signature_is_rejected(self):
        """A delivery without a signature header is rejected."""
        with pytest.raises(WebhookSignatureError):
            _client(FakeRamp()).verify_webhook_signature(b"{}", None)

    def test_signed_non_json_is_invalid_input(self):
        """A verified body that is not JSON is invalid input."""
        body = b"not json"

        with pytest.raises(InvalidInputError):
            _client(FakeRamp()).verify_webhook_signature(body, _sign(body))


class TestClientCredentialsTokenManager:
    """Tests for token caching and refresh."""

    def _manager(self, handler, clock) -> ClientCredentialsTokenManager:
        return ClientCredentialsTokenManager(
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
            token_url=TOKEN_URL,
            client_id="client",
            client_secret="secret",
            clock=clock,
        )

    async def test_refreshes_inside_the_margin(self):
        """A token within a minute of expiry is replaced."""
        # Arrange
        now = {"t": 0.0}
        issued = []

        def handler(request: httpx.Request) -> httpx.Response:
            issued.append(request)
            return httpx.Response(
                200, json={"access_token": f"t{len(issued)}", "expires_in": 120}
            )

        manager = self._manager(handler, lambda: now["t"])

        # Act
        first = await manager.get_valid_token()
        now["t"] = 30.0
        cached = await manager.get_valid_token()
        now["t"] = 61.0
        refreshed = await manager.get_valid_token()

        # Assert
        assert (first, cached, refreshed) == ("t1", "t1", "t2")
        assert b"grant_type=client_credentials" in issued[0].content

    async def test_rejected_token_request(self):
        """A failing token endpoint raises TokenRefreshError."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(400, json={"error": "invalid_client"})

        manager = self._manager(handler, lambda: 0.0)

        with pytest.raises(TokenRefreshError):
            await manager.get_valid_token()

    async def test_invalidate_drops_the_token(self):
        """After invalidate the next call fetches a new token."""
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(200, json={"access_token": "abc", "expires_in": 3600})

        manager = self._manager(handler, lambda: 0.0)

        await manager.get_valid_token()
        manager.invalidate()
        await manager.get_valid_token()

        assert len(calls) == 2
