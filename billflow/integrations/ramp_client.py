"""Ramp ledger gateway client.

Thin async wrapper over the Ramp developer API. Authentication uses OAuth2 client
credentials; HTTP failures surface as ExternalServiceError with the httpx error as cause.
"""

import hashlib
import hmac
import json
from typing import Any, Dict, Optional

import httpx

from billflow.core.config import settings
from billflow.core.exceptions import ExternalServiceError, InvalidInputError, WebhookSignatureError
from billflow.core.logging import logger
from billflow.integrations.token_manager import ClientCredentialsTokenManager


class RampClient:
    """Client for the Ramp developer API."""

    def __init__(
        self,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        base_url: Optional[str] = None,
        token_url: Optional[str] = None,
        webhook_secret: Optional[str] = None,
        timeout: Optional[float] = None,
        scopes: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        """Initialize the Ramp client.

        Args:
        ----
            client_id: OAuth2 client id, defaults to settings
            client_secret: OAuth2 client secret, defaults to settings
            base_url: API base URL, defaults to settings
            token_url: OAuth2 token endpoint, defaults to settings
            webhook_secret: HMAC secret for webhook deliveries
            timeout: Request timeout in seconds
            scopes: OAuth2 scopes to request
            http_client: Pre-built client, mainly for tests

        Raises:
        ------
            ValueError: If the client credentials are missing
        """
        client_id = client_id or settings.RAMP_CLIENT_ID
        client_secret = client_secret or settings.RAMP_CLIENT_SECRET
        if not client_id or not client_secret:
            raise ValueError("RAMP_CLIENT_ID and RAMP_CLIENT_SECRET must be set")

        self.base_url = (base_url or settings.RAMP_API_BASE_URL).rstrip("/")
        self.webhook_secret = (
            webhook_secret if webhook_secret is not None else settings.RAMP_WEBHOOK_SECRET
        )
        self._http = http_client or httpx.AsyncClient(
            timeout=timeout or settings.RAMP_HTTP_TIMEOUT
        )
        self._owns_http = http_client is None
        self.tokens = ClientCredentialsTokenManager(
            http_client=self._http,
            token_url=token_url or settings.RAMP_TOKEN_URL,
            client_id=client_id,
            client_secret=client_secret,
            scopes=scopes if scopes is not None else settings.RAMP_SCOPES,
        )

    async def aclose(self) -> None:
        """Close the underlying HTTP client if this instance created it."""
        if self._owns_http:
            await self._http.aclose()

    async def _send(
        self,
        method: str,
        path: str,
        token: str,
        params: Optional[Dict[str, Any]],
        json_body: Optional[Dict[str, Any]],
    ) -> httpx.Response:
        return await self._http.request(
            method,
            f"{self.base_url}{path}",
            params={k: v for k, v in (params or {}).items() if v is not None} or None,
            json=json_body,
            headers={"Authorization": f"Bearer {token}", "Accept": "application/json"},
        )

    async def _request(
        self,
        action: str,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        json_body: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Send an authenticated request; a 401 triggers one token refresh and a retry."""
        token = await self.tokens.get_valid_token()
        try:
            response = await self._send(method, path, token, params, json_body)
            if response.status_code == 401:
                token = await self.tokens.refresh_on_unauthorized()
                response = await self._send(method, path, token, params, json_body)
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error(f"Ramp request failed ({action}): {str(e)}")
            raise ExternalServiceError("Ramp", f"Failed to {action}: {str(e)}") from e

        if response.status_code == 204 or not response.content:
            return {}
        return response.json()

    @staticmethod
    def _page_params(
        start_cursor: Optional[str], page_size: Optional[int], **filters: Any
    ) -> Dict[str, Any]:
        params = {"start": start_cursor, "page_size": page_size}
        params.update(filters)
        return params

    # Business

    async def get_business(self, business_id: str) -> Dict[str, Any]:
        """Retrieve a business."""
        return await self._request("get business", "GET", f"/businesses/{business_id}")

    # Users

    async def list_users(
        self, business_id: str, start_cursor: Optional[str] = None, page_size: int = 100
    ) -> Dict[str, Any]:
        """List one page of users."""
        return await self._request(
            "list users",
            "GET",
            f"/businesses/{business_id}/users",
            params=self._page_params(start_cursor, page_size),
        )

    async def get_user(self, user_id: str) -> Dict[str, Any]:
        """Retrieve a user."""
        return await self._request("get user", "GET", f"/users/{user_id}")

    async def create_user(self, business_id: str, user: Dict[str, Any]) -> Dict[str, Any]:
        """Invite a user into a business."""
        logger.info(f"Creating Ramp user in business {business_id}")
        return await self._request(
            "create user", "POST", f"/businesses/{business_id}/users", json_body=user
        )

    # Cards

    async def list_cards(
        self, business_id: str, start_cursor: Optional[str] = None, page_size: int = 100
    ) -> Dict[str, Any]:
        """List one page of cards."""
        return await self._request(
            "list cards",
            "GET",
            f"/businesses/{business_id}/cards",
            params=self._page_params(start_cursor, page_size),
        )

    async def get_card(self, card_id: str) -> Dict[str, Any]:
        """Retrieve a card."""
        return await self._request("get card", "GET", f"/cards/{card_id}")

    async def create_card(
        self, business_id: str, user_id: str, card: Dict[str, Any]
    ) -> Dict[str, Any]:
        """Issue a card to a user."""
        logger.info(f"Creating Ramp card for user {user_id}")
        return await self._request(
            "create card",
            "POST",
            f"/businesses/{business_id}/cards",
            json_body={"user_id": user_id, **card},
        )

    async def update_card(self, card_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
        """Update a card."""
        return await self._request("update card", "PATCH", f"/cards/{card_id}", json_body=changes)

    async def suspend_card(self, card_id: str) -> Dict[str, Any]:
        """Suspend a card."""
        logger.info(f"Suspending Ramp card {card_id}")
        return await self._request("suspend card", "POST", f"/cards/{card_id}/suspend")

    # Transactions

    async def list_transactions(
        self,
        business_id: str,
        start_cursor: Optional[str] = None,
        page_size: int = 100,
        **filters: Any,
    ) -> Dict[str, Any]:
        """List one page of card transactions.

        Args:
        ----
            business_id: Business whose transactions are listed
            start_cursor: Opaque continuation token from the previous page
            page_size: Requested page size
            **filters: from_date, to_date, state and similar query filters
        """
        return await self._request(
            "list transactions",
            "GET",
            f"/businesses/{business_id}/transactions",
            params=self._page_params(start_cursor, page_size, **filters),
        )

    async def get_transaction(self, transaction_id: str) -> Dict[str, Any]:
        """Retrieve a transaction."""
        return await self._request("get transaction", "GET", f"/transactions/{transaction_id}")

    # Reimbursements

    async def list_reimbursements(
        self,
        business_id: str,
        start_cursor: Optional[str] = None,
        page_size: int = 100,
        **filters: Any,
    ) -> Dict[str, Any]:
        """List one page of reimbursements."""
        return await self._request(
            "list reimbursements",
            "GET",
            f"/businesses/{business_id}/reimbursements",
            params=self._page_params(start_cursor, page_size, **filters),
        )

    async def get_reimbursement(self, reimbursement_id: str) -> Dict[str, Any]:
        """Retrieve a reimbursement."""
        return await self._request(
            "get reimbursement", "GET", f"/reimbursements/{reimbursement_id}"
        )

    # Bills

    async def list_bills(
        self,
        business_id: str,
        start_cursor: Optional[str] = None,
        page_size: int = 100,
        **filters: Any,
    ) -> Dict[str, Any]:
        """List one page of bills."""
        return await self._request(
            "list bills",
            "GET",
            f"/businesses/{business_id}/bills",
            params=self._page_params(start_cursor, page_size, **filters),
        )

    async def get_bill(self, bill_id: str) -> Dict[str, Any]:
        """Retrieve a bill."""
        return await self._request("get bill", "GET", f"/bills/{bill_id}")

    # Directory resources

    async def list_vendors(
        self, business_id: str, start_cursor: Optional[str] = None, page_size: int = 100
    ) -> Dict[str, Any]:
        """List one page of vendors."""
        return await self._request(
            "list vendors",
            "GET",
            f"/businesses/{business_id}/vendors",
            params=self._page_params(start_cursor, page_size),
        )

    async def list_departments(
        self, business_id: str, start_cursor: Optional[str] = None, page_size: int = 100
    ) -> Dict[str, Any]:
        """List one page of departments."""
        return await self._request(
            "list departments",
            "GET",
            f"/businesses/{business_id}/departments",
            params=self._page_params(start_cursor, page_size),
        )

    async def list_locations(
        self, business_id: str, start_cursor: Optional[str] = None, page_size: int = 100
    ) -> Dict[str, Any]:
        """List one page of locations."""
        return await self._request(
            "list locations",
            "GET",
            f"/businesses/{business_id}/locations",
            params=self._page_params(start_cursor, page_size),
        )

    async def list_card_programs(
        self, business_id: str, start_cursor: Optional[str] = None, page_size: int = 100
    ) -> Dict[str, Any]:
        """List one page of card programs."""
        return await self._request(
            "list card programs",
            "GET",
            f"/businesses/{business_id}/card-programs",
            params=self._page_params(start_cursor, page_size),
        )

    async def list_spend_programs(
        self, business_id: str, start_cursor: Optional[str] = None, page_size: int = 100
    ) -> Dict[str, Any]:
        """List one page of spend programs."""
        return await self._request(
            "list spend programs",
            "GET",
            f"/businesses/{business_id}/spend-programs",
            params=self._page_params(start_cursor, page_size),
        )

    # Webhooks

    def verify_webhook_signature(self, payload: bytes, signature: Optional[str]) -> Dict[str, Any]:
        """Verify an HMAC-SHA256 signed delivery and return the decoded body.

        Raises:
        ------
            WebhookSignatureError: If the secret or signature is missing or does not match
            InvalidInputError: If the signed body is not JSON
        """
        if not signature:
            raise WebhookSignatureError("ramp", "Missing signature header")
        if not self.webhook_secret:
            raise WebhookSignatureError("ramp", "Webhook secret is not configured")

        expected = hmac.new(
            self.webhook_secret.encode("utf-8"), payload, hashlib.sha256
        ).hexdigest()
        if not hmac.compare_digest(expected.encode("ascii"), signature.strip().encode("utf-8")):
            raise WebhookSignatureError("ramp", "Signature mismatch")

        try:
            return json.loads(payload)
        except ValueError as e:
            raise InvalidInputError(f"Webhook body is not valid JSON: {str(e)}") from e
