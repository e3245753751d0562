"""OAuth2 client-credentials token cache for the ledger gateway."""

import asyncio
import time
from typing import Callable, Optional

import httpx

from billflow.core.exceptions import TokenRefreshError
from billflow.core.logging import ContextualLogger, logger


class ClientCredentialsTokenManager:
    """Caches a client-credentials access token and refreshes it ahead of expiry.

    Concurrent callers share one refresh: the first caller to find the token
    stale takes the lock, the others wait and reuse the token it obtained.
    """

    # Refresh this many seconds before the token actually expires
    REFRESH_MARGIN_SECONDS = 60

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        token_url: str,
        client_id: str,
        client_secret: str,
        scopes: Optional[str] = None,
        clock: Callable[[], float] = time.monotonic,
        logger_instance: Optional[ContextualLogger] = None,
    ):
        """Initialize the token manager.

        Args:
            http_client: Client used for the token request
            token_url: OAuth2 token endpoint
            client_id: OAuth2 client id
            client_secret: OAuth2 client secret
            scopes: Space separated scopes to request
            clock: Monotonic clock, injectable for tests
            logger_instance: Optional logger instance for contextual logging
        """
        self._http = http_client
        self._token_url = token_url
        self._client_id = client_id
        self._client_secret = client_secret
        self._scopes = scopes
        self._clock = clock
        self.logger = logger_instance or logger

        self._access_token: Optional[str] = None
        self._expires_at: float = 0.0
        self._refresh_lock = asyncio.Lock()

    def _is_fresh(self) -> bool:
        return (
            self._access_token is not None
            and self._clock() < self._expires_at - self.REFRESH_MARGIN_SECONDS
        )

    async def get_valid_token(self) -> str:
        """Get a valid access token, refreshing if necessary.

        Raises:
            TokenRefreshError: If the token endpoint rejects the request
        """
        if self._is_fresh():
            return self._access_token

        async with self._refresh_lock:
            # Another task may have refreshed while we waited
            if self._is_fresh():
                return self._access_token
            return await self._refresh_token()

    async def refresh_on_unauthorized(self) -> str:
        """Force a refresh after the gateway answered 401."""
        async with self._refresh_lock:
            self.logger.warning("Forcing ledger token refresh due to 401 response")
            return await self._refresh_token()

    def invalidate(self) -> None:
        """Drop the cached token."""
        self._access_token = None
        self._expires_at = 0.0

    async def _refresh_token(self) -> str:
        data = {"grant_type": "client_credentials"}
        if self._scopes:
            data["scope"] = self._scopes

        try:
            response = await self._http.post(
                self._token_url,
                data=data,
                auth=(self._client_id, self._client_secret),
                headers={"Accept": "application/json"},
            )
            response.raise_for_status()
            payload = response.json()
            token = payload["access_token"]
            expires_in = float(payload.get("expires_in", 3600))
        except (httpx.HTTPError, KeyError, ValueError) as e:
            self.logger.error(f"Failed to obtain ledger access token: {str(e)}")
            raise TokenRefreshError(f"Token refresh failed: {str(e)}") from e

        self._access_token = token
        self._expires_at = self._clock() + expires_in
        self.logger.debug(f"Obtained ledger access token valid for {expires_in:.0f}s")
        return token
