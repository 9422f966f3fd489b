"""OAuth 2.0 client-credentials token handling for Xero."""

import time
from typing import Optional

import httpx
import structlog

from .errors import XeroAuthError
from .models import TokenResponse

logger = structlog.get_logger()

# Refresh this long before the token actually expires
TOKEN_EXPIRY_BUFFER_SECONDS = 5 * 60


class TokenManager:
    """Fetches and caches access tokens for a Xero custom connection."""

    def __init__(
        self,
        http: httpx.AsyncClient,
        client_id: str,
        client_secret: str,
        token_url: str,
        scopes: str,
    ):
        """Initialize the token manager.

        Args:
            http: Shared HTTP client
            client_id: Xero app client ID
            client_secret: Xero app client secret
            token_url: OAuth token endpoint
            scopes: Space separated scopes to request
        """
        self._http = http
        self._client_id = client_id
        self._client_secret = client_secret
        self.token_url = token_url
        self.scopes = scopes
        self._access_token: Optional[str] = None
        self._expires_at = 0.0

    @property
    def has_valid_token(self) -> bool:
        return self._access_token is not None and time.monotonic() < self._expires_at

    async def get_access_token(self) -> str:
        """Return the cached token, fetching a new one when it is near expiry."""
        if self.has_valid_token:
            return self._access_token
        return await self.fetch_token()

    async def fetch_token(self) -> str:
        """Request a new access token.

        Raises:
            XeroAuthError: On transport failure, an OAuth error or an
                unexpected response body
        """
        try:
            response = await self._http.post(
                self.token_url,
                data={"grant_type": "client_credentials", "scope": self.scopes},
                auth=(self._client_id, self._client_secret),
                headers={"Accept": "application/json"},
            )
        except httpx.HTTPError as e:
            raise XeroAuthError(f"Xero token request failed: {e}") from e

        try:
            token = TokenResponse.model_validate(response.json())
        except ValueError as e:
            raise XeroAuthError(f"Failed to parse Xero response: {response.text}") from e

        if token.error:
            raise XeroAuthError(
                f"Xero OAuth error: {token.error} - {token.error_description or ''}"
            )
        if not token.access_token:
            raise XeroAuthError(f"Unexpected Xero response: {response.text}")

        self._access_token = token.access_token
        self._expires_at = time.monotonic() + token.expires_in - TOKEN_EXPIRY_BUFFER_SECONDS
        logger.info("Xero access token fetched", expires_in=token.expires_in)

        return token.access_token
