"""OAuth 2.0 client-credentials grant for Genesys Cloud."""

from __future__ import annotations

import base64
import logging
import time

import httpx

from genesys_peak.client import (
    GenesysAPIError,
    GenesysAuthError,
    get_client_credentials,
    get_region,
)

logger = logging.getLogger(__name__)

# Refresh this many seconds before the server-declared expiry
EXPIRY_MARGIN = 60


class ClientCredentialsProvider:
    """Auth provider exchanging a client id/secret for a bearer token.

    Credentials are loaded from env vars or the config file when not passed
    explicitly. The token is cached until shortly before it expires.
    """

    def __init__(
        self,
        client_id: str | None = None,
        client_secret: str | None = None,
        region: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        if client_id and client_secret:
            self._client_id = client_id
            self._client_secret = client_secret
        else:
            self._client_id, self._client_secret = get_client_credentials()
        self._region = region or get_region()
        self._transport = transport
        self._access_token: str | None = None
        self._expires_at = 0.0

    @property
    def region(self) -> str:
        return self._region

    @property
    def token_url(self) -> str:
        return f"https://login.{self._region}/oauth/token"

    @property
    def expires_at(self) -> float:
        return self._expires_at

    def _basic_auth(self) -> str:
        raw = f"{self._client_id}:{self._client_secret}"
        return "Basic " + base64.b64encode(raw.encode()).decode()

    def has_valid_token(self) -> bool:
        return self._access_token is not None and time.time() < self._expires_at - EXPIRY_MARGIN

    async def fetch_token(self) -> str:
        """Exchange the client credentials for a fresh access token."""
        async with httpx.AsyncClient(transport=self._transport) as client:
            try:
                response = await client.post(
                    self.token_url,
                    data={"grant_type": "client_credentials"},
                    headers={
                        "Authorization": self._basic_auth(),
                        "Content-Type": "application/x-www-form-urlencoded",
                    },
                    timeout=30.0,
                )
            except httpx.RequestError as e:
                raise GenesysAPIError(f"Token request failed: {e}") from e

        if response.status_code in (400, 401, 403):
            raise GenesysAuthError(
                f"Client credentials rejected by {self.token_url} ({response.status_code}): "
                f"{response.text[:200]}"
            )
        if response.status_code != 200:
            raise GenesysAPIError(
                f"Token request failed ({response.status_code})",
                response.status_code,
                response.text[:500],
            )

        data = response.json()
        token = data.get("access_token")
        if not token:
            raise GenesysAuthError("Token response did not include an access_token")

        self._access_token = token
        self._expires_at = time.time() + float(data.get("expires_in", 0))
        logger.info("Acquired access token for %s (expires in %ss)", self._region, data.get("expires_in"))
        return token

    async def get_token(self) -> str:
        if not self.has_valid_token():
            return await self.fetch_token()
        return self._access_token

    async def get_auth_headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {await self.get_token()}"}

    async def validate(self) -> dict:
        """Validate credentials by acquiring a token.

        Returns:
            Dict with region and token expiry
        """
        await self.fetch_token()
        return {"region": self._region, "expires_at": self._expires_at}
