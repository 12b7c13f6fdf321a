"""AuthProvider protocol and factory for pluggable auth backends."""

from __future__ import annotations

from typing import Protocol, runtime_checkable


@runtime_checkable
class AuthProvider(Protocol):
    """Protocol for authentication providers.

    TokenAuthProvider: an already-issued bearer token.
    ClientCredentialsProvider: OAuth 2.0 client-credentials grant.
    """

    @property
    def region(self) -> str:
        """Region host (e.g., 'mypurecloud.com' or 'mypurecloud.ie')."""
        ...

    async def get_auth_headers(self) -> dict[str, str]:
        """Return headers dict including a Bearer Authorization."""
        ...


def resolve_auth_provider() -> AuthProvider:
    """Factory: return the appropriate auth provider based on available credentials.

    Resolution order:
        1. Access token (env var or config) -> TokenAuthProvider
        2. Client id/secret (env vars or config) -> ClientCredentialsProvider
        3. Raises GenesysAuthError with guidance
    """
    from genesys_peak.auth.client_credentials import ClientCredentialsProvider
    from genesys_peak.auth.token_auth import TokenAuthProvider
    from genesys_peak.client import GenesysAuthError, get_access_token

    token = get_access_token()
    if token:
        return TokenAuthProvider(token)

    try:
        return ClientCredentialsProvider()
    except GenesysAuthError:
        pass

    raise GenesysAuthError(
        "No Genesys credentials found. Set up using:\n"
        "  Client credentials: genesys-peak auth login\n"
        "  Env vars:           GENESYS_CLIENT_ID, GENESYS_CLIENT_SECRET, GENESYS_REGION\n"
        "  Bearer token:       GENESYS_ACCESS_TOKEN"
    )
