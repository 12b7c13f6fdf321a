"""Bearer token auth for a token acquired elsewhere."""

from __future__ import annotations

from genesys_peak.client import GenesysAuthError, get_region


class TokenAuthProvider:
    """Auth provider wrapping an opaque bearer token.

    The token is never refreshed here; whoever issued it owns its lifetime.
    """

    def __init__(self, token: str, region: str | None = None):
        if not token:
            raise GenesysAuthError("Bearer token must not be empty")
        self._token = token
        self._region = region or get_region()

    @property
    def region(self) -> str:
        return self._region

    async def get_auth_headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self._token}"}
