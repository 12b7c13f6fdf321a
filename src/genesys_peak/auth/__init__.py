"""Authentication providers for the Genesys Cloud API."""

from genesys_peak.auth.client_credentials import ClientCredentialsProvider
from genesys_peak.auth.provider import AuthProvider, resolve_auth_provider
from genesys_peak.auth.token_auth import TokenAuthProvider

__all__ = [
    "AuthProvider",
    "ClientCredentialsProvider",
    "TokenAuthProvider",
    "resolve_auth_provider",
]
