"""Genesys Cloud API client with configuration, rate-limit handling and retries."""

import asyncio
import json
import logging
import os
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from pathlib import Path
from typing import Any, Awaitable, Callable

import httpx

logger = logging.getLogger(__name__)

# Config file location
CONFIG_PATH = Path.home() / ".genesys-peak" / "config.json"

# Region host used when nothing else is configured
DEFAULT_REGION = "mypurecloud.com"

# Default timeout for API requests
DEFAULT_TIMEOUT = 30.0

# Status codes retried by the request loop
RETRYABLE_STATUS_CODES = {429, 502, 503, 504}

# Reset header values above now + this many seconds are epoch timestamps
EPOCH_RESET_THRESHOLD = 120

# Maximum characters of a response body carried in error messages
MAX_ERROR_BODY = 500


class GenesysClientError(Exception):
    """Base exception for Genesys client errors."""


class GenesysAuthError(GenesysClientError):
    """Authentication error."""


class GenesysAPIError(GenesysClientError):
    """API request error."""

    def __init__(self, message: str, status_code: int | None = None, body: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


def _load_config_from_file() -> dict[str, str]:
    """Load configuration from config file."""
    if CONFIG_PATH.exists():
        try:
            with open(CONFIG_PATH) as f:
                return json.load(f)
        except (json.JSONDecodeError, OSError):
            logger.warning("Ignoring unreadable config file %s", CONFIG_PATH)
    return {}


def _save_config(config: dict) -> Path:
    """Save config dict to file with owner-only permissions."""
    CONFIG_PATH.parent.mkdir(parents=True, exist_ok=True)
    with open(CONFIG_PATH, "w") as f:
        json.dump(config, f, indent=2)
    try:
        CONFIG_PATH.chmod(0o600)
    except OSError:
        pass  # Windows doesn't support Unix permissions
    return CONFIG_PATH


def get_region() -> str:
    """Get the region host from environment, config file, or the default."""
    region = os.environ.get("GENESYS_REGION")
    if not region:
        region = _load_config_from_file().get("region")
    return (region or DEFAULT_REGION).strip()


def get_access_token() -> str | None:
    """Get a pre-acquired bearer token from environment or config file."""
    token = os.environ.get("GENESYS_ACCESS_TOKEN")
    if not token:
        token = _load_config_from_file().get("access_token")
    return token or None


def get_client_credentials() -> tuple[str, str]:
    """Get OAuth client credentials from environment variables or config file.

    Returns:
        Tuple of (client_id, client_secret)

    Raises:
        GenesysAuthError: If either value is missing
    """
    client_id = os.environ.get("GENESYS_CLIENT_ID")
    client_secret = os.environ.get("GENESYS_CLIENT_SECRET")

    if not client_id or not client_secret:
        config = _load_config_from_file()
        client_id = client_id or config.get("client_id")
        client_secret = client_secret or config.get("client_secret")

    missing = []
    if not client_id:
        missing.append("client id (GENESYS_CLIENT_ID)")
    if not client_secret:
        missing.append("client secret (GENESYS_CLIENT_SECRET)")

    if missing:
        raise GenesysAuthError(
            f"Missing Genesys credentials: {', '.join(missing)}. "
            f"Set environment variables or create config at {CONFIG_PATH}"
        )

    return client_id, client_secret


def save_credentials(client_id: str, client_secret: str, region: str | None = None) -> Path:
    """Save OAuth client credentials (and optionally the region) to the config file.

    Returns:
        Path to the config file
    """
    config = _load_config_from_file()
    config.update({"client_id": client_id, "client_secret": client_secret})
    if region:
        config["region"] = region
    return _save_config(config)


def delete_credentials() -> bool:
    """Delete config file if it exists.

    Returns:
        True if config file was deleted, False if it didn't exist
    """
    if CONFIG_PATH.exists():
        CONFIG_PATH.unlink()
        return True
    return False


def get_auth_status() -> dict:
    """Get current authentication configuration status.

    Returns:
        Dict with:
            - configured: bool - whether credentials are available
            - source: str | None - "env", "config", or None
            - method: str | None - "token" or "client_credentials"
            - region: str - the resolved region host
            - config_path: str - path to config file
            - env_vars_set: list - which env vars are set
            - has_config_file: bool - whether config file exists
    """
    env_names = ["GENESYS_ACCESS_TOKEN", "GENESYS_CLIENT_ID", "GENESYS_CLIENT_SECRET", "GENESYS_REGION"]
    env_vars_set = [name for name in env_names if os.environ.get(name)]

    has_config_file = CONFIG_PATH.exists()
    config = _load_config_from_file() if has_config_file else {}

    source = None
    method = None
    if os.environ.get("GENESYS_ACCESS_TOKEN"):
        source, method = "env", "token"
    elif os.environ.get("GENESYS_CLIENT_ID") and os.environ.get("GENESYS_CLIENT_SECRET"):
        source, method = "env", "client_credentials"
    elif config.get("access_token"):
        source, method = "config", "token"
    elif config.get("client_id") and config.get("client_secret"):
        source, method = "config", "client_credentials"

    return {
        "configured": source is not None,
        "source": source,
        "method": method,
        "region": get_region(),
        "config_path": str(CONFIG_PATH),
        "env_vars_set": env_vars_set,
        "has_config_file": has_config_file,
    }


@dataclass(frozen=True)
class RetryPolicy:
    """Bounds for the request retry loop."""

    max_attempts: int = 6
    default_rate_limit_wait: float = 10.0
    min_rate_limit_wait: float = 1.0
    max_backoff: float = 60.0

    def backoff(self, attempt: int) -> float:
        """Exponential backoff for transient, non-rate-limit failures."""
        return min(self.max_backoff, float(2 ** attempt))


def _header_float(headers: httpx.Headers, name: str) -> float | None:
    value = headers.get(name)
    if value is None:
        return None
    try:
        return float(value.strip())
    except ValueError:
        return None


def _reset_to_seconds(reset: float, now: float) -> float:
    """Interpret a reset header value as seconds-from-now.

    Values beyond now + 120s can only be absolute epoch timestamps.
    """
    if reset > now + EPOCH_RESET_THRESHOLD:
        return max(0.0, reset - now)
    return max(0.0, reset)


@dataclass(frozen=True)
class RateLimitSnapshot:
    """Request-scoped view of the server's rate-limit headers."""

    limit: int | None = None
    remaining: int | None = None
    reset_seconds: float | None = None

    @property
    def present(self) -> bool:
        return any(v is not None for v in (self.limit, self.remaining, self.reset_seconds))

    @classmethod
    def from_headers(cls, headers: httpx.Headers, now: float | None = None) -> "RateLimitSnapshot":
        """Build a snapshot from either the inin-ratelimit-* or x-ratelimit-* family."""
        now = time.time() if now is None else now

        allowed = _header_float(headers, "inin-ratelimit-allowed")
        count = _header_float(headers, "inin-ratelimit-count")
        remaining = _header_float(headers, "inin-ratelimit-remaining")
        reset = _header_float(headers, "inin-ratelimit-reset")
        if remaining is None and allowed is not None and count is not None:
            remaining = max(0.0, allowed - count)

        if allowed is None and remaining is None and reset is None:
            allowed = _header_float(headers, "x-ratelimit-limit")
            remaining = _header_float(headers, "x-ratelimit-remaining")
            reset = _header_float(headers, "x-ratelimit-reset")

        return cls(
            limit=int(allowed) if allowed is not None else None,
            remaining=int(remaining) if remaining is not None else None,
            reset_seconds=_reset_to_seconds(reset, now) if reset is not None else None,
        )


def parse_retry_after(value: str, now: datetime | None = None) -> float | None:
    """Parse a Retry-After header given as seconds or as an HTTP-date."""
    value = value.strip()
    try:
        return max(0.0, float(value))
    except ValueError:
        pass
    try:
        retry_at = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if retry_at.tzinfo is None:
        retry_at = retry_at.replace(tzinfo=timezone.utc)
    now = now or datetime.now(timezone.utc)
    return max(0.0, (retry_at - now).total_seconds())


def compute_retry_delay(
    response: httpx.Response,
    attempt: int,
    policy: RetryPolicy,
    now: float | None = None,
) -> float:
    """Decide how long to wait before retrying a retryable response.

    Retry-After wins when present. Rate-limited responses then fall back to
    the rate-limit reset headers, floored at the policy minimum, and finally
    the policy default. Other transient statuses use exponential backoff.
    """
    retry_after = response.headers.get("Retry-After")
    if retry_after:
        parsed = parse_retry_after(retry_after)
        if parsed is not None:
            return parsed

    if response.status_code == 429:
        snapshot = RateLimitSnapshot.from_headers(response.headers, now=now)
        if snapshot.reset_seconds is not None:
            return max(policy.min_rate_limit_wait, snapshot.reset_seconds)
        return policy.default_rate_limit_wait

    return policy.backoff(attempt)


def _truncate(text: str) -> str:
    return text[:MAX_ERROR_BODY] if text else ""


class GenesysClient:
    """Async HTTP client for the Genesys Cloud analytics API."""

    def __init__(
        self,
        auth: Any = None,
        region: str | None = None,
        retry_policy: RetryPolicy | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[Any]] | None = None,
    ):
        """Initialize the client.

        If no auth provider is given one is resolved from environment
        variables or the config file.
        """
        if auth is None:
            from genesys_peak.auth.provider import resolve_auth_provider

            auth = resolve_auth_provider()

        self.auth = auth
        self.region = region or getattr(auth, "region", None) or get_region()
        self.base_url = f"https://api.{self.region}/api/v2"
        self.retry_policy = retry_policy or RetryPolicy()
        self.timeout = timeout
        self.transport = transport
        self.sleep = sleep or asyncio.sleep

    async def _get_headers(self) -> dict[str, str]:
        """Get headers for API requests."""
        return {
            **await self.auth.get_auth_headers(),
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    async def request(
        self,
        method: str,
        endpoint: str,
        params: dict[str, Any] | None = None,
        json_data: dict[str, Any] | None = None,
        timeout: float | None = None,
    ) -> dict[str, Any]:
        """Make an API request, retrying rate-limited and transient failures.

        Args:
            method: HTTP method (GET, POST, ...)
            endpoint: API endpoint (without base URL)
            params: Query parameters
            json_data: JSON body data
            timeout: Request timeout override

        Returns:
            Parsed JSON response (empty dict for empty bodies)

        Raises:
            GenesysAuthError: On 401/403
            GenesysAPIError: On other 4xx, or once retries are exhausted
        """
        url = f"{self.base_url}/{endpoint.lstrip('/')}"
        policy = self.retry_policy
        last_status: int | None = None
        last_body = ""

        async with httpx.AsyncClient(transport=self.transport) as client:
            for attempt in range(1, policy.max_attempts + 1):
                headers = await self._get_headers()
                try:
                    response = await client.request(
                        method=method,
                        url=url,
                        headers=headers,
                        params=params,
                        json=json_data,
                        timeout=timeout or self.timeout,
                    )
                except httpx.TransportError as e:
                    last_status, last_body = None, str(e)
                    delay = policy.backoff(attempt)
                    logger.warning(
                        "%s %s failed (%s), attempt %d/%d, retrying in %.1fs",
                        method, url, e, attempt, policy.max_attempts, delay,
                    )
                    if attempt < policy.max_attempts:
                        await self.sleep(delay)
                    continue

                self._log_attempt(method, url, response, attempt)

                if response.is_success:
                    if not response.content:
                        return {}
                    return response.json()

                last_status, last_body = response.status_code, response.text

                if response.status_code not in RETRYABLE_STATUS_CODES:
                    raise self._fatal_error(response)

                if attempt < policy.max_attempts:
                    delay = compute_retry_delay(response, attempt, policy)
                    logger.warning(
                        "%s %s returned %d, retrying in %.1fs (attempt %d/%d)",
                        method, url, response.status_code, delay, attempt, policy.max_attempts,
                    )
                    await self.sleep(delay)

        raise GenesysAPIError(
            f"{method} {url} failed after {policy.max_attempts} attempts "
            f"(last status {last_status}): {_truncate(last_body)}",
            last_status,
            _truncate(last_body),
        )

    def _log_attempt(self, method: str, url: str, response: httpx.Response, attempt: int) -> None:
        snapshot = RateLimitSnapshot.from_headers(response.headers)
        if snapshot.remaining is not None or snapshot.limit is not None:
            logger.info(
                "%s %s -> %d (attempt %d, rate limit %s/%s remaining)",
                method, url, response.status_code, attempt, snapshot.remaining, snapshot.limit,
            )
        else:
            logger.info("%s %s -> %d (attempt %d)", method, url, response.status_code, attempt)

    def _fatal_error(self, response: httpx.Response) -> GenesysClientError:
        """Map an unretryable response to an exception."""
        status = response.status_code
        body = _truncate(response.text)

        try:
            data = response.json()
            detail = data.get("message") or str(data) if isinstance(data, dict) else str(data)
        except ValueError:
            detail = body

        if status == 401:
            return GenesysAuthError(f"Authentication failed ({status}). Check your Genesys credentials. {detail}")
        if status == 403:
            return GenesysAuthError(f"Permission denied ({status}). {detail}")
        if status == 404:
            return GenesysAPIError(f"Resource not found. {detail}", status, body)
        return GenesysAPIError(f"API error ({status}): {detail}", status, body)

    async def get(
        self,
        endpoint: str,
        params: dict[str, Any] | None = None,
        timeout: float | None = None,
    ) -> dict[str, Any]:
        """Make a GET request."""
        return await self.request("GET", endpoint, params=params, timeout=timeout)

    async def post(
        self,
        endpoint: str,
        json_data: dict[str, Any] | None = None,
        timeout: float | None = None,
    ) -> dict[str, Any]:
        """Make a POST request."""
        return await self.request("POST", endpoint, json_data=json_data, timeout=timeout)


# Module-level singleton for convenience
_client: GenesysClient | None = None


def get_client() -> GenesysClient:
    """Get or create the default Genesys client singleton."""
    global _client
    if _client is None:
        _client = GenesysClient()
    return _client


def reset_client() -> None:
    """Reset the client singleton (useful for testing)."""
    global _client
    _client = None
