"""High-level entry points for login and token renewal.

`login` runs the full chain: discovery, registration, interactive
authorization and a credential write. `renew` uses the stored refresh token
and skips the network while the access token is comfortably valid.
"""

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

import httpx

from ..config import AuthConfig
from .discovery import discover_endpoints
from .errors import MissingRefreshMaterialError
from .flow import BrowserOpener, StatusCallback, authorize, open_browser
from .registration import register_client
from .store import CredentialRecord, CredentialStore
from .tokens import refresh_access_token

logger = logging.getLogger(__name__)

# A token with at most this many seconds left is refreshed
REFRESH_THRESHOLD = 60  # seconds


def _format_timedelta(td: timedelta) -> str:
    """Format a timedelta into a human-readable string.

    Examples:
        - "45 minutes"
        - "2 hours"
        - "3 days"
    """
    total_seconds = int(td.total_seconds())

    if total_seconds < 0:
        return "Expired"

    if total_seconds < 60:
        return f"{total_seconds} seconds"

    minutes = total_seconds // 60
    if minutes < 60:
        return f"{minutes} minute{'s' if minutes != 1 else ''}"

    hours = minutes // 60
    if hours < 24:
        return f"{hours} hour{'s' if hours != 1 else ''}"

    days = hours // 24
    return f"{days} day{'s' if days != 1 else ''}"


def format_expiry(expires_at: int) -> str:
    """Format an epoch timestamp as a local date and time."""
    return datetime.fromtimestamp(expires_at, tz=timezone.utc).astimezone().strftime(
        "%Y-%m-%d %H:%M:%S %Z"
    )


@dataclass
class RenewalResult:
    """Outcome of a renewal attempt.

    Attributes:
        refreshed: True if a refresh grant was performed
        record: The credentials now on disk
    """

    refreshed: bool
    record: CredentialRecord


def needs_refresh(record: CredentialRecord, force: bool = False, now: float | None = None) -> bool:
    """Check if a record should be refreshed.

    A record is refreshed when forced or when at most REFRESH_THRESHOLD
    seconds of validity remain.
    """
    return force or record.seconds_remaining(now) <= REFRESH_THRESHOLD


def describe_record(record: CredentialRecord, now: float | None = None) -> dict[str, Any]:
    """Summarize stored credentials without exposing token values."""
    if record.is_empty():
        return {"authenticated": False}

    remaining = record.seconds_remaining(now)
    return {
        "authenticated": bool(record.access_token),
        "expired": remaining <= 0,
        "expires_at": record.expires_at,
        "expires_at_human": format_expiry(record.expires_at) if record.expires_at else None,
        "expires_in_human": _format_timedelta(timedelta(seconds=remaining)),
        "has_refresh_token": bool(record.refresh_token),
        "client_id": record.client_id or None,
        "token_endpoint": record.token_endpoint or None,
    }


async def login(
    config: AuthConfig,
    store: CredentialStore,
    on_status: StatusCallback | None = None,
    browser: BrowserOpener | None = open_browser,
    http_client: httpx.AsyncClient | None = None,
) -> CredentialRecord:
    """Acquire fresh credentials interactively and store them.

    Raises:
        DiscoveryError, RegistrationError, ListenerError, AuthorizationError,
        TokenExchangeError, CredentialStoreError
    """
    emit = on_status or (lambda msg: None)
    client = http_client or httpx.AsyncClient(timeout=config.http_timeout)
    should_close = http_client is None

    try:
        emit("Discovering OAuth endpoints...")
        endpoints = await discover_endpoints(config.resource_url, client)
        _, token_endpoint, registration_endpoint = endpoints.require(
            "authorization_endpoint", "token_endpoint", "registration_endpoint"
        )
        emit(f"Authorization server: {endpoints.issuer}")

        emit("Registering OAuth client...")
        client_id = await register_client(
            registration_endpoint,
            config.redirect_uri,
            config.client_name,
            client,
        )
        emit(f"Client registered: {client_id}")

        token_set = await authorize(
            endpoints,
            client_id,
            config,
            on_status=emit,
            browser=browser,
            http_client=client,
        )

        record = store.save(token_set, client_id, token_endpoint)
        emit(f"Tokens saved to {store.path}")
        return record

    finally:
        if should_close:
            await client.aclose()


async def renew(
    store: CredentialStore,
    force: bool = False,
    http_client: httpx.AsyncClient | None = None,
    timeout: float = 30.0,
    now: float | None = None,
) -> RenewalResult:
    """Refresh stored credentials if they are close to expiry.

    Args:
        store: Credential store to read and update
        force: Refresh even if the access token is still valid
        http_client: Optional HTTP client
        timeout: Request timeout in seconds (only for a client created here)
        now: Current epoch seconds (defaults to time.time())

    Raises:
        MissingRefreshMaterialError: If refresh token, token endpoint or
            client id are absent
        TokenExchangeError: If the refresh grant fails
    """
    record = store.load()

    if not record.refresh_token:
        raise MissingRefreshMaterialError(
            "No refresh token found. Run 'granola-auth login' to authenticate."
        )
    if not record.token_endpoint or not record.client_id:
        raise MissingRefreshMaterialError(
            "Missing token endpoint or client ID. Run 'granola-auth login' to re-authenticate."
        )

    current = now if now is not None else time.time()
    if not needs_refresh(record, force, current):
        logger.debug(f"Access token valid for {record.seconds_remaining(current)} more seconds")
        return RenewalResult(refreshed=False, record=record)

    logger.info("Refreshing access token")
    token_set = await refresh_access_token(
        record.token_endpoint,
        record.refresh_token,
        record.client_id,
        http_client=http_client,
        timeout=timeout,
    )
    if not token_set.has_refresh_token():
        logger.debug("No new refresh token issued, keeping the stored one")

    saved = store.save(
        token_set,
        record.client_id,
        record.token_endpoint,
        now=current,
        previous_refresh_token=record.refresh_token,
    )
    return RenewalResult(refreshed=True, record=saved)
