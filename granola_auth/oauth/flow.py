"""OAuth authorization code flow with PKCE.

This module drives the interactive part of a login:
1. Generate PKCE pair and state
2. Build the authorization URL
3. Start the redirect listener before the URL is disclosed
4. Open the browser (and always print the URL)
5. Wait for the redirect, bounded by the callback timeout
6. Validate the redirect and exchange the code for tokens
"""

import asyncio
import hmac
import logging
import webbrowser
from typing import Awaitable, Callable
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

import httpx

from ..config import AuthConfig
from .callback import CallbackResult, RedirectListener
from .discovery import EndpointSet
from .errors import AuthorizationError, CallbackTimeoutError
from .pkce import generate_pkce_pair, generate_state
from .tokens import TokenSet, exchange_code_for_tokens

logger = logging.getLogger(__name__)

BrowserOpener = Callable[[str], Awaitable[bool]]
StatusCallback = Callable[[str], None]


def build_authorization_url(
    authorization_endpoint: str,
    client_id: str,
    redirect_uri: str,
    code_challenge: str,
    state: str,
) -> str:
    """Build the authorization URL for the browser.

    Query parameters already present on the endpoint are kept.
    """
    parts = urlsplit(authorization_endpoint)
    params = parse_qsl(parts.query, keep_blank_values=True)
    params.extend(
        [
            ("response_type", "code"),
            ("client_id", client_id),
            ("redirect_uri", redirect_uri),
            ("code_challenge", code_challenge),
            ("code_challenge_method", "S256"),
            ("state", state),
        ]
    )
    return urlunsplit(parts._replace(query=urlencode(params)))


async def open_browser(url: str) -> bool:
    """Open the system browser without blocking the event loop.

    Returns:
        True if a browser was launched; failures are reported, not raised
    """
    try:
        return await asyncio.to_thread(webbrowser.open, url)
    except webbrowser.Error as e:
        logger.debug(f"Could not launch browser: {e}")
        return False


def validate_callback(result: CallbackResult, expected_state: str) -> str:
    """Check a redirect result and return its authorization code.

    Raises:
        AuthorizationError: For a remote error, a malformed redirect or
            a state that does not match the one we generated
    """
    if result.is_error():
        detail = result.error
        if result.error_description:
            detail = f"{detail} - {result.error_description}"
        raise AuthorizationError(
            AuthorizationError.REMOTE_ERROR,
            f"Authorization server returned an error: {detail}",
            error=result.error,
        )

    if result.code is None:
        raise AuthorizationError(
            AuthorizationError.MALFORMED_CALLBACK,
            "Authorization redirect carried neither a code nor an error",
        )

    # Constant-time comparison; bytes so non-ASCII input cannot raise
    received = (result.state or "").encode("utf-8")
    if not hmac.compare_digest(received, expected_state.encode("utf-8")):
        raise AuthorizationError(
            AuthorizationError.STATE_MISMATCH,
            "State mismatch in authorization redirect - possible CSRF attack, aborting",
        )

    return result.code


async def authorize(
    endpoints: EndpointSet,
    client_id: str,
    config: AuthConfig,
    on_status: StatusCallback | None = None,
    browser: BrowserOpener | None = open_browser,
    http_client: httpx.AsyncClient | None = None,
) -> TokenSet:
    """Run the interactive authorization and exchange the code for tokens.

    Args:
        endpoints: Discovered endpoints (authorization and token required)
        client_id: Registered client id
        config: Run configuration (redirect URI, port, timeout)
        on_status: Optional callback for user-facing status messages
        browser: Coroutine used to open the URL, or None to only print it
        http_client: Optional HTTP client for the token exchange

    Returns:
        TokenSet from the token endpoint

    Raises:
        AuthorizationError: timeout, remote-error, state-mismatch or
            malformed-callback
        ListenerError: If the redirect listener cannot bind its port
        TokenExchangeError: If the code exchange fails
    """
    emit = on_status or (lambda msg: None)
    authorization_endpoint, token_endpoint = endpoints.require(
        "authorization_endpoint", "token_endpoint"
    )

    pkce = generate_pkce_pair()
    state = generate_state()
    auth_url = build_authorization_url(
        authorization_endpoint,
        client_id,
        config.redirect_uri,
        pkce.challenge,
        state,
    )

    async with RedirectListener(
        config.callback_host, config.callback_port, config.callback_path
    ) as listener:
        emit(f"Callback listener ready on {config.redirect_uri}")
        emit(f"If the browser does not open automatically, visit:\n{auth_url}")

        if browser is not None and not await browser(auth_url):
            emit("Could not open a browser. Please open the URL above manually.")

        emit("Waiting for authentication... (complete login in the browser)")

        try:
            result = await listener.wait(config.callback_timeout)
        except CallbackTimeoutError as e:
            raise AuthorizationError(
                AuthorizationError.TIMEOUT,
                f"Authentication timed out after {config.callback_timeout:g} seconds",
            ) from e

    code = validate_callback(result, state)

    emit("Exchanging authorization code for tokens...")
    return await exchange_code_for_tokens(
        token_endpoint,
        code,
        client_id,
        pkce.verifier,
        config.redirect_uri,
        http_client=http_client,
        timeout=config.http_timeout,
    )
