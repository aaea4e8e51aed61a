"""Token data structure and token endpoint client.

Both grants POST a form-encoded body to the token endpoint. A response is
accepted only if it is HTTP 200 and its JSON body carries an access_token.
"""

import logging
from dataclasses import dataclass
from typing import Any

import httpx

from .errors import TokenExchangeError

logger = logging.getLogger(__name__)

# Lifetime assumed when the token endpoint omits expires_in
DEFAULT_EXPIRES_IN = 3600  # seconds


@dataclass
class TokenSet:
    """Tokens returned by the token endpoint.

    Attributes:
        access_token: The access token string
        refresh_token: Optional refresh token (server-dependent)
        expires_in: Access token lifetime in seconds
    """

    access_token: str
    refresh_token: str | None = None
    expires_in: int = DEFAULT_EXPIRES_IN

    def has_refresh_token(self) -> bool:
        """Check if this token set has a refresh token."""
        return bool(self.refresh_token)

    @classmethod
    def from_token_response(cls, response: dict[str, Any]) -> "TokenSet":
        """Create a TokenSet from a token endpoint JSON body.

        Raises:
            KeyError: If access_token is missing
        """
        expires_in = DEFAULT_EXPIRES_IN
        raw_expires_in = response.get("expires_in")
        if raw_expires_in is not None:
            try:
                expires_in = int(raw_expires_in)
            except (TypeError, ValueError):
                logger.warning(
                    f"Ignoring invalid expires_in {raw_expires_in!r}, "
                    f"assuming {DEFAULT_EXPIRES_IN} seconds"
                )

        return cls(
            access_token=response["access_token"],
            refresh_token=response.get("refresh_token") or None,
            expires_in=expires_in,
        )


async def _request_tokens(
    token_endpoint: str,
    form: dict[str, str],
    action: str,
    http_client: httpx.AsyncClient | None,
    timeout: float,
) -> TokenSet:
    """POST a token request and validate the response."""
    client = http_client or httpx.AsyncClient(timeout=timeout)
    should_close = http_client is None

    logger.debug(
        f"Token request to {token_endpoint}: grant_type={form['grant_type']}, "
        f"client_id={form['client_id']}"
    )

    try:
        response = await client.post(
            token_endpoint,
            data=form,
            headers={"Accept": "application/json"},
        )

        if response.status_code != 200:
            raise TokenExchangeError(
                f"{action} failed: HTTP {response.status_code} {response.text}",
                status_code=response.status_code,
                body=response.text,
            )

        try:
            data = response.json()
        except ValueError:
            data = None

        if not isinstance(data, dict) or not data.get("access_token"):
            raise TokenExchangeError(
                f"{action} returned a malformed response without access_token: {response.text}",
                status_code=response.status_code,
                body=response.text,
            )

        return TokenSet.from_token_response(data)

    except httpx.RequestError as e:
        raise TokenExchangeError(f"Network error during {action.lower()}: {e}") from e
    finally:
        if should_close:
            await client.aclose()


async def exchange_code_for_tokens(
    token_endpoint: str,
    code: str,
    client_id: str,
    code_verifier: str,
    redirect_uri: str,
    http_client: httpx.AsyncClient | None = None,
    timeout: float = 30.0,
) -> TokenSet:
    """Exchange an authorization code for tokens.

    Args:
        token_endpoint: Discovered token endpoint
        code: Authorization code from the redirect
        client_id: Registered client id
        code_verifier: PKCE verifier matching the challenge sent earlier
        redirect_uri: Redirect URI used in the authorization request
        http_client: Optional HTTP client
        timeout: Request timeout in seconds (only for a client created here)

    Raises:
        TokenExchangeError: On a non-200 status or a body without access_token
    """
    return await _request_tokens(
        token_endpoint,
        {
            "grant_type": "authorization_code",
            "code": code,
            "client_id": client_id,
            "redirect_uri": redirect_uri,
            "code_verifier": code_verifier,
        },
        "Token exchange",
        http_client,
        timeout,
    )


async def refresh_access_token(
    token_endpoint: str,
    refresh_token: str,
    client_id: str,
    http_client: httpx.AsyncClient | None = None,
    timeout: float = 30.0,
) -> TokenSet:
    """Obtain a new access token with a refresh token.

    Raises:
        TokenExchangeError: On a non-200 status or a body without access_token
    """
    return await _request_tokens(
        token_endpoint,
        {
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
            "client_id": client_id,
        },
        "Token refresh",
        http_client,
        timeout,
    )
