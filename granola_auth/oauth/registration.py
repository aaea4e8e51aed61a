"""Dynamic Client Registration (RFC 7591).

The tool registers itself as a public client: no client secret, PKCE is the
only binding between the authorization request and the token request.
"""

import logging

import httpx

from .errors import RegistrationError

logger = logging.getLogger(__name__)


def build_registration_request(client_name: str, redirect_uri: str) -> dict[str, object]:
    """Build the DCR request body for a PKCE-only public client."""
    return {
        "client_name": client_name,
        "redirect_uris": [redirect_uri],
        "grant_types": ["authorization_code"],
        "response_types": ["code"],
        "token_endpoint_auth_method": "none",
    }


async def register_client(
    registration_endpoint: str,
    redirect_uri: str,
    client_name: str,
    http_client: httpx.AsyncClient | None = None,
    timeout: float = 30.0,
) -> str:
    """Register a client and return its client_id.

    Args:
        registration_endpoint: Discovered registration endpoint
        redirect_uri: The single local redirect URI to register
        client_name: Human-readable client name
        http_client: Optional HTTP client
        timeout: Request timeout in seconds (only for a client created here)

    Returns:
        The issued client_id

    Raises:
        RegistrationError: If the endpoint does not answer 200/201 with a client_id
    """
    client = http_client or httpx.AsyncClient(timeout=timeout)
    should_close = http_client is None

    try:
        response = await client.post(
            registration_endpoint,
            json=build_registration_request(client_name, redirect_uri),
        )

        if response.status_code not in (200, 201):
            raise RegistrationError(
                f"Client registration failed: HTTP {response.status_code} {response.text}",
                status_code=response.status_code,
                body=response.text,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise RegistrationError(
                f"Client registration returned invalid JSON: {response.text}",
                status_code=response.status_code,
                body=response.text,
            ) from e

        client_id = data.get("client_id") if isinstance(data, dict) else None
        if not client_id:
            raise RegistrationError(
                f"Client registration response missing client_id: {response.text}",
                status_code=response.status_code,
                body=response.text,
            )

        logger.info(f"Client registered: {client_id}")
        return str(client_id)

    except httpx.RequestError as e:
        raise RegistrationError(f"Network error during client registration: {e}") from e
    finally:
        if should_close:
            await client.aclose()
