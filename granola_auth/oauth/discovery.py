"""OAuth endpoint discovery per RFC 9728 and RFC 8414.

Discovery is a one-shot sequential chain:
- Probe the protected resource and read the 401 challenge header
- Fetch the Protected Resource Metadata it points to (RFC 9728)
- Fetch the Authorization Server Metadata of the first listed server (RFC 8414)

Any failure aborts the chain before the next request is sent.
"""

import logging
import re
from dataclasses import dataclass
from typing import Any

import httpx

from .errors import DiscoveryError

logger = logging.getLogger(__name__)

# API gateways in front of the resource may rename the challenge header
CHALLENGE_HEADERS = ("www-authenticate", "x-amzn-remapped-www-authenticate")

RESOURCE_METADATA_PATTERN = re.compile(r'resource_metadata\s*=\s*"([^"]+)"', re.IGNORECASE)

AUTH_SERVER_METADATA_PATH = "/.well-known/oauth-authorization-server"


def _http_status_hint(status_code: int) -> str:
    """Get a user-friendly hint for common HTTP status codes."""
    hints = {
        403: "Access forbidden - check if you have permission to access this resource",
        404: "Endpoint not found - the server may not support OAuth discovery at this URL",
        500: "Server error - the authorization server may be experiencing issues",
        502: "Bad gateway - there may be a proxy or network issue",
        503: "Service unavailable - the server may be temporarily down",
    }
    return hints.get(status_code, "")


def _status_error(what: str, url: str, status_code: int) -> DiscoveryError:
    message = f"Failed to fetch {what} from {url}: HTTP {status_code}"
    hint = _http_status_hint(status_code)
    if hint:
        message += f". {hint}"
    return DiscoveryError(message)


@dataclass(frozen=True)
class EndpointSet:
    """Endpoints published by the authorization server.

    Fields the server did not publish are None; `require` surfaces them
    once a step actually needs them.
    """

    issuer: str
    authorization_endpoint: str | None = None
    token_endpoint: str | None = None
    registration_endpoint: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any], issuer: str) -> "EndpointSet":
        """Create from an authorization server metadata document."""
        return cls(
            issuer=data.get("issuer") or issuer,
            authorization_endpoint=data.get("authorization_endpoint"),
            token_endpoint=data.get("token_endpoint"),
            registration_endpoint=data.get("registration_endpoint"),
        )

    def require(self, *fields: str) -> tuple[str, ...]:
        """Return the named endpoint fields, in order.

        Raises:
            DiscoveryError: Naming every missing field
        """
        missing = [name for name in fields if not getattr(self, name)]
        if missing:
            raise DiscoveryError(
                f"Authorization server {self.issuer} metadata is missing "
                f"required field(s): {', '.join(missing)}"
            )
        return tuple(getattr(self, name) for name in fields)


def find_challenge_header(headers: httpx.Headers | dict[str, str]) -> str | None:
    """Return the challenge header value, checking the proxy-remapped alias too."""
    lowered = {key.lower(): value for key, value in headers.items()}
    for name in CHALLENGE_HEADERS:
        value = lowered.get(name)
        if value:
            return value
    return None


def get_resource_metadata_url(challenge: str) -> str:
    """Extract the resource_metadata URL from a WWW-Authenticate value.

    The parameter may sit among others, e.g.
    ``Bearer realm="mcp", resource_metadata="https://..."``.

    Raises:
        DiscoveryError: If no quoted resource_metadata parameter is present
    """
    match = RESOURCE_METADATA_PATTERN.search(challenge)
    if not match:
        raise DiscoveryError(f"Unparseable challenge header, no resource_metadata in: {challenge}")
    return match.group(1)


def _json_object(response: httpx.Response, what: str) -> dict[str, Any]:
    try:
        data = response.json()
    except ValueError as e:
        raise DiscoveryError(f"{what} response was not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise DiscoveryError(f"{what} response was not a JSON object")
    return data


async def probe_resource(resource_url: str, client: httpx.AsyncClient) -> str:
    """Send a request the resource must reject and return its resource_metadata URL.

    The probe is an unauthenticated JSON POST, which the resource answers
    with a 401 challenge.
    """
    logger.debug(f"Probing protected resource {resource_url}")
    response = await client.post(
        resource_url,
        content=b"{}",
        headers={"Content-Type": "application/json"},
    )

    if response.status_code != 401:
        raise DiscoveryError(
            f"Unexpected status from {resource_url}: expected HTTP 401, got {response.status_code}"
        )

    challenge = find_challenge_header(response.headers)
    if challenge is None:
        raise DiscoveryError(
            f"Missing challenge header in 401 response from {resource_url} "
            f"(checked: {', '.join(CHALLENGE_HEADERS)})"
        )

    return get_resource_metadata_url(challenge)


async def fetch_authorization_server(metadata_url: str, client: httpx.AsyncClient) -> str:
    """Fetch Protected Resource Metadata and return the first authorization server."""
    logger.debug(f"Fetching protected resource metadata from {metadata_url}")
    response = await client.get(metadata_url)
    if response.status_code != 200:
        raise _status_error("protected resource metadata", metadata_url, response.status_code)

    data = _json_object(response, "Protected resource metadata")
    servers = data.get("authorization_servers")
    if not isinstance(servers, list) or not servers:
        raise DiscoveryError(
            f"Resource metadata at {metadata_url} does not list any authorization_servers"
        )
    issuer = servers[0]
    if not isinstance(issuer, str) or not issuer:
        raise DiscoveryError(
            f"Resource metadata at {metadata_url} lists an invalid authorization server: {issuer!r}"
        )
    return issuer


async def fetch_auth_server_metadata(issuer: str, client: httpx.AsyncClient) -> EndpointSet:
    """Fetch Authorization Server Metadata for an issuer."""
    url = issuer.rstrip("/") + AUTH_SERVER_METADATA_PATH
    logger.debug(f"Fetching authorization server metadata from {url}")
    response = await client.get(url)
    if response.status_code != 200:
        raise _status_error("authorization server metadata", url, response.status_code)

    data = _json_object(response, "Authorization server metadata")
    endpoints = EndpointSet.from_dict(data, issuer)

    for name in ("authorization_endpoint", "token_endpoint", "registration_endpoint"):
        if not getattr(endpoints, name):
            logger.warning(f"Authorization server {issuer} did not publish {name}")

    return endpoints


async def discover_endpoints(
    resource_url: str,
    http_client: httpx.AsyncClient | None = None,
    timeout: float = 30.0,
) -> EndpointSet:
    """Resolve the authorization server endpoints for a protected resource.

    Args:
        resource_url: The protected resource URL
        http_client: Optional HTTP client to use
        timeout: Request timeout in seconds (only for a client created here)

    Returns:
        EndpointSet discovered from the authorization server

    Raises:
        DiscoveryError: If any step of the chain fails
    """
    client = http_client or httpx.AsyncClient(timeout=timeout)
    should_close = http_client is None

    try:
        metadata_url = await probe_resource(resource_url, client)
        logger.info(f"Resource metadata URL: {metadata_url}")

        issuer = await fetch_authorization_server(metadata_url, client)
        logger.info(f"Authorization server: {issuer}")

        return await fetch_auth_server_metadata(issuer, client)

    except httpx.TimeoutException as e:
        raise DiscoveryError(
            f"Timeout during OAuth discovery for {resource_url}: {e}. "
            f"The server may be slow or unresponsive."
        ) from e
    except httpx.RequestError as e:
        raise DiscoveryError(f"Network error during OAuth discovery for {resource_url}: {e}") from e
    finally:
        if should_close:
            await client.aclose()
