"""Shared fixtures and utilities for granola-auth tests."""

import asyncio
import json
import socket
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any
from urllib.parse import parse_qs, urlsplit

import httpx
import pytest

from granola_auth.config import AuthConfig


RESOURCE_URL = "https://mcp.example.com/mcp"
RESOURCE_METADATA_URL = "https://mcp.example.com/.well-known/oauth-protected-resource"
ISSUER = "https://auth.example.com"
AUTH_SERVER_METADATA_URL = "https://auth.example.com/.well-known/oauth-authorization-server"
AUTHORIZATION_ENDPOINT = "https://auth.example.com/authorize"
TOKEN_ENDPOINT = "https://auth.example.com/token"
REGISTRATION_ENDPOINT = "https://auth.example.com/register"


# ============================================================================
# Fake OAuth server
# ============================================================================


def _without_query(url: httpx.URL) -> str:
    return str(url).split("?", 1)[0]


Route = httpx.Response | Callable[[httpx.Request], httpx.Response]


class FakeOAuthServer:
    """Scripted HTTP conversation served through httpx.MockTransport.

    Routes are keyed by (method, url without query). Unknown routes answer
    404. Every request is recorded in order.
    """

    def __init__(self) -> None:
        self.routes: dict[tuple[str, str], Route] = {}
        self.requests: list[httpx.Request] = []

    def add(self, method: str, url: str, response: Route) -> None:
        self.routes[(method, url)] = response

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        url = _without_query(request.url)
        route = self.routes.get((request.method, url))
        if route is None:
            return httpx.Response(404, text="no route")
        if callable(route):
            return route(request)
        # Fresh copy so a route can answer more than once
        return httpx.Response(route.status_code, headers=route.headers, content=route.content)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))

    def requests_to(self, url: str) -> list[httpx.Request]:
        return [r for r in self.requests if _without_query(r.url) == url]


def challenge_response(
    metadata_url: str = RESOURCE_METADATA_URL,
    header: str = "WWW-Authenticate",
) -> httpx.Response:
    """A 401 response pointing at the resource metadata document."""
    return httpx.Response(
        401,
        headers={header: f'Bearer resource_metadata="{metadata_url}"'},
        json={"error": "unauthorized"},
    )


@pytest.fixture
def fake_server() -> FakeOAuthServer:
    """A fake server with a complete, valid discovery/DCR/token chain."""
    server = FakeOAuthServer()
    server.add("POST", RESOURCE_URL, challenge_response())
    server.add(
        "GET",
        RESOURCE_METADATA_URL,
        httpx.Response(200, json={"resource": RESOURCE_URL, "authorization_servers": [ISSUER]}),
    )
    server.add(
        "GET",
        AUTH_SERVER_METADATA_URL,
        httpx.Response(
            200,
            json={
                "issuer": ISSUER,
                "authorization_endpoint": AUTHORIZATION_ENDPOINT,
                "token_endpoint": TOKEN_ENDPOINT,
                "registration_endpoint": REGISTRATION_ENDPOINT,
                "code_challenge_methods_supported": ["S256"],
            },
        ),
    )
    server.add("POST", REGISTRATION_ENDPOINT, httpx.Response(201, json={"client_id": "abc123"}))
    server.add(
        "POST",
        TOKEN_ENDPOINT,
        httpx.Response(
            200,
            json={"access_token": "AT1", "refresh_token": "RT1", "expires_in": 3600},
        ),
    )
    return server


def json_body(request: httpx.Request) -> Any:
    return json.loads(request.content)


# ============================================================================
# Local listener helpers
# ============================================================================


@pytest.fixture
def free_port() -> int:
    """A local port that was free a moment ago."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        port: int = s.getsockname()[1]
    return port


SendRequest = Callable[..., Awaitable[bytes]]


async def _send_request(
    port: int, target: str, method: str = "GET", host: str = "127.0.0.1"
) -> bytes:
    reader, writer = await asyncio.open_connection(host, port)
    writer.write(f"{method} {target} HTTP/1.1\r\nHost: localhost\r\n\r\n".encode())
    await writer.drain()
    response = await reader.read()
    writer.close()
    await writer.wait_closed()
    return response


@pytest.fixture
def send_request() -> SendRequest:
    """Coroutine that sends one HTTP request to a local port and returns the raw response."""
    return _send_request


@pytest.fixture
def test_config(tmp_path: Path, free_port: int) -> AuthConfig:
    """Configuration pointing at the fake server and a free local port."""
    return AuthConfig(
        resource_url=RESOURCE_URL,
        callback_port=free_port,
        callback_timeout=5,
        env_path=tmp_path / ".env",
    )


def query_params(url: str) -> dict[str, str]:
    return {key: values[0] for key, values in parse_qs(urlsplit(url).query).items()}


class FakeBrowser:
    """Stands in for the system browser by hitting the redirect listener.

    It answers the authorization URL with a redirect to the listener, echoing
    the state unless one is supplied.
    """

    def __init__(
        self,
        port: int,
        query: str = "code=CODE123",
        state: str | None = None,
    ):
        self.port = port
        self.query = query
        self.state = state
        self.urls: list[str] = []
        self._tasks: list[asyncio.Task[bytes]] = []

    async def __call__(self, url: str) -> bool:
        self.urls.append(url)
        state = self.state if self.state is not None else query_params(url)["state"]
        target = f"/callback?{self.query}&state={state}"
        self._tasks.append(asyncio.create_task(_send_request(self.port, target)))
        return True


def ipv6_loopback_available(port: int) -> bool:
    """Check if ::1 can be bound on this host."""
    if not socket.has_ipv6:
        return False
    try:
        with socket.socket(socket.AF_INET6, socket.SOCK_STREAM) as s:
            s.bind(("::1", port))
    except OSError:
        return False
    return True
