"""Local redirect listener for the OAuth authorization response.

The listener binds a fixed local port, serves exactly one logical
interaction on the callback path and exposes its outcome as a single
awaitable. It:
- Moves through an explicit state machine (see ListenerState)
- Answers 404 for any other path without resolving the outcome
- Stops accepting connections as soon as the first callback is claimed
- Resolves the outcome only after the browser response has been flushed
"""

import asyncio
import errno
import html
import logging
from dataclasses import dataclass
from enum import Enum
from http import HTTPStatus
from typing import Any
from urllib.parse import parse_qs, urlparse

from ..config import DEFAULT_CALLBACK_HOST, DEFAULT_CALLBACK_PATH, DEFAULT_CALLBACK_PORT
from .errors import CallbackTimeoutError, ListenerError, PortInUseError

logger = logging.getLogger(__name__)

# How long a connected client may take to send its request line and headers
REQUEST_READ_TIMEOUT = 10.0  # seconds

_ADDRESS_IN_USE = {errno.EADDRINUSE, getattr(errno, "WSAEADDRINUSE", errno.EADDRINUSE)}

# "localhost" listens on both loopback families, so the redirect URI reaches
# the listener whichever address the browser resolves it to
LOOPBACK_HOSTS = ("127.0.0.1", "::1")


class ListenerState(Enum):
    """Lifecycle of a RedirectListener."""

    IDLE = "idle"
    LISTENING = "listening"
    COMPLETED = "completed"
    COMPLETED_WITH_ERROR = "completed_with_error"
    TIMED_OUT = "timed_out"
    CLOSED = "closed"  # torn down before any outcome


@dataclass
class CallbackResult:
    """Parameters carried by the authorization redirect.

    Attributes:
        code: The authorization code
        state: The echoed state parameter
        error: OAuth error code if authorization failed
        error_description: Human-readable error description
    """

    code: str | None = None
    state: str | None = None
    error: str | None = None
    error_description: str | None = None

    def is_success(self) -> bool:
        """Check if the redirect carries a code and no error."""
        return self.code is not None and self.error is None

    def is_error(self) -> bool:
        """Check if the authorization server reported an error."""
        return self.error is not None

    def is_malformed(self) -> bool:
        """Check if the redirect carries neither a code nor an error."""
        return self.code is None and self.error is None


SUCCESS_HTML = """<!DOCTYPE html>
<html>
<head>
    <title>Authentication Successful</title>
    <style>
        body {
            font-family: system-ui, -apple-system, 'Segoe UI', Roboto, sans-serif;
            display: flex;
            justify-content: center;
            align-items: center;
            height: 100vh;
            margin: 0;
            background: #f0f4f8;
        }
        .card {
            background: white;
            padding: 2rem;
            border-radius: 12px;
            text-align: center;
            box-shadow: 0 2px 20px rgba(0,0,0,0.1);
        }
        h2 { color: #22c55e; margin-top: 0; }
        p { color: #64748b; }
    </style>
</head>
<body>
    <div class="card">
        <h2>Authentication successful!</h2>
        <p>You can close this tab and return to your terminal.</p>
    </div>
</body>
</html>"""

ERROR_HTML = """<!DOCTYPE html>
<html>
<head>
    <title>Authentication Failed</title>
    <style>
        body {{
            font-family: system-ui, -apple-system, 'Segoe UI', Roboto, sans-serif;
            display: flex;
            justify-content: center;
            align-items: center;
            height: 100vh;
            margin: 0;
            background: #f0f4f8;
        }}
        .card {{
            background: white;
            padding: 2rem;
            border-radius: 12px;
            text-align: center;
            box-shadow: 0 2px 20px rgba(0,0,0,0.1);
            max-width: 400px;
        }}
        h2 {{ color: #c0392b; margin-top: 0; }}
        .error {{
            background: #fee;
            padding: 12px;
            border-radius: 8px;
            color: #c0392b;
            font-family: monospace;
        }}
    </style>
</head>
<body>
    <div class="card">
        <h2>Authentication failed</h2>
        <div class="error">{error}: {description}</div>
    </div>
</body>
</html>"""


def parse_callback_url(url: str) -> CallbackResult:
    """Parse OAuth redirect query parameters.

    Args:
        url: The request target, e.g. "/callback?code=...&state=..."

    Returns:
        CallbackResult with the first value of each parameter
    """
    params = parse_qs(urlparse(url).query)

    def get_param(name: str) -> str | None:
        values = params.get(name, [])
        return values[0] if values else None

    return CallbackResult(
        code=get_param("code"),
        state=get_param("state"),
        error=get_param("error"),
        error_description=get_param("error_description"),
    )


def render_result_page(result: CallbackResult) -> tuple[HTTPStatus, str]:
    """Choose the status and HTML page shown to the browser for a result."""
    if result.is_success():
        return HTTPStatus.OK, SUCCESS_HTML

    if result.is_error():
        error = result.error or "unknown_error"
        description = result.error_description or "No description provided"
    else:
        error = "invalid_request"
        description = "The redirect carried neither an authorization code nor an error"

    # Escape before embedding to prevent script injection via the query string
    page = ERROR_HTML.format(error=html.escape(error), description=html.escape(description))
    return HTTPStatus.BAD_REQUEST, page


class RedirectListener:
    """One-shot HTTP listener for the OAuth redirect.

    Usage:
        async with RedirectListener(port=3334) as listener:
            # disclose the authorization URL only after the listener is bound
            result = await listener.wait(timeout=300)
    """

    def __init__(
        self,
        host: str = DEFAULT_CALLBACK_HOST,
        port: int = DEFAULT_CALLBACK_PORT,
        path: str = DEFAULT_CALLBACK_PATH,
    ):
        self.host = host
        self.port = port
        self.path = path
        self.state = ListenerState.IDLE

        self._server: asyncio.Server | None = None
        self._outcome: asyncio.Future[CallbackResult] | None = None
        self._connections: set[asyncio.StreamWriter] = set()

    async def start(self) -> None:
        """Bind the listener.

        Raises:
            PortInUseError: If the port is already bound
            ListenerError: For any other bind failure, or if already started
        """
        if self.state is not ListenerState.IDLE:
            raise ListenerError(f"Listener cannot start from state {self.state.value}")

        self._outcome = asyncio.get_running_loop().create_future()
        try:
            self._server = await self._bind()
        except OSError as e:
            self._outcome = None
            if e.errno in _ADDRESS_IN_USE:
                raise PortInUseError(self.port) from e
            raise ListenerError(
                f"Failed to start callback listener on {self.host}:{self.port}: {e}"
            ) from e

        sockets = self._server.sockets
        if sockets:
            self.port = sockets[0].getsockname()[1]

        self.state = ListenerState.LISTENING
        logger.debug(f"Callback listener started on http://{self.host}:{self.port}{self.path}")

    async def _bind(self) -> asyncio.Server:
        if self.host != "localhost":
            return await asyncio.start_server(self._handle_connection, self.host, self.port)

        try:
            return await asyncio.start_server(
                self._handle_connection, list(LOOPBACK_HOSTS), self.port
            )
        except OSError as e:
            if e.errno in _ADDRESS_IN_USE:
                raise
            # No IPv6 loopback on this host
            logger.debug(f"Could not bind all loopback addresses ({e}), using IPv4 only")
            return await asyncio.start_server(
                self._handle_connection, LOOPBACK_HOSTS[0], self.port
            )

    async def stop(self) -> None:
        """Release the listening socket and any idle connections."""
        if self._server is None:
            return

        server, self._server = self._server, None
        server.close()
        for writer in list(self._connections):
            writer.close()
        await server.wait_closed()

        if self._outcome is not None and not self._outcome.done():
            self._outcome.cancel()
        if self.state in (ListenerState.IDLE, ListenerState.LISTENING):
            self.state = ListenerState.CLOSED
        logger.debug("Callback listener stopped")

    @property
    def is_serving(self) -> bool:
        return self._server is not None and self._server.is_serving()

    async def wait(self, timeout: float) -> CallbackResult:
        """Wait for the single outcome.

        Raises:
            CallbackTimeoutError: If no callback arrives within timeout seconds
            ListenerError: If the listener was never started
        """
        if self._outcome is None:
            raise ListenerError("Listener not started")

        try:
            return await asyncio.wait_for(asyncio.shield(self._outcome), timeout=timeout)
        except TimeoutError:
            if self.state is ListenerState.LISTENING:
                self.state = ListenerState.TIMED_OUT
            raise CallbackTimeoutError(
                f"Timed out waiting for the authorization redirect after {timeout:g} seconds"
            ) from None

    def _claim(self, target: str) -> CallbackResult:
        """Take the single outcome slot for this request.

        Runs without suspending, so two connections can never both claim it.
        """
        result = parse_callback_url(target)
        if result.is_malformed():
            logger.warning("Authorization redirect carried neither a code nor an error")
        self.state = (
            ListenerState.COMPLETED if result.is_success() else ListenerState.COMPLETED_WITH_ERROR
        )
        # Close the listening socket now; the current connection stays open
        if self._server is not None:
            self._server.close()
        return result

    def _resolve(self, result: CallbackResult) -> None:
        if self._outcome is not None and not self._outcome.done():
            self._outcome.set_result(result)

    async def _handle_connection(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
    ) -> None:
        """Handle one incoming HTTP connection."""
        self._connections.add(writer)
        claimed: CallbackResult | None = None
        try:
            request = await asyncio.wait_for(_read_request(reader), REQUEST_READ_TIMEOUT)
            if request is None:
                return  # closed before sending anything

            method, target = request
            if not target:
                await self._send_response(writer, HTTPStatus.BAD_REQUEST, "Invalid request")
                return

            if urlparse(target).path != self.path:
                await self._send_response(writer, HTTPStatus.NOT_FOUND, "Not found")
                return

            if method != "GET":
                await self._send_response(
                    writer, HTTPStatus.METHOD_NOT_ALLOWED, "Method not allowed"
                )
                return

            if self.state is not ListenerState.LISTENING:
                await self._send_response(writer, HTTPStatus.GONE, "Callback already received")
                return

            claimed = self._claim(target)
            status, page = render_result_page(claimed)
            await self._send_html_response(writer, status, page)

        except Exception as e:
            logger.warning(f"Error handling callback request: {e}")

        finally:
            self._connections.discard(writer)
            writer.close()
            try:
                await writer.wait_closed()
            except (ConnectionError, OSError):
                pass
            if claimed is not None:
                self._resolve(claimed)

    async def _send_response(
        self,
        writer: asyncio.StreamWriter,
        status: HTTPStatus,
        body: str,
    ) -> None:
        """Send a plain text HTTP response."""
        payload = body.encode("utf-8")
        headers = (
            f"HTTP/1.1 {status.value} {status.phrase}\r\n"
            f"Content-Type: text/plain; charset=utf-8\r\n"
            f"Content-Length: {len(payload)}\r\n"
            f"Connection: close\r\n"
            f"\r\n"
        )
        writer.write(headers.encode("utf-8") + payload)
        await writer.drain()

    async def _send_html_response(
        self,
        writer: asyncio.StreamWriter,
        status: HTTPStatus,
        html_content: str,
    ) -> None:
        """Send an HTML HTTP response with security headers."""
        body = html_content.encode("utf-8")
        headers = (
            f"HTTP/1.1 {status.value} {status.phrase}\r\n"
            f"Content-Type: text/html; charset=utf-8\r\n"
            f"Content-Length: {len(body)}\r\n"
            f"X-Content-Type-Options: nosniff\r\n"
            f"X-Frame-Options: DENY\r\n"
            f"Content-Security-Policy: default-src 'none'; style-src 'unsafe-inline'\r\n"
            f"Connection: close\r\n"
            f"\r\n"
        )
        writer.write(headers.encode("utf-8") + body)
        await writer.drain()

    async def __aenter__(self) -> "RedirectListener":
        await self.start()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.stop()


async def _read_request(reader: asyncio.StreamReader) -> tuple[str, str] | None:
    """Read the request line and headers.

    Returns:
        (method, target), with an empty target for a malformed request line,
        or None if the client closed the connection without sending anything
    """
    request_line = await reader.readline()
    if not request_line:
        return None
    parts = request_line.decode("utf-8", errors="replace").strip().split(" ")

    # Consume headers (not needed)
    while True:
        header_line = await reader.readline()
        if header_line in (b"\r\n", b"\n", b""):
            break

    if len(parts) < 2:
        return parts[0], ""
    return parts[0], parts[1]
