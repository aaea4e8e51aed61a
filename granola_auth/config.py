"""Runtime configuration for granola-auth.

All endpoint and port constants live in a single immutable `AuthConfig` that
is passed into each component, so tests can point the flow at a local server
or a free port.
"""

from dataclasses import dataclass, replace
from pathlib import Path


DEFAULT_RESOURCE_URL = "https://mcp.granola.ai/mcp"
DEFAULT_CALLBACK_HOST = "localhost"
DEFAULT_CALLBACK_PORT = 3334
DEFAULT_CALLBACK_PATH = "/callback"
DEFAULT_CLIENT_NAME = "granola-skill"

# Upper bound on waiting for the browser redirect
DEFAULT_CALLBACK_TIMEOUT = 300.0  # seconds

# Per-request timeout for discovery, registration and token calls
DEFAULT_HTTP_TIMEOUT = 30.0  # seconds

DEFAULT_ENV_PATH = Path(".env")


@dataclass(frozen=True)
class AuthConfig:
    """Immutable settings for one login or refresh run.

    Attributes:
        resource_url: Protected resource probed to start discovery
        callback_host: Interface the redirect listener binds to ("localhost"
            binds both the IPv4 and IPv6 loopback addresses)
        callback_port: Fixed port registered in the redirect URI
        callback_path: Path the authorization server redirects to
        client_name: client_name sent during Dynamic Client Registration
        callback_timeout: Seconds to wait for the browser redirect
        http_timeout: Per-request HTTP timeout in seconds
        env_path: Credential file the tokens are written to
    """

    resource_url: str = DEFAULT_RESOURCE_URL
    callback_host: str = DEFAULT_CALLBACK_HOST
    callback_port: int = DEFAULT_CALLBACK_PORT
    callback_path: str = DEFAULT_CALLBACK_PATH
    client_name: str = DEFAULT_CLIENT_NAME
    callback_timeout: float = DEFAULT_CALLBACK_TIMEOUT
    http_timeout: float = DEFAULT_HTTP_TIMEOUT
    env_path: Path = DEFAULT_ENV_PATH

    def __post_init__(self) -> None:
        if not 0 < self.callback_port < 65536:
            raise ValueError(f"callback_port must be between 1 and 65535, got {self.callback_port}")
        if not self.callback_path.startswith("/"):
            raise ValueError(f"callback_path must start with '/', got {self.callback_path!r}")
        if self.callback_timeout <= 0:
            raise ValueError("callback_timeout must be positive")

    @property
    def redirect_uri(self) -> str:
        """Redirect URI registered with the authorization server."""
        return f"http://localhost:{self.callback_port}{self.callback_path}"

    def with_overrides(self, **changes: object) -> "AuthConfig":
        """Return a copy with the given fields replaced, skipping None values."""
        return replace(self, **{k: v for k, v in changes.items() if v is not None})
