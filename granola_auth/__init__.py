"""granola-auth - OAuth 2.1 credential acquisition and renewal for the Granola MCP server."""

from importlib.metadata import version, PackageNotFoundError

try:
    __version__ = version("granola-auth")
except PackageNotFoundError:
    __version__ = "0.1.0"  # Fallback for development

__all__ = [
    "__version__",
    "AuthConfig",
    "OutputHandler",
]


# Lazy imports so `import granola_auth` stays cheap
def __getattr__(name: str) -> object:
    """Lazy import module components."""
    if name == "AuthConfig":
        from .config import AuthConfig
        return AuthConfig
    elif name == "OutputHandler":
        from .output import OutputHandler
        return OutputHandler
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
