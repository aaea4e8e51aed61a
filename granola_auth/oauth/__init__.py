"""OAuth 2.1 credential acquisition for the Granola MCP server.

This package discovers the authorization server of a protected resource,
registers a public client, runs a PKCE authorization-code exchange through a
local redirect listener and persists the resulting tokens.

Main Components:
    login: Full interactive flow ending in a credential write
    renew: Refresh-token renewal that skips still-valid tokens
    CredentialStore: KEY=value credential file
    RedirectListener: One-shot local HTTP listener for the redirect

Quick Start:
    from granola_auth.config import AuthConfig
    from granola_auth.oauth import CredentialStore, login, renew

    config = AuthConfig()
    store = CredentialStore(config.env_path)

    record = await login(config, store, on_status=print)
    result = await renew(store)
"""

from .callback import CallbackResult, ListenerState, RedirectListener, parse_callback_url
from .discovery import EndpointSet, discover_endpoints, get_resource_metadata_url
from .errors import (
    AuthorizationError,
    CallbackTimeoutError,
    CredentialStoreError,
    DiscoveryError,
    GranolaAuthError,
    ListenerError,
    MissingRefreshMaterialError,
    PortInUseError,
    RegistrationError,
    TokenExchangeError,
)
from .flow import authorize, build_authorization_url
from .manager import RenewalResult, describe_record, login, needs_refresh, renew
from .pkce import PKCEPair, generate_code_challenge, generate_code_verifier, generate_pkce_pair, generate_state
from .registration import register_client
from .store import CredentialRecord, CredentialStore, merge_credentials, parse_credentials
from .tokens import TokenSet, exchange_code_for_tokens, refresh_access_token

__all__ = [
    # Entry points
    "login",
    "renew",
    "RenewalResult",
    "needs_refresh",
    "describe_record",
    # Flow
    "authorize",
    "build_authorization_url",
    # Discovery
    "discover_endpoints",
    "get_resource_metadata_url",
    "EndpointSet",
    # Registration
    "register_client",
    # Tokens
    "TokenSet",
    "exchange_code_for_tokens",
    "refresh_access_token",
    # Storage
    "CredentialStore",
    "CredentialRecord",
    "merge_credentials",
    "parse_credentials",
    # PKCE
    "PKCEPair",
    "generate_pkce_pair",
    "generate_code_verifier",
    "generate_code_challenge",
    "generate_state",
    # Callback
    "RedirectListener",
    "ListenerState",
    "CallbackResult",
    "parse_callback_url",
    # Errors
    "GranolaAuthError",
    "DiscoveryError",
    "RegistrationError",
    "ListenerError",
    "PortInUseError",
    "CallbackTimeoutError",
    "AuthorizationError",
    "TokenExchangeError",
    "MissingRefreshMaterialError",
    "CredentialStoreError",
]
