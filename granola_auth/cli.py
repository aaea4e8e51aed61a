"""CLI entry point for granola-auth."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

import click

from . import __version__
from .config import DEFAULT_ENV_PATH, AuthConfig
from .oauth import (
    AuthorizationError,
    CredentialStore,
    CredentialStoreError,
    DiscoveryError,
    GranolaAuthError,
    ListenerError,
    MissingRefreshMaterialError,
    PortInUseError,
    RegistrationError,
    TokenExchangeError,
    describe_record,
    login,
    renew,
)
from .oauth.flow import open_browser
from .oauth.manager import format_expiry
from .output import OutputHandler

# Logger for CLI
logger = logging.getLogger("granola_auth")


def _help_for(error: GranolaAuthError) -> str:
    """Get an actionable hint for a failed run."""
    if isinstance(error, AuthorizationError):
        if error.kind == AuthorizationError.STATE_MISMATCH:
            return (
                "The redirect did not match this login attempt and may be a cross-site "
                "request forgery attempt. No tokens were saved. Close the browser tab "
                "and run 'granola-auth login' again."
            )
        if error.kind == AuthorizationError.TIMEOUT:
            return "Complete the login in the browser within the time limit, or raise it with --timeout."
        return "Run 'granola-auth login' to try again."
    if isinstance(error, PortInUseError):
        return (
            f"Another process is listening on port {error.port}. Stop it, or pass --port "
            f"to use a different callback port."
        )
    if isinstance(error, ListenerError):
        return "The local callback listener could not be started."
    if isinstance(error, DiscoveryError):
        return "Check the resource URL and your network connection."
    if isinstance(error, RegistrationError):
        return "The authorization server rejected client registration. Try again later."
    if isinstance(error, MissingRefreshMaterialError):
        return "Run 'granola-auth login' to authenticate."
    if isinstance(error, TokenExchangeError):
        return "Run 'granola-auth login' to re-authenticate."
    if isinstance(error, CredentialStoreError):
        return "Check that the credential file and its directory are writable."
    return ""


@click.group()
@click.option("--json", "json_mode", is_flag=True, help="Output in JSON format")
@click.option(
    "--env-file",
    "env_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=DEFAULT_ENV_PATH,
    show_default=True,
    help="Credential file to read and update",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
@click.version_option(version=__version__)
@click.pass_context
def main(ctx: click.Context, json_mode: bool, env_path: Path, verbose: bool) -> None:
    """granola-auth - Obtain and renew OAuth tokens for the Granola MCP server."""
    ctx.ensure_object(dict)
    ctx.obj["json_mode"] = json_mode
    ctx.obj["env_path"] = env_path
    ctx.obj["output"] = OutputHandler(json_mode)

    # Configure logging based on verbosity
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        )
    else:
        logging.basicConfig(level=logging.WARNING)


@main.command("login")
@click.option(
    "--resource-url",
    envvar="GRANOLA_AUTH_RESOURCE_URL",
    help="Protected resource to authenticate against",
)
@click.option(
    "--port",
    "-p",
    type=click.IntRange(1, 65535),
    envvar="GRANOLA_AUTH_PORT",
    help="Local callback port (part of the registered redirect URI)",
)
@click.option(
    "--timeout",
    "-t",
    type=click.FloatRange(min=1),
    help="Seconds to wait for the browser login (default 300)",
)
@click.option("--no-browser", is_flag=True, help="Print the authorization URL without opening a browser")
@click.pass_context
def login_cmd(
    ctx: click.Context,
    resource_url: str | None,
    port: int | None,
    timeout: float | None,
    no_browser: bool,
) -> None:
    """Authenticate in the browser and save tokens to the credential file."""
    output: OutputHandler = ctx.obj["output"]
    config = AuthConfig(env_path=ctx.obj["env_path"]).with_overrides(
        resource_url=resource_url,
        callback_port=port,
        callback_timeout=timeout,
    )
    store = CredentialStore(config.env_path)

    browser = None if no_browser else open_browser
    try:
        record = asyncio.run(login(config, store, on_status=output.status, browser=browser))
    except GranolaAuthError as e:
        output.error(e, help_text=_help_for(e))

    if ctx.obj["json_mode"]:
        output.success({"env_path": str(store.path), **describe_record(record)})
    else:
        click.echo()
        click.secho("Authentication complete.", fg="green")
        click.echo(f"  Access token expires: {format_expiry(record.expires_at)}")
        click.echo(f"  Client ID: {record.client_id}")
        if not record.refresh_token:
            click.secho("  No refresh token was issued; run login again when the token expires.", fg="yellow")
        click.echo("\nUse GRANOLA_ACCESS_TOKEN as your Bearer token in MCP config.")


@main.command("refresh")
@click.option("--force", "-f", is_flag=True, help="Refresh even if the access token is still valid")
@click.pass_context
def refresh_cmd(ctx: click.Context, force: bool) -> None:
    """Renew the access token using the stored refresh token."""
    output: OutputHandler = ctx.obj["output"]
    store = CredentialStore(ctx.obj["env_path"])

    try:
        result = asyncio.run(renew(store, force=force))
    except GranolaAuthError as e:
        output.error(e, help_text=_help_for(e))

    expires = format_expiry(result.record.expires_at)
    if result.refreshed:
        message = (
            f"Access token refreshed.\n"
            f"  Tokens saved to {store.path}\n"
            f"  Access token expires: {expires}"
        )
    else:
        message = f"Access token is still valid (expires {expires}).\nRun with --force to refresh anyway."

    output.success({"refreshed": result.refreshed, **describe_record(result.record)}, message)


@main.command("status")
@click.pass_context
def status_cmd(ctx: click.Context) -> None:
    """Show whether stored credentials exist and when they expire."""
    output: OutputHandler = ctx.obj["output"]
    store = CredentialStore(ctx.obj["env_path"])

    try:
        info = describe_record(store.load())
    except GranolaAuthError as e:
        output.error(e, help_text=_help_for(e))

    if ctx.obj["json_mode"]:
        output.success({"env_path": str(store.path), **info})
        return

    click.secho(f"\nCredentials: {store.path}\n", bold=True)
    if not info["authenticated"]:
        click.secho("  Not authenticated.", fg="yellow")
        click.echo("\nRun 'granola-auth login' to authenticate.")
        return

    status_color = "red" if info["expired"] else "green"
    status_text = "expired" if info["expired"] else f"valid for {info['expires_in_human']}"
    click.echo("  Access token: ", nl=False)
    click.secho(status_text, fg=status_color)
    if info["expires_at_human"]:
        click.echo(f"  Expires: {info['expires_at_human']}")
    click.echo(f"  Refresh token: {'yes' if info['has_refresh_token'] else 'no'}")
    if info["client_id"]:
        click.echo(f"  Client ID: {info['client_id']}")
