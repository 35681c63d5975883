"""Login commands -- run the OAuth flow for a configured account.

Provides ``deskoauth login``, ``deskoauth refresh``, ``deskoauth link`` and
the ``deskoauth registration`` group. Each command builds an
:class:`~deskoauth.oauth.account.AccountBasedOAuthSession` over an
:class:`~deskoauth.transport.HttpxTransport` and runs it with
:func:`asyncio.run`.

Typical workflow::

    deskoauth login work            # opens the browser, prints the tokens
    deskoauth refresh work          # uses the stored refresh token
    deskoauth registration show work
"""

from __future__ import annotations

import asyncio
from typing import Any, Optional

import typer

from deskoauth.commands import reported_errors
from deskoauth.exceptions import ConfigError, DeskOAuthError, NotSupportedError
from deskoauth.exit_codes import (
    EXIT_AUTH_FAILURE,
    EXIT_NOT_SUPPORTED,
    EXIT_SERVER_ERROR,
    EXIT_SUCCESS,
)
from deskoauth.models import Account, FlowResult, OAuthResult, Settings
from deskoauth.output import error, get_output, info, link, success, suggest

registration_app = typer.Typer(no_args_is_help=True)


def exit_code_for(result: FlowResult) -> int:
    """Map a :class:`FlowResult` to a process exit code."""
    if result.result is OAuthResult.LOGGED_IN:
        return EXIT_SUCCESS
    if result.result is OAuthResult.NOT_SUPPORTED:
        return EXIT_NOT_SUPPORTED
    if result.status_code is not None and result.status_code >= 500:
        return EXIT_SERVER_ERROR
    return EXIT_AUTH_FAILURE


def _result_record(account: Account, result: FlowResult) -> dict[str, Any]:
    return {
        "account": account.name,
        "result": result.result.value,
        "user": result.user,
        "access_token": result.access_token,
        "refresh_token": result.refresh_token,
    }


def _session(account: Account, settings: Settings, transport: Any, open_browser: bool) -> Any:
    from deskoauth.oauth.account import AccountBasedOAuthSession

    return AccountBasedOAuthSession(
        account,
        transport,
        client_name=settings.client_name,
        open_browser=open_browser,
    )


def _transport(settings: Settings) -> Any:
    from deskoauth.transport import HttpxTransport

    return HttpxTransport(timeout=settings.timeout, verify_ssl=settings.verify_ssl)


def _finish(account: Account, settings: Settings, result: FlowResult, remember: Optional[bool]) -> None:
    from deskoauth.auth.credential_store import CredentialStore

    if not result.ok:
        error(result.error or f"Login failed ({result.result.value})")
        if result.result is OAuthResult.NOT_SUPPORTED:
            suggest("The server does not offer OAuth2 logins for desktop clients.")
        raise typer.Exit(code=exit_code_for(result))

    keep = settings.remember_refresh_token if remember is None else remember
    if keep and result.refresh_token:
        CredentialStore(account.name).save_refresh_token(account.server_url, result.refresh_token)

    get_output().print_record(_result_record(account, result), title="Login")


# ------------------------------------------------------------------ #
# login
# ------------------------------------------------------------------ #


async def _run_login(account: Account, settings: Settings, open_browser: bool) -> FlowResult:
    async with _transport(settings) as transport:
        async with _session(account, settings, transport, open_browser) as session:

            def _show_link(url: str) -> None:
                if open_browser:
                    info("Your browser should open. If it does not, open this link:")
                else:
                    info("Open this link in your browser to log in:")
                link(url)
                info("Waiting for the browser to return...")

            session.link_changed.connect(_show_link)
            return await session.start()


def login_command(
    account_name: Optional[str] = typer.Argument(None, help="Account name."),
    no_browser: bool = typer.Option(
        False, "--no-browser", help="Print the link instead of opening a browser."
    ),
    remember: Optional[bool] = typer.Option(
        None,
        "--remember/--forget",
        help="Keep the refresh token in the credential store.",
    ),
) -> None:
    """Log in to an account through the system browser.

    Example::

        deskoauth login work
        deskoauth --json login work --no-browser
    """
    from deskoauth.config import load_settings, resolve_account

    with reported_errors():
        settings = load_settings()
        account = resolve_account(account_name, settings)
        open_browser = settings.open_browser and not no_browser
        result = asyncio.run(_run_login(account, settings, open_browser))

    if result.ok:
        success(f"Logged in as {result.user}.")
    _finish(account, settings, result, remember)


# ------------------------------------------------------------------ #
# refresh
# ------------------------------------------------------------------ #


async def _run_refresh(account: Account, settings: Settings, refresh_token: str) -> FlowResult:
    async with _transport(settings) as transport:
        async with _session(account, settings, transport, open_browser=False) as session:
            return await session.refresh_authentication(refresh_token)


def refresh_command(
    account_name: Optional[str] = typer.Argument(None, help="Account name."),
    refresh_token: Optional[str] = typer.Option(
        None,
        "--refresh-token",
        help="Refresh token to use instead of the stored one.",
    ),
    remember: Optional[bool] = typer.Option(
        None,
        "--remember/--forget",
        help="Keep the new refresh token in the credential store.",
    ),
) -> None:
    """Obtain a new access token without opening a browser.

    Example::

        deskoauth refresh work
    """
    from deskoauth.auth.credential_store import CredentialStore
    from deskoauth.config import load_settings, resolve_account

    with reported_errors():
        settings = load_settings()
        account = resolve_account(account_name, settings)
        token = refresh_token or CredentialStore(account.name).load_refresh_token()
        if not token:
            raise ConfigError(
                f"No refresh token stored for account '{account.name}'. "
                "Log in first or pass --refresh-token."
            )
        result = asyncio.run(_run_refresh(account, settings, token))

    if result.ok:
        success("Access token refreshed.")
    _finish(account, settings, result, remember)


# ------------------------------------------------------------------ #
# link
# ------------------------------------------------------------------ #


async def _fetch_link(account: Account, settings: Settings) -> str:
    async with _transport(settings) as transport:
        async with _session(account, settings, transport, open_browser=False) as session:
            ready: asyncio.Future[str] = asyncio.get_running_loop().create_future()
            task = session.start()
            session.authorisation_link_async(ready.set_result)
            await asyncio.wait([task, ready], return_when=asyncio.FIRST_COMPLETED)
            if ready.done():
                return ready.result()

            result = task.result()
            if result.result is OAuthResult.NOT_SUPPORTED:
                raise NotSupportedError(result.error or "OAuth2 is not supported")
            raise DeskOAuthError(
                result.error or "Could not build the authorization link",
                exit_code=exit_code_for(result),
            )


def link_command(
    account_name: Optional[str] = typer.Argument(None, help="Account name."),
) -> None:
    """Print the authorization link an account's login would open.

    The link is for inspection only: its redirect listener is closed again
    once the link has been printed.
    """
    from deskoauth.config import load_settings, resolve_account

    with reported_errors():
        settings = load_settings()
        account = resolve_account(account_name, settings)
        url = asyncio.run(_fetch_link(account, settings))

    get_output().print_data(url)


# ------------------------------------------------------------------ #
# registration
# ------------------------------------------------------------------ #


@registration_app.command("show")
def registration_show(
    account_name: Optional[str] = typer.Argument(None, help="Account name."),
) -> None:
    """Show the dynamically registered client of an account."""
    from deskoauth.auth.credential_store import CredentialStore
    from deskoauth.config import resolve_account

    with reported_errors():
        account = resolve_account(account_name)
        record = CredentialStore(account.name).load_registration(account.server_url)

    if record is None:
        info(f"No client registration stored for '{account.name}'.")
        return

    get_output().print_record(
        {
            "account": account.name,
            "client_id": record.client_id,
            "client_secret": "(set)" if record.client_secret else None,
            "registered_at": record.registered_at.isoformat(),
        },
        title="Client registration",
    )


@registration_app.command("clear")
def registration_clear(
    account_name: Optional[str] = typer.Argument(None, help="Account name."),
) -> None:
    """Forget the registered client; the next login registers a new one."""
    from deskoauth.auth.credential_store import CredentialStore
    from deskoauth.config import resolve_account

    with reported_errors():
        account = resolve_account(account_name)
        removed = CredentialStore(account.name).clear_registration()

    if removed:
        success(f"Client registration for '{account.name}' cleared.")
    else:
        info(f"No client registration stored for '{account.name}'.")
