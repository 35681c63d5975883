"""Account commands -- manage the servers deskoauth logs in to.

Typical workflow::

    deskoauth account add work --server https://cloud.example.com --user alice
    deskoauth account list
    deskoauth login work
"""

from __future__ import annotations

from typing import Optional

import typer

from deskoauth.commands import reported_errors
from deskoauth.output import get_output, info, success, suggest

account_app = typer.Typer(no_args_is_help=True)


@account_app.command("add")
def account_add(
    name: str = typer.Argument(help="Account name."),
    server: str = typer.Option(..., "--server", "-s", help="Server base URL."),
    user: Optional[str] = typer.Option(
        None, "--user", "-u", help="Expected user name (login hint)."
    ),
    client_id: Optional[str] = typer.Option(
        None, "--client-id", help="Preconfigured OAuth client id."
    ),
    client_secret_source: Optional[str] = typer.Option(
        None,
        "--client-secret-source",
        help="Client secret source: env:VAR, file:/path, prompt.",
    ),
    scopes: Optional[list[str]] = typer.Option(
        None, "--scope", help="Scope to request (repeatable)."
    ),
    make_default: bool = typer.Option(
        False, "--default", help="Make this the default account."
    ),
    force: bool = typer.Option(
        False, "--force", "-f", help="Overwrite an existing account."
    ),
) -> None:
    """Add a server account.

    Without ``--client-id`` the client registers itself dynamically on first
    login, if the server supports it.

    Example::

        deskoauth account add work --server https://cloud.example.com --user alice
    """
    from deskoauth.config import (
        account_exists,
        load_settings,
        save_account,
        save_settings,
    )
    from deskoauth.models import Account

    with reported_errors():
        if account_exists(name) and not force:
            get_output().error(f"Account '{name}' already exists. Use --force to overwrite.")
            raise typer.Exit(code=2)

        if not server.startswith(("https://", "http://")):
            get_output().error("Server URL must start with https:// or http://")
            raise typer.Exit(code=2)

        account = Account(
            name=name,
            server_url=server.rstrip("/"),
            dav_user=user,
            client_id=client_id,
            client_secret_source=client_secret_source,
            scopes=scopes or [],
        )
        save_account(account)

        if make_default:
            settings = load_settings()
            settings.default_account = name
            save_settings(settings)

    success(f"Account '{name}' saved.")
    suggest(f"Log in: deskoauth login {name}")


@account_app.command("list")
def account_list() -> None:
    """List configured accounts."""
    from deskoauth.config import list_accounts, load_account, load_settings

    with reported_errors():
        names = list_accounts()
        if not names:
            info("No accounts configured.")
            suggest("Add one: deskoauth account add NAME --server URL")
            return

        default = load_settings().default_account
        rows: list[list[str]] = []
        for name in names:
            account = load_account(name)
            rows.append(
                [
                    name,
                    account.server_url,
                    account.dav_user or "",
                    "yes" if name == default else "",
                ]
            )

    get_output().print_table(["Name", "Server", "User", "Default"], rows, title="Accounts")


@account_app.command("show")
def account_show(
    name: Optional[str] = typer.Argument(None, help="Account name."),
) -> None:
    """Show one account, including whether client registration data is stored."""
    from deskoauth.auth.credential_store import CredentialStore
    from deskoauth.config import resolve_account

    with reported_errors():
        account = resolve_account(name)
        store = CredentialStore(account.name)
        record = {
            "name": account.name,
            "server_url": account.server_url,
            "dav_user": account.dav_user,
            "client_id": account.client_id,
            "client_secret_source": account.client_secret_source,
            "scopes": " ".join(account.scopes) or None,
            "registered_client": bool(store.load_registration(account.server_url)),
            "refresh_token_stored": store.load_refresh_token() is not None,
        }

    get_output().print_record(record, title=f"Account {account.name}")


@account_app.command("remove")
def account_remove(
    name: str = typer.Argument(help="Account name."),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation."),
) -> None:
    """Remove an account and everything stored for it."""
    from deskoauth.auth.credential_store import CredentialStore
    from deskoauth.config import delete_account, load_settings, save_settings

    if not yes and not typer.confirm(f"Remove account '{name}' and its stored credentials?"):
        info("Cancelled.")
        raise typer.Exit()

    with reported_errors():
        delete_account(name)
        CredentialStore(name).clear()
        settings = load_settings()
        if settings.default_account == name:
            settings.default_account = None
            save_settings(settings)

    success(f"Account '{name}' removed.")
