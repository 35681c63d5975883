"""Typer application and CLI entry point for deskoauth.

This module wires together the top-level Typer application and registers the
built-in sub-commands (``account``, ``login``, ``refresh``, ``link``,
``registration``).

The :func:`main` function is the console-script entry point declared in
``pyproject.toml``. It installs signal handlers and invokes the Typer app.
:class:`~deskoauth.exceptions.DeskOAuthError` exits with the error's
``exit_code``; anything else is written to a crash log under the data
directory.

See Also:
    :mod:`deskoauth.config`: Settings and account resolution.
    :mod:`deskoauth.output`: Output formatting initialised in :func:`main_callback`.
"""

from __future__ import annotations

import logging
import signal
import sys
import traceback
from datetime import datetime
from typing import Any

import typer
from rich.console import Console
from rich.logging import RichHandler

from deskoauth import __version__
from deskoauth.exit_codes import EXIT_GENERIC_FAILURE

app = typer.Typer(
    name="deskoauth",
    help="Log a desktop client in to a Nextcloud/ownCloud server with OAuth2 + PKCE.",
    no_args_is_help=True,
    add_completion=False,
    rich_markup_mode="rich",
)

# ------------------------------------------------------------------ #
# Commands
# ------------------------------------------------------------------ #

from deskoauth.commands.account import account_app  # noqa: E402
from deskoauth.commands.auth import (  # noqa: E402
    link_command,
    login_command,
    refresh_command,
    registration_app,
)

app.add_typer(account_app, name="account", help="Manage server accounts.")
app.add_typer(registration_app, name="registration", help="Inspect stored client registrations.")
app.command("login")(login_command)
app.command("refresh")(refresh_command)
app.command("link")(link_command)


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"deskoauth {__version__}")
        raise typer.Exit()


def _configure_logging(verbose: bool) -> None:
    """Route library logging through Rich on stderr when ``--verbose`` is set.

    Without ``--verbose`` library logging stays silent; user-facing
    diagnostics go through :mod:`deskoauth.output`.
    """
    logger = logging.getLogger("deskoauth")
    logger.handlers.clear()
    if verbose:
        handler: logging.Handler = RichHandler(
            console=Console(stderr=True), show_path=False, rich_tracebacks=True
        )
        logger.setLevel(logging.DEBUG)
    else:
        handler = logging.NullHandler()
        logger.setLevel(logging.WARNING)
    logger.addHandler(handler)


@app.callback()
def main_callback(
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        callback=_version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
    json_output: bool = typer.Option(
        False, "--json", help="JSON output format."
    ),
    plain_output: bool = typer.Option(
        False, "--plain", help="Plain text output."
    ),
    no_color: bool = typer.Option(
        False, "--no-color", help="Disable color output."
    ),
    quiet: bool = typer.Option(
        False, "--quiet", "-q", help="Suppress non-essential output."
    ),
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Enable debug output."
    ),
) -> None:
    """Root callback executed before every sub-command.

    Initialises the global :class:`~deskoauth.output.OutputManager` and
    logging from CLI flags, and stores shared options in ``ctx.obj``.
    """
    from deskoauth.output import OutputFormat, OutputManager, set_output

    fmt = OutputFormat.AUTO
    if json_output:
        fmt = OutputFormat.JSON
    elif plain_output:
        fmt = OutputFormat.PLAIN

    set_output(OutputManager(format=fmt, no_color=no_color, quiet=quiet, verbose=verbose))
    _configure_logging(verbose)

    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose


def _setup_signal_handlers() -> None:
    """Install a SIGINT handler so Ctrl-C exits cleanly."""

    def _handler(signum: int, frame: Any) -> None:  # noqa: ANN401
        sys.stderr.write("\nCancelled.\n")
        sys.exit(130)

    signal.signal(signal.SIGINT, _handler)


def _write_crash_log(exc: Exception) -> str:
    """Write a crash traceback to disk and return the log file path."""
    from deskoauth.config import get_data_dir

    logs_dir = get_data_dir() / "logs"
    logs_dir.mkdir(parents=True, exist_ok=True)
    timestamp = datetime.now().strftime("%Y%m%d-%H%M%S")
    log_path = logs_dir / f"crash-{timestamp}.log"
    log_path.write_text(traceback.format_exc())
    return str(log_path)


def main() -> None:
    """CLI entry point invoked by the ``deskoauth`` console script.

    Unhandled :class:`~deskoauth.exceptions.DeskOAuthError` instances cause
    a clean exit with the error's ``exit_code``. All other exceptions
    produce a crash log and a generic failure exit.

    Raises:
        SystemExit: Always raised (either by Typer or explicitly).
    """
    _setup_signal_handlers()
    try:
        app(standalone_mode=True)
    except SystemExit:
        raise
    except KeyboardInterrupt:
        sys.stderr.write("\nCancelled.\n")
        sys.exit(130)
    except Exception as exc:
        from deskoauth.exceptions import DeskOAuthError
        from deskoauth.output import error

        if isinstance(exc, DeskOAuthError):
            error(str(exc))
            sys.exit(exc.exit_code)
        else:
            log_path = _write_crash_log(exc)
            error(f"Unexpected error. Debug log: {log_path}")
            sys.exit(EXIT_GENERIC_FAILURE)
