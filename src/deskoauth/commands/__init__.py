"""Built-in CLI sub-commands for deskoauth.

* :mod:`~deskoauth.commands.account` -- ``deskoauth account add|list|show|remove``.
* :mod:`~deskoauth.commands.auth` -- ``login``, ``refresh``, ``link`` and
  ``registration show|clear``.

Command modules report :class:`~deskoauth.exceptions.DeskOAuthError` through
:func:`~deskoauth.output.error` and exit with the error's ``exit_code``.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator

import typer

from deskoauth.exceptions import DeskOAuthError
from deskoauth.output import error


@contextmanager
def reported_errors() -> Iterator[None]:
    """Turn :class:`DeskOAuthError` into an error message and exit code."""
    try:
        yield
    except DeskOAuthError as exc:
        error(str(exc))
        raise typer.Exit(code=exc.exit_code) from None
