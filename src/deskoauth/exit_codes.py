"""Numeric process exit codes following `clig.dev <https://clig.dev/>`_ conventions.

Each constant maps to a specific error category and is referenced by the
corresponding :class:`~deskoauth.exceptions.DeskOAuthError` subclass.
Shell wrappers can inspect the exit code of ``deskoauth login`` to tell a
rejected login from an unreachable server without parsing stderr.

Example::

    $ deskoauth login work
    $ echo $?
    3   # EXIT_AUTH_FAILURE -- the server refused the authorization
"""

EXIT_SUCCESS = 0
"""The command completed successfully."""

EXIT_GENERIC_FAILURE = 1
"""An unclassified error occurred."""

EXIT_INVALID_USAGE = 2
"""The command was invoked with invalid arguments or in an invalid state."""

EXIT_AUTH_FAILURE = 3
"""The authorization flow failed (denied, state mismatch, bad token response)."""

EXIT_NOT_SUPPORTED = 4
"""The server does not support the OAuth2 authorization code flow."""

EXIT_SERVER_ERROR = 5
"""The remote server answered with an unexpected HTTP status."""

EXIT_CONNECTION_ERROR = 6
"""A network-level error occurred (timeout, DNS failure, connection refused)."""
