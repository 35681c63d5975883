"""Exception hierarchy for deskoauth.

All exceptions inherit from :class:`DeskOAuthError`, which carries an
``exit_code`` attribute mapped to a constant from :mod:`deskoauth.exit_codes`.
The CLI entry point in :func:`deskoauth.app.main` catches ``DeskOAuthError``
and exits with the appropriate code. Inside the protocol core the session
state machine catches the same base class and turns it into a single
``Error`` (or ``NotSupported``) result.

Subclass hierarchy::

    DeskOAuthError (exit 1)
    +-- TransportError          (exit 6)  network failure, timeout, non-2xx
    |   +-- TokenRequestError   (exit 3)
    |   +-- RegistrationError   (exit 3)
    |   +-- IdentityLookupError (exit 3)
    |   +-- ServerCheckError    (exit 6)
    +-- ProtocolError           (exit 3)  malformed or unexpected input
    |   +-- CallbackError       (exit 3)
    |   +-- StateMismatchError  (exit 3)
    |   +-- EntropyError        (exit 1)
    +-- ConfigError             (exit 2)
    |   +-- InvalidStateError   (exit 2)
    +-- NotSupportedError       (exit 4)
"""

from __future__ import annotations

from typing import Optional

from deskoauth.exit_codes import (
    EXIT_AUTH_FAILURE,
    EXIT_CONNECTION_ERROR,
    EXIT_GENERIC_FAILURE,
    EXIT_INVALID_USAGE,
    EXIT_NOT_SUPPORTED,
)


class DeskOAuthError(Exception):
    """Base exception for all deskoauth errors.

    Every subclass sets a class-level ``exit_code`` corresponding to one of
    the constants in :mod:`deskoauth.exit_codes`.

    Args:
        message: Human-readable error description.
        exit_code: Optional override for the class-level exit code.
    """

    exit_code: int = EXIT_GENERIC_FAILURE

    def __init__(self, message: str, exit_code: int | None = None):
        super().__init__(message)
        if exit_code is not None:
            self.exit_code = exit_code


class TransportError(DeskOAuthError):
    """Raised on network-level failures and unexpected HTTP statuses.

    The transport's status code is preserved so callers can tell a refused
    connection (``status_code is None``) from a server-side rejection.

    Args:
        message: Human-readable error description.
        status_code: HTTP status of the failed reply, if one was received.
    """

    exit_code = EXIT_CONNECTION_ERROR

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        exit_code: int | None = None,
    ):
        super().__init__(message, exit_code)
        self.status_code = status_code


class TokenRequestError(TransportError):
    """Raised when the token endpoint rejects a code exchange or refresh."""

    exit_code = EXIT_AUTH_FAILURE


class RegistrationError(TransportError):
    """Raised when dynamic client registration is rejected by the server."""

    exit_code = EXIT_AUTH_FAILURE


class IdentityLookupError(TransportError):
    """Raised when the user id cannot be fetched with a fresh access token."""

    exit_code = EXIT_AUTH_FAILURE


class ServerCheckError(TransportError):
    """Raised when an account's server is unreachable or not a usable instance."""


class ProtocolError(DeskOAuthError):
    """Raised for malformed discovery, callback, token or registration data."""

    exit_code = EXIT_AUTH_FAILURE


class CallbackError(ProtocolError):
    """Raised when the loopback redirect is malformed or reports an error.

    Args:
        message: Human-readable error description.
        error: The OAuth ``error`` code from the redirect, if any
            (e.g. ``"access_denied"``).
    """

    def __init__(self, message: str, error: Optional[str] = None):
        super().__init__(message)
        self.error = error


class StateMismatchError(ProtocolError):
    """Raised when the redirect's ``state`` differs from the issued CSRF state."""


class EntropyError(ProtocolError):
    """Raised when the system random source cannot supply enough bytes."""

    exit_code = EXIT_GENERIC_FAILURE


class ConfigError(DeskOAuthError):
    """Raised for configuration problems (missing accounts, invalid JSON, bad credential sources)."""

    exit_code = EXIT_INVALID_USAGE


class InvalidStateError(ConfigError):
    """Raised when a session operation is invoked from a state that forbids it."""


class NotSupportedError(DeskOAuthError):
    """Raised when the server does not offer the OAuth2 authorization code flow.

    Args:
        message: Human-readable error description.
        status_code: HTTP status that revealed the missing endpoint, if any.
    """

    exit_code = EXIT_NOT_SUPPORTED

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        exit_code: int | None = None,
    ):
        super().__init__(message, exit_code)
        self.status_code = status_code
