"""Canonical Pydantic models shared across all deskoauth modules.

This is the single source of truth for data shapes in the project. Every other
module imports from here rather than defining its own models. The models fall
into two groups:

**Protocol models** -- produced and consumed by the OAuth core:
    :class:`OAuthConfig`, :class:`DiscoveryDocument`, :class:`PkceMaterial`,
    :class:`CallbackResult`, :class:`TokenSet`, :class:`RegistrationRecord`,
    :class:`OAuthResult`, :class:`FlowResult`, and :class:`SessionState`.

**Configuration models** -- serialised as JSON in the user's config directory:
    :class:`Account` and :class:`Settings`.

All models use Pydantic v2. Protocol models that must not change during a
session are frozen.
"""

from __future__ import annotations

import enum
from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

DEFAULT_CLIENT_NAME = "deskoauth desktop client"


# --- Protocol models ---


class RegistrationRecord(BaseModel):
    """Client credentials obtained through dynamic client registration.

    Produced at most once per (server, account) pair. The core hands the
    record to the session backend's ``on_registration_received`` hook and
    consumes a previously stored record through :attr:`OAuthConfig.registration`,
    but never persists it itself.

    Attributes:
        client_id: Server-issued client identifier.
        client_secret: Server-issued secret, ``None`` for public clients.
        metadata: The raw registration response.
        registered_at: When the record was obtained (UTC).
    """

    client_id: str
    client_secret: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    registered_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )


class OAuthConfig(BaseModel):
    """Immutable per-session configuration.

    Example::

        OAuthConfig(
            server_url="https://cloud.example.com",
            dav_user="alice",
            scopes=["openid"],
        )
    """

    model_config = ConfigDict(frozen=True)

    server_url: str = Field(description="Base URL of the server")
    dav_user: Optional[str] = Field(
        default=None,
        description="Expected user name; sent as login hint and checked after login",
    )
    client_id: Optional[str] = Field(
        default=None, description="Preconfigured client id"
    )
    client_secret: Optional[str] = Field(
        default=None, description="Preconfigured client secret"
    )
    registration: Optional[RegistrationRecord] = Field(
        default=None,
        description="Dynamic registration data supplied by the caller",
    )
    scopes: list[str] = Field(default_factory=list)
    client_name: str = Field(
        default=DEFAULT_CLIENT_NAME,
        description="Application name announced during dynamic registration",
    )

    def resolved_client(self) -> tuple[Optional[str], Optional[str]]:
        """Return ``(client_id, client_secret)`` from explicit config or registration data."""
        if self.client_id:
            return self.client_id, self.client_secret
        if self.registration is not None:
            return self.registration.client_id, self.registration.client_secret
        return None, None


class DiscoveryDocument(BaseModel):
    """OAuth endpoint locations, discovered or derived from fixed fallback paths."""

    model_config = ConfigDict(frozen=True)

    authorization_endpoint: str
    token_endpoint: str
    registration_endpoint: Optional[str] = None
    is_fallback: bool = False


class PkceMaterial(BaseModel):
    """A PKCE verifier/challenge pair bound to one authorization attempt.

    The verifier is only ever sent to the token endpoint and the challenge
    only to the authorization endpoint. ``repr`` never shows the verifier.
    """

    model_config = ConfigDict(frozen=True)

    verifier: str = Field(min_length=43, max_length=128, repr=False)
    challenge: str = Field(min_length=43)
    method: str = "S256"


class CallbackResult(BaseModel):
    """Query parameters extracted from the loopback redirect."""

    code: Optional[str] = None
    state: Optional[str] = None
    error: Optional[str] = None
    error_description: Optional[str] = None

    @property
    def is_error(self) -> bool:
        return self.error is not None


class TokenSet(BaseModel):
    """Tokens returned by the token endpoint.

    An absent ``refresh_token`` means the previous refresh token remains
    valid; callers apply that policy, the model only reports what the server
    sent.
    """

    access_token: str = Field(repr=False)
    refresh_token: Optional[str] = Field(default=None, repr=False)
    user_id: Optional[str] = None
    expires_in: Optional[int] = None
    token_type: Optional[str] = None


class OAuthResult(str, enum.Enum):
    """Final outcome of an authorization attempt."""

    NOT_SUPPORTED = "NotSupported"
    LOGGED_IN = "LoggedIn"
    ERROR = "Error"


class FlowResult(BaseModel):
    """Payload of the session's ``result`` notification.

    ``error`` carries a human-readable reason and ``status_code`` the HTTP
    status of the failing reply (``None`` for network errors and protocol
    errors).
    """

    result: OAuthResult
    user: Optional[str] = None
    access_token: Optional[str] = Field(default=None, repr=False)
    refresh_token: Optional[str] = Field(default=None, repr=False)
    error: Optional[str] = None
    status_code: Optional[int] = None

    @property
    def ok(self) -> bool:
        return self.result is OAuthResult.LOGGED_IN


class SessionState(str, enum.Enum):
    """States of :class:`~deskoauth.oauth.session.OAuthSession`."""

    IDLE = "Idle"
    RESOLVING_DISCOVERY = "ResolvingDiscovery"
    REGISTERING = "Registering"
    AWAITING_BROWSER_REDIRECT = "AwaitingBrowserRedirect"
    EXCHANGING_TOKEN = "ExchangingToken"
    RESOLVING_IDENTITY = "ResolvingIdentity"
    REFRESHING = "Refreshing"
    FINALIZED = "Finalized"


# --- Configuration models ---


class Account(BaseModel):
    """A server account stored as JSON under the ``accounts/`` config directory.

    Accounts are created with ``deskoauth account add`` and drive
    :class:`~deskoauth.oauth.account.AccountBasedOAuthSession`.

    Extra fields are preserved and accessible via ``model_extra``.
    """

    model_config = ConfigDict(extra="allow")

    name: str
    server_url: str = Field(description="Base URL of the server")
    dav_user: Optional[str] = Field(default=None, description="Expected user name")
    client_id: Optional[str] = None
    client_secret_source: Optional[str] = Field(
        default=None,
        description="Client secret source: env:VAR, file:/path, prompt",
    )
    scopes: list[str] = Field(default_factory=list)


class Settings(BaseModel):
    """User-wide settings persisted at ``~/.config/deskoauth/settings.json``."""

    default_account: Optional[str] = None
    auto_select_single_account: bool = True
    client_name: str = DEFAULT_CLIENT_NAME
    timeout: float = Field(default=30.0, description="HTTP timeout in seconds")
    verify_ssl: bool = True
    open_browser: bool = Field(
        default=True, description="Open the system browser automatically on login"
    )
    remember_refresh_token: bool = Field(
        default=True, description="Keep the refresh token in the credential store"
    )
