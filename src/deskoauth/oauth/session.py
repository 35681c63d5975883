"""The OAuth authorization session state machine.

:class:`OAuthSession` drives one authorization attempt through::

    Idle -> ResolvingDiscovery -> (Registering) -> AwaitingBrowserRedirect
         -> ExchangingToken -> (ResolvingIdentity) -> Finalized

and, separately, a token refresh through ``Refreshing -> Finalized``. Each
run is an :class:`asyncio.Task` returning a :class:`~deskoauth.models.FlowResult`;
progress is also published through :class:`~deskoauth.signals.Signal`
attributes so a desktop UI can react without awaiting the task.

Where variants of the flow differ (how discovery is fetched, what happens to
freshly registered client credentials) the session defers to a
:class:`SessionBackend`. :class:`DirectBackend` is the plain behaviour;
:class:`deskoauth.oauth.account.AccountBackend` adds the account-based
server check and registration persistence.

Example::

    async with HttpxTransport() as transport:
        async with OAuthSession(config, transport) as session:
            session.result.connect(on_result)
            result = await session.start()
"""

from __future__ import annotations

import abc
import asyncio
import logging
from typing import Any, Callable, Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from deskoauth.browser import BrowserOpener, open_external
from deskoauth.exceptions import (
    CallbackError,
    ConfigError,
    DeskOAuthError,
    InvalidStateError,
    NotSupportedError,
    ProtocolError,
    StateMismatchError,
)
from deskoauth.models import (
    DiscoveryDocument,
    FlowResult,
    OAuthConfig,
    OAuthResult,
    RegistrationRecord,
    SessionState,
)
from deskoauth.oauth.discovery import DiscoveryResolver, check_http_url, fallback_document
from deskoauth.oauth.identity import IdentityLookup, OcsIdentityLookup
from deskoauth.oauth.loopback import LoopbackCallbackServer
from deskoauth.oauth.registration import DynamicRegistrationClient
from deskoauth.oauth.token_client import TokenExchangeClient
from deskoauth.oauth.tokens import RandomTokenGenerator, generate_pkce, generate_state
from deskoauth.signals import CancellationToken, Signal
from deskoauth.transport import HttpTransport

logger = logging.getLogger(__name__)

LinkCallback = Callable[[str], Any]


def build_authorisation_link(
    authorization_endpoint: str,
    *,
    client_id: str,
    redirect_uri: str,
    state: str,
    code_challenge: str,
    scopes: Optional[list[str]] = None,
    login_hint: Optional[str] = None,
) -> str:
    """Return the authorization URL the user's browser is sent to.

    Query parameters already present on *authorization_endpoint* are kept.

    Raises:
        ProtocolError: If *authorization_endpoint* is not an http(s) URL.
    """
    check_http_url(authorization_endpoint, "Authorization endpoint")
    parts = urlsplit(authorization_endpoint)
    query = parse_qsl(parts.query, keep_blank_values=True)
    query.extend(
        [
            ("response_type", "code"),
            ("client_id", client_id),
            ("redirect_uri", redirect_uri),
        ]
    )
    if scopes:
        query.append(("scope", " ".join(scopes)))
    query.extend(
        [
            ("state", state),
            ("code_challenge", code_challenge),
            ("code_challenge_method", "S256"),
        ]
    )
    if login_hint:
        query.append(("login_hint", login_hint))
    query.append(("prompt", "select_account consent"))
    return urlunsplit(parts._replace(query=urlencode(query)))


class SessionBackend(abc.ABC):
    """Variant hooks consulted by :class:`OAuthSession`."""

    @abc.abstractmethod
    async def fetch_discovery(
        self, resolver: DiscoveryResolver, server_url: str
    ) -> DiscoveryDocument:
        """Return the endpoints for *server_url*, normally via *resolver*."""

    @abc.abstractmethod
    async def on_registration_received(self, record: RegistrationRecord) -> None:
        """Called once when dynamic registration produced new client credentials."""


class DirectBackend(SessionBackend):
    """Plain discovery; registration data is left to the caller."""

    async def fetch_discovery(
        self, resolver: DiscoveryResolver, server_url: str
    ) -> DiscoveryDocument:
        return await resolver.resolve(server_url)

    async def on_registration_received(self, record: RegistrationRecord) -> None:
        logger.debug("Registration for client %s not persisted", record.client_id)


class OAuthSession:
    """One authorization attempt (plus refreshes) against one server.

    Args:
        config: Immutable session configuration.
        transport: HTTP transport shared by all protocol steps.
        browser: Callable opening a URL in the system browser.
        identity_lookup: Resolves the user id when the token response lacks
            one. Defaults to :class:`OcsIdentityLookup` for the configured
            server.
        generator: Random source for PKCE and CSRF state.
        backend: Variant hooks. Defaults to :class:`DirectBackend`.
        open_browser: Open the browser automatically when :meth:`start` is
            called.
        loopback_factory: Builds the loopback listener for each attempt.

    Attributes:
        result: Emitted once with the :class:`FlowResult` of an attempt.
        link_changed: Emitted with the authorization link once it is known.
        discovery_finished: Emitted with the :class:`DiscoveryDocument`.
        refresh_finished: Emitted with ``(access_token, refresh_token)``.
        refresh_error: Emitted with ``(status_code, message)``.
        state_changed: Emitted with every new :class:`SessionState`.
    """

    def __init__(
        self,
        config: OAuthConfig,
        transport: HttpTransport,
        *,
        browser: BrowserOpener = open_external,
        identity_lookup: Optional[IdentityLookup] = None,
        generator: Optional[RandomTokenGenerator] = None,
        backend: Optional[SessionBackend] = None,
        open_browser: bool = True,
        loopback_factory: Callable[[], LoopbackCallbackServer] = LoopbackCallbackServer,
    ) -> None:
        self.config = config
        self._transport = transport
        self._browser = browser
        self._identity = identity_lookup or OcsIdentityLookup(transport, config.server_url)
        self._generator = generator or RandomTokenGenerator()
        self._backend = backend or DirectBackend()
        self._auto_open = open_browser
        self._loopback_factory = loopback_factory

        self._resolver = DiscoveryResolver(transport)
        self._token_client = TokenExchangeClient(transport)
        self._cancel = CancellationToken()

        self._state = SessionState.IDLE
        self._task: Optional[asyncio.Task[FlowResult]] = None
        self._closed = False
        self._link: Optional[str] = None
        self._link_waiters: list[LinkCallback] = []
        self._registration: Optional[RegistrationRecord] = None

        self.result = Signal("result")
        self.link_changed = Signal("link_changed")
        self.discovery_finished = Signal("discovery_finished")
        self.refresh_finished = Signal("refresh_finished")
        self.refresh_error = Signal("refresh_error")
        self.state_changed = Signal("state_changed")

        self._resolver.finished.connect(
            lambda document: self._emit(self.discovery_finished, document)
        )

    # ------------------------------------------------------------------ #
    # Async context manager
    # ------------------------------------------------------------------ #

    async def __aenter__(self) -> OAuthSession:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.aclose()

    # ------------------------------------------------------------------ #
    # Properties
    # ------------------------------------------------------------------ #

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def discovery_document(self) -> Optional[DiscoveryDocument]:
        return self._resolver.document

    @property
    def registration(self) -> Optional[RegistrationRecord]:
        """Client credentials obtained by dynamic registration in this session."""
        return self._registration

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #

    def start(self) -> asyncio.Task[FlowResult]:
        """Begin the authorization attempt.

        Must be called from a running event loop. The returned task resolves
        to the same :class:`FlowResult` that :attr:`result` carries.

        Raises:
            InvalidStateError: If the session is not idle or was closed.
        """
        self._ensure_usable()
        if self._state is not SessionState.IDLE:
            raise InvalidStateError(
                f"Cannot start authorization from state {self._state.value}"
            )
        loop = asyncio.get_running_loop()
        self._task = loop.create_task(self._run_authorization())
        if self._auto_open:
            self.open_browser()
        return self._task

    def refresh_authentication(self, refresh_token: str) -> asyncio.Task[FlowResult]:
        """Exchange *refresh_token* for a new access token.

        Performs no discovery, browser or listener activity. The token
        endpoint of an already resolved discovery document is used when
        available, otherwise the fixed fallback path.

        Raises:
            InvalidStateError: If another attempt is in flight, the session
                was closed, or no client id is known.
        """
        self._ensure_usable()
        if self._state not in (SessionState.IDLE, SessionState.FINALIZED):
            raise InvalidStateError(
                f"Cannot refresh from state {self._state.value}"
            )
        client_id, client_secret = self._client_credentials()
        if not client_id:
            raise InvalidStateError("Cannot refresh without a client id")
        loop = asyncio.get_running_loop()
        self._task = loop.create_task(
            self._run_refresh(refresh_token, client_id, client_secret)
        )
        return self._task

    def authorisation_link(self) -> Optional[str]:
        """Return the authorization link, or ``None`` while it is not known yet."""
        return self._link

    def authorisation_link_async(self, callback: LinkCallback) -> None:
        """Call *callback* with the link once, as soon as it is available.

        If the link is already known the callback runs on the next loop
        iteration. The callback fires only when a link is produced: it is
        dropped if the attempt finalizes without one, and nothing runs once
        the session has been closed.
        """
        if self._closed:
            return
        if self._link is not None:
            self._cancel.call_soon(callback, self._link)
        else:
            self._link_waiters.append(callback)

    def open_browser(self) -> None:
        """Open the authorization link in the system browser when it is ready."""
        self.authorisation_link_async(self._launch_browser)

    def close(self) -> None:
        """Destroy the session: cancel in-flight work and silence all signals.

        The listener of a cancelled attempt is released as soon as the loop
        runs the task's cleanup; use :meth:`aclose` to wait for that.
        """
        if self._closed:
            return
        self._closed = True
        self._cancel.cancel()
        self._link_waiters.clear()
        if self._task is not None and not self._task.done():
            logger.debug("Cancelling in-flight %s", self._state.value)
            self._task.cancel()

    async def aclose(self) -> None:
        """Close the session and wait until the in-flight task has unwound."""
        self.close()
        if self._task is not None:
            await asyncio.wait([self._task])

    # ------------------------------------------------------------------ #
    # Flow
    # ------------------------------------------------------------------ #

    async def _run_authorization(self) -> FlowResult:
        try:
            result = await self._authorize()
        except NotSupportedError as exc:
            logger.warning("Server does not support OAuth2: %s", exc)
            result = FlowResult(
                result=OAuthResult.NOT_SUPPORTED,
                error=str(exc),
                status_code=exc.status_code,
            )
        except DeskOAuthError as exc:
            logger.error("Authorization failed: %s", exc)
            result = FlowResult(
                result=OAuthResult.ERROR,
                error=str(exc),
                status_code=getattr(exc, "status_code", None),
            )
        self._link_waiters.clear()
        self._set_state(SessionState.FINALIZED)
        self._emit(self.result, result)
        return result

    async def _authorize(self) -> FlowResult:
        pkce = generate_pkce(self._generator)
        csrf_state = generate_state(self._generator)

        async with self._loopback_factory() as listener:
            redirect_uri = listener.redirect_uri

            self._set_state(SessionState.RESOLVING_DISCOVERY)
            document = await self._backend.fetch_discovery(
                self._resolver, self.config.server_url
            )
            client_id, client_secret = await self._ensure_client(document, redirect_uri)

            self._set_state(SessionState.AWAITING_BROWSER_REDIRECT)
            self._publish_link(
                build_authorisation_link(
                    document.authorization_endpoint,
                    client_id=client_id,
                    redirect_uri=redirect_uri,
                    state=csrf_state,
                    code_challenge=pkce.challenge,
                    scopes=self.config.scopes,
                    login_hint=self.config.dav_user,
                )
            )
            callback = await listener.wait_for_callback()

        if callback.is_error or not callback.code:
            reason = callback.error_description or callback.error or "no code"
            raise CallbackError(f"Authorization was not granted: {reason}", error=callback.error)
        if callback.state != csrf_state:
            raise StateMismatchError("state mismatch")

        self._set_state(SessionState.EXCHANGING_TOKEN)
        tokens = await self._token_client.exchange_code(
            document.token_endpoint,
            code=callback.code,
            verifier=pkce.verifier,
            redirect_uri=redirect_uri,
            client_id=client_id,
            client_secret=client_secret,
        )

        user = tokens.user_id
        if not user:
            self._set_state(SessionState.RESOLVING_IDENTITY)
            user = await self._identity.lookup_user(tokens.access_token)

        expected = self.config.dav_user
        if expected and user.lower() != expected.lower():
            raise ProtocolError(
                f"Logged in as a different user: expected '{expected}', got '{user}'"
            )

        logger.info("Logged in as %s", user)
        return FlowResult(
            result=OAuthResult.LOGGED_IN,
            user=user,
            access_token=tokens.access_token,
            refresh_token=tokens.refresh_token,
        )

    async def _ensure_client(
        self, document: DiscoveryDocument, redirect_uri: str
    ) -> tuple[str, Optional[str]]:
        client_id, client_secret = self._client_credentials()
        if client_id:
            return client_id, client_secret
        if document.registration_endpoint is None:
            raise ConfigError(
                "No client id configured and the server offers no dynamic client registration"
            )

        self._set_state(SessionState.REGISTERING)
        registrar = DynamicRegistrationClient(
            self._transport, self.config.client_name, self.config.scopes
        )
        record = await registrar.register(document.registration_endpoint, redirect_uri)
        self._registration = record
        await self._backend.on_registration_received(record)
        return record.client_id, record.client_secret

    async def _run_refresh(
        self, refresh_token: str, client_id: str, client_secret: Optional[str]
    ) -> FlowResult:
        self._set_state(SessionState.REFRESHING)
        document = self._resolver.document or fallback_document(self.config.server_url)
        try:
            tokens = await self._token_client.refresh(
                document.token_endpoint,
                refresh_token=refresh_token,
                client_id=client_id,
                client_secret=client_secret,
            )
        except DeskOAuthError as exc:
            status_code = getattr(exc, "status_code", None)
            logger.error("Token refresh failed: %s", exc)
            self._set_state(SessionState.FINALIZED)
            self._emit(self.refresh_error, status_code, str(exc))
            return FlowResult(
                result=(
                    OAuthResult.NOT_SUPPORTED
                    if isinstance(exc, NotSupportedError)
                    else OAuthResult.ERROR
                ),
                error=str(exc),
                status_code=status_code,
            )

        # Servers that do not rotate refresh tokens omit the field.
        new_refresh_token = tokens.refresh_token or refresh_token
        logger.info("Access token refreshed")
        self._set_state(SessionState.FINALIZED)
        self._emit(self.refresh_finished, tokens.access_token, new_refresh_token)
        return FlowResult(
            result=OAuthResult.LOGGED_IN,
            user=tokens.user_id,
            access_token=tokens.access_token,
            refresh_token=new_refresh_token,
        )

    # ------------------------------------------------------------------ #
    # Private helpers
    # ------------------------------------------------------------------ #

    def _ensure_usable(self) -> None:
        if self._closed:
            raise InvalidStateError("Session is closed")
        if self._task is not None and not self._task.done():
            raise InvalidStateError(
                f"Another operation is in flight ({self._state.value})"
            )

    def _client_credentials(self) -> tuple[Optional[str], Optional[str]]:
        client_id, client_secret = self.config.resolved_client()
        if not client_id and self._registration is not None:
            return self._registration.client_id, self._registration.client_secret
        return client_id, client_secret

    def _set_state(self, state: SessionState) -> None:
        self._state = state
        logger.debug("Session state -> %s", state.value)
        self._emit(self.state_changed, state)

    def _emit(self, signal: Signal, *args: Any) -> None:
        if not self._closed:
            signal.emit(*args)

    def _publish_link(self, link: str) -> None:
        self._link = link
        self._emit(self.link_changed, link)
        waiters, self._link_waiters = self._link_waiters, []
        for callback in waiters:
            self._cancel.call_soon(callback, link)

    def _launch_browser(self, link: str) -> None:
        if self._state is not SessionState.AWAITING_BROWSER_REDIRECT:
            logger.debug("Not opening browser from state %s", self._state.value)
            return
        logger.info("Opening browser for authorization")
        try:
            self._browser(link)
        except Exception as exc:
            logger.warning("Could not open browser: %s", exc)
