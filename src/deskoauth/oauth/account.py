"""Account-based authorization session.

:class:`AccountBasedOAuthSession` is an :class:`~deskoauth.oauth.session.OAuthSession`
whose server URL, expected user and client credentials come from an
:class:`~deskoauth.models.Account`. It differs from the plain session only
through :class:`AccountBackend`:

* before discovery the account's server is checked with a
  :class:`ServerChecker` (default: :class:`StatusServerChecker`), and a failed
  check ends the attempt with ``Error``;
* client credentials obtained by dynamic registration are handed to a
  :class:`CredentialsManager` (default: :class:`StoreCredentialsManager`)
  and picked up again by the next session for the same account.
"""

from __future__ import annotations

import logging
from typing import Any, Optional, Protocol

from deskoauth.auth.credential_store import CredentialStore
from deskoauth.config import resolve_credential
from deskoauth.exceptions import ProtocolError, ServerCheckError, TransportError
from deskoauth.models import Account, DiscoveryDocument, OAuthConfig, RegistrationRecord
from deskoauth.oauth.discovery import DiscoveryResolver, server_path
from deskoauth.oauth.session import OAuthSession, SessionBackend
from deskoauth.transport import HttpTransport

logger = logging.getLogger(__name__)

STATUS_PATH = "status.php"


class ServerChecker(Protocol):
    """Capability: verify an account's server is reachable and usable."""

    async def check_server_reachable(self, server_url: str) -> None:
        """Return normally if the server can be used.

        Raises:
            ServerCheckError: If it cannot.
        """
        ...


class CredentialsManager(Protocol):
    """Capability: persist dynamic registration data per account."""

    def load_registration_data(self, account: Account) -> Optional[RegistrationRecord]:
        ...

    def store_registration_data(self, account: Account, record: RegistrationRecord) -> None:
        ...


class StatusServerChecker:
    """Check ``<server>/status.php`` reports an installed instance not in maintenance.

    Args:
        transport: HTTP transport used for the GET.
    """

    def __init__(self, transport: HttpTransport) -> None:
        self._transport = transport

    async def check_server_reachable(self, server_url: str) -> None:
        url = server_path(server_url, STATUS_PATH)
        try:
            reply = await self._transport.request(
                "GET", url, headers={"Accept": "application/json"}
            )
        except TransportError as exc:
            raise ServerCheckError(f"Server {server_url} is unreachable: {exc}") from exc

        if not reply.ok:
            raise ServerCheckError(
                f"Server check at {url} returned HTTP {reply.status_code}",
                status_code=reply.status_code,
            )
        try:
            status = reply.json_object()
        except ProtocolError as exc:
            raise ServerCheckError(f"Server check at {url} returned no status: {exc}") from exc

        if status.get("installed") is not True:
            raise ServerCheckError(f"Server {server_url} is not installed")
        if status.get("maintenance") is True:
            raise ServerCheckError(f"Server {server_url} is in maintenance mode")
        logger.debug("Server %s is reachable (version %s)", server_url, status.get("versionstring"))


class StoreCredentialsManager:
    """Keep registration data in the per-account :class:`CredentialStore`."""

    def load_registration_data(self, account: Account) -> Optional[RegistrationRecord]:
        return CredentialStore(account.name).load_registration(account.server_url)

    def store_registration_data(self, account: Account, record: RegistrationRecord) -> None:
        CredentialStore(account.name).save_registration(account.server_url, record)


class AccountBackend(SessionBackend):
    """Session hooks that check the account's server and persist registrations."""

    def __init__(
        self,
        account: Account,
        server_checker: ServerChecker,
        credentials_manager: CredentialsManager,
    ) -> None:
        self.account = account
        self._checker = server_checker
        self._credentials = credentials_manager

    async def fetch_discovery(
        self, resolver: DiscoveryResolver, server_url: str
    ) -> DiscoveryDocument:
        await self._checker.check_server_reachable(server_url)
        return await resolver.resolve(server_url)

    async def on_registration_received(self, record: RegistrationRecord) -> None:
        try:
            self._credentials.store_registration_data(self.account, record)
        except OSError as exc:
            # The login itself is still valid; the next one registers again.
            logger.warning(
                "Could not store registration for account '%s': %s",
                self.account.name,
                exc,
            )
        else:
            logger.info("Stored client registration for account '%s'", self.account.name)


def account_config(
    account: Account,
    registration: Optional[RegistrationRecord] = None,
    client_secret: Optional[str] = None,
    **overrides: Any,
) -> OAuthConfig:
    """Build the session configuration for *account*.

    The account's ``client_secret_source`` is resolved unless *client_secret*
    is given. Keyword *overrides* (such as ``client_name``) are passed
    to :class:`OAuthConfig`.
    """
    if client_secret is None and account.client_id and account.client_secret_source:
        client_secret = resolve_credential(account.client_secret_source)
    return OAuthConfig(
        server_url=account.server_url,
        dav_user=account.dav_user,
        client_id=account.client_id,
        client_secret=client_secret,
        registration=registration,
        scopes=list(account.scopes),
        **overrides,
    )


class AccountBasedOAuthSession(OAuthSession):
    """An :class:`OAuthSession` for a configured :class:`Account`.

    Args:
        account: The account to authorize.
        transport: HTTP transport shared by all protocol steps.
        server_checker: Defaults to :class:`StatusServerChecker`.
        credentials_manager: Defaults to :class:`StoreCredentialsManager`.
        client_secret: Explicit client secret, overriding the account's
            ``client_secret_source``.
        client_name: Name announced during dynamic registration.
        **kwargs: Passed on to :class:`OAuthSession` (``browser``,
            ``identity_lookup``, ``open_browser`` ...).

    Raises:
        ConfigError: If the client secret source cannot be resolved.
    """

    def __init__(
        self,
        account: Account,
        transport: HttpTransport,
        *,
        server_checker: Optional[ServerChecker] = None,
        credentials_manager: Optional[CredentialsManager] = None,
        client_secret: Optional[str] = None,
        client_name: Optional[str] = None,
        **kwargs: Any,
    ) -> None:
        credentials_manager = credentials_manager or StoreCredentialsManager()
        overrides: dict[str, Any] = {}
        if client_name is not None:
            overrides["client_name"] = client_name

        config = account_config(
            account,
            registration=credentials_manager.load_registration_data(account),
            client_secret=client_secret,
            **overrides,
        )
        backend = AccountBackend(
            account,
            server_checker or StatusServerChecker(transport),
            credentials_manager,
        )
        super().__init__(config, transport, backend=backend, **kwargs)
        self.account = account
