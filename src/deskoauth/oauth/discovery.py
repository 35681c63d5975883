"""OpenID discovery with a fixed-path fallback.

This module provides :class:`DiscoveryResolver`, which fetches
``<server>/.well-known/openid-configuration`` and extracts the
``authorization_endpoint``, ``token_endpoint`` and optional
``registration_endpoint``.

Servers that only ship the classic OAuth2 app publish no discovery document.
For them -- and for any other discovery failure -- the resolver substitutes
the well-known app paths ``apps/oauth2/authorize`` and
``apps/oauth2/api/v1/token`` under the server URL. The fallback is applied
once and is final for the attempt; discovery problems are logged, never
raised.

See Also:
    :class:`deskoauth.oauth.session.OAuthSession` which waits on
    :attr:`DiscoveryResolver.finished` before building the authorization link.
"""

from __future__ import annotations

import logging
from typing import Any, Optional
from urllib.parse import urlsplit

from deskoauth.exceptions import DeskOAuthError, ProtocolError
from deskoauth.models import DiscoveryDocument
from deskoauth.signals import Signal
from deskoauth.transport import HttpTransport

logger = logging.getLogger(__name__)

WELL_KNOWN_PATH = ".well-known/openid-configuration"
FALLBACK_AUTHORIZATION_PATH = "apps/oauth2/authorize"
FALLBACK_TOKEN_PATH = "apps/oauth2/api/v1/token"


def server_path(server_url: str, path: str) -> str:
    """Join *path* onto *server_url*, keeping any sub-directory the server lives in."""
    return f"{server_url.rstrip('/')}/{path.lstrip('/')}"


def fallback_document(server_url: str) -> DiscoveryDocument:
    """Build the deterministic document used when discovery is unavailable."""
    return DiscoveryDocument(
        authorization_endpoint=server_path(server_url, FALLBACK_AUTHORIZATION_PATH),
        token_endpoint=server_path(server_url, FALLBACK_TOKEN_PATH),
        registration_endpoint=None,
        is_fallback=True,
    )


def check_http_url(url: str, what: str) -> str:
    """Return *url* if it is an absolute http(s) URL.

    Raises:
        ProtocolError: If *url* does not parse, or has no http(s) scheme or
            no host. *what* names the URL in the message.
    """
    try:
        parts = urlsplit(url)
        parts.port
    except ValueError as exc:
        raise ProtocolError(f"{what} is not a valid URL: {exc}") from exc
    if parts.scheme not in ("http", "https") or not parts.hostname:
        raise ProtocolError(f"{what} is not an http(s) URL: {url}")
    return url


def _endpoint_url(key: str, value: Any) -> str:
    if not isinstance(value, str) or not value:
        raise ProtocolError(f"Discovery document missing '{key}'")
    return check_http_url(value, f"Discovery '{key}'")


def parse_discovery_document(doc: dict[str, Any]) -> DiscoveryDocument:
    """Extract endpoint URLs from a parsed discovery document.

    Raises:
        ProtocolError: If ``authorization_endpoint`` or ``token_endpoint``
            is missing, or if any advertised endpoint is not an absolute
            http(s) URL.
    """
    registration = doc.get("registration_endpoint")
    return DiscoveryDocument(
        authorization_endpoint=_endpoint_url(
            "authorization_endpoint", doc.get("authorization_endpoint")
        ),
        token_endpoint=_endpoint_url("token_endpoint", doc.get("token_endpoint")),
        registration_endpoint=(
            _endpoint_url("registration_endpoint", registration)
            if isinstance(registration, str) and registration
            else None
        ),
    )


class DiscoveryResolver:
    """Resolve a server's OAuth endpoints once.

    After :meth:`resolve` completes, :attr:`document` holds the result and
    :attr:`finished` has been emitted with it.

    Args:
        transport: HTTP transport used for the discovery GET.
    """

    def __init__(self, transport: HttpTransport) -> None:
        self._transport = transport
        self._document: Optional[DiscoveryDocument] = None
        self.finished = Signal("discovery_finished")

    @property
    def document(self) -> Optional[DiscoveryDocument]:
        return self._document

    @property
    def is_finished(self) -> bool:
        return self._document is not None

    async def resolve(self, server_url: str) -> DiscoveryDocument:
        """Fetch the discovery document, falling back to fixed paths on any failure.

        Args:
            server_url: Base URL of the server.

        Returns:
            The discovered document, or the fallback document.
        """
        if self._document is not None:
            return self._document

        url = server_path(server_url, WELL_KNOWN_PATH)
        try:
            document = await self._fetch(url)
        except DeskOAuthError as exc:
            logger.warning(
                "Discovery at %s unavailable (%s), using fixed OAuth2 app paths",
                url,
                exc,
            )
            document = fallback_document(server_url)
        else:
            logger.info("Discovered OAuth endpoints at %s", url)

        self._document = document
        self.finished.emit(document)
        return document

    async def _fetch(self, url: str) -> DiscoveryDocument:
        reply = await self._transport.request(
            "GET", url, headers={"Accept": "application/json"}
        )
        if not reply.ok:
            raise ProtocolError(f"Discovery returned HTTP {reply.status_code}")
        return parse_discovery_document(reply.json_object())
