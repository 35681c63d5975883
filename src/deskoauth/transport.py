"""Asynchronous HTTP transport capability used by the OAuth core.

The protocol core never talks to httpx directly. It depends on the small
:class:`HttpTransport` interface -- "issue a request with method, headers
and body; deliver status and body, or raise a network error" -- so that a
desktop application can plug in its own network stack (proxy settings,
cookies, certificate pinning) and tests can substitute a mock transport.

:class:`HttpxTransport` is the default implementation, wrapping
:class:`httpx.AsyncClient`. Unlike an API client it performs **no** retries
and does **not** map HTTP statuses to exceptions: non-2xx replies are
returned as ordinary :class:`HttpReply` objects and each protocol component
decides what a status means. Only network-level failures (connection
refused, DNS, timeouts) raise :class:`~deskoauth.exceptions.TransportError`.

See Also:
    :class:`deskoauth.oauth.token_client.TokenExchangeClient` and
    :class:`deskoauth.oauth.discovery.DiscoveryResolver`, the main consumers.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Optional, Protocol, Union

import httpx

from deskoauth.exceptions import ProtocolError, TransportError

logger = logging.getLogger(__name__)


@dataclass
class HttpReply:
    """Status, headers and raw body of a completed HTTP exchange."""

    status_code: int
    body: bytes = b""
    headers: dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300

    @property
    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")

    def json(self) -> Any:
        """Decode the body as JSON.

        Raises:
            ProtocolError: If the body is not valid JSON.
        """
        try:
            return json.loads(self.body)
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise ProtocolError(f"Response body is not valid JSON: {exc}") from exc

    def json_object(self) -> dict[str, Any]:
        """Decode the body as a JSON object.

        Raises:
            ProtocolError: If the body is not JSON or not an object.
        """
        data = self.json()
        if not isinstance(data, dict):
            raise ProtocolError(
                f"Expected a JSON object, got {type(data).__name__}"
            )
        return data


class HttpTransport(Protocol):
    """Capability: issue one HTTP request asynchronously."""

    async def request(
        self,
        method: str,
        url: str,
        headers: Optional[dict[str, str]] = None,
        body: Union[bytes, str, None] = None,
    ) -> HttpReply:
        """Send the request and return the reply, whatever its status.

        Raises:
            TransportError: On network failure, timeout or an unusable URL.
        """
        ...


class HttpxTransport:
    """Default :class:`HttpTransport` backed by :class:`httpx.AsyncClient`.

    Can be used as an async context manager, in which case the underlying
    client is closed on exit. A pre-built client (for example one with an
    :class:`httpx.MockTransport`) can be injected; it is then owned by the
    caller and not closed.

    Args:
        timeout: Request timeout in seconds.
        verify_ssl: Verify server certificates.
        client: Optional pre-configured :class:`httpx.AsyncClient`.

    Example::

        async with HttpxTransport(timeout=10) as transport:
            reply = await transport.request("GET", "https://cloud.example/status.php")
    """

    def __init__(
        self,
        timeout: float = 30.0,
        verify_ssl: bool = True,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._timeout = timeout
        self._verify_ssl = verify_ssl
        self._client = client
        self._owns_client = client is None

    # ------------------------------------------------------------------ #
    # Async context manager
    # ------------------------------------------------------------------ #

    async def __aenter__(self) -> HttpxTransport:
        self._ensure_client()
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    # ------------------------------------------------------------------ #
    # HttpTransport
    # ------------------------------------------------------------------ #

    async def request(
        self,
        method: str,
        url: str,
        headers: Optional[dict[str, str]] = None,
        body: Union[bytes, str, None] = None,
    ) -> HttpReply:
        client = self._ensure_client()
        logger.debug("%s %s", method, url)
        try:
            response = await client.request(
                method,
                url,
                headers=headers or {},
                content=body,
            )
        except httpx.TimeoutException as exc:
            raise TransportError(f"Request to {url} timed out: {exc}") from exc
        except httpx.HTTPError as exc:
            raise TransportError(f"Request to {url} failed: {exc}") from exc
        except (httpx.InvalidURL, ValueError) as exc:
            raise TransportError(f"Invalid request URL {url}: {exc}") from exc

        logger.debug("%s %s -> %d", method, url, response.status_code)
        return HttpReply(
            status_code=response.status_code,
            body=response.content,
            headers=dict(response.headers),
        )

    # ------------------------------------------------------------------ #
    # Private helpers
    # ------------------------------------------------------------------ #

    def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self._timeout,
                verify=self._verify_ssl,
                follow_redirects=True,
            )
            self._owns_client = True
        return self._client
