"""One-shot loopback listener receiving the browser's authorization redirect.

:class:`LoopbackCallbackServer` binds an OS-assigned port on the loopback
interface and hands out ``http://localhost:<port>`` as the redirect URI.
The first HTTP request that arrives is parsed, answered with a small static
page telling the user to return to the application, and turned into a
:class:`~deskoauth.models.CallbackResult`. After that the listener stops
accepting; a connection that slipped in concurrently is answered with
``503`` and closed, never reprocessed.

The server is an async context manager: the listening socket is released on
every exit path, including cancellation of the surrounding task::

    async with LoopbackCallbackServer() as server:
        link = build_link(redirect_uri=server.redirect_uri)
        callback = await server.wait_for_callback()
"""

from __future__ import annotations

import asyncio
import html
import logging
from typing import Optional
from urllib.parse import parse_qs, urlsplit

from deskoauth.exceptions import CallbackError, InvalidStateError, TransportError
from deskoauth.models import CallbackResult

logger = logging.getLogger(__name__)

MAX_HEADER_LINES = 100
READ_TIMEOUT = 30.0

_PAGE = """<!DOCTYPE html>
<html>
<head><meta charset="utf-8"><title>{title}</title></head>
<body style="font-family: sans-serif; max-width: 600px; margin: 50px auto; padding: 20px;">
<h1>{title}</h1>
<p>{message}</p>
</body>
</html>
"""


def render_page(title: str, message: str) -> bytes:
    return _PAGE.format(
        title=html.escape(title), message=html.escape(message)
    ).encode("utf-8")


def parse_request_line(line: bytes) -> str:
    """Return the request target of an HTTP/1.x GET request line.

    Raises:
        CallbackError: If the line is not a well-formed GET request line.
    """
    parts = line.decode("latin-1").strip().split()
    if len(parts) != 3 or not parts[2].startswith("HTTP/"):
        raise CallbackError("Malformed HTTP request line on loopback listener")
    method, target, _version = parts
    if method != "GET":
        raise CallbackError(f"Unexpected {method} request on loopback listener")
    return target


def parse_callback_target(target: str) -> CallbackResult:
    """Extract ``code``, ``state`` and ``error`` from a redirect request target.

    Raises:
        CallbackError: If the query carries neither ``code`` nor ``error``.
    """
    params = parse_qs(urlsplit(target).query)

    def first(name: str) -> Optional[str]:
        values = params.get(name)
        return values[0] if values else None

    result = CallbackResult(
        code=first("code"),
        state=first("state"),
        error=first("error"),
        error_description=first("error_description"),
    )
    if result.error is None and not result.code:
        raise CallbackError("Redirect carried neither an authorization code nor an error")
    return result


class LoopbackCallbackServer:
    """Accept exactly one browser redirect on an ephemeral loopback port.

    Args:
        host: Interface to bind. Always a loopback address.
        redirect_host: Host name used in the advertised redirect URI.
        read_timeout: Seconds to wait for a connected client to send its
            request before the connection is dropped.
    """

    def __init__(
        self,
        host: str = "127.0.0.1",
        redirect_host: str = "localhost",
        read_timeout: float = READ_TIMEOUT,
    ) -> None:
        self._host = host
        self._redirect_host = redirect_host
        self._read_timeout = read_timeout
        self._server: Optional[asyncio.AbstractServer] = None
        self._outcome: Optional[asyncio.Future[CallbackResult]] = None
        self._redirect_uri: Optional[str] = None
        self._writers: set[asyncio.StreamWriter] = set()
        self._serviced = False
        self._closed = False

    # ------------------------------------------------------------------ #
    # Async context manager
    # ------------------------------------------------------------------ #

    async def __aenter__(self) -> LoopbackCallbackServer:
        await self.start()
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.close()

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #

    @property
    def redirect_uri(self) -> str:
        if self._redirect_uri is None:
            raise InvalidStateError("Loopback listener has not been started")
        return self._redirect_uri

    @property
    def is_listening(self) -> bool:
        return self._server is not None and self._server.is_serving()

    async def start(self) -> str:
        """Bind the listening socket and return the redirect URI.

        Raises:
            InvalidStateError: If the listener was already started or closed.
            TransportError: If the socket cannot be bound.
        """
        if self._server is not None or self._closed:
            raise InvalidStateError("Loopback listener can only be started once")

        self._outcome = asyncio.get_running_loop().create_future()
        try:
            self._server = await asyncio.start_server(
                self._handle_connection, self._host, 0
            )
        except OSError as exc:
            raise TransportError(f"Cannot listen on {self._host}: {exc}") from exc

        port = self._server.sockets[0].getsockname()[1]
        self._redirect_uri = f"http://{self._redirect_host}:{port}"
        logger.debug("Loopback listener waiting on port %d", port)
        return self._redirect_uri

    async def wait_for_callback(self) -> CallbackResult:
        """Wait, without timeout, for the browser redirect.

        Returns:
            The parsed redirect parameters. An OAuth error redirect
            (``?error=...``) is returned, not raised.

        Raises:
            CallbackError: If the request was malformed or carried neither
                a code nor an error.
        """
        if self._outcome is None:
            raise InvalidStateError("Loopback listener has not been started")
        return await self._outcome

    async def close(self) -> None:
        """Release the listening socket and any open connection. Idempotent."""
        if self._closed:
            return
        self._closed = True
        if self._outcome is not None and not self._outcome.done():
            self._outcome.cancel()
        for writer in list(self._writers):
            writer.close()
        self._stop_listening()
        if self._server is not None:
            await self._server.wait_closed()
        logger.debug("Loopback listener closed")

    # ------------------------------------------------------------------ #
    # Private helpers
    # ------------------------------------------------------------------ #

    def _stop_listening(self) -> None:
        if self._server is not None and self._server.is_serving():
            self._server.close()

    def _settle(self, result: Optional[CallbackResult], exc: Optional[Exception]) -> None:
        if self._outcome is None or self._outcome.done():
            return
        if exc is not None:
            self._outcome.set_exception(exc)
        else:
            self._outcome.set_result(result)  # type: ignore[arg-type]

    async def _handle_connection(
        self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter
    ) -> None:
        self._writers.add(writer)
        try:
            try:
                line = await asyncio.wait_for(reader.readline(), self._read_timeout)
            except (asyncio.TimeoutError, ConnectionError):
                return
            except ValueError:
                line = b"\x00"  # request line longer than the stream limit
            if not line:
                # Browsers pre-open sockets they may never use.
                return

            if self._serviced or self._closed:
                await self._respond(
                    writer,
                    "503 Service Unavailable",
                    render_page("Already handled", "This login request was already processed."),
                )
                return

            self._serviced = True
            self._stop_listening()
            try:
                target = parse_request_line(line)
                await self._drain_headers(reader)
                result = parse_callback_target(target)
            except CallbackError as exc:
                logger.error("Invalid redirect on loopback listener: %s", exc)
                await self._respond(
                    writer,
                    "400 Bad Request",
                    render_page("Login failed", str(exc)),
                )
                self._settle(None, exc)
                return

            if result.is_error:
                message = result.error_description or result.error or ""
                await self._respond(
                    writer,
                    "200 OK",
                    render_page(
                        "Login failed",
                        f"The server reported an error: {message}. "
                        "Please return to the application.",
                    ),
                )
            else:
                await self._respond(
                    writer,
                    "200 OK",
                    render_page(
                        "Login successful",
                        "You can close this window and return to the application.",
                    ),
                )
            self._settle(result, None)
        finally:
            self._writers.discard(writer)
            writer.close()
            try:
                await writer.wait_closed()
            except (ConnectionError, OSError):
                pass

    async def _drain_headers(self, reader: asyncio.StreamReader) -> None:
        for _ in range(MAX_HEADER_LINES):
            try:
                line = await asyncio.wait_for(reader.readline(), self._read_timeout)
            except (asyncio.TimeoutError, ConnectionError, ValueError) as exc:
                raise CallbackError(f"Incomplete HTTP request: {exc}") from exc
            if line in (b"\r\n", b"\n", b""):
                return
        raise CallbackError("Too many header lines in HTTP request")

    async def _respond(self, writer: asyncio.StreamWriter, status: str, body: bytes) -> None:
        head = (
            f"HTTP/1.1 {status}\r\n"
            "Content-Type: text/html; charset=utf-8\r\n"
            f"Content-Length: {len(body)}\r\n"
            "Connection: close\r\n"
            "\r\n"
        ).encode("ascii")
        try:
            writer.write(head + body)
            await writer.drain()
        except (ConnectionError, OSError) as exc:
            logger.debug("Browser went away before the response was sent: %s", exc)
