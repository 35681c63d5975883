"""Tests for the one-shot loopback listener, using real sockets."""

from __future__ import annotations

import asyncio
from urllib.parse import urlsplit

import pytest

from deskoauth.exceptions import CallbackError, InvalidStateError
from deskoauth.oauth.loopback import (
    LoopbackCallbackServer,
    parse_callback_target,
    parse_request_line,
    render_page,
)


def _port(server: LoopbackCallbackServer) -> int:
    port = urlsplit(server.redirect_uri).port
    assert port is not None
    return port


async def _raw_request(port: int, data: bytes) -> bytes:
    reader, writer = await asyncio.open_connection("127.0.0.1", port)
    writer.write(data)
    await writer.drain()
    try:
        return await reader.read()
    finally:
        writer.close()


class TestParsing:
    def test_request_line(self) -> None:
        assert parse_request_line(b"GET /?code=x HTTP/1.1\r\n") == "/?code=x"

    def test_rejects_post(self) -> None:
        with pytest.raises(CallbackError, match="POST"):
            parse_request_line(b"POST / HTTP/1.1\r\n")

    def test_rejects_garbage(self) -> None:
        with pytest.raises(CallbackError):
            parse_request_line(b"hello\r\n")

    def test_target_with_code(self) -> None:
        result = parse_callback_target("/?code=ABC&state=xyz")
        assert result.code == "ABC"
        assert result.state == "xyz"
        assert not result.is_error

    def test_target_with_error(self) -> None:
        result = parse_callback_target("/?error=access_denied&error_description=No+way")
        assert result.is_error
        assert result.error_description == "No way"

    def test_target_without_code_or_error(self) -> None:
        with pytest.raises(CallbackError):
            parse_callback_target("/favicon.ico")

    def test_page_is_escaped(self) -> None:
        assert b"&lt;script&gt;" in render_page("t", "<script>")


class TestLoopbackCallbackServer:
    @pytest.mark.asyncio
    async def test_redirect_uri_uses_localhost_and_ephemeral_port(self) -> None:
        async with LoopbackCallbackServer() as server:
            assert server.redirect_uri.startswith("http://localhost:")
            assert _port(server) > 0
            assert server.is_listening

    @pytest.mark.asyncio
    async def test_receives_code(self, redirect_sender) -> None:
        async with LoopbackCallbackServer() as server:
            browser = asyncio.create_task(
                redirect_sender(server.redirect_uri, {"code": "ABC", "state": "s1"})
            )
            result = await server.wait_for_callback()
            page = await browser

        assert result.code == "ABC"
        assert result.state == "s1"
        assert page.startswith(b"HTTP/1.1 200 OK")
        assert b"Connection: close" in page
        assert b"Login successful" in page

    @pytest.mark.asyncio
    async def test_error_redirect_is_returned(self, redirect_sender) -> None:
        async with LoopbackCallbackServer() as server:
            browser = asyncio.create_task(
                redirect_sender(server.redirect_uri, {"error": "access_denied"})
            )
            result = await server.wait_for_callback()
            page = await browser

        assert result.error == "access_denied"
        assert b"Login failed" in page

    @pytest.mark.asyncio
    async def test_malformed_request_raises(self) -> None:
        async with LoopbackCallbackServer() as server:
            browser = asyncio.create_task(
                _raw_request(_port(server), b"GET /favicon.ico HTTP/1.1\r\n\r\n")
            )
            with pytest.raises(CallbackError):
                await server.wait_for_callback()
            page = await browser

        assert page.startswith(b"HTTP/1.1 400")

    @pytest.mark.asyncio
    async def test_pre_connect_is_ignored(self, redirect_sender) -> None:
        async with LoopbackCallbackServer() as server:
            _, idle = await asyncio.open_connection("127.0.0.1", _port(server))
            idle.close()
            await idle.wait_closed()

            browser = asyncio.create_task(
                redirect_sender(server.redirect_uri, {"code": "ABC", "state": "s"})
            )
            result = await server.wait_for_callback()
            await browser

        assert result.code == "ABC"

    @pytest.mark.asyncio
    async def test_stops_listening_after_first_request(self, redirect_sender) -> None:
        async with LoopbackCallbackServer() as server:
            port = _port(server)
            await redirect_sender(server.redirect_uri, {"code": "ABC", "state": "s"})
            await server.wait_for_callback()
            assert not server.is_listening

            with pytest.raises(OSError):
                await asyncio.open_connection("127.0.0.1", port)

    @pytest.mark.asyncio
    async def test_concurrent_second_request_gets_503(self, redirect_sender) -> None:
        async with LoopbackCallbackServer() as server:
            port = _port(server)
            second_reader, second_writer = await asyncio.open_connection("127.0.0.1", port)

            await redirect_sender(server.redirect_uri, {"code": "FIRST", "state": "s"})
            second_writer.write(b"GET /?code=SECOND&state=s HTTP/1.1\r\n\r\n")
            await second_writer.drain()
            reply = await second_reader.read()
            second_writer.close()

            result = await server.wait_for_callback()

        assert result.code == "FIRST"
        assert reply.startswith(b"HTTP/1.1 503")

    @pytest.mark.asyncio
    async def test_close_releases_port(self) -> None:
        server = LoopbackCallbackServer()
        await server.start()
        port = _port(server)

        await server.close()
        await server.close()

        assert not server.is_listening
        with pytest.raises(OSError):
            await asyncio.open_connection("127.0.0.1", port)

    @pytest.mark.asyncio
    async def test_close_cancels_waiter(self) -> None:
        server = LoopbackCallbackServer()
        await server.start()
        waiter = asyncio.create_task(server.wait_for_callback())
        await asyncio.sleep(0)

        await server.close()

        with pytest.raises(asyncio.CancelledError):
            await waiter

    @pytest.mark.asyncio
    async def test_cannot_restart(self) -> None:
        async with LoopbackCallbackServer() as server:
            with pytest.raises(InvalidStateError):
                await server.start()

    def test_redirect_uri_before_start(self) -> None:
        with pytest.raises(InvalidStateError):
            LoopbackCallbackServer().redirect_uri
