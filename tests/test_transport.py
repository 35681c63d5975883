"""Tests for the httpx-backed transport and HttpReply helpers."""

from __future__ import annotations

import httpx
import pytest

from deskoauth.exceptions import ProtocolError, TransportError
from deskoauth.transport import HttpReply, HttpxTransport


def _transport(handler) -> HttpxTransport:
    return HttpxTransport(client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))


class TestHttpReply:
    def test_ok_range(self) -> None:
        assert HttpReply(204).ok
        assert not HttpReply(302).ok

    def test_json_object(self) -> None:
        assert HttpReply(200, b'{"a": 1}').json_object() == {"a": 1}

    def test_json_object_rejects_list(self) -> None:
        with pytest.raises(ProtocolError, match="list"):
            HttpReply(200, b"[]").json_object()

    def test_json_rejects_garbage(self) -> None:
        with pytest.raises(ProtocolError):
            HttpReply(200, b"\xff\xfe").json()


class TestHttpxTransport:
    @pytest.mark.asyncio
    async def test_error_status_is_returned_not_raised(self) -> None:
        transport = _transport(lambda request: httpx.Response(500, text="boom"))
        reply = await transport.request("GET", "https://example.test/x")
        assert reply.status_code == 500
        assert reply.text == "boom"

    @pytest.mark.asyncio
    async def test_sends_method_headers_and_body(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200)

        await _transport(handler).request(
            "POST", "https://example.test/t", headers={"X-Test": "1"}, body="a=b"
        )
        assert seen[0].method == "POST"
        assert seen[0].headers["x-test"] == "1"
        assert seen[0].content == b"a=b"

    @pytest.mark.asyncio
    async def test_timeout_raises_transport_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("slow", request=request)

        with pytest.raises(TransportError, match="timed out"):
            await _transport(handler).request("GET", "https://example.test/")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("url", ["https://[::1/token", "https://host:port/token"])
    async def test_malformed_url_raises_transport_error(self, url: str) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200)

        with pytest.raises(TransportError, match="Invalid request URL"):
            await _transport(handler).request("POST", url, body="a=b")
        assert seen == []

    @pytest.mark.asyncio
    async def test_injected_client_is_not_closed(self) -> None:
        client = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(200)))
        async with HttpxTransport(client=client):
            pass
        assert not client.is_closed
        await client.aclose()
