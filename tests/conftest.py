"""Shared test fixtures for deskoauth.

Provides isolated config environments, output state management, a CLI
runner, a scripted OAuth server behind :class:`httpx.MockTransport`, and a
fake browser that completes the loopback redirect over a real socket.
These fixtures are automatically discovered by pytest and available to all
test modules without explicit imports.
"""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any, Callable, Optional
from urllib.parse import parse_qs, parse_qsl, urlencode, urlsplit

import httpx
import pytest

from deskoauth.output import OutputFormat, OutputManager, reset_output, set_output
from deskoauth.transport import HttpxTransport

SERVER_URL = "https://example.test"
AUTHORIZE_PATH = "/index.php/apps/oidc/authorize"
TOKEN_PATH = "/index.php/apps/oidc/token"
REGISTER_PATH = "/index.php/apps/oidc/register"
DISCOVERY_PATH = "/.well-known/openid-configuration"


# ---------------------------------------------------------------------------
# Auto-reset global output state between tests
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _reset_output_between_tests() -> None:
    """Reset the global OutputManager after every test.

    The OutputManager caches references to sys.stdout/sys.stderr at
    creation time. When Typer's CliRunner redirects those streams during
    a test and the test finishes, the cached references become stale.
    """
    yield
    reset_output()


# ---------------------------------------------------------------------------
# Config isolation fixture
# ---------------------------------------------------------------------------


@pytest.fixture
def isolated_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Isolate configuration and data to a temporary directory.

    Sets XDG_CONFIG_HOME and XDG_DATA_HOME to subdirectories of tmp_path,
    clears DESKOAUTH_ACCOUNT and changes the working directory to tmp_path.
    """
    monkeypatch.setattr("deskoauth.config._is_xdg_platform", lambda: True)
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "config"))
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "data"))
    monkeypatch.delenv("DESKOAUTH_ACCOUNT", raising=False)
    monkeypatch.chdir(tmp_path)
    return tmp_path


# ---------------------------------------------------------------------------
# Output fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def quiet_output() -> OutputManager:
    """Install a PLAIN-format, quiet OutputManager as the global output."""
    output = OutputManager(format=OutputFormat.PLAIN, quiet=True)
    set_output(output)
    yield output
    reset_output()


@pytest.fixture
def cli_runner():
    """Typer CLI test runner."""
    from typer.testing import CliRunner

    return CliRunner()


# ---------------------------------------------------------------------------
# Scripted OAuth server
# ---------------------------------------------------------------------------


Responder = Callable[[httpx.Request], httpx.Response]


class FakeOAuthServer:
    """Answers OAuth requests from scripted routes and records every request.

    Routes are keyed by ``(method, path)``. Unknown routes answer ``404``.
    """

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.routes: dict[tuple[str, str], Responder] = {}
        self.discovery_document = {
            "issuer": SERVER_URL,
            "authorization_endpoint": SERVER_URL + AUTHORIZE_PATH,
            "token_endpoint": SERVER_URL + TOKEN_PATH,
        }
        self.route("GET", DISCOVERY_PATH, json_body=self.discovery_document)
        self.route(
            "POST",
            TOKEN_PATH,
            json_body={"access_token": "T", "refresh_token": "R", "user_id": "alice"},
        )

    def route(
        self,
        method: str,
        path: str,
        status_code: int = 200,
        json_body: Any = None,
        content: Optional[bytes] = None,
        responder: Optional[Responder] = None,
    ) -> None:
        def _scripted(request: httpx.Request) -> httpx.Response:
            if content is not None:
                return httpx.Response(status_code, content=content)
            return httpx.Response(status_code, json=json_body)

        self.routes[(method, path)] = responder or _scripted

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        responder = self.routes.get((request.method, request.url.path))
        if responder is None:
            return httpx.Response(404, json={"error": "not_found"})
        return responder(request)

    def transport(self) -> HttpxTransport:
        client = httpx.AsyncClient(transport=httpx.MockTransport(self.handle))
        return HttpxTransport(client=client)

    def requests_to(self, path: str, method: Optional[str] = None) -> list[httpx.Request]:
        return [
            r
            for r in self.requests
            if r.url.path == path and (method is None or r.method == method)
        ]

    @staticmethod
    def form(request: httpx.Request) -> dict[str, str]:
        return dict(parse_qsl(request.content.decode("utf-8")))

    @staticmethod
    def json(request: httpx.Request) -> Any:
        return json.loads(request.content)


@pytest.fixture
def oauth_server() -> FakeOAuthServer:
    return FakeOAuthServer()


# ---------------------------------------------------------------------------
# Fake browser
# ---------------------------------------------------------------------------


async def send_redirect(redirect_uri: str, query: dict[str, str]) -> bytes:
    """Play the browser: GET ``redirect_uri?query`` over a real socket."""
    port = urlsplit(redirect_uri).port
    reader, writer = await asyncio.open_connection("127.0.0.1", port)
    try:
        writer.write(
            f"GET /?{urlencode(query)} HTTP/1.1\r\n"
            f"Host: localhost:{port}\r\n"
            "User-Agent: test-browser\r\n"
            "\r\n".encode("ascii")
        )
        await writer.drain()
        return await reader.read()
    finally:
        writer.close()


class FakeBrowser:
    """Records opened links and answers them with a scripted redirect.

    Args:
        redirect: Builds the redirect query from the link's parameters.
            ``None`` means the user never returns from the browser.
    """

    def __init__(
        self,
        redirect: Optional[Callable[[dict[str, str]], dict[str, str]]] = None,
    ) -> None:
        self.opened: list[str] = []
        self.tasks: list[asyncio.Task[bytes]] = []
        self._redirect = redirect

    def __call__(self, url: str) -> bool:
        self.opened.append(url)
        if self._redirect is not None:
            params = {key: values[0] for key, values in parse_qs(urlsplit(url).query).items()}
            task = asyncio.get_running_loop().create_task(
                send_redirect(params["redirect_uri"], self._redirect(params))
            )
            self.tasks.append(task)
        return True


@pytest.fixture
def browser() -> FakeBrowser:
    """A browser whose user approves: redirects with ``code=ABC`` and the issued state."""
    return FakeBrowser(lambda params: {"code": "ABC", "state": params["state"]})


@pytest.fixture
def redirect_sender() -> Callable[[str, dict[str, str]], Any]:
    """The coroutine function a browser uses to follow the redirect."""
    return send_redirect


@pytest.fixture
def make_browser() -> Callable[..., FakeBrowser]:
    """Build a :class:`FakeBrowser` with a custom redirect."""
    return FakeBrowser
