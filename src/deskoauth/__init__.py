"""deskoauth -- OAuth 2.0 Authorization Code + PKCE for desktop clients.

This package implements the browser-based login flow a desktop sync client
needs to obtain and refresh access tokens for a Nextcloud/ownCloud style
server without embedding a browser engine. The user's default browser is
opened on the authorization endpoint, the redirect is received by a
one-shot loopback listener, and the authorization code is exchanged for
tokens.

Typical usage::

    from deskoauth.models import OAuthConfig
    from deskoauth.oauth import OAuthSession
    from deskoauth.transport import HttpxTransport

    config = OAuthConfig(server_url="https://cloud.example", client_id="desktop")
    async with HttpxTransport() as transport:
        async with OAuthSession(config, transport) as session:
            result = await session.start()

Modules:
    oauth: The protocol core (PKCE, discovery, loopback listener, token
        exchange, dynamic registration, the session state machine).
    transport: The async HTTP transport capability and its httpx default.
    models: Pydantic models shared across the package.
    config: XDG-aware settings and account management.
    exceptions: Exception hierarchy with exit-code mapping.
    app: Typer CLI entry point.
"""

__version__ = "0.3.0"
