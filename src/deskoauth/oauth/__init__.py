"""The OAuth 2.0 Authorization Code + PKCE protocol core.

Components, leaves first:

- :class:`RandomTokenGenerator` -- PKCE verifier and CSRF state entropy.
- :class:`DiscoveryResolver` -- ``.well-known/openid-configuration`` with a
  fixed-path fallback.
- :class:`LoopbackCallbackServer` -- one-shot redirect receiver on
  ``http://localhost:<port>``.
- :class:`TokenExchangeClient` -- code exchange and refresh grants.
- :class:`DynamicRegistrationClient` -- :rfc:`7591` client registration.
- :class:`OAuthSession` -- the state machine tying the steps together.
- :class:`AccountBasedOAuthSession` -- the same machine driven by an
  :class:`~deskoauth.models.Account`.
"""

from deskoauth.oauth.account import (
    AccountBackend,
    AccountBasedOAuthSession,
    CredentialsManager,
    ServerChecker,
    StatusServerChecker,
    StoreCredentialsManager,
)
from deskoauth.oauth.discovery import DiscoveryResolver
from deskoauth.oauth.identity import IdentityLookup, OcsIdentityLookup
from deskoauth.oauth.loopback import LoopbackCallbackServer
from deskoauth.oauth.registration import DynamicRegistrationClient
from deskoauth.oauth.session import (
    DirectBackend,
    OAuthSession,
    SessionBackend,
    build_authorisation_link,
)
from deskoauth.oauth.token_client import TokenExchangeClient
from deskoauth.oauth.tokens import RandomTokenGenerator

__all__ = [
    "AccountBackend",
    "AccountBasedOAuthSession",
    "CredentialsManager",
    "DirectBackend",
    "DiscoveryResolver",
    "DynamicRegistrationClient",
    "IdentityLookup",
    "LoopbackCallbackServer",
    "OAuthSession",
    "OcsIdentityLookup",
    "RandomTokenGenerator",
    "ServerChecker",
    "SessionBackend",
    "StatusServerChecker",
    "StoreCredentialsManager",
    "TokenExchangeClient",
    "build_authorisation_link",
]
