"""Token endpoint client for code exchange and refresh.

:class:`TokenExchangeClient` performs the two token-endpoint grants a
desktop client needs:

* ``authorization_code`` with the PKCE ``code_verifier`` (:rfc:`7636`)
* ``refresh_token``

Both POST an ``application/x-www-form-urlencoded`` body and expect a JSON
object containing at least ``access_token``. The client performs no retries
and never looks up the user identity; that is left to the session.
"""

from __future__ import annotations

import logging
import math
from typing import Any, Optional
from urllib.parse import urlencode

from deskoauth.exceptions import NotSupportedError, ProtocolError, TokenRequestError
from deskoauth.models import TokenSet
from deskoauth.transport import HttpReply, HttpTransport

logger = logging.getLogger(__name__)

_FORM_HEADERS = {
    "Content-Type": "application/x-www-form-urlencoded",
    "Accept": "application/json",
}


def _lifetime(value: Any) -> Optional[int]:
    # bool is an int; inf and nan come from JSON such as 1e400
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if isinstance(value, float) and not math.isfinite(value):
        return None
    return int(value)


def parse_token_response(data: dict[str, Any]) -> TokenSet:
    """Build a :class:`TokenSet` from a token endpoint JSON object.

    Raises:
        ProtocolError: If ``access_token`` is missing or empty.
    """
    access_token = data.get("access_token")
    if not isinstance(access_token, str) or not access_token:
        raise ProtocolError("Token response missing 'access_token' field")

    refresh_token = data.get("refresh_token")
    user_id = data.get("user_id")
    expires_in = data.get("expires_in")
    token_type = data.get("token_type")
    return TokenSet(
        access_token=access_token,
        refresh_token=refresh_token if isinstance(refresh_token, str) and refresh_token else None,
        user_id=str(user_id) if user_id not in (None, "") else None,
        expires_in=_lifetime(expires_in),
        token_type=token_type if isinstance(token_type, str) else None,
    )


def describe_error_reply(reply: HttpReply) -> str:
    """Return the server's ``error``/``error_description``, or the raw body."""
    try:
        data = reply.json_object()
    except ProtocolError:
        return reply.text.strip()[:200]
    error = data.get("error")
    description = data.get("error_description")
    if error and description:
        return f"{error}: {description}"
    if error or description:
        return str(error or description)
    return reply.text.strip()[:200]


class TokenExchangeClient:
    """POSTs grants to a token endpoint and parses the tokens it returns.

    Args:
        transport: HTTP transport used for the POST.
    """

    def __init__(self, transport: HttpTransport) -> None:
        self._transport = transport

    async def exchange_code(
        self,
        token_endpoint: str,
        code: str,
        verifier: str,
        redirect_uri: str,
        client_id: str,
        client_secret: Optional[str] = None,
    ) -> TokenSet:
        """Exchange an authorization code for tokens.

        Args:
            token_endpoint: Discovered or fallback token URL.
            code: The authorization code received on the loopback listener.
            verifier: The PKCE verifier whose challenge was put in the link.
            redirect_uri: The redirect URI used in the authorization link.
            client_id: OAuth client id.
            client_secret: Optional client secret.

        Returns:
            The parsed :class:`TokenSet`.

        Raises:
            NotSupportedError: If the token endpoint does not exist (404).
            TokenRequestError: On any other non-2xx reply.
            TransportError: On network failure.
            ProtocolError: If the reply is not a usable token response.
        """
        form = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": redirect_uri,
            "code_verifier": verifier,
            "client_id": client_id,
        }
        if client_secret:
            form["client_secret"] = client_secret
        return await self._post(token_endpoint, form, "Token exchange")

    async def refresh(
        self,
        token_endpoint: str,
        refresh_token: str,
        client_id: str,
        client_secret: Optional[str] = None,
    ) -> TokenSet:
        """Obtain a new access token with *refresh_token*.

        Raises the same exceptions as :meth:`exchange_code`.
        """
        form = {
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
            "client_id": client_id,
        }
        if client_secret:
            form["client_secret"] = client_secret
        return await self._post(token_endpoint, form, "Token refresh")

    async def _post(self, url: str, form: dict[str, str], action: str) -> TokenSet:
        logger.debug("%s: POST %s (grant_type=%s)", action, url, form["grant_type"])
        reply = await self._transport.request(
            "POST", url, headers=dict(_FORM_HEADERS), body=urlencode(form)
        )

        if reply.status_code == 404:
            raise NotSupportedError(
                f"{action} failed: the server has no OAuth2 token endpoint at {url}",
                status_code=404,
            )
        if not reply.ok:
            raise TokenRequestError(
                f"{action} failed with status {reply.status_code}: "
                f"{describe_error_reply(reply)}",
                status_code=reply.status_code,
            )

        return parse_token_response(reply.json_object())
