"""User identity lookup with a freshly issued access token.

Some servers omit ``user_id`` from the token response. The session then asks
an :class:`IdentityLookup` exactly once per code exchange. The default
:class:`OcsIdentityLookup` queries the OCS user endpoint.
"""

from __future__ import annotations

import logging
from typing import Protocol

from deskoauth.exceptions import IdentityLookupError, ProtocolError
from deskoauth.oauth.discovery import server_path
from deskoauth.transport import HttpTransport

logger = logging.getLogger(__name__)

OCS_USER_PATH = "ocs/v2.php/cloud/user?format=json"


class IdentityLookup(Protocol):
    """Capability: resolve the user id an access token belongs to."""

    async def lookup_user(self, access_token: str) -> str:
        ...


class OcsIdentityLookup:
    """Fetch ``ocs.data.id`` from ``<server>/ocs/v2.php/cloud/user``.

    Args:
        transport: HTTP transport used for the GET.
        server_url: Base URL of the server.
    """

    def __init__(self, transport: HttpTransport, server_url: str) -> None:
        self._transport = transport
        self._url = server_path(server_url, OCS_USER_PATH)

    async def lookup_user(self, access_token: str) -> str:
        """Return the id of the user owning *access_token*.

        Raises:
            IdentityLookupError: If the server rejects the request.
            ProtocolError: If the reply carries no user id.
        """
        reply = await self._transport.request(
            "GET",
            self._url,
            headers={
                "Authorization": f"Bearer {access_token}",
                "OCS-APIRequest": "true",
                "Accept": "application/json",
            },
        )
        if not reply.ok:
            raise IdentityLookupError(
                f"User lookup failed with status {reply.status_code}",
                status_code=reply.status_code,
            )

        data = reply.json_object()
        ocs = data.get("ocs")
        payload = ocs.get("data") if isinstance(ocs, dict) else None
        user_id = payload.get("id") if isinstance(payload, dict) else None
        if not isinstance(user_id, str) or not user_id:
            raise ProtocolError("User lookup response carries no user id")
        logger.debug("Resolved user id via OCS")
        return user_id
