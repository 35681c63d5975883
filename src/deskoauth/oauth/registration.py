"""Dynamic client registration (:rfc:`7591`)."""

from __future__ import annotations

import json
import logging
from typing import Any, Optional

from deskoauth.exceptions import ProtocolError, RegistrationError
from deskoauth.models import DEFAULT_CLIENT_NAME, RegistrationRecord
from deskoauth.oauth.token_client import describe_error_reply
from deskoauth.transport import HttpTransport

logger = logging.getLogger(__name__)


class DynamicRegistrationClient:
    """Registers this application as a native OAuth client.

    Used only when no client id is configured and discovery advertised a
    ``registration_endpoint``. The returned record is handed to the session
    backend for persistence; this class stores nothing.

    Args:
        transport: HTTP transport used for the POST.
        client_name: Name shown to the user on the server's consent page.
        scopes: Scopes to request for the new client, if any.
    """

    def __init__(
        self,
        transport: HttpTransport,
        client_name: str = DEFAULT_CLIENT_NAME,
        scopes: Optional[list[str]] = None,
    ) -> None:
        self._transport = transport
        self._client_name = client_name
        self._scopes = scopes or []

    def client_metadata(self, redirect_uri: str) -> dict[str, Any]:
        metadata: dict[str, Any] = {
            "client_name": self._client_name,
            "redirect_uris": [redirect_uri],
            "grant_types": ["authorization_code", "refresh_token"],
            "response_types": ["code"],
            "token_endpoint_auth_method": "client_secret_post",
            "application_type": "native",
        }
        if self._scopes:
            metadata["scope"] = " ".join(self._scopes)
        return metadata

    async def register(self, registration_endpoint: str, redirect_uri: str) -> RegistrationRecord:
        """Register a client whose only redirect URI is *redirect_uri*.

        Returns:
            The new :class:`RegistrationRecord`, with the raw response kept
            as ``metadata``.

        Raises:
            RegistrationError: If the server rejects the registration.
            TransportError: On network failure.
            ProtocolError: If the response lacks a ``client_id``.
        """
        logger.info("Registering OAuth client '%s'", self._client_name)
        logger.debug("Registration endpoint: %s", registration_endpoint)

        reply = await self._transport.request(
            "POST",
            registration_endpoint,
            headers={"Content-Type": "application/json", "Accept": "application/json"},
            body=json.dumps(self.client_metadata(redirect_uri)),
        )
        if not reply.ok:
            raise RegistrationError(
                f"Client registration failed with status {reply.status_code}: "
                f"{describe_error_reply(reply)}",
                status_code=reply.status_code,
            )

        data = reply.json_object()
        client_id = data.get("client_id")
        if not isinstance(client_id, str) or not client_id:
            raise ProtocolError("Invalid registration response: missing 'client_id'")
        client_secret = data.get("client_secret")

        logger.info("Registered OAuth client %s", client_id)
        return RegistrationRecord(
            client_id=client_id,
            client_secret=client_secret if isinstance(client_secret, str) and client_secret else None,
            metadata=data,
        )
