"""Persistent credential store scoped per account.

Stores credentials in ``~/.local/share/deskoauth/credentials/<account>.json``
(XDG) or the platform-equivalent directory. Files are written atomically
with ``0o600`` permissions so that secrets are never world-readable, even
momentarily.

Each account maps to exactly one JSON file holding a :class:`CredentialEntry`:
the client credentials obtained by dynamic registration and, when the user
keeps it, the most recent refresh token.

See Also:
    :class:`~deskoauth.oauth.account.StoreCredentialsManager` -- persists
    registration data through this store.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field

from deskoauth.config import atomic_write, get_data_dir, validate_account_name
from deskoauth.models import RegistrationRecord

logger = logging.getLogger(__name__)


class CredentialEntry(BaseModel):
    """Everything stored for one account.

    Attributes:
        server_url: Server the credentials were issued by. Registration data
            for a different server is never reused.
        registration: Dynamic registration result, if any.
        refresh_token: Last refresh token, if the user chose to keep it.
        updated_at: Time of the last write (UTC).
    """

    server_url: Optional[str] = None
    registration: Optional[RegistrationRecord] = None
    refresh_token: Optional[str] = Field(default=None, repr=False)
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


def _credentials_dir() -> Path:
    """Return the credentials directory, creating it if needed."""
    path = get_data_dir() / "credentials"
    path.mkdir(parents=True, exist_ok=True)
    return path


class CredentialStore:
    """Read/write credentials for a single account.

    Args:
        account_name: The account identifier used to derive the file name.

    Example::

        store = CredentialStore("work")
        store.save_registration("https://cloud.example", record)
        assert store.load_registration("https://cloud.example") == record
    """

    def __init__(self, account_name: str) -> None:
        self._account_name = validate_account_name(account_name)
        self._path = _credentials_dir() / f"{account_name}.json"

    @property
    def path(self) -> Path:
        """The filesystem path to this account's credential file."""
        return self._path

    def save(self, entry: CredentialEntry) -> None:
        """Persist *entry* atomically with ``0o600`` permissions.

        Raises:
            OSError: If the file cannot be written.
        """
        entry = entry.model_copy(update={"updated_at": datetime.now(timezone.utc)})
        text = json.dumps(entry.model_dump(mode="json"), indent=2) + "\n"
        atomic_write(self._path, text, mode=0o600)

    def load(self) -> Optional[CredentialEntry]:
        """Load the stored entry.

        Returns:
            The entry, or ``None`` if the file does not exist or cannot be
            parsed.
        """
        if not self._path.is_file():
            return None
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
            return CredentialEntry.model_validate(data)
        except (json.JSONDecodeError, ValueError, OSError) as exc:
            logger.warning("Ignoring unreadable credential file %s: %s", self._path, exc)
            return None

    def load_registration(self, server_url: str) -> Optional[RegistrationRecord]:
        """Return the registration stored for *server_url*, if any."""
        entry = self.load()
        if entry is None or entry.registration is None:
            return None
        if entry.server_url != server_url:
            logger.info(
                "Stored registration for account '%s' belongs to another server",
                self._account_name,
            )
            return None
        return entry.registration

    def save_registration(self, server_url: str, record: RegistrationRecord) -> None:
        entry = self.load() or CredentialEntry()
        if entry.server_url != server_url:
            entry = CredentialEntry()
        self.save(entry.model_copy(update={"server_url": server_url, "registration": record}))

    def load_refresh_token(self) -> Optional[str]:
        entry = self.load()
        return entry.refresh_token if entry is not None else None

    def save_refresh_token(self, server_url: str, refresh_token: Optional[str]) -> None:
        entry = self.load() or CredentialEntry(server_url=server_url)
        if entry.server_url != server_url:
            entry = CredentialEntry(server_url=server_url)
        self.save(entry.model_copy(update={"refresh_token": refresh_token}))

    def clear_registration(self) -> bool:
        """Forget the registration data, keeping any refresh token.

        Returns:
            ``True`` if registration data was removed.
        """
        entry = self.load()
        if entry is None or entry.registration is None:
            return False
        self.save(entry.model_copy(update={"registration": None}))
        return True

    def clear(self) -> None:
        """Delete the stored credential file if it exists."""
        if self._path.is_file():
            self._path.unlink()
