"""Persistent per-account credential storage.

- :class:`CredentialStore` -- one ``0o600`` JSON file per account holding
  dynamic registration data and, optionally, the last refresh token.
- :class:`CredentialEntry` -- the stored record.
"""

from deskoauth.auth.credential_store import CredentialEntry, CredentialStore

__all__ = ["CredentialEntry", "CredentialStore"]
