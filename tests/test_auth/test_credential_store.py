"""Tests for the credential store."""

from __future__ import annotations

import json
import os
import stat
from pathlib import Path

import pytest

from deskoauth.auth.credential_store import CredentialEntry, CredentialStore
from deskoauth.exceptions import ConfigError
from deskoauth.models import RegistrationRecord

SERVER = "https://cloud.example"


@pytest.fixture()
def store(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> CredentialStore:
    """Create a CredentialStore that writes to a temp directory."""
    monkeypatch.setattr("deskoauth.auth.credential_store.get_data_dir", lambda: tmp_path)
    return CredentialStore("work")


def _record(client_id: str = "dyn") -> RegistrationRecord:
    return RegistrationRecord(client_id=client_id, client_secret="sec")


class TestCredentialEntry:
    def test_minimal(self) -> None:
        entry = CredentialEntry()
        assert entry.server_url is None
        assert entry.registration is None
        assert entry.refresh_token is None

    def test_refresh_token_hidden_from_repr(self) -> None:
        entry = CredentialEntry(refresh_token="very-secret")
        assert "very-secret" not in repr(entry)


class TestCredentialStore:
    def test_load_returns_none_when_no_file(self, store: CredentialStore) -> None:
        assert store.load() is None
        assert store.load_registration(SERVER) is None
        assert store.load_refresh_token() is None

    def test_file_lives_under_credentials_dir(self, store: CredentialStore, tmp_path: Path) -> None:
        assert store.path == tmp_path / "credentials" / "work.json"

    def test_save_and_load_registration(self, store: CredentialStore) -> None:
        store.save_registration(SERVER, _record())

        loaded = store.load_registration(SERVER)
        assert loaded is not None
        assert loaded.client_id == "dyn"
        assert loaded.client_secret == "sec"

    def test_registration_for_other_server_is_ignored(self, store: CredentialStore) -> None:
        store.save_registration(SERVER, _record())
        assert store.load_registration("https://other.example") is None

    def test_new_server_replaces_entry(self, store: CredentialStore) -> None:
        store.save_refresh_token(SERVER, "R")
        store.save_registration("https://other.example", _record("other"))

        entry = store.load()
        assert entry is not None
        assert entry.server_url == "https://other.example"
        assert entry.refresh_token is None

    def test_refresh_token_kept_alongside_registration(self, store: CredentialStore) -> None:
        store.save_registration(SERVER, _record())
        store.save_refresh_token(SERVER, "R")

        assert store.load_refresh_token() == "R"
        assert store.load_registration(SERVER) is not None

    @pytest.mark.skipif(os.name == "nt", reason="POSIX permissions")
    def test_file_permissions(self, store: CredentialStore) -> None:
        store.save_refresh_token(SERVER, "R")
        mode = stat.S_IMODE(store.path.stat().st_mode)
        assert mode == 0o600

    def test_corrupt_file_is_ignored(self, store: CredentialStore) -> None:
        store.path.parent.mkdir(parents=True, exist_ok=True)
        store.path.write_text("{broken", encoding="utf-8")
        assert store.load() is None

    def test_stored_json_shape(self, store: CredentialStore) -> None:
        store.save_registration(SERVER, _record())
        data = json.loads(store.path.read_text(encoding="utf-8"))
        assert data["server_url"] == SERVER
        assert data["registration"]["client_id"] == "dyn"
        assert "updated_at" in data

    def test_clear_registration(self, store: CredentialStore) -> None:
        store.save_registration(SERVER, _record())
        store.save_refresh_token(SERVER, "R")

        assert store.clear_registration() is True
        assert store.clear_registration() is False
        assert store.load_registration(SERVER) is None
        assert store.load_refresh_token() == "R"

    def test_clear(self, store: CredentialStore) -> None:
        store.save_refresh_token(SERVER, "R")
        store.clear()
        store.clear()
        assert not store.path.exists()

    def test_rejects_path_like_account_name(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr("deskoauth.auth.credential_store.get_data_dir", lambda: tmp_path)
        with pytest.raises(ConfigError):
            CredentialStore("../escape")
