"""Configuration management with XDG paths, atomic writes, and account resolution.

This module handles all persistent configuration for deskoauth:

* **Directory layout** -- XDG Base Directory compliant on Linux/BSD,
  ``~/.deskoauth/`` on macOS and Windows. See :func:`get_config_dir`,
  :func:`get_data_dir`, :func:`get_accounts_dir`.
* **Settings** -- A single :class:`~deskoauth.models.Settings` JSON file
  storing user-wide defaults.
* **Accounts** -- One JSON file per server account, each deserialised into
  an :class:`~deskoauth.models.Account`. Managed via :func:`load_account`,
  :func:`save_account`, :func:`delete_account`.
* **Account resolution** -- :func:`resolve_account` picks the active account
  from the CLI argument, the environment, the settings default, or the only
  account that exists.
* **Credential resolution** -- :func:`resolve_credential` reads client
  secrets from env vars, files, or interactive prompts.

All file writes use an atomic temp-file-then-rename strategy
(:func:`atomic_write`) to prevent data loss on crash or power failure.
"""

from __future__ import annotations

import getpass
import json
import os
import platform
import re
import sys
import tempfile
from pathlib import Path
from typing import Optional

from deskoauth.exceptions import ConfigError
from deskoauth.models import Account, Settings

_APP_NAME = "deskoauth"
_SETTINGS_FILENAME = "settings.json"
_ACCOUNT_ENV_VAR = "DESKOAUTH_ACCOUNT"
_ACCOUNT_NAME_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._@-]*$")


# --- XDG path resolution ---


def _is_xdg_platform() -> bool:
    """Return True if the platform supports XDG Base Directory spec (Linux/FreeBSD)."""
    return platform.system() == "Linux" or platform.system().endswith("BSD")


def _fallback_base_dir() -> Path:
    return Path.home() / f".{_APP_NAME}"


def _xdg_base(env_var: str, default_segments: tuple[str, ...]) -> Path:
    """Resolve an XDG base directory from an env var with fallback segments under $HOME."""
    env_value = os.environ.get(env_var, "")
    if env_value:
        return Path(env_value)
    base = Path.home()
    for seg in default_segments:
        base = base / seg
    return base


def get_config_dir() -> Path:
    """Return the configuration directory, creating it if necessary.

    On Linux/BSD: ``$XDG_CONFIG_HOME/deskoauth/`` (default ``~/.config/deskoauth/``).
    On macOS/Windows: ``~/.deskoauth/``.
    """
    if _is_xdg_platform():
        path = _xdg_base("XDG_CONFIG_HOME", (".config",)) / _APP_NAME
    else:
        path = _fallback_base_dir()
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_data_dir() -> Path:
    """Return the data directory (crash logs, credentials), creating it if necessary.

    On Linux/BSD: ``$XDG_DATA_HOME/deskoauth/`` (default ``~/.local/share/deskoauth/``).
    On macOS/Windows: ``~/.deskoauth/data/``.
    """
    if _is_xdg_platform():
        path = _xdg_base("XDG_DATA_HOME", (".local", "share")) / _APP_NAME
    else:
        path = _fallback_base_dir() / "data"
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_accounts_dir() -> Path:
    """Return the accounts directory (``<config_dir>/accounts/``), creating it if necessary."""
    path = get_config_dir() / "accounts"
    path.mkdir(parents=True, exist_ok=True)
    return path


# --- Atomic file writes ---


def atomic_write(path: Path, data: str, mode: Optional[int] = None) -> None:
    """Write *data* to *path* atomically using temp file + rename.

    The temporary file is created in the same directory as *path* so that
    ``os.replace`` is an atomic rename on POSIX systems. On any failure the
    temp file is cleaned up.

    Args:
        path: Destination file.
        data: Text content.
        mode: Optional permission bits applied to the temp file before any
            content is written (e.g. ``0o600`` for secrets).
    """
    path.parent.mkdir(parents=True, exist_ok=True)

    fd = None
    tmp_path: Optional[str] = None
    try:
        fd = tempfile.NamedTemporaryFile(
            mode="w",
            dir=path.parent,
            prefix=f".{path.name}.",
            suffix=".tmp",
            delete=False,
            encoding="utf-8",
        )
        tmp_path = fd.name
        if mode is not None:
            os.chmod(tmp_path, mode)
        fd.write(data)
        fd.flush()
        os.fsync(fd.fileno())
        fd.close()
        fd = None  # prevent double-close below
        os.replace(tmp_path, path)
    except BaseException:
        # Clean up the temp file on any error (including KeyboardInterrupt).
        if fd is not None:
            fd.close()
        if tmp_path is not None:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
        raise


# --- Settings ---


def _settings_path() -> Path:
    return get_config_dir() / _SETTINGS_FILENAME


def load_settings() -> Settings:
    """Load user-wide settings.

    Returns:
        The deserialised :class:`~deskoauth.models.Settings`, or defaults if
        the file does not exist.

    Raises:
        ConfigError: If the file exists but is invalid.
    """
    path = _settings_path()
    if not path.is_file():
        return Settings()
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
        return Settings.model_validate(data)
    except (json.JSONDecodeError, ValueError) as exc:
        raise ConfigError(f"Invalid settings at {path}: {exc}") from exc


def save_settings(settings: Settings) -> None:
    data = settings.model_dump(mode="json")
    atomic_write(_settings_path(), json.dumps(data, indent=2) + "\n")


# --- Accounts ---


def validate_account_name(name: str) -> str:
    """Return *name* if it is usable as a file name, else raise :class:`ConfigError`."""
    if not _ACCOUNT_NAME_RE.match(name):
        raise ConfigError(
            f"Invalid account name '{name}': use letters, digits, '.', '_', '@' or '-'"
        )
    return name


def _account_path(name: str) -> Path:
    return get_accounts_dir() / f"{validate_account_name(name)}.json"


def list_accounts() -> list[str]:
    """Return all account names, sorted alphabetically."""
    return sorted(p.stem for p in get_accounts_dir().glob("*.json") if p.is_file())


def account_exists(name: str) -> bool:
    return _account_path(name).is_file()


def load_account(name: str) -> Account:
    """Load and validate an account from disk.

    Raises:
        ConfigError: If the account does not exist or its file is invalid.
    """
    path = _account_path(name)
    if not path.is_file():
        raise ConfigError(f"Account '{name}' not found at {path}")
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
        return Account.model_validate(data)
    except (json.JSONDecodeError, ValueError) as exc:
        raise ConfigError(f"Invalid account '{name}' at {path}: {exc}") from exc


def save_account(account: Account) -> None:
    data = account.model_dump(mode="json")
    atomic_write(_account_path(account.name), json.dumps(data, indent=2) + "\n")


def delete_account(name: str) -> None:
    """Delete an account's JSON file.

    Raises:
        ConfigError: If the account does not exist.
    """
    path = _account_path(name)
    if not path.is_file():
        raise ConfigError(f"Account '{name}' not found at {path}")
    path.unlink()


# --- Precedence resolution ---


def resolve_account_name(
    cli_account: Optional[str] = None,
    settings: Optional[Settings] = None,
) -> Optional[str]:
    """Determine which account a command operates on.

    Precedence (high to low):
        1. CLI argument
        2. ``DESKOAUTH_ACCOUNT`` environment variable
        3. ``default_account`` in settings
        4. The only configured account, if ``auto_select_single_account``

    Returns:
        The account name, or ``None`` if nothing selects one.
    """
    if cli_account:
        return cli_account
    env_account = os.environ.get(_ACCOUNT_ENV_VAR)
    if env_account:
        return env_account
    settings = settings or load_settings()
    if settings.default_account:
        return settings.default_account
    if settings.auto_select_single_account:
        accounts = list_accounts()
        if len(accounts) == 1:
            return accounts[0]
    return None


def resolve_account(
    cli_account: Optional[str] = None,
    settings: Optional[Settings] = None,
) -> Account:
    """Load the account selected by :func:`resolve_account_name`.

    Raises:
        ConfigError: If no account is selected or it does not exist.
    """
    name = resolve_account_name(cli_account, settings)
    if name is None:
        raise ConfigError(
            "No account selected. Pass an account name, set "
            f"{_ACCOUNT_ENV_VAR}, or run 'deskoauth account add'."
        )
    return load_account(name)


# --- Credential source resolution ---


def resolve_credential(source: str) -> str:
    """Resolve a credential from its source descriptor.

    Supported formats:
        - ``"env:VAR_NAME"`` -- reads ``os.environ["VAR_NAME"]``
        - ``"file:/path/to/file"`` -- reads file content, stripped of whitespace
        - ``"prompt"`` -- prompts user interactively (requires a TTY)
        - anything else -- used literally

    Raises:
        ConfigError: If the source can't be resolved.
    """
    if source.startswith("env:"):
        var_name = source[4:]
        value = os.environ.get(var_name)
        if value is None:
            raise ConfigError(
                f"Environment variable '{var_name}' is not set (source: {source})"
            )
        return value

    if source.startswith("file:"):
        path = Path(source[5:]).expanduser()
        if not path.is_file():
            raise ConfigError(f"Credential file not found: {path} (source: {source})")
        try:
            return path.read_text(encoding="utf-8").strip()
        except OSError as exc:
            raise ConfigError(f"Cannot read credential file {path}: {exc}") from exc

    if source == "prompt":
        if not sys.stdin.isatty():
            raise ConfigError(
                "Cannot prompt for credentials: stdin is not a TTY (source: prompt)"
            )
        return getpass.getpass("Enter client secret: ")

    return source
