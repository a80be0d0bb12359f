"""Pluggable token storage backends.

Provides the TokenStore ABC and concrete implementations for in-memory,
JSON file and OS keyring persistence. One record is kept per provider
under a provider-qualified key (``auth.cilogon``); refresh bookkeeping
lives under its own key (``auth.refresh-status``).

All operations are synchronous. A stored value that cannot be parsed is
treated as absent rather than raised.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
import time

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

from ..types import Clock, ProviderId, RefreshStatus, TokenRecord


logger = logging.getLogger("sdxauth.auth")

REFRESH_STATUS_KEY = "refresh-status"


class TokenStore(ABC):
    """Abstract base class for provider token storage.

    Subclasses implement the raw string primitives; record parsing,
    validity checks and refresh-status persistence are shared.

    Parameters
    ----------
    key_prefix : str
        Prefix of every storage key (default ``"auth"``).
    clock : callable, optional
        Returns the current epoch time in seconds (default ``time.time``).
    """

    def __init__(self, key_prefix: str = "auth", clock: Clock | None = None) -> None:
        """Initialize the token store."""
        self.key_prefix = key_prefix
        self.clock: Clock = clock or time.time

    # ── Raw primitives ──────────────────────────────────────────────

    @abstractmethod
    def read_raw(self, key: str) -> str | None:
        """Return the stored string for ``key``, or None if absent."""

    @abstractmethod
    def write_raw(self, key: str, value: str) -> None:
        """Store ``value`` under ``key``, replacing any previous value."""

    @abstractmethod
    def delete_raw(self, key: str) -> None:
        """Delete ``key``; deleting a missing key is not an error."""

    # ── Records ─────────────────────────────────────────────────────

    def key_for(self, provider: ProviderId | str) -> str:
        """Build the storage key for a provider."""
        return f"{self.key_prefix}.{ProviderId(provider).value}"

    def get(self, provider: ProviderId | str) -> TokenRecord | None:
        """Load the record stored for ``provider``.

        Parameters
        ----------
        provider : ProviderId or str
            The provider to look up.

        Returns
        -------
        TokenRecord or None
            The stored record, or None if nothing usable is stored.
        """
        provider = ProviderId(provider)
        try:
            data = self.read_raw(self.key_for(provider))
        except OSError as exc:
            logger.warning("Could not read %s token: %s", provider.value, exc)
            return None
        if data is None:
            return None
        try:
            obj = json.loads(data)
            if not isinstance(obj, dict):
                msg = "stored token is not an object"
                raise TypeError(msg)
            record = TokenRecord.from_dict(obj)
        except (KeyError, OverflowError, TypeError, ValueError) as exc:
            logger.warning("Ignoring malformed %s token record: %s", provider.value, exc)
            return None
        if record.provider is not provider:
            logger.warning(
                "Ignoring %s token stored under the %s key", record.provider.value, provider.value
            )
            return None
        return record

    def set(self, provider: ProviderId | str, record: TokenRecord) -> None:
        """Store ``record`` for ``provider``, replacing the previous one.

        Raises
        ------
        ValueError
            If the record belongs to a different provider.
        """
        provider = ProviderId(provider)
        if record.provider is not provider:
            msg = f"Cannot store a {record.provider.value} token under {provider.value}"
            raise ValueError(msg)
        self.write_raw(self.key_for(provider), json.dumps(record.to_dict()))
        logger.debug("Stored %s token (expires at %d)", provider.value, record.expires_at)

    def remove(self, provider: ProviderId | str) -> None:
        """Delete the record for ``provider``."""
        self.delete_raw(self.key_for(provider))

    def clear_all(self) -> None:
        """Delete the records of every provider."""
        for provider in ProviderId:
            self.delete_raw(self.key_for(provider))

    def all_tokens(self) -> dict[ProviderId, TokenRecord]:
        """Return every readable record, keyed by provider."""
        tokens: dict[ProviderId, TokenRecord] = {}
        for provider in ProviderId:
            record = self.get(provider)
            if record is not None:
                tokens[provider] = record
        return tokens

    # ── Lifecycle queries ───────────────────────────────────────────

    def time_until_expiry(self, record: TokenRecord) -> float:
        """Seconds until ``record`` expires (negative once expired)."""
        return record.expires_at - self.clock()

    def is_valid(self, record: TokenRecord | None) -> bool:
        """Whether ``record`` exists and has not expired."""
        if record is None:
            return False
        return self.clock() < record.expires_at

    @staticmethod
    def can_refresh(record: TokenRecord | None) -> bool:
        """Whether ``record`` carries a refresh credential."""
        return record is not None and bool(record.refresh_token)

    def is_near_expiry(self, record: TokenRecord | None, window_seconds: float) -> bool:
        """Whether ``record`` is still valid but expires within the window."""
        if record is None:
            return False
        remaining = self.time_until_expiry(record)
        return 0 < remaining <= window_seconds

    def format_time_until_expiry(self, record: TokenRecord) -> str:
        """Describe the remaining lifetime, e.g. ``"1h 5m"`` or ``"4m 10s"``."""
        remaining = int(self.time_until_expiry(record))
        if remaining <= 0:
            return "Expired"
        hours, rest = divmod(remaining, 3600)
        minutes, seconds = divmod(rest, 60)
        if hours:
            return f"{hours}h {minutes}m"
        if minutes:
            return f"{minutes}m {seconds}s"
        return f"{seconds}s"

    # ── Refresh status ──────────────────────────────────────────────

    def load_refresh_status(self) -> RefreshStatus:
        """Load refresh bookkeeping, or a fresh status if none is usable."""
        try:
            data = self.read_raw(f"{self.key_prefix}.{REFRESH_STATUS_KEY}")
        except OSError as exc:
            logger.warning("Could not read refresh status: %s", exc)
            return RefreshStatus()
        if data is None:
            return RefreshStatus()
        try:
            obj = json.loads(data)
            if not isinstance(obj, dict):
                msg = "refresh status is not an object"
                raise TypeError(msg)
            return RefreshStatus.from_dict(obj)
        except (AttributeError, OverflowError, TypeError, ValueError) as exc:
            logger.warning("Ignoring malformed refresh status: %s", exc)
            return RefreshStatus()

    def save_refresh_status(self, status: RefreshStatus) -> None:
        """Persist refresh bookkeeping."""
        self.write_raw(f"{self.key_prefix}.{REFRESH_STATUS_KEY}", json.dumps(status.to_dict()))


class MemoryTokenStore(TokenStore):
    """In-memory token store for tests and single-process use."""

    def __init__(self, key_prefix: str = "auth", clock: Clock | None = None) -> None:
        """Initialize the memory token store."""
        super().__init__(key_prefix=key_prefix, clock=clock)
        self._data: dict[str, str] = {}
        self._lock = threading.Lock()

    def read_raw(self, key: str) -> str | None:
        """Read a value from memory."""
        with self._lock:
            return self._data.get(key)

    def write_raw(self, key: str, value: str) -> None:
        """Write a value to memory."""
        with self._lock:
            self._data[key] = value

    def delete_raw(self, key: str) -> None:
        """Delete a value from memory."""
        with self._lock:
            self._data.pop(key, None)


class FileTokenStore(TokenStore):
    """JSON file token store for persistent local credentials.

    All keys live in one JSON document written with owner-only
    permissions. Each write replaces the file atomically.

    Parameters
    ----------
    path : str or Path
        Location of the JSON document (``~`` is expanded).
    key_prefix : str
        Prefix of every storage key.
    clock : callable, optional
        Returns the current epoch time in seconds.
    """

    def __init__(
        self,
        path: str | Path = "~/.sdxauth/tokens.json",
        key_prefix: str = "auth",
        clock: Clock | None = None,
    ) -> None:
        """Initialize the file token store."""
        super().__init__(key_prefix=key_prefix, clock=clock)
        self.path = Path(path).expanduser()
        self._lock = threading.Lock()

    def _read_document(self) -> dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            logger.warning("Token file %s is unreadable (%s); treating it as empty", self.path, exc)
            return {}
        if not isinstance(data, dict):
            return {}
        return {str(key): value for key, value in data.items() if isinstance(value, str)}

    def _write_document(self, data: dict[str, str]) -> None:
        self.path.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, prefix=".tokens-", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(data, handle, indent=2)
            os.chmod(tmp_name, 0o600)
            os.replace(tmp_name, self.path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def read_raw(self, key: str) -> str | None:
        """Read a value from the token file."""
        with self._lock:
            return self._read_document().get(key)

    def write_raw(self, key: str, value: str) -> None:
        """Write a value to the token file."""
        with self._lock:
            data = self._read_document()
            data[key] = value
            self._write_document(data)

    def delete_raw(self, key: str) -> None:
        """Delete a value from the token file."""
        with self._lock:
            data = self._read_document()
            if key in data:
                del data[key]
                self._write_document(data)


class KeyringTokenStore(TokenStore):
    """OS keyring-backed token store for persistent native credentials.

    Requires the ``keyring`` package: ``pip install sdxauth[keyring]``

    Parameters
    ----------
    service_name : str
        Service name for keyring storage (default "sdxauth").
    key_prefix : str
        Prefix of every storage key.
    clock : callable, optional
        Returns the current epoch time in seconds.
    """

    def __init__(
        self,
        service_name: str = "sdxauth",
        key_prefix: str = "auth",
        clock: Clock | None = None,
    ) -> None:
        """Initialize the keyring token store."""
        try:
            import keyring as _keyring

            from keyring.errors import KeyringError, PasswordDeleteError
        except ImportError:
            msg = "Install keyring for OS keyring token storage: pip install sdxauth[keyring]"
            raise ImportError(msg) from None
        super().__init__(key_prefix=key_prefix, clock=clock)
        self._service_name = service_name
        self._keyring = _keyring
        self._keyring_error = KeyringError
        self._delete_error = PasswordDeleteError

    def read_raw(self, key: str) -> str | None:
        """Read a value from the OS keyring."""
        try:
            return self._keyring.get_password(self._service_name, key)
        except self._keyring_error as exc:
            logger.warning("Keyring read failed for %s: %s", key, exc)
            return None

    def write_raw(self, key: str, value: str) -> None:
        """Write a value to the OS keyring."""
        self._keyring.set_password(self._service_name, key, value)

    def delete_raw(self, key: str) -> None:
        """Delete a value from the OS keyring."""
        try:
            self._keyring.delete_password(self._service_name, key)
        except self._delete_error:
            logger.debug("Keyring entry %s already absent", key)


_token_store_instance: TokenStore | None = None
_token_store_lock = threading.Lock()


def get_token_store(backend: str = "memory", **kwargs: Any) -> TokenStore:
    """Factory function for token stores.

    Returns a singleton instance. Call ``reset_token_store()`` to clear
    the cached instance (e.g. in tests).

    Parameters
    ----------
    backend : str
        Storage backend: "memory", "file", or "keyring".
    **kwargs : Any
        Additional keyword arguments passed to the store constructor.

    Returns
    -------
    TokenStore
        A configured token store instance.
    """
    global _token_store_instance  # noqa: PLW0603

    with _token_store_lock:
        if _token_store_instance is not None:
            return _token_store_instance

        key_prefix = kwargs.get("key_prefix", "auth")
        clock = kwargs.get("clock")
        if backend == "memory":
            _token_store_instance = MemoryTokenStore(key_prefix=key_prefix, clock=clock)
        elif backend == "file":
            _token_store_instance = FileTokenStore(
                path=kwargs.get("path", "~/.sdxauth/tokens.json"),
                key_prefix=key_prefix,
                clock=clock,
            )
        elif backend == "keyring":
            _token_store_instance = KeyringTokenStore(
                service_name=kwargs.get("service_name", "sdxauth"),
                key_prefix=key_prefix,
                clock=clock,
            )
        else:
            msg = f"Unknown token store backend: {backend}"
            raise ValueError(msg)

        return _token_store_instance


def reset_token_store() -> None:
    """Reset the singleton token store instance.

    Useful for tests that need a fresh token store between runs.
    """
    global _token_store_instance  # noqa: PLW0603

    with _token_store_lock:
        _token_store_instance = None
