"""Credential persistence.

The store is the single owner of the active session's tokens and user
profile. Everything else reads through ``CredentialStore.get()`` on every use
and never keeps its own copy, so a refresh or a logout is visible everywhere
immediately.

Storage layout (key/value):
    accessToken   access credential
    refreshToken  refresh credential
    user          JSON-serialized user profile

The three keys are written and deleted together. A storage that holds only
some of them is treated as logged out.
"""
from __future__ import annotations
import json
import logging
import os
import secrets
import tempfile
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, Mapping, Optional, Protocol

logger = logging.getLogger(__name__)

ACCESS_TOKEN_KEY = "accessToken"
REFRESH_TOKEN_KEY = "refreshToken"
USER_KEY = "user"
SESSION_ID_KEY = "sessionId"

CREDENTIAL_KEYS = (ACCESS_TOKEN_KEY, REFRESH_TOKEN_KEY, USER_KEY)


def generate_id() -> str:
    """Return a short unique identifier (millisecond clock + random suffix)."""
    return f"{int(time.time() * 1000):x}{secrets.token_hex(6)}"


@dataclass(frozen=True)
class Credential:
    """Tokens and profile of the signed-in user."""
    access_token: str
    refresh_token: str
    user: Dict[str, Any] = field(default_factory=dict)

    @property
    def user_id(self) -> str:
        for key in ("_id", "id"):
            value = self.user.get(key)
            if value:
                return str(value)
        return "anonymous"

    @property
    def user_role(self) -> str:
        return str(self.user.get("role") or "unknown")

    @classmethod
    def from_login_payload(cls, payload: Mapping[str, Any]) -> Optional["Credential"]:
        """Build a credential from an ``{accessToken, refreshToken, user}`` body.

        Returns None when any of the three fields is missing.
        """
        if not isinstance(payload, Mapping):
            return None
        access_token = payload.get("accessToken")
        refresh_token = payload.get("refreshToken")
        user = payload.get("user")
        if not access_token or not refresh_token or not isinstance(user, Mapping):
            return None
        return cls(str(access_token), str(refresh_token), dict(user))

    def __repr__(self) -> str:
        # Tokens stay out of reprs, tracebacks and log lines.
        return f"Credential(user_id={self.user_id!r}, role={self.user_role!r})"


# ─────────────────────────────────────────────────────────────────────────────
# Storage backends
# ─────────────────────────────────────────────────────────────────────────────
class KeyValueStorage(Protocol):
    """Minimal string key/value storage."""

    def get(self, key: str) -> Optional[str]: ...

    def set_many(self, values: Mapping[str, str]) -> None: ...

    def delete_many(self, keys: Iterable[str]) -> None: ...


class MemoryStorage:
    """Process-local storage; lost when the process exits."""

    def __init__(self, initial: Optional[Mapping[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set_many(self, values: Mapping[str, str]) -> None:
        self._data.update(values)

    def delete_many(self, keys: Iterable[str]) -> None:
        for key in keys:
            self._data.pop(key, None)

    def __len__(self) -> int:
        return len(self._data)


class JsonFileStorage:
    """Storage persisted as a single JSON document.

    Every write replaces the whole document through a temporary file and
    ``os.replace``, so a reader (or the next process) sees either the old or
    the new state, never a mix.
    """

    def __init__(self, path: str | os.PathLike):
        self.path = Path(path)

    def _read(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError) as e:
            logger.warning("Ignoring unreadable credential file %s: %s", self.path, e)
            return {}
        if not isinstance(data, dict):
            return {}
        return {str(k): str(v) for k, v in data.items() if isinstance(v, str)}

    def _write(self, data: Mapping[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=".creds-", dir=str(self.path.parent))
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(dict(data), f, indent=2)
            os.chmod(tmp_name, 0o600)
            os.replace(tmp_name, self.path)
        except BaseException:
            try:
                os.unlink(tmp_name)
            except OSError:
                pass
            raise

    def get(self, key: str) -> Optional[str]:
        return self._read().get(key)

    def set_many(self, values: Mapping[str, str]) -> None:
        data = self._read()
        data.update(values)
        self._write(data)

    def delete_many(self, keys: Iterable[str]) -> None:
        data = self._read()
        removed = False
        for key in keys:
            if key in data:
                del data[key]
                removed = True
        if removed:
            self._write(data)


# ─────────────────────────────────────────────────────────────────────────────
# Stores
# ─────────────────────────────────────────────────────────────────────────────
class CredentialStore:
    """Owner of the active Credential.

    Usage:
        store = CredentialStore(JsonFileStorage("~/.krushi/credentials.json"))
        store.set(Credential("access", "refresh", {"_id": "u1", "role": "farmer"}))
        store.get().user_role   # "farmer"
        store.clear()
    """

    def __init__(self, storage: Optional[KeyValueStorage] = None):
        self._storage = storage if storage is not None else MemoryStorage()

    def get(self) -> Optional[Credential]:
        access_token = self._storage.get(ACCESS_TOKEN_KEY)
        refresh_token = self._storage.get(REFRESH_TOKEN_KEY)
        user_raw = self._storage.get(USER_KEY)
        if not access_token or not refresh_token or not user_raw:
            return None
        try:
            user = json.loads(user_raw)
        except json.JSONDecodeError:
            logger.warning("Stored user profile is not valid JSON; treating session as signed out")
            return None
        if not isinstance(user, dict):
            return None
        return Credential(access_token, refresh_token, user)

    def set(self, credential: Credential) -> None:
        self._storage.set_many({
            ACCESS_TOKEN_KEY: credential.access_token,
            REFRESH_TOKEN_KEY: credential.refresh_token,
            USER_KEY: json.dumps(credential.user, ensure_ascii=False),
        })

    def clear(self) -> None:
        self._storage.delete_many(CREDENTIAL_KEYS)


class SessionIdStore:
    """Lazily generated identifier correlating telemetry from one client lifetime."""

    def __init__(self, storage: Optional[KeyValueStorage] = None):
        self._storage = storage if storage is not None else MemoryStorage()

    def get(self) -> str:
        session_id = self._storage.get(SESSION_ID_KEY)
        if not session_id:
            session_id = generate_id()
            self._storage.set_many({SESSION_ID_KEY: session_id})
        return session_id

    def reset(self) -> None:
        self._storage.delete_many([SESSION_ID_KEY])
