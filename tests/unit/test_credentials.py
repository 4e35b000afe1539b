"""Tests for credential persistence."""
import json
import os
import stat

import pytest

from krushi_client.core.credentials import (
    ACCESS_TOKEN_KEY,
    REFRESH_TOKEN_KEY,
    SESSION_ID_KEY,
    USER_KEY,
    Credential,
    CredentialStore,
    JsonFileStorage,
    MemoryStorage,
    SessionIdStore,
    generate_id,
)
from tests.conftest import make_credential


class _CountingStorage(MemoryStorage):
    def __init__(self):
        super().__init__()
        self.writes = 0
        self.deletes = 0

    def set_many(self, values):
        self.writes += 1
        super().set_many(values)

    def delete_many(self, keys):
        self.deletes += 1
        super().delete_many(keys)


def test_empty_store_returns_none(store):
    assert store.get() is None


def test_set_then_get_round_trips_profile(store):
    store.set(make_credential(name="Ravi"))
    credential = store.get()
    assert credential.access_token == "access-1"
    assert credential.refresh_token == "refresh-1"
    assert credential.user["name"] == "Ravi"
    assert credential.user_id == "u1"
    assert credential.user_role == "farmer"


def test_set_and_clear_touch_storage_once():
    storage = _CountingStorage()
    store = CredentialStore(storage)
    store.set(make_credential())
    store.clear()
    assert storage.writes == 1
    assert storage.deletes == 1
    assert len(storage) == 0


def test_set_overwrites_previous_credential(store):
    store.set(make_credential("a1", "r1"))
    store.set(make_credential("a2", "r2", role="admin"))
    credential = store.get()
    assert (credential.access_token, credential.refresh_token) == ("a2", "r2")
    assert credential.user_role == "admin"


@pytest.mark.parametrize("missing", [ACCESS_TOKEN_KEY, REFRESH_TOKEN_KEY, USER_KEY])
def test_partial_storage_is_treated_as_signed_out(missing):
    storage = MemoryStorage({
        ACCESS_TOKEN_KEY: "a",
        REFRESH_TOKEN_KEY: "r",
        USER_KEY: json.dumps({"_id": "u1"}),
    })
    storage.delete_many([missing])
    assert CredentialStore(storage).get() is None


def test_corrupt_user_profile_is_treated_as_signed_out():
    storage = MemoryStorage({ACCESS_TOKEN_KEY: "a", REFRESH_TOKEN_KEY: "r", USER_KEY: "{not json"})
    assert CredentialStore(storage).get() is None


def test_credential_repr_hides_tokens():
    text = repr(make_credential("secret-access", "secret-refresh"))
    assert "secret-access" not in text
    assert "secret-refresh" not in text
    assert "u1" in text


def test_user_id_falls_back_to_id_then_anonymous():
    assert Credential("a", "r", {"id": 42}).user_id == "42"
    assert Credential("a", "r", {}).user_id == "anonymous"
    assert Credential("a", "r", {}).user_role == "unknown"


def test_from_login_payload_requires_all_fields():
    payload = {"accessToken": "a", "refreshToken": "r", "user": {"_id": "u1"}}
    assert Credential.from_login_payload(payload).access_token == "a"
    for key in payload:
        partial = {k: v for k, v in payload.items() if k != key}
        assert Credential.from_login_payload(partial) is None


def test_json_file_storage_persists_across_instances(tmp_path):
    path = tmp_path / "nested" / "credentials.json"
    CredentialStore(JsonFileStorage(path)).set(make_credential())

    reopened = CredentialStore(JsonFileStorage(path)).get()
    assert reopened.access_token == "access-1"
    assert reopened.user["name"] == "Asha"
    if os.name == "posix":
        assert stat.S_IMODE(path.stat().st_mode) == 0o600


def test_json_file_storage_clear_keeps_other_keys(tmp_path):
    path = tmp_path / "credentials.json"
    storage = JsonFileStorage(path)
    storage.set_many({"theme": "dark"})
    store = CredentialStore(storage)
    store.set(make_credential())
    store.clear()

    data = json.loads(path.read_text())
    assert data == {"theme": "dark"}
    assert store.get() is None


def test_json_file_storage_ignores_unreadable_file(tmp_path):
    path = tmp_path / "credentials.json"
    path.write_text("garbage")
    assert CredentialStore(JsonFileStorage(path)).get() is None


def test_session_id_is_stable_until_reset():
    ids = SessionIdStore(MemoryStorage())
    first = ids.get()
    assert ids.get() == first
    ids.reset()
    assert ids.get() != first


def test_session_id_lives_in_its_own_key():
    storage = MemoryStorage()
    SessionIdStore(storage).get()
    assert storage.get(SESSION_ID_KEY)
    CredentialStore(storage).clear()
    assert storage.get(SESSION_ID_KEY)


def test_generate_id_is_unique():
    assert len({generate_id() for _ in range(200)}) == 200
