"""Pytest shared fixtures for the access layer tests."""
import asyncio
import pathlib
import sys
from typing import Any, Callable, Dict, List, Optional

# Add project root to Python path
ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import pytest
import requests

from krushi_client.core.api.client import ApiClient
from krushi_client.core.api.exceptions import TransportError
from krushi_client.core.api.transport import ApiResponse
from krushi_client.core.credentials import Credential, CredentialStore, MemoryStorage
from krushi_client.core.session import SessionLifecycle

BASE_URL = "http://api.test/api/v1"


# ─────────────────────────────────────────────────────────────────────────────
# Network Guard Rails
# ─────────────────────────────────────────────────────────────────────────────
@pytest.fixture(autouse=True)
def _block_network(monkeypatch, request):
    """
    Prevent unit tests from reaching a real backend.

    Integration tests are explicitly marked with @pytest.mark.integration and
    are allowed to perform real HTTP calls by skipping this fixture.
    """
    if request.node.get_closest_marker("integration"):
        return

    def _guard(self, method, url, *args, **kwargs):
        raise RuntimeError(f"Unexpected HTTP {method} in unit test: {url}")

    monkeypatch.setattr(requests.Session, "request", _guard)


# ─────────────────────────────────────────────────────────────────────────────
# Scriptable Transport
# ─────────────────────────────────────────────────────────────────────────────
class RecordedCall:
    def __init__(self, method: str, url: str, headers: Dict[str, str], json: Any, params: Any):
        self.method = method
        self.url = url
        self.headers = headers
        self.json = json
        self.params = params

    @property
    def path(self) -> str:
        return self.url[len(BASE_URL):] if self.url.startswith(BASE_URL) else self.url

    @property
    def bearer(self) -> Optional[str]:
        value = self.headers.get("Authorization", "")
        return value[len("Bearer "):] if value.startswith("Bearer ") else None


class FakeTransport:
    """Transport answering from per-path handlers and recording every call.

    A handler receives the RecordedCall and returns an ApiResponse, a
    ``(status, data)`` tuple, or raises TransportError. Handlers may be
    coroutines, which lets a test hold a response until it releases a gate.
    """

    def __init__(self):
        self.calls: List[RecordedCall] = []
        self._routes: Dict[tuple, Callable] = {}

    def route(self, method: str, path: str, handler: Callable) -> None:
        self._routes[(method, path)] = handler

    def reply(self, method: str, path: str, status: int = 200, data: Any = None) -> None:
        self.route(method, path, lambda call: (status, data))

    def calls_to(self, path: str) -> List[RecordedCall]:
        return [c for c in self.calls if c.path == path]

    async def request(self, method, url, *, headers=None, json=None, params=None):
        call = RecordedCall(method, url, dict(headers or {}), json, params)
        self.calls.append(call)
        handler = self._routes.get((method, call.path))
        if handler is None:
            raise AssertionError(f"No fake route for {method} {call.path}")
        result = handler(call)
        if asyncio.iscoroutine(result):
            result = await result
        if isinstance(result, ApiResponse):
            return result
        status, data = result
        return ApiResponse(status_code=status, data=data)


def network_down(call):
    raise TransportError("connection refused")


# ─────────────────────────────────────────────────────────────────────────────
# Access Layer Fixtures
# ─────────────────────────────────────────────────────────────────────────────
def make_credential(access: str = "access-1", refresh: str = "refresh-1", **user) -> Credential:
    profile = {"_id": "u1", "role": "farmer", "name": "Asha"}
    profile.update(user)
    return Credential(access, refresh, profile)


@pytest.fixture()
def transport():
    return FakeTransport()


@pytest.fixture()
def store():
    return CredentialStore(MemoryStorage())


@pytest.fixture()
def signed_in_store(store):
    store.set(make_credential())
    return store


@pytest.fixture()
def api_client(transport, store):
    return ApiClient(BASE_URL, store, transport)


@pytest.fixture()
def session(api_client):
    return SessionLifecycle(api_client)


# ─────────────────────────────────────────────────────────────────────────────
# Pytest Configuration
# ─────────────────────────────────────────────────────────────────────────────
def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests (requires a running backend)"
    )
    config.addinivalue_line(
        "markers", "critical: marks tests covering session and delivery guarantees"
    )
