"""Tests for wiring a client from settings."""
import asyncio

from krushi_client.client_factory import build_client
from krushi_client.config.settings import ClientConfig
from krushi_client.core.credentials import JsonFileStorage
from krushi_client.telemetry import BATCH_PATH
from tests.conftest import FakeTransport, make_credential

API_ROOT = "http://api.test/api/v1"


def _config(**overrides):
    base = dict(api_root=API_ROOT, telemetry_flush_interval=3600)
    base.update(overrides)
    return ClientConfig(**base)


def test_services_share_one_store():
    bundle = build_client(_config(), FakeTransport())
    assert bundle.session.store is bundle.store
    assert bundle.api.store is bundle.store
    assert bundle.activity.store is bundle.store
    assert bundle.api.on_session_expired == bundle.session.force_logout


def test_credentials_file_backs_the_store(tmp_path):
    path = tmp_path / "creds.json"
    bundle = build_client(_config(credentials_file=str(path)), FakeTransport())
    assert isinstance(bundle.store._storage, JsonFileStorage)
    bundle.store.set(make_credential())
    assert build_client(_config(credentials_file=str(path)), FakeTransport()).store.get() is not None


def test_forced_logout_is_recorded_as_activity():
    bundle = build_client(_config(), FakeTransport())
    bundle.store.set(make_credential())
    bundle.session.force_logout("refresh failed")
    (entry,) = bundle.uploader.queue.snapshot()
    assert entry.type == "logout"
    assert entry.details == {"forced": True, "reason": "refresh failed"}


def test_aclose_flushes_pending_activity():
    transport = FakeTransport()
    transport.reply("POST", BATCH_PATH, 200, {})
    bundle = build_client(_config(), transport)

    async def scenario():
        await bundle.start()
        bundle.activity.log_page_view("/dashboard")
        await bundle.aclose()

    asyncio.run(scenario())

    assert len(transport.calls_to(BATCH_PATH)) == 1


def test_disabled_telemetry_sends_nothing():
    transport = FakeTransport()
    bundle = build_client(_config(telemetry_enabled=False), transport)

    async def scenario():
        await bundle.start()
        bundle.activity.log_page_view("/dashboard")
        await bundle.aclose()

    asyncio.run(scenario())

    assert transport.calls == []
