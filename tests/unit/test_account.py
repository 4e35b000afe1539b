"""Tests for account endpoints."""
import asyncio

import pytest

from krushi_client.core.api.account import AccountService
from krushi_client.core.api.exceptions import ApiError


@pytest.fixture()
def account(api_client):
    return AccountService(api_client)


def test_get_and_update_profile(account, transport, signed_in_store):
    transport.reply("GET", "/auth/profile", 200, {"name": "Asha"})
    transport.reply("PATCH", "/auth/profile", 200, {"name": "Asha K"})

    assert asyncio.run(account.get_profile()) == {"name": "Asha"}
    assert asyncio.run(account.update_profile({"name": "Asha K"})) == {"name": "Asha K"}
    assert transport.calls[1].json == {"name": "Asha K"}
    assert all(c.bearer == "access-1" for c in transport.calls)


def test_change_password(account, transport, signed_in_store):
    transport.reply("POST", "/auth/change-password", 200, {})
    asyncio.run(account.change_password("old", "new"))
    assert transport.calls[0].json == {"currentPassword": "old", "newPassword": "new"}


def test_forgot_password_is_public(account, transport, store):
    transport.reply("POST", "/auth/forgot-password", 200, {})
    asyncio.run(account.forgot_password("asha@example.com"))
    assert "Authorization" not in transport.calls[0].headers


def test_list_endpoints_unwrap_data(account, transport, signed_in_store):
    transport.reply("GET", "/auth/login-history", 200, [{"at": "2024-01-01"}])
    transport.reply("GET", "/auth/sessions/active", 200, {"data": [{"id": "s1"}]})

    assert asyncio.run(account.get_login_history()) == [{"at": "2024-01-01"}]
    assert asyncio.run(account.get_active_sessions()) == [{"id": "s1"}]


def test_revoke_session(account, transport, signed_in_store):
    transport.reply("DELETE", "/auth/sessions/s1", 204, None)
    asyncio.run(account.revoke_session("s1"))
    assert transport.calls[0].method == "DELETE"


def test_errors_propagate(account, transport, signed_in_store):
    transport.reply("GET", "/auth/login-history", 403, {})
    with pytest.raises(ApiError):
        asyncio.run(account.get_login_history())
