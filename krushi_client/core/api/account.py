"""Account endpoints used by the dashboard (profile, password, sessions)."""
from __future__ import annotations
from typing import Any, Dict, List

from .client import ApiClient, RequestDescriptor


class AccountService:
    """Service for the signed-in user's account."""

    def __init__(self, client: ApiClient):
        """Initialize account service.

        Args:
            client: Authenticated API client
        """
        self.client = client

    async def get_profile(self) -> Dict[str, Any]:
        resp = await self.client.get("/auth/profile")
        return resp.data or {}

    async def update_profile(self, changes: Dict[str, Any]) -> Dict[str, Any]:
        resp = await self.client.patch("/auth/profile", json=changes)
        return resp.data or {}

    async def change_password(self, current_password: str, new_password: str) -> None:
        await self.client.post(
            "/auth/change-password",
            json={"currentPassword": current_password, "newPassword": new_password},
        )

    async def forgot_password(self, email: str) -> None:
        """Request a password reset mail; works without a session."""
        await self.client.send(
            RequestDescriptor("POST", "/auth/forgot-password", json={"email": email}, authenticate=False)
        )

    async def get_login_history(self) -> List[Dict[str, Any]]:
        resp = await self.client.get("/auth/login-history")
        return _as_list(resp.data)

    async def get_active_sessions(self) -> List[Dict[str, Any]]:
        resp = await self.client.get("/auth/sessions/active")
        return _as_list(resp.data)

    async def revoke_session(self, session_id: str) -> None:
        await self.client.delete(f"/auth/sessions/{session_id}")


def _as_list(data: Any) -> List[Dict[str, Any]]:
    """Unwrap list payloads that may arrive bare or under a ``data`` key."""
    if isinstance(data, list):
        return data
    if isinstance(data, dict) and isinstance(data.get("data"), list):
        return data["data"]
    return []
