"""Session lifecycle: login, logout, and forced sign-out."""
from __future__ import annotations
import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Set

from .api.client import ApiClient, RequestDescriptor
from .api.exceptions import ApiError, ErrorKind
from .credentials import Credential, CredentialStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ForcedLogout:
    """Signal for the presentation layer: the session is gone, go to ``redirect_to``."""
    reason: str
    redirect_to: str


ForcedLogoutListener = Callable[[ForcedLogout], Any]


class SessionLifecycle:
    """Service owning sign-in and sign-out.

    Installs itself as the client's session-expired hook, so an unrecoverable
    401 anywhere in the pipeline ends up in ``force_logout``.

    Usage:
        session = SessionLifecycle(client, login_path="/login")
        session.add_forced_logout_listener(lambda signal: navigate(signal.redirect_to))
        await session.login("farmer@example.com", "secret")
        ...
        await session.logout()
    """

    def __init__(self, client: ApiClient, login_path: str = "/login"):
        """Initialize session service.

        Args:
            client: API client whose store this lifecycle manages
            login_path: Unauthenticated entry point forced logouts redirect to
        """
        self.client = client
        self.store: CredentialStore = client.store
        self.login_path = login_path
        self._listeners: List[ForcedLogoutListener] = []
        self._notifications: Set[asyncio.Task] = set()
        client.on_session_expired = self.force_logout

    def add_forced_logout_listener(self, listener: ForcedLogoutListener) -> None:
        self._listeners.append(listener)

    # ─────────────────────────────────────────────────────────────────────
    # Sign-in
    # ─────────────────────────────────────────────────────────────────────
    async def login(self, email: str, password: str) -> Credential:
        """Authenticate with email and password and store the credential.

        Raises:
            ApiError: Login rejected, or the response carried no credential
        """
        resp = await self.client.send(
            RequestDescriptor("POST", "/auth/login", json={"email": email, "password": password}, authenticate=False)
        )
        credential = self._store_credential(resp.data, "/auth/login")
        logger.info("Logged in as %s (%s)", credential.user_id, credential.user_role)
        return credential

    async def register(self, user_data: Dict[str, Any]) -> Dict[str, Any]:
        """Register a user; a response carrying tokens signs the client in as that user."""
        resp = await self.client.send(RequestDescriptor("POST", "/auth/register", json=user_data, authenticate=False))
        data = resp.data if isinstance(resp.data, dict) else {}
        if data.get("accessToken"):
            self._store_credential(data, "/auth/register")
        return data

    async def request_mobile_otp(self, phone_number: str) -> None:
        await self.client.send(
            RequestDescriptor("POST", "/auth/mobile-otp-request", json={"phoneNumber": phone_number}, authenticate=False)
        )

    async def verify_mobile_otp(self, phone_number: str, otp: str) -> Credential:
        resp = await self.client.send(
            RequestDescriptor(
                "POST",
                "/auth/mobile-otp-verify",
                json={"phoneNumber": phone_number, "otp": otp},
                authenticate=False,
            )
        )
        credential = self._store_credential(resp.data, "/auth/mobile-otp-verify")
        logger.info("Logged in by OTP as %s", credential.user_id)
        return credential

    def _store_credential(self, data: Any, path: str) -> Credential:
        credential = Credential.from_login_payload(data if isinstance(data, dict) else {})
        if credential is None:
            raise ApiError(ErrorKind.SERVER, 200, data, path, "Response carried no credential")
        self.store.set(credential)
        return credential

    # ─────────────────────────────────────────────────────────────────────
    # Sign-out
    # ─────────────────────────────────────────────────────────────────────
    async def logout(self) -> None:
        """Clear the local session and notify the server in the background.

        The store is cleared before anything else and unconditionally; the
        server notification is fire-and-forget and its failure is only logged.
        """
        credential = self.store.get()
        self.store.clear()
        logger.info("Logged out")
        if credential is None:
            return
        task = asyncio.get_running_loop().create_task(self._notify_logout(credential))
        self._notifications.add(task)
        task.add_done_callback(self._notifications.discard)

    async def _notify_logout(self, credential: Credential) -> None:
        # The store is already empty, so the captured token is sent explicitly.
        descriptor = RequestDescriptor(
            "POST",
            "/auth/logout",
            json={"refreshToken": credential.refresh_token},
            headers={"Authorization": f"Bearer {credential.access_token}"},
            authenticate=False,
        )
        try:
            await self.client.send(descriptor)
        except ApiError as e:
            logger.warning("Logout notification failed: %s", e)

    def force_logout(self, reason: str) -> bool:
        """Terminate the session after an unrecoverable authentication failure.

        Idempotent: when the store is already empty nothing happens, so many
        requests failing on the same refresh produce a single signal.

        Returns:
            True if a session was terminated, False if there was none
        """
        if self.store.get() is None:
            self.store.clear()
            return False
        self.store.clear()
        logger.warning("Forced logout: %s", reason)
        signal = ForcedLogout(reason=reason, redirect_to=self.login_path)
        for listener in list(self._listeners):
            try:
                listener(signal)
            except Exception:
                logger.exception("Forced-logout listener failed")
        return True

    # ─────────────────────────────────────────────────────────────────────
    # State
    # ─────────────────────────────────────────────────────────────────────
    def current_user(self) -> Optional[Dict[str, Any]]:
        credential = self.store.get()
        return dict(credential.user) if credential is not None else None

    def is_authenticated(self) -> bool:
        return self.store.get() is not None

    async def test_connection(self) -> bool:
        """Return True if the backend answers its health check."""
        try:
            await self.client.send(RequestDescriptor("GET", "/health", authenticate=False))
        except ApiError:
            return False
        return True

    async def test_token(self) -> bool:
        """Return True if the stored credential is accepted by the backend."""
        if not self.is_authenticated():
            return False
        try:
            await self.client.get("/auth/profile")
        except ApiError:
            return False
        return True

    async def aclose(self) -> None:
        """Wait for outstanding logout notifications."""
        if self._notifications:
            await asyncio.gather(*list(self._notifications), return_exceptions=True)
