"""Single-flight refresh of the access credential.

However many requests hit a 401 at the same time, the refresh endpoint is
called once. The first caller owns the call; everyone who arrives while it
is in flight parks on a future and receives the same outcome.

    IDLE ──refresh()──> REFRESHING ──success/failure──> IDLE
                          │
                          └─ refresh() while REFRESHING: wait on a future

The new credential is written to the store before any waiter is resumed, so
a replayed request always reads the fresh token.

The exchange runs in a task owned by the coordinator. A cancelled caller
(its own, or one that started the refresh) stops waiting; the exchange, the
store update and every other waiter are unaffected.
"""
from __future__ import annotations
import asyncio
import logging
from enum import Enum
from typing import List, Mapping, Optional

from ..credentials import Credential, CredentialStore
from .exceptions import RefreshFailedError, TransportError
from .transport import Transport

logger = logging.getLogger(__name__)

REFRESH_PATH = "/auth/refresh-token"


class RefreshState(str, Enum):
    IDLE = "idle"
    REFRESHING = "refreshing"


class RefreshCoordinator:
    """Guarantees at most one in-flight refresh-token exchange."""

    def __init__(self, transport: Transport, store: CredentialStore, refresh_url: str):
        self._transport = transport
        self._store = store
        self._refresh_url = refresh_url
        self._state = RefreshState.IDLE
        self._waiters: List[asyncio.Future] = []
        self._task: Optional[asyncio.Task] = None
        self.refresh_calls = 0

    @property
    def state(self) -> RefreshState:
        return self._state

    @property
    def waiting(self) -> int:
        """Number of callers parked on the in-flight refresh."""
        return len(self._waiters)

    async def refresh(self, stale_access_token: Optional[str] = None) -> Credential:
        """Obtain a fresh credential, sharing any refresh already in flight.

        Args:
            stale_access_token: Access token the caller was rejected with. If
                the store already holds a different one, a refresh finished
                while the caller's request was on the wire and the stored
                credential is returned without calling the server again.

        Returns:
            The new (or already refreshed) credential

        Raises:
            RefreshFailedError: The exchange failed; every concurrent caller
                receives the same error.
        """
        if self._state is RefreshState.REFRESHING:
            waiter = asyncio.get_running_loop().create_future()
            self._waiters.append(waiter)
            return await waiter

        if stale_access_token is not None:
            current = self._store.get()
            if current is not None and current.access_token != stale_access_token:
                logger.debug("Credential already refreshed; reusing stored token")
                return current

        self._state = RefreshState.REFRESHING
        self._waiters = []
        task = asyncio.get_running_loop().create_task(self._run(self._store.get()))
        self._task = task
        task.add_done_callback(self._task_done)
        # Cancelling the caller that started the refresh leaves the exchange running.
        return await asyncio.shield(task)

    async def _run(self, current: Optional[Credential]) -> Credential:
        try:
            credential = await self._exchange(current)
            self._store.set(credential)
        except BaseException as exc:
            if isinstance(exc, RefreshFailedError):
                failure = exc
            else:
                failure = RefreshFailedError(f"Token refresh aborted: {exc!r}")
            logger.warning("Token refresh failed: %s", failure)
            self._settle(error=failure)
            raise
        logger.info("Access token refreshed for user %s", credential.user_id)
        self._settle(result=credential)
        return credential

    def _task_done(self, task: asyncio.Task) -> None:
        if self._task is task:
            self._task = None
        # Retrieve the outcome so an unawaited failure is not reported as lost.
        if not task.cancelled():
            task.exception()

    async def _exchange(self, current: Optional[Credential]) -> Credential:
        if current is None:
            raise RefreshFailedError("No refresh token available")

        self.refresh_calls += 1
        try:
            resp = await self._transport.request(
                "POST",
                self._refresh_url,
                json={"refreshToken": current.refresh_token},
            )
        except TransportError as e:
            raise RefreshFailedError(f"Refresh request got no response: {e}") from e

        if not resp.ok:
            raise RefreshFailedError(f"Refresh rejected with HTTP {resp.status_code}", status=resp.status_code)

        data = resp.data if isinstance(resp.data, Mapping) else {}
        access_token = data.get("accessToken")
        if not access_token:
            raise RefreshFailedError("Refresh response has no accessToken", status=resp.status_code)

        # The session may have ended or been replaced while the exchange was on the wire.
        latest = self._store.get()
        if latest is None:
            raise RefreshFailedError("Session ended during token refresh")
        if latest.refresh_token != current.refresh_token:
            return latest

        user = data.get("user")
        return Credential(
            access_token=str(access_token),
            refresh_token=str(data.get("refreshToken") or current.refresh_token),
            user=dict(user) if isinstance(user, Mapping) else dict(current.user),
        )

    def _settle(self, result: Optional[Credential] = None, error: Optional[BaseException] = None) -> None:
        waiters, self._waiters = self._waiters, []
        self._state = RefreshState.IDLE
        for waiter in waiters:
            if waiter.done():
                continue
            if error is not None:
                waiter.set_exception(error)
            else:
                waiter.set_result(result)
