"""Authenticated request pipeline for the Krushi API.

Handles bearer credentials, 401 recovery, and response classification.
"""
from __future__ import annotations
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, List, Mapping, Optional

import jwt

from ..credentials import Credential, CredentialStore
from .exceptions import (
    ApiError,
    ErrorKind,
    RefreshFailedError,
    SessionExpiredError,
    TransportError,
)
from .refresh import REFRESH_PATH, RefreshCoordinator
from .transport import REQUEST_TIMEOUT, ApiResponse, RequestsTransport, Transport

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RequestDescriptor:
    """Everything needed to (re)issue one API call.

    ``authenticate=False`` marks public endpoints: no bearer header is sent
    and a 401 is an ordinary error, not an expired credential.
    """
    method: str
    path: str
    json: Any = None
    params: Optional[Mapping[str, Any]] = None
    headers: Mapping[str, str] = field(default_factory=dict)
    authenticate: bool = True


@dataclass
class PendingRequest:
    """A request in flight and whether it has used its one retry."""
    descriptor: RequestDescriptor
    retried: bool = False

    def mark_retried(self) -> None:
        if self.retried:
            raise RuntimeError(f"{self.descriptor.path} has already been retried")
        self.retried = True


# (descriptor, status or None, duration in seconds, error or None)
ResponseListener = Callable[[RequestDescriptor, Optional[int], float, Optional[BaseException]], None]


def access_token_expiry(access_token: str) -> Optional[float]:
    """Return the ``exp`` claim of a JWT access token, or None.

    The signature is not verified: the value only schedules a refresh, the
    server remains the authority on validity.
    """
    if not access_token:
        return None
    try:
        claims = jwt.decode(access_token, options={"verify_signature": False})
    except jwt.PyJWTError:
        return None
    exp = claims.get("exp")
    if isinstance(exp, (int, float)):
        return float(exp)
    return None


class ApiClient:
    """HTTP client for the Krushi API with automatic credential refresh.

    Features:
    - Bearer credential read from the CredentialStore on every dispatch
    - One transparent retry after a 401, behind a single-flight refresh
    - Forced sign-out hook when authentication cannot be recovered
    - Optional proactive refresh for JWTs about to expire

    Usage:
        client = ApiClient("https://api.smartsheti.com/api/v1", CredentialStore())
        resp = await client.get("/auth/profile")
    """

    def __init__(
        self,
        base_url: str,
        store: CredentialStore,
        transport: Optional[Transport] = None,
        *,
        timeout: float = REQUEST_TIMEOUT,
        token_refresh_leeway: int = 0,
        on_session_expired: Optional[Callable[[str], Any]] = None,
    ):
        """Initialize the client.

        Args:
            base_url: Versioned API root, e.g. ``http://localhost:5000/api/v1``
            store: Owner of the active credential
            transport: Network transport (defaults to a pooled requests session)
            timeout: Per-request timeout for the default transport, in seconds
            token_refresh_leeway: Refresh JWTs this many seconds before expiry
                (0 disables proactive refresh)
            on_session_expired: Called with a reason when authentication is
                unrecoverable; SessionLifecycle installs its forced logout here
        """
        self.base_url = base_url.rstrip("/")
        self.store = store
        self.transport = transport if transport is not None else RequestsTransport(timeout=timeout)
        self.token_refresh_leeway = token_refresh_leeway
        self.on_session_expired = on_session_expired
        self.refresher = RefreshCoordinator(self.transport, store, self.url_for(REFRESH_PATH))
        self._listeners: List[ResponseListener] = []

    def url_for(self, path: str) -> str:
        if path.startswith(("http://", "https://")):
            return path
        return f"{self.base_url}/{path.lstrip('/')}"

    def add_listener(self, listener: ResponseListener) -> None:
        """Register a callable invoked after every request completes."""
        self._listeners.append(listener)

    def remove_listener(self, listener: ResponseListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    # ─────────────────────────────────────────────────────────────────────
    # Pipeline
    # ─────────────────────────────────────────────────────────────────────
    async def send(self, descriptor: RequestDescriptor) -> ApiResponse:
        """Send a request through the authenticated pipeline.

        Args:
            descriptor: Request to send

        Returns:
            The response, unchanged, for any status below 400

        Raises:
            ApiError: kind NETWORK when no response arrived, CLIENT/SERVER for
                4xx/5xx, AUTH for a 401 on a request already replayed once
            SessionExpiredError: The credential could not be recovered; the
                session has been terminated

        A 401 on the replay leaves the session in place; only a failed
        refresh forces logout.

        Listeners see every outcome, including cancellation (status None,
        error ``asyncio.CancelledError``).
        """
        started = time.monotonic()
        status: Optional[int] = None
        error: Optional[BaseException] = None
        try:
            response = await self._send(descriptor)
            status = response.status_code
            return response
        except ApiError as e:
            status = e.status
            error = e
            raise
        except BaseException as e:
            error = e
            raise
        finally:
            self._notify_listeners(descriptor, status, time.monotonic() - started, error)

    async def _send(self, descriptor: RequestDescriptor) -> ApiResponse:
        pending = PendingRequest(descriptor)
        if descriptor.authenticate:
            await self._refresh_if_expiring(descriptor)

        while True:
            credential = self.store.get() if descriptor.authenticate else None
            response = await self._dispatch(pending.descriptor, credential)

            if response.ok:
                return response

            if response.status_code != 401 or not descriptor.authenticate:
                raise ApiError.from_status(response.status_code, response.body, descriptor.path)

            if pending.retried:
                logger.warning("%s %s rejected again after refresh", descriptor.method, descriptor.path)
                raise ApiError.from_status(401, response.body, descriptor.path)

            stale_token = credential.access_token if credential is not None else None
            try:
                await self.refresher.refresh(stale_access_token=stale_token)
            except RefreshFailedError as e:
                self._expire_session(str(e))
                raise SessionExpiredError(descriptor.path) from e

            pending.mark_retried()
            logger.debug("Replaying %s %s with refreshed credential", descriptor.method, descriptor.path)

    async def _dispatch(self, descriptor: RequestDescriptor, credential: Optional[Credential]) -> ApiResponse:
        headers = dict(descriptor.headers)
        if credential is not None:
            headers["Authorization"] = f"Bearer {credential.access_token}"
        try:
            return await self.transport.request(
                descriptor.method,
                self.url_for(descriptor.path),
                headers=headers,
                json=descriptor.json,
                params=descriptor.params,
            )
        except TransportError as e:
            raise ApiError(ErrorKind.NETWORK, None, None, descriptor.path, str(e)) from e

    async def _refresh_if_expiring(self, descriptor: RequestDescriptor) -> None:
        if self.token_refresh_leeway <= 0:
            return
        credential = self.store.get()
        if credential is None:
            return
        expires_at = access_token_expiry(credential.access_token)
        if expires_at is None or expires_at - self.token_refresh_leeway > time.time():
            return
        logger.debug("Access token expires at %s; refreshing before %s", expires_at, descriptor.path)
        try:
            await self.refresher.refresh(stale_access_token=credential.access_token)
        except RefreshFailedError as e:
            self._expire_session(str(e))
            raise SessionExpiredError(descriptor.path) from e

    def _expire_session(self, reason: str) -> None:
        if self.on_session_expired is None:
            return
        try:
            self.on_session_expired(reason)
        except Exception:
            logger.exception("Session-expired handler failed")

    def _notify_listeners(
        self,
        descriptor: RequestDescriptor,
        status: Optional[int],
        duration: float,
        error: Optional[BaseException],
    ) -> None:
        for listener in list(self._listeners):
            try:
                listener(descriptor, status, duration, error)
            except Exception:
                logger.exception("Response listener failed for %s", descriptor.path)

    # ─────────────────────────────────────────────────────────────────────
    # Convenience verbs
    # ─────────────────────────────────────────────────────────────────────
    async def get(self, path: str, params: Optional[Mapping[str, Any]] = None, **kwargs) -> ApiResponse:
        return await self.send(RequestDescriptor("GET", path, params=params, **kwargs))

    async def post(self, path: str, json: Any = None, **kwargs) -> ApiResponse:
        return await self.send(RequestDescriptor("POST", path, json=json, **kwargs))

    async def put(self, path: str, json: Any = None, **kwargs) -> ApiResponse:
        return await self.send(RequestDescriptor("PUT", path, json=json, **kwargs))

    async def patch(self, path: str, json: Any = None, **kwargs) -> ApiResponse:
        return await self.send(RequestDescriptor("PATCH", path, json=json, **kwargs))

    async def delete(self, path: str, **kwargs) -> ApiResponse:
        return await self.send(RequestDescriptor("DELETE", path, **kwargs))

    def close(self) -> None:
        close = getattr(self.transport, "close", None)
        if callable(close):
            close()
