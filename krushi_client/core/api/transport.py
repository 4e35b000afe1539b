"""HTTP transport.

The only module that touches the network. ``requests`` is blocking, so each
call runs in a worker thread via ``asyncio.to_thread``; the event loop keeps
serving other requests while one is waiting on the socket.

No retries are mounted on the adapter; only the pipeline replays a request,
and only after a 401.
"""
from __future__ import annotations
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Protocol

import requests
from requests.adapters import HTTPAdapter

from .exceptions import TransportError

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = 10


@dataclass(frozen=True)
class ApiResponse:
    """A received HTTP response, body already decoded."""
    status_code: int
    data: Any = None
    text: str = ""
    headers: Mapping[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.status_code < 400

    @property
    def body(self) -> Any:
        """JSON body when there is one, raw text otherwise."""
        return self.data if self.data is not None else (self.text or None)

    @classmethod
    def from_requests(cls, resp: requests.Response) -> "ApiResponse":
        data = None
        if resp.content:
            try:
                data = resp.json()
            except ValueError:
                data = None
        return cls(
            status_code=resp.status_code,
            data=data,
            text=resp.text,
            headers=dict(resp.headers),
        )


class Transport(Protocol):
    """Anything that can deliver one HTTP request and report what came back."""

    async def request(
        self,
        method: str,
        url: str,
        *,
        headers: Optional[Mapping[str, str]] = None,
        json: Any = None,
        params: Optional[Mapping[str, Any]] = None,
    ) -> ApiResponse: ...


def create_session(pool_maxsize: int = 10) -> requests.Session:
    """Create a requests.Session with connection pooling."""
    session = requests.Session()
    adapter = HTTPAdapter(pool_connections=1, pool_maxsize=pool_maxsize, max_retries=0)
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    session.headers.update({"Content-Type": "application/json", "Accept": "application/json"})
    return session


class RequestsTransport:
    """Transport backed by a pooled ``requests.Session``.

    Any ``requests.RequestException`` (connection error, timeout, invalid
    URL) means no response was received and is raised as ``TransportError``.
    """

    def __init__(
        self,
        timeout: float = REQUEST_TIMEOUT,
        session: Optional[requests.Session] = None,
        pool_maxsize: int = 10,
    ):
        self.timeout = timeout
        self._session = session if session is not None else create_session(pool_maxsize)

    async def request(
        self,
        method: str,
        url: str,
        *,
        headers: Optional[Mapping[str, str]] = None,
        json: Any = None,
        params: Optional[Mapping[str, Any]] = None,
    ) -> ApiResponse:
        return await asyncio.to_thread(
            self._request_sync, method, url, dict(headers or {}), json, dict(params or {}) or None
        )

    def _request_sync(
        self,
        method: str,
        url: str,
        headers: Dict[str, str],
        json: Any,
        params: Optional[Dict[str, Any]],
    ) -> ApiResponse:
        try:
            resp = self._session.request(
                method,
                url,
                headers=headers,
                json=json,
                params=params,
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.debug("%s %s failed without response: %s", method, url, e)
            raise TransportError(f"{method} {url}: {e}") from e
        return ApiResponse.from_requests(resp)

    def close(self) -> None:
        self._session.close()
