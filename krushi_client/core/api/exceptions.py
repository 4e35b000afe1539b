"""Typed exceptions for the API access layer."""
from __future__ import annotations
from enum import Enum
from typing import Any, Optional


class ErrorKind(str, Enum):
    """Classification of a failed API call."""
    NETWORK = "network"
    AUTH = "auth"
    CLIENT = "client"
    SERVER = "server"


class KrushiClientError(Exception):
    """Base exception for all access layer operations."""
    pass


class TransportError(KrushiClientError):
    """No response was received (connection refused, DNS failure, timeout)."""
    pass


class ApiError(KrushiClientError):
    """API call failed.

    Attributes:
        kind: Error classification (network, auth, client, server)
        status: HTTP status code, or None when no response was received
        body: Decoded response body (JSON or text), or None
        path: API path that failed
    """

    def __init__(
        self,
        kind: ErrorKind,
        status: Optional[int] = None,
        body: Any = None,
        path: str = "",
        message: str = "",
    ):
        self.kind = kind
        self.status = status
        self.body = body
        self.path = path
        detail = message or (f"HTTP {status}" if status is not None else kind.value)
        super().__init__(f"[{kind.value}] {path}: {detail}")

    @classmethod
    def from_status(cls, status: int, body: Any = None, path: str = "") -> "ApiError":
        """Build the error for an HTTP status the pipeline does not recover from."""
        if status == 401:
            kind = ErrorKind.AUTH
        elif status >= 500:
            kind = ErrorKind.SERVER
        else:
            kind = ErrorKind.CLIENT
        return cls(kind, status, body, path)


class SessionExpiredError(ApiError):
    """Authentication could not be recovered; the session has been terminated."""

    def __init__(self, path: str = "", message: str = "Session expired. Please log in again.", body: Any = None):
        super().__init__(ErrorKind.AUTH, 401, body, path, message)


class RefreshFailedError(KrushiClientError):
    """The refresh-token exchange failed.

    Attributes:
        status: HTTP status of the refresh call, or None
    """

    def __init__(self, message: str, status: Optional[int] = None):
        self.status = status
        super().__init__(message)
