"""Krushi API client library.

Architecture:
- transport.py: requests-backed HTTP transport (the only network code)
- client.py: authenticated request pipeline with 401 recovery
- refresh.py: single-flight refresh-token coordination
- account.py: profile, password and session endpoints
- exceptions.py: typed exceptions for error handling

Usage:
    from krushi_client.core.api import ApiClient
    from krushi_client.core.credentials import CredentialStore

    client = ApiClient("http://localhost:5000/api/v1", CredentialStore())
    resp = await client.get("/fields")
"""
from .transport import (
    ApiResponse,
    RequestsTransport,
    Transport,
    create_session,
    REQUEST_TIMEOUT,
)
from .exceptions import (
    ErrorKind,
    KrushiClientError,
    TransportError,
    ApiError,
    SessionExpiredError,
    RefreshFailedError,
)
from .refresh import (
    REFRESH_PATH,
    RefreshCoordinator,
    RefreshState,
)
from .client import (
    ApiClient,
    PendingRequest,
    RequestDescriptor,
    access_token_expiry,
)
from .account import AccountService

__all__ = [
    # Transport
    "ApiResponse",
    "RequestsTransport",
    "Transport",
    "create_session",
    "REQUEST_TIMEOUT",

    # Exceptions
    "ErrorKind",
    "KrushiClientError",
    "TransportError",
    "ApiError",
    "SessionExpiredError",
    "RefreshFailedError",

    # Refresh
    "REFRESH_PATH",
    "RefreshCoordinator",
    "RefreshState",

    # Pipeline
    "ApiClient",
    "PendingRequest",
    "RequestDescriptor",
    "access_token_expiry",

    # Services
    "AccountService",
]
