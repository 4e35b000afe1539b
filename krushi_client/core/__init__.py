"""Core access layer.

Module Structure:
    - api/            : HTTP transport, request pipeline, refresh coordination
    - credentials.py  : Credential model and CredentialStore
    - session.py      : Login, logout, forced sign-out
    - errors.py       : User-facing descriptions of API errors

Usage Pattern:
    Import explicitly when needed:
        from krushi_client.core.api import ApiClient, ApiError
        from krushi_client.core.credentials import CredentialStore, JsonFileStorage
        from krushi_client.core.session import SessionLifecycle
        from krushi_client.core.errors import describe_api_error
"""
