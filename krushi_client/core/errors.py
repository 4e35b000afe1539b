"""User-facing descriptions of API failures.

The pipeline never interprets errors; views call ``describe_api_error`` to
turn one into a message and a category they can render.
"""
from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Optional

from .api.exceptions import ApiError, ErrorKind

DEFAULT_MESSAGE = "Something went wrong. Please try again."


@dataclass(frozen=True)
class ErrorDescription:
    message: str
    type: str


def _server_message(body: Any) -> Optional[str]:
    """Extract the English message the backend puts in error bodies."""
    if not isinstance(body, dict):
        return None
    message = body.get("message")
    if isinstance(message, dict):
        english = message.get("english")
        if isinstance(english, str) and english:
            return english
    return None


def describe_api_error(error: BaseException, default_message: str = DEFAULT_MESSAGE) -> ErrorDescription:
    """Map an exception from the access layer to a message and category.

    Args:
        error: Exception raised by ApiClient or a service
        default_message: Message used when nothing more specific applies

    Returns:
        ErrorDescription with one of the types network, validation, auth,
        permission, notFound, conflict, rateLimit, server, unknown
    """
    if not isinstance(error, ApiError):
        return ErrorDescription(default_message, "unknown")

    if error.kind is ErrorKind.NETWORK or error.status is None:
        return ErrorDescription("Network error. Please check your internet connection.", "network")

    status = error.status
    body = error.body
    server_message = _server_message(body)

    if status == 400:
        fallback = body.get("error") if isinstance(body, dict) else None
        return ErrorDescription(
            server_message or fallback or "Invalid request. Please check your input.",
            "validation",
        )
    if status == 401:
        return ErrorDescription("Session expired. Please log in again.", "auth")
    if status == 403:
        return ErrorDescription(
            server_message or "You do not have permission to perform this action.",
            "permission",
        )
    if status == 404:
        return ErrorDescription(server_message or "The requested resource was not found.", "notFound")
    if status == 409:
        return ErrorDescription(server_message or "This resource already exists.", "conflict")
    if status == 422:
        return ErrorDescription(server_message or "Validation failed. Please check your input.", "validation")
    if status == 429:
        return ErrorDescription("Too many requests. Please wait a moment and try again.", "rateLimit")
    if status == 500:
        return ErrorDescription("Server error. Please try again later.", "server")
    if status in (502, 503, 504):
        return ErrorDescription("Service temporarily unavailable. Please try again later.", "server")
    return ErrorDescription(server_message or default_message, "unknown")
