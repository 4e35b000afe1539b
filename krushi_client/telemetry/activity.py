"""Activity telemetry: entry model and the logger application code calls."""

from __future__ import annotations
import copy
import datetime
import logging
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Optional

from ..core.api.exceptions import ApiError
from ..core.credentials import CredentialStore, SessionIdStore, generate_id

if TYPE_CHECKING:
    from ..core.api.client import ApiClient, RequestDescriptor
    from .uploader import BatchUploader

logger = logging.getLogger(__name__)

ACTIVITY_LOGS_PATH = "/activity-logs"
DEFAULT_USER_AGENT = "krushi-client"


class ActivityType(str, Enum):
    # Authentication
    LOGIN = "login"
    LOGOUT = "logout"
    REGISTER = "register"
    PASSWORD_RESET = "password_reset"

    # Field management
    FIELD_CREATE = "field_create"
    FIELD_UPDATE = "field_update"
    FIELD_DELETE = "field_delete"
    FIELD_VIEW = "field_view"

    # Sensor data
    SENSOR_DATA_VIEW = "sensor_data_view"
    SENSOR_DATA_EXPORT = "sensor_data_export"

    # User management
    USER_CREATE = "user_create"
    USER_UPDATE = "user_update"
    USER_DELETE = "user_delete"
    USER_VIEW = "user_view"

    # Analytics
    ANALYTICS_VIEW = "analytics_view"
    REPORT_GENERATE = "report_generate"
    REPORT_EXPORT = "report_export"

    # System
    SETTINGS_UPDATE = "settings_update"
    BACKUP_CREATE = "backup_create"
    BACKUP_RESTORE = "backup_restore"

    # Errors
    ERROR_OCCURRED = "error_occurred"
    API_ERROR = "api_error"
    API_CALL = "api_call"

    # Navigation
    PAGE_VIEW = "page_view"
    NAVIGATION = "navigation"

    # Feature usage
    FEATURE_ACCESS = "feature_access"
    FEATURE_USE = "feature_use"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


def _utc_now() -> str:
    return datetime.datetime.now(datetime.timezone.utc).isoformat()


@dataclass(frozen=True)
class ActivityLogEntry:
    """One telemetry event. Immutable once created."""
    type: str
    severity: str
    id: str = field(default_factory=generate_id)
    timestamp: str = field(default_factory=_utc_now)
    user_id: str = "anonymous"
    user_role: str = "unknown"
    session_id: str = ""
    url: str = ""
    user_agent: str = DEFAULT_USER_AGENT
    details: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        # Callers keep their dict; the entry keeps a read-only copy.
        object.__setattr__(self, "details", MappingProxyType(copy.deepcopy(dict(self.details))))
        object.__setattr__(self, "type", _enum_value(self.type))
        object.__setattr__(self, "severity", _enum_value(self.severity))

    def to_payload(self) -> Dict[str, Any]:
        """Wire representation expected by ``POST /activity-logs/batch``."""
        return {
            "id": self.id,
            "timestamp": self.timestamp,
            "userId": self.user_id,
            "userRole": self.user_role,
            "sessionId": self.session_id,
            "userAgent": self.user_agent,
            "url": self.url,
            "type": self.type,
            "severity": self.severity,
            "details": copy.deepcopy(dict(self.details)),
        }


def _enum_value(value: Any) -> str:
    return value.value if isinstance(value, Enum) else str(value)


class ActivityLogger:
    """Builds activity entries and hands them to the uploader.

    User id and role are read from the CredentialStore for every entry, so
    events logged after a login or logout carry the right identity.

    Args:
        uploader: Destination for entries
        store: Credential owner (identity stamped on each entry)
        session_ids: Source of the per-lifetime session id
        client: API client for the read-side helpers (stats, recent)
        url: Current location of the application, recorded with each entry
        user_agent: Client identification string
        enabled: When False entries are built and returned but not queued
    """

    def __init__(
        self,
        uploader: "BatchUploader",
        store: CredentialStore,
        session_ids: Optional[SessionIdStore] = None,
        *,
        client: Optional["ApiClient"] = None,
        url: str = "",
        user_agent: str = DEFAULT_USER_AGENT,
        enabled: bool = True,
    ):
        self.uploader = uploader
        self.store = store
        self.session_ids = session_ids if session_ids is not None else SessionIdStore()
        self.client = client if client is not None else uploader.client
        self.url = url
        self.user_agent = user_agent
        self.enabled = enabled

    def log(
        self,
        type: ActivityType | str,
        severity: Severity | str = Severity.LOW,
        details: Optional[Mapping[str, Any]] = None,
        *,
        url: Optional[str] = None,
    ) -> Optional[str]:
        """Record an activity. Never raises.

        Returns:
            The new entry's id, or None if the entry could not be built
        """
        try:
            credential = self.store.get()
            entry = ActivityLogEntry(
                type=type,
                severity=severity,
                user_id=credential.user_id if credential is not None else "anonymous",
                user_role=credential.user_role if credential is not None else "unknown",
                session_id=self.session_ids.get(),
                url=self.url if url is None else url,
                user_agent=self.user_agent,
                details=details or {},
            )
            if self.enabled:
                self.uploader.enqueue(entry)
            logger.debug("Activity %s (%s) queued as %s", entry.type, entry.severity, entry.id)
            return entry.id
        except Exception as e:
            logger.warning("Failed to record %s activity: %s", type, e)
            return None

    def log_page_view(self, page: str, **extra: Any) -> Optional[str]:
        return self.log(ActivityType.PAGE_VIEW, Severity.LOW, {"page": page, **extra})

    def log_user_action(self, action: ActivityType | str, details: Optional[Mapping[str, Any]] = None) -> Optional[str]:
        return self.log(action, Severity.MEDIUM, details)

    def log_error(self, error: BaseException | str, context: Optional[Mapping[str, Any]] = None) -> Optional[str]:
        details: Dict[str, Any] = {"error": str(error), "context": dict(context or {})}
        if isinstance(error, BaseException):
            details["errorType"] = type(error).__name__
        return self.log(ActivityType.ERROR_OCCURRED, Severity.HIGH, details)

    def log_api_call(
        self,
        endpoint: str,
        method: str,
        status: int,
        duration_ms: float,
        **extra: Any,
    ) -> Optional[str]:
        severity = Severity.MEDIUM if status >= 400 or status == 0 else Severity.LOW
        details = {"endpoint": endpoint, "method": method, "status": status, "duration": round(duration_ms), **extra}
        return self.log(ActivityType.API_CALL, severity, details)

    def log_feature_usage(self, feature: str, action: str, **extra: Any) -> Optional[str]:
        return self.log(ActivityType.FEATURE_USE, Severity.LOW, {"feature": feature, "action": action, **extra})

    # ─────────────────────────────────────────────────────────────────────
    # API call tracking
    # ─────────────────────────────────────────────────────────────────────
    def track_api_calls(self, client: Optional["ApiClient"] = None) -> None:
        """Record an ``api_call`` entry for every request the client completes.

        Requests to the activity-log endpoints are never recorded.
        """
        (client or self.client).add_listener(self._on_api_response)

    def _on_api_response(
        self,
        descriptor: "RequestDescriptor",
        status: Optional[int],
        duration: float,
        error: Optional[BaseException],
    ) -> None:
        if descriptor.path.startswith(ACTIVITY_LOGS_PATH):
            return
        extra: Dict[str, Any] = {"success": error is None}
        if error is not None:
            extra["error"] = str(error) or type(error).__name__
        self.log_api_call(descriptor.path, descriptor.method, status or 0, duration * 1000, **extra)

    # ─────────────────────────────────────────────────────────────────────
    # Read side
    # ─────────────────────────────────────────────────────────────────────
    async def get_activity_stats(self, filters: Optional[Mapping[str, Any]] = None) -> Optional[Dict[str, Any]]:
        """Return aggregated activity statistics, or None if unavailable."""
        try:
            resp = await self.client.get(f"{ACTIVITY_LOGS_PATH}/stats", params=dict(filters or {}))
        except ApiError as e:
            logger.warning("Failed to get activity stats: %s", e)
            return None
        return resp.data if isinstance(resp.data, dict) else None

    async def get_recent_activities(self, limit: int = 50) -> List[Dict[str, Any]]:
        """Return the most recent activities, or an empty list if unavailable."""
        try:
            resp = await self.client.get(f"{ACTIVITY_LOGS_PATH}/recent", params={"limit": limit})
        except ApiError as e:
            logger.warning("Failed to get recent activities: %s", e)
            return []
        data = resp.data
        if isinstance(data, dict):
            data = data.get("activities", data.get("data"))
        return data if isinstance(data, list) else []
