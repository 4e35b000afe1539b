"""Activity telemetry: entries, batching queue and uploader."""
from .activity import (
    ACTIVITY_LOGS_PATH,
    ActivityLogEntry,
    ActivityLogger,
    ActivityType,
    Severity,
)
from .uploader import (
    BATCH_PATH,
    ActivityEventQueue,
    BatchUploader,
)

__all__ = [
    # Entries
    "ACTIVITY_LOGS_PATH",
    "ActivityLogEntry",
    "ActivityLogger",
    "ActivityType",
    "Severity",

    # Delivery
    "BATCH_PATH",
    "ActivityEventQueue",
    "BatchUploader",
]
