"""Domain enums."""
from __future__ import annotations

from enum import Enum

WILDCARD_EVENT = "*"


class EventType(str, Enum):
    """Closed set of event types a webhook can subscribe to."""

    UPLOAD_STARTED = "file.upload.started"
    UPLOAD_PROGRESS = "file.upload.progress"
    UPLOAD_COMPLETED = "file.upload.completed"
    UPLOAD_FAILED = "file.upload.failed"
    DOWNLOAD_STARTED = "file.download.started"
    DOWNLOAD_COMPLETED = "file.download.completed"
    FILE_DELETED = "file.deleted"
    VERSION_CREATED = "file.version.created"

    # Synthetic events produced by the service itself
    WEBHOOK_PING = "webhook.ping"
    WEBHOOK_RETRY = "webhook.retry"
