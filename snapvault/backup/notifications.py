"""
Outbound notifications about finished backup jobs.

The engine only depends on NotificationPort; delivery (e-mail, websocket,
chat) belongs to whoever implements it. LoggingNotifier is the default
implementation and writes notifications to the application log.
"""

import logging
from typing import Any, Dict, Iterable, Protocol

from snapvault.utils.formatting import format_bytes, format_duration
from .types import BackupMetadata


logger = logging.getLogger(__name__)


class NotificationPort(Protocol):
    """Receives one notification per finished backup job."""

    def notify(self, notification: Dict[str, Any]) -> None:
        ...


class LoggingNotifier:
    """NotificationPort that writes notifications to the log."""

    def notify(self, notification: Dict[str, Any]) -> None:
        level = logging.INFO if notification.get('type') == 'success' else logging.ERROR
        logger.log(level, f"[{notification.get('priority')}] {notification.get('title')}: "
                          f"{notification.get('message')}")


def build_backup_notification(metadata: BackupMetadata, success: bool,
                              recipients: Iterable[str] = ()) -> Dict[str, Any]:
    """
    Build the notification payload for a finished job.

    Only the error message is included on failure, never a traceback.

    Args:
        metadata: Catalog record of the finished job
        success: Whether the job completed
        recipients: Addresses from BACKUP_NOTIFY_RECIPIENTS, passed on for the port to deliver to
    """
    if success:
        title = 'Backup Completed'
        message = (
            f"Backup {metadata.backup_type.value} created successfully. "
            f"Size: {format_bytes(metadata.size)}, duration: {format_duration(metadata.duration_ms)}"
        )
    else:
        title = 'Backup Failed'
        message = f"Backup {metadata.backup_type.value} failed: {metadata.error}"

    return {
        'type': 'success' if success else 'failure',
        'title': title,
        'message': message,
        'priority': 'low' if success else 'high',
        'data': {
            'id': metadata.id,
            'type': metadata.backup_type.value,
            'duration': metadata.duration_ms,
            'size': metadata.size,
            'recipients': list(recipients),
        },
    }
