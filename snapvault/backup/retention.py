"""
Retention policy enforcement for backups.

Keeps at most N completed backups per type. The oldest surplus backups are
removed from both local storage and the history catalog.
"""

import logging
from collections import deque
from datetime import datetime, timezone
from typing import Any, Dict, Union

from .config import BackupConfig
from .errors import RetentionCleanupError
from .history import HistoryStore
from .storage import LocalStorage, StorageError
from .types import BackupStatus, BackupType


logger = logging.getLogger(__name__)


class RetentionManager:
    """
    Manages retention policy enforcement per backup type.

    A record and its artifact are removed together: if the artifact cannot
    be deleted, the record is kept so the next cleanup can retry. An
    artifact that is already gone counts as deleted.
    """

    def __init__(self, config: BackupConfig, history: HistoryStore, storage: LocalStorage):
        """
        Initialize retention manager.

        Args:
            config: Backup policy (retention counts)
            history: Catalog of finalized backups
            storage: Artifact storage
        """
        self.config = config
        self.history = history
        self.storage = storage
        self.logs = deque(maxlen=1000)

    def cleanup(self, backup_type: Union[BackupType, str]) -> Dict[str, Any]:
        """
        Enforce the retention count for one backup type.

        Args:
            backup_type: Type to clean up

        Returns:
            Dict with summary:
            {
                'type': str,
                'retention': int,
                'deleted': List[str],  # backup ids
                'errors': List[str]
            }
        """
        backup_type = BackupType.parse(backup_type)
        keep = self.config.retention.for_type(backup_type)
        candidates = self.history.list_by_type(backup_type, BackupStatus.COMPLETED)
        excess = max(0, len(candidates) - keep)

        summary = {
            'type': backup_type.value,
            'retention': keep,
            'deleted': [],
            'errors': [],
        }

        if excess == 0:
            return summary

        self._log(
            f"Retention for {backup_type.value}: keeping {keep} of {len(candidates)}, "
            f"removing {excess}"
        )

        for metadata in candidates[:excess]:
            try:
                self._delete_backup(metadata)
                summary['deleted'].append(metadata.id)
            except RetentionCleanupError as e:
                summary['errors'].append(str(e))
                self._log(str(e), level=logging.ERROR)

        return summary

    def cleanup_all(self) -> Dict[str, Dict[str, Any]]:
        """Enforce retention for every backup type."""
        return {t.value: self.cleanup(t) for t in BackupType}

    def _delete_backup(self, metadata):
        """
        Remove one backup's artifact and catalog record.

        Raises:
            RetentionCleanupError: If the artifact cannot be deleted
        """
        if metadata.location:
            try:
                deleted = self.storage.delete(metadata.location)
            except StorageError as e:
                raise RetentionCleanupError(f"Failed to delete backup {metadata.id}: {e}")

            if not deleted:
                self._log(f"Artifact for {metadata.id} was already missing: {metadata.location}",
                          level=logging.WARNING)

        self.history.remove(metadata.id)
        age = datetime.now(metadata.created_at.tzinfo) - metadata.created_at
        self._log(
            f"Removed old {metadata.backup_type.value} backup {metadata.id} "
            f"(age: {age.days} days)"
        )

    def _log(self, message: str, level: int = logging.INFO):
        """
        Add a log message with timestamp.

        Args:
            message: Log message
            level: Logging level for the application log
        """
        timestamp = datetime.now(timezone.utc).strftime('%Y-%m-%d %H:%M:%S UTC')
        self.logs.append(f"[{timestamp}] {message}")
        logger.log(level, message)
