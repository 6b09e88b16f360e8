"""
Restore backups from the catalog into a target directory.

The target must be empty or absent: restoring never overwrites existing
files. If the stored artifact carries a checksum it is re-validated before
anything is written.
"""

import logging
import shutil
from pathlib import Path
from typing import Any, Dict, Optional

from .checksum import verify_checksum
from .compression import extract_archive
from .errors import BackupIOError, ConflictError, NotFoundError, VerificationError
from .history import HistoryStore
from .storage import LocalStorage
from .types import BackupStatus


logger = logging.getLogger(__name__)


class RestoreEngine:
    """Reconstructs the file tree of a cataloged backup."""

    def __init__(self, history: HistoryStore, storage: LocalStorage, default_restore_dir: str):
        """
        Initialize restore engine.

        Args:
            history: Catalog to look backups up in
            storage: Artifact storage
            default_restore_dir: Parent of the default target (<dir>/<backup name>)
        """
        self.history = history
        self.storage = storage
        self.default_restore_dir = Path(default_restore_dir)

    def restore(self, backup_id: str, target_path: Optional[str] = None) -> Dict[str, Any]:
        """
        Restore a backup.

        Args:
            backup_id: Catalog id of the backup
            target_path: Directory to restore into (default: <restore dir>/<name>)

        Returns:
            Dict with summary:
            {
                'success': True,
                'id': str,
                'target_path': str,
                'files': int
            }

        Raises:
            NotFoundError: If the id is unknown or the artifact is missing
            ConflictError: If the target exists and is not an empty directory
            VerificationError: If the artifact no longer matches its checksum
            BackupIOError: If extraction or copying fails
        """
        metadata = self.history.get(backup_id)
        if metadata is None:
            raise NotFoundError(f"Backup not found: {backup_id}")
        if metadata.status != BackupStatus.COMPLETED or not metadata.location:
            raise NotFoundError(f"Backup {backup_id} has no restorable artifact (status: {metadata.status.value})")
        if not self.storage.exists(metadata.location):
            raise NotFoundError(f"Artifact for backup {backup_id} is missing: {metadata.location}")

        target = Path(target_path) if target_path else self.default_restore_dir / metadata.name
        target = target.expanduser().resolve()
        self._check_target(target)

        artifact_path = self.storage.get_full_path(metadata.location)

        if metadata.checksum:
            logger.info(f"Verifying checksum of {metadata.location} before restore")
            if not verify_checksum(artifact_path, metadata.checksum):
                raise VerificationError(
                    f"Checksum mismatch for backup {backup_id}: artifact is corrupted, refusing to restore"
                )

        created = not target.exists()
        try:
            if metadata.compressed:
                extract_archive(artifact_path, str(target))
            else:
                shutil.copytree(artifact_path, target, dirs_exist_ok=True)
        except Exception as e:
            self._discard(target, created)
            if isinstance(e, BackupIOError):
                raise
            raise BackupIOError(f"Failed to restore backup {backup_id}: {e}")

        files = sum(1 for p in target.rglob('*') if p.is_file())
        logger.info(f"Restored backup {backup_id} into {target} ({files} files)")

        return {
            'success': True,
            'id': backup_id,
            'target_path': str(target),
            'files': files,
        }

    @staticmethod
    def _check_target(target: Path):
        if not target.exists():
            return
        if not target.is_dir():
            raise ConflictError(f"Restore target exists and is not a directory: {target}")
        if any(target.iterdir()):
            raise ConflictError(f"Restore target is not empty: {target}")

    @staticmethod
    def _discard(target: Path, created: bool):
        """Remove a partially restored tree, keeping a pre-existing empty target."""
        if not target.exists():
            return
        try:
            if created:
                shutil.rmtree(target)
            else:
                for child in target.iterdir():
                    if child.is_dir() and not child.is_symlink():
                        shutil.rmtree(child)
                    else:
                        child.unlink()
        except OSError as e:
            logger.warning(f"Failed to clean up partial restore at {target}: {e}")
