"""
Local storage for backup artifacts.

Artifacts are kept under a single root with the layout:
{base_path}/{type}/{name}/       (copied tree)
{base_path}/{type}/{name}.{ext}  (compressed archive)

Locations are recorded relative to base_path.
"""

import os
import shutil
from pathlib import Path

from .errors import BackupIOError


class StorageError(BackupIOError):
    """Raised when a storage operation fails."""
    pass


class LocalStorage:
    """
    Handler for backup artifacts in the local filesystem.
    """

    def __init__(self, base_path: str):
        """
        Initialize local storage handler.

        Args:
            base_path: Base directory for local backups
        """
        self.base_path = Path(base_path).resolve()

        # Create base directory if it doesn't exist
        try:
            self.base_path.mkdir(parents=True, exist_ok=True)
        except Exception as e:
            raise StorageError(f"Failed to create local storage directory: {e}")

    def _resolve(self, relative_path: str) -> Path:
        """Resolve a relative location, refusing anything outside base_path."""
        full_path = (self.base_path / relative_path).resolve()
        if full_path == self.base_path or self.base_path not in full_path.parents:
            raise StorageError(f"Location is outside the backup root: {relative_path}")
        return full_path

    def prepare(self, backup_type: str, name: str) -> str:
        """
        Create the destination directory for a new backup.

        Args:
            backup_type: Backup type (used as the first path component)
            name: Backup name

        Returns:
            Relative path of the created directory

        Raises:
            StorageError: If the directory exists or cannot be created
        """
        relative_path = f"{backup_type}/{name}"
        dest_path = self._resolve(relative_path)

        try:
            dest_path.parent.mkdir(parents=True, exist_ok=True)
            dest_path.mkdir()
        except FileExistsError:
            raise StorageError(f"Backup destination already exists: {dest_path}")
        except PermissionError as e:
            raise StorageError(f"Permission denied creating {dest_path}: {e}")
        except OSError as e:
            raise StorageError(f"Failed to create backup destination {dest_path}: {e}")

        return relative_path

    def relative_to_base(self, full_path: str) -> str:
        """Convert a full path under base_path to a stored location."""
        return Path(full_path).resolve().relative_to(self.base_path).as_posix()

    def get_full_path(self, relative_path: str) -> str:
        """
        Get full filesystem path from relative path.

        Args:
            relative_path: Relative path from base_path

        Returns:
            Full filesystem path
        """
        return str(self._resolve(relative_path))

    def exists(self, relative_path: str) -> bool:
        if not relative_path:
            return False
        return self._resolve(relative_path).exists()

    def size(self, relative_path: str) -> int:
        """
        Size of an artifact in bytes (sum of all files for a directory).

        Raises:
            StorageError: If the artifact cannot be read
        """
        full_path = self._resolve(relative_path)
        try:
            if full_path.is_file():
                return full_path.stat().st_size
            return sum(p.stat().st_size for p in full_path.rglob('*') if p.is_file())
        except OSError as e:
            raise StorageError(f"Failed to read artifact size for {relative_path}: {e}")

    def delete(self, relative_path: str) -> bool:
        """
        Delete an artifact (file or directory).

        Args:
            relative_path: Relative path of the artifact

        Returns:
            True if something was deleted, False if it was already missing

        Raises:
            StorageError: If deletion fails
        """
        full_path = self._resolve(relative_path)

        try:
            if full_path.is_dir() and not full_path.is_symlink():
                shutil.rmtree(full_path)
            elif full_path.exists() or full_path.is_symlink():
                full_path.unlink()
            else:
                return False
            return True
        except PermissionError as e:
            raise StorageError(f"Permission denied deleting {full_path}: {e}")
        except OSError as e:
            raise StorageError(f"Failed to delete {full_path}: {e}")

    def free_space(self) -> int:
        """Free bytes on the filesystem holding base_path."""
        return shutil.disk_usage(os.fspath(self.base_path)).free
