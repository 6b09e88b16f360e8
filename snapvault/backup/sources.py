"""
Source handling for backup operations.

LocalSource walks the configured source directories (analysis) and copies
their files into a prepared backup directory, reporting each copied file.
"""

import logging
import os
import shutil
from dataclasses import dataclass, field
from fnmatch import fnmatch
from pathlib import Path
from typing import Callable, List, Optional

from .errors import BackupIOError


logger = logging.getLogger(__name__)


class SourceError(BackupIOError):
    """Raised when source analysis or copying fails."""
    pass


@dataclass
class SourceFile:
    path: Path
    relative_path: str  # POSIX path inside the backup, starting with the source name
    size: int


@dataclass
class SourceAnalysis:
    """Result of walking the source directories."""
    files: List[SourceFile] = field(default_factory=list)
    directories: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)

    @property
    def total_files(self) -> int:
        return len(self.files)

    @property
    def total_directories(self) -> int:
        return len(self.directories)

    @property
    def total_bytes(self) -> int:
        return sum(f.size for f in self.files)


class LocalSource:
    """
    Handler for local filesystem sources.

    Each source directory is captured under its own name inside the backup,
    e.g. /srv/app/uploads/a.png becomes uploads/a.png.
    """

    def __init__(self, paths: List[str], exclude_patterns: List[str] = None):
        """
        Initialize local source handler.

        Args:
            paths: List of directory (or file) paths to backup
            exclude_patterns: List of glob patterns to exclude (e.g., *.pyc, __pycache__, .git)
        """
        self.paths = list(paths)
        self.exclude_patterns = exclude_patterns or []

    def _should_exclude(self, path: Path) -> bool:
        """
        Check if a path should be excluded based on exclude patterns.

        Args:
            path: Path to check

        Returns:
            True if path matches any exclude pattern, False otherwise
        """
        if not self.exclude_patterns:
            return False

        path_str = str(path)
        path_name = path.name

        for pattern in self.exclude_patterns:
            # Match against full path or just the name
            if fnmatch(path_str, pattern) or fnmatch(path_name, pattern):
                return True
            if pattern.startswith('**/') and fnmatch(path_name, pattern[3:]):
                return True

        return False

    def analyze(self) -> SourceAnalysis:
        """
        Walk all sources and collect the files and directories to copy.

        Sources that do not exist are skipped with a warning.

        Returns:
            SourceAnalysis with file list, directory list and totals

        Raises:
            SourceError: If no source exists, two sources share a name,
                or a source cannot be read
        """
        analysis = SourceAnalysis()
        seen_names = set()

        for path in self.paths:
            source_path = Path(path).expanduser()

            if not source_path.exists():
                logger.warning(f"Backup source does not exist, skipping: {path}")
                analysis.skipped.append(str(path))
                continue

            source_path = source_path.resolve()
            name = source_path.name
            if name in seen_names:
                raise SourceError(f"Two backup sources share the name '{name}': {path}")
            seen_names.add(name)

            if self._should_exclude(source_path):
                continue

            try:
                if source_path.is_file():
                    analysis.files.append(SourceFile(source_path, name, source_path.stat().st_size))
                elif source_path.is_dir():
                    self._walk(source_path, analysis)
                else:
                    raise SourceError(f"Unsupported path type: {path}")
            except PermissionError as e:
                raise SourceError(f"Permission denied accessing {path}: {e}")
            except OSError as e:
                raise SourceError(f"Failed to analyze {path}: {e}")

        if not seen_names:
            raise SourceError(f"None of the backup sources exist: {', '.join(map(str, self.paths))}")

        return analysis

    def _walk(self, root: Path, analysis: SourceAnalysis):
        def on_error(error):
            raise error

        analysis.directories.append(root.name)

        for directory, dirnames, filenames in os.walk(root, onerror=on_error):
            current = Path(directory)
            relative_dir = Path(root.name) / current.relative_to(root)

            dirnames[:] = sorted(d for d in dirnames if not self._should_exclude(current / d))
            for dirname in dirnames:
                analysis.directories.append((relative_dir / dirname).as_posix())

            for filename in sorted(filenames):
                file_path = current / filename
                if self._should_exclude(file_path):
                    continue
                analysis.files.append(SourceFile(
                    path=file_path,
                    relative_path=(relative_dir / filename).as_posix(),
                    size=file_path.stat().st_size,
                ))

    def copy(self, analysis: SourceAnalysis, dest_dir: str,
             on_file: Optional[Callable[[SourceFile], None]] = None):
        """
        Copy analyzed files into dest_dir.

        Args:
            analysis: Result of analyze()
            dest_dir: Prepared backup directory
            on_file: Called after each file is copied

        Raises:
            SourceError: If any file cannot be copied
        """
        dest_root = Path(dest_dir)

        try:
            for directory in analysis.directories:
                (dest_root / directory).mkdir(parents=True, exist_ok=True)

            for source_file in analysis.files:
                target = dest_root / source_file.relative_path
                target.parent.mkdir(parents=True, exist_ok=True)
                shutil.copy2(source_file.path, target)
                if on_file:
                    on_file(source_file)
        except PermissionError as e:
            raise SourceError(f"Permission denied copying into {dest_dir}: {e}")
        except OSError as e:
            raise SourceError(f"Failed to copy backup files: {e}")
