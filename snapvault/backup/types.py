"""
Value types shared by the backup engine.

BackupMetadata is the durable record of one job; BackupProgress is the
ephemeral snapshot of a job while it runs.
"""

from dataclasses import dataclass, asdict
from datetime import datetime
from enum import Enum
from typing import Optional, Dict, Any

from .errors import InvalidArgumentError


class BackupType(str, Enum):
    """Backup categories, each with its own schedule and retention count."""
    DAILY = 'daily'
    WEEKLY = 'weekly'
    MONTHLY = 'monthly'
    MANUAL = 'manual'

    @classmethod
    def parse(cls, value) -> 'BackupType':
        """
        Convert a user supplied value to a BackupType.

        Raises:
            InvalidArgumentError: If value is not one of the known types
        """
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            valid = ', '.join(t.value for t in cls)
            raise InvalidArgumentError(f"Invalid backup type: {value!r}. Use: {valid}")


SCHEDULED_TYPES = (BackupType.DAILY, BackupType.WEEKLY, BackupType.MONTHLY)


class BackupStatus(str, Enum):
    """Status of a BackupMetadata record."""
    CREATED = 'created'
    COMPRESSED = 'compressed'
    VERIFIED = 'verified'
    COMPLETED = 'completed'
    FAILED = 'failed'


class ProgressStage(str, Enum):
    """Stage reported in a BackupProgress snapshot."""
    PREPARING = 'preparing'
    COPYING = 'copying'
    COMPRESSING = 'compressing'
    VERIFYING = 'verifying'
    COMPLETED = 'completed'
    FAILED = 'failed'

    @property
    def is_terminal(self) -> bool:
        return self in (ProgressStage.COMPLETED, ProgressStage.FAILED)


@dataclass
class BackupMetadata:
    """Catalog record for one backup job."""
    id: str
    name: str
    backup_type: BackupType
    created_at: datetime
    size: int = 0
    compressed: bool = False
    checksum: Optional[str] = None
    file_count: int = 0
    directory_count: int = 0
    source_bytes: int = 0
    duration_ms: int = 0
    status: BackupStatus = BackupStatus.CREATED
    error: Optional[str] = None
    location: Optional[str] = None
    compression_format: Optional[str] = None
    logs: Optional[str] = None

    def to_dict(self, include_logs: bool = False) -> Dict[str, Any]:
        data = {
            'id': self.id,
            'name': self.name,
            'type': self.backup_type.value,
            'created_at': self.created_at.isoformat(),
            'size': self.size,
            'compressed': self.compressed,
            'checksum': self.checksum,
            'files': {
                'total': self.file_count,
                'directories': self.directory_count,
                'size': self.source_bytes,
            },
            'duration_ms': self.duration_ms,
            'status': self.status.value,
            'error': self.error,
            'location': self.location,
            'compression_format': self.compression_format,
        }
        if include_logs:
            data['logs'] = self.logs
        return data


@dataclass(frozen=True)
class BackupProgress:
    """
    Immutable progress snapshot of an in-flight job.

    The registry replaces snapshots instead of mutating them, so a reader
    always holds a consistent copy.
    """
    id: str
    stage: ProgressStage
    start_time: datetime
    progress: float = 0.0
    current_file: Optional[str] = None
    files_processed: int = 0
    total_files: int = 0
    bytes_processed: int = 0
    total_bytes: int = 0
    estimated_completion: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.stage.is_terminal

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['stage'] = self.stage.value
        data['progress'] = round(self.progress, 2)
        data['start_time'] = self.start_time.isoformat()
        data['estimated_completion'] = (
            self.estimated_completion.isoformat() if self.estimated_completion else None
        )
        return data
