"""
Backup engine for snapvault.

Modules:
- executor: BackupOrchestrator, runs one job through the pipeline
- progress / events: in-flight progress snapshots and their broadcast
- history: durable catalog of finished jobs
- retention: per-type retention counts
- restore: reconstruct a cataloged backup
- sources / storage / compression / checksum: filesystem stages
"""

from .config import BackupConfig
from .errors import (
    BackupError,
    BackupIOError,
    ConfigurationError,
    ConflictError,
    InvalidArgumentError,
    NotFoundError,
    RetentionCleanupError,
    VerificationError,
)
from .executor import BackupOrchestrator, JobState
from .types import BackupMetadata, BackupProgress, BackupStatus, BackupType, ProgressStage

__all__ = [
    'BackupConfig',
    'BackupError',
    'BackupIOError',
    'BackupMetadata',
    'BackupOrchestrator',
    'BackupProgress',
    'BackupStatus',
    'BackupType',
    'ConfigurationError',
    'ConflictError',
    'InvalidArgumentError',
    'JobState',
    'NotFoundError',
    'ProgressStage',
    'RetentionCleanupError',
    'VerificationError',
]
