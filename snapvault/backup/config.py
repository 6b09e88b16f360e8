"""
Backup policy: schedules, retention counts, compression, verification and
notification toggles.
"""

import os
from dataclasses import dataclass, field
from typing import Mapping, Optional, Tuple

from apscheduler.triggers.cron import CronTrigger

from .errors import ConfigurationError
from .types import BackupType


# Valid compression levels per archive format
COMPRESSION_LEVELS = {
    'tar.gz': (0, 9),
    'tar.bz2': (1, 9),
    'tar.xz': (0, 9),
    'zip': (0, 9),
}

CHECKSUM_ALGORITHM = 'sha256'


def _env_flag(environ: Mapping[str, str], name: str, default: bool) -> bool:
    value = environ.get(name)
    if value is None or value == '':
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


def _env_int(environ: Mapping[str, str], name: str, default: int) -> int:
    value = environ.get(name)
    if value is None or value == '':
        return default
    try:
        return int(value)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {value!r}")


@dataclass(frozen=True)
class ScheduleConfig:
    daily: str = '0 2 * * *'
    weekly: str = '0 3 * * sun'
    monthly: str = '0 4 1 * *'

    def for_type(self, backup_type: BackupType) -> str:
        return getattr(self, backup_type.value)


@dataclass(frozen=True)
class RetentionConfig:
    daily: int = 7
    weekly: int = 4
    monthly: int = 12
    manual: int = 10

    def for_type(self, backup_type: BackupType) -> int:
        return getattr(self, backup_type.value)


@dataclass(frozen=True)
class CompressionConfig:
    enabled: bool = True
    algorithm: str = 'tar.gz'
    level: int = 6


@dataclass(frozen=True)
class VerificationConfig:
    enabled: bool = True
    checksum: bool = True


@dataclass(frozen=True)
class NotificationConfig:
    on_success: bool = True
    on_failure: bool = True
    recipients: Tuple[str, ...] = ()


@dataclass(frozen=True)
class BackupConfig:
    """
    Backup policy, loaded once and never mutated.

    Built from environment variables by from_env(); tests usually construct
    it directly with dataclasses.replace() on the defaults.
    """
    enabled: bool = False
    schedule: ScheduleConfig = field(default_factory=ScheduleConfig)
    retention: RetentionConfig = field(default_factory=RetentionConfig)
    compression: CompressionConfig = field(default_factory=CompressionConfig)
    verification: VerificationConfig = field(default_factory=VerificationConfig)
    notifications: NotificationConfig = field(default_factory=NotificationConfig)

    def __post_init__(self):
        self.validate()

    def validate(self):
        """
        Check policy invariants.

        Raises:
            ConfigurationError: If any value is out of range
        """
        for backup_type in BackupType:
            count = self.retention.for_type(backup_type)
            if count < 0:
                raise ConfigurationError(
                    f"Retention for {backup_type.value} must be >= 0, got {count}"
                )

        algorithm = self.compression.algorithm
        if algorithm not in COMPRESSION_LEVELS:
            raise ConfigurationError(
                f"Invalid compression algorithm: {algorithm}. "
                f"Valid options: {list(COMPRESSION_LEVELS.keys())}"
            )

        low, high = COMPRESSION_LEVELS[algorithm]
        if not low <= self.compression.level <= high:
            raise ConfigurationError(
                f"Compression level for {algorithm} must be between {low} and {high}, "
                f"got {self.compression.level}"
            )

        for backup_type in (BackupType.DAILY, BackupType.WEEKLY, BackupType.MONTHLY):
            expression = self.schedule.for_type(backup_type)
            try:
                CronTrigger.from_crontab(expression)
            except ValueError as e:
                raise ConfigurationError(
                    f"Invalid {backup_type.value} schedule {expression!r}: {e}"
                )

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> 'BackupConfig':
        """Build the policy from BACKUP_* environment variables."""
        if environ is None:
            environ = os.environ

        defaults_schedule = ScheduleConfig()
        defaults_retention = RetentionConfig()
        defaults_compression = CompressionConfig()

        recipients = tuple(
            r.strip() for r in environ.get('BACKUP_NOTIFY_RECIPIENTS', '').split(',') if r.strip()
        )

        return cls(
            enabled=_env_flag(environ, 'BACKUP_ENABLED', False),
            schedule=ScheduleConfig(
                daily=environ.get('BACKUP_SCHEDULE_DAILY') or defaults_schedule.daily,
                weekly=environ.get('BACKUP_SCHEDULE_WEEKLY') or defaults_schedule.weekly,
                monthly=environ.get('BACKUP_SCHEDULE_MONTHLY') or defaults_schedule.monthly,
            ),
            retention=RetentionConfig(
                daily=_env_int(environ, 'BACKUP_RETENTION_DAILY', defaults_retention.daily),
                weekly=_env_int(environ, 'BACKUP_RETENTION_WEEKLY', defaults_retention.weekly),
                monthly=_env_int(environ, 'BACKUP_RETENTION_MONTHLY', defaults_retention.monthly),
                manual=_env_int(environ, 'BACKUP_RETENTION_MANUAL', defaults_retention.manual),
            ),
            compression=CompressionConfig(
                enabled=_env_flag(environ, 'BACKUP_COMPRESSION_ENABLED', True),
                algorithm=environ.get('BACKUP_COMPRESSION_ALGORITHM') or defaults_compression.algorithm,
                level=_env_int(environ, 'BACKUP_COMPRESSION_LEVEL', defaults_compression.level),
            ),
            verification=VerificationConfig(
                enabled=_env_flag(environ, 'BACKUP_VERIFICATION_ENABLED', True),
                checksum=_env_flag(environ, 'BACKUP_CHECKSUM_ENABLED', True),
            ),
            notifications=NotificationConfig(
                on_success=_env_flag(environ, 'BACKUP_NOTIFY_SUCCESS', True),
                on_failure=_env_flag(environ, 'BACKUP_NOTIFY_FAILURE', True),
                recipients=recipients,
            ),
        )
