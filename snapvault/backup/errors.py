"""
Error taxonomy for the backup engine.

Every error raised across the engine boundary is a BackupError carrying a
``kind`` string. The HTTP layer maps kinds to status codes and the
orchestrator copies ``str(exc)`` into failed catalog records, so messages
must be readable on their own.
"""


class BackupError(Exception):
    """Base class for all backup engine errors."""

    kind = 'backup_error'


class InvalidArgumentError(BackupError):
    """Raised when a request is malformed (e.g. unknown backup type)."""

    kind = 'invalid_argument'


class ConfigurationError(InvalidArgumentError):
    """Raised when the backup policy fails validation."""

    kind = 'invalid_configuration'


class ConflictError(BackupError):
    """Raised when a job is already active, or a restore target is not empty."""

    kind = 'conflict'


class BackupIOError(BackupError):
    """Raised when a filesystem stage (analyze, prepare, copy, compress) fails."""

    kind = 'io_error'


class VerificationError(BackupError):
    """Raised when an artifact does not match what was copied or its checksum."""

    kind = 'verification_failure'


class NotFoundError(BackupError):
    """Raised for unknown or expired job ids and missing artifacts."""

    kind = 'not_found'


class RetentionCleanupError(BackupError):
    """Raised when an expired artifact cannot be deleted."""

    kind = 'retention_cleanup_error'
