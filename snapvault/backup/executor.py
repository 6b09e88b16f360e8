"""
Backup orchestrator - drives one backup job through its pipeline.

Workflow:
1. Acquire the single-job lock (Conflict if another job is running)
2. Analyze source directories (file/byte totals)
3. Prepare the destination directory
4. Copy files                      (progress 0-50)
5. Compress into one archive       (progress 50-80, if enabled)
6. Verify artifact and checksum    (progress 80-100, if enabled)
7. Append metadata to the history, apply retention, notify
8. Release the lock

Every progress change is stored in the ProgressRegistry and published on
the EventBus. Any stage error turns the job into a failed history record,
triggers a failure notification and is re-raised to the caller.
"""

import logging
import secrets
import string
import threading
import time
from datetime import datetime, timedelta, timezone
from enum import Enum
from pathlib import Path
from typing import List, Optional

from .checksum import compute_checksum
from .compression import create_archive, list_archive_files
from .config import BackupConfig, CHECKSUM_ALGORITHM
from .errors import ConflictError, VerificationError
from .events import EventBus
from .history import HistoryStore
from .notifications import LoggingNotifier, NotificationPort, build_backup_notification
from .progress import ProgressRegistry
from .retention import RetentionManager
from .sources import LocalSource, SourceAnalysis, SourceFile
from .storage import LocalStorage, StorageError
from .types import BackupMetadata, BackupProgress, BackupStatus, BackupType, ProgressStage


logger = logging.getLogger(__name__)


COPY_RANGE = (0.0, 50.0)
COMPRESS_RANGE = (50.0, 80.0)
VERIFY_RANGE = (80.0, 100.0)


class JobState(str, Enum):
    """Lifecycle state of a backup job."""
    CREATED = 'created'
    COPYING = 'copying'
    COMPRESSING = 'compressing'
    VERIFYING = 'verifying'
    COMPLETED = 'completed'
    FAILED = 'failed'


# Disabled stages are skipped, never entered and left
TRANSITIONS = {
    JobState.CREATED: {JobState.COPYING, JobState.FAILED},
    JobState.COPYING: {JobState.COMPRESSING, JobState.VERIFYING, JobState.COMPLETED, JobState.FAILED},
    JobState.COMPRESSING: {JobState.VERIFYING, JobState.COMPLETED, JobState.FAILED},
    JobState.VERIFYING: {JobState.COMPLETED, JobState.FAILED},
    JobState.COMPLETED: set(),
    JobState.FAILED: set(),
}

_PROGRESS_STAGES = {
    JobState.CREATED: ProgressStage.PREPARING,
    JobState.COPYING: ProgressStage.COPYING,
    JobState.COMPRESSING: ProgressStage.COMPRESSING,
    JobState.VERIFYING: ProgressStage.VERIFYING,
    JobState.COMPLETED: ProgressStage.COMPLETED,
    JobState.FAILED: ProgressStage.FAILED,
}

_ID_ALPHABET = string.digits + string.ascii_lowercase


def generate_backup_id(now: datetime) -> str:
    """backup_<epoch ms>_<9 random base36 chars>"""
    suffix = ''.join(secrets.choice(_ID_ALPHABET) for _ in range(9))
    epoch_ms = int(now.timestamp()) * 1000 + now.microsecond // 1000
    return f"backup_{epoch_ms}_{suffix}"


def generate_backup_name(backup_type: BackupType, now: datetime, failed: bool = False) -> str:
    """backup-<type>[-failed]-<ISO timestamp with ':' and '.' replaced>"""
    stamp = now.strftime('%Y-%m-%dT%H-%M-%S-') + f"{now.microsecond // 1000:03d}Z"
    infix = f"{backup_type.value}-failed" if failed else backup_type.value
    return f"backup-{infix}-{stamp}"


class BackupJob:
    """Mutable state of one running job, owned by the orchestrator."""

    def __init__(self, job_id: str, backup_type: BackupType, started_at: datetime):
        self.id = job_id
        self.backup_type = backup_type
        self.started_at = started_at
        self.started_monotonic = time.monotonic()
        self.state = JobState.CREATED
        self.analysis: Optional[SourceAnalysis] = None
        self.location: Optional[str] = None
        self.logs: List[str] = []
        self.metadata = BackupMetadata(
            id=job_id,
            name=generate_backup_name(backup_type, started_at),
            backup_type=backup_type,
            created_at=started_at,
        )

    def elapsed_ms(self) -> int:
        return int((time.monotonic() - self.started_monotonic) * 1000)


class BackupOrchestrator:
    """
    Runs backup jobs one at a time.

    create() runs a job on the calling thread and returns its metadata;
    submit() runs it on a worker thread and returns the initial progress
    snapshot. Both raise ConflictError immediately while a job is active.
    """

    def __init__(
        self,
        config: BackupConfig,
        source: LocalSource,
        storage: LocalStorage,
        history: HistoryStore,
        retention: RetentionManager,
        progress: ProgressRegistry,
        events: EventBus,
        notifier: Optional[NotificationPort] = None,
    ):
        self.config = config
        self.source = source
        self.storage = storage
        self.history = history
        self.retention = retention
        self.progress = progress
        self.events = events
        self.notifier = notifier or LoggingNotifier()

        self._job_lock = threading.Lock()
        self._current: Optional[BackupJob] = None
        self._worker: Optional[threading.Thread] = None

    @property
    def is_busy(self) -> bool:
        return self._job_lock.locked()

    @property
    def current_job_id(self) -> Optional[str]:
        job = self._current
        return job.id if job else None

    def create(self, backup_type) -> BackupMetadata:
        """
        Run a backup job to completion on the calling thread.

        Args:
            backup_type: 'daily', 'weekly', 'monthly' or 'manual'

        Returns:
            Metadata of the completed backup

        Raises:
            InvalidArgumentError: If backup_type is unknown
            ConflictError: If a job is already running
            BackupError: If the job fails (after it is recorded as failed)
        """
        job = self._begin(backup_type)
        return self._run(job)

    def submit(self, backup_type) -> BackupProgress:
        """
        Start a backup job on a worker thread.

        Validation and lock acquisition happen before returning, so
        InvalidArgumentError and ConflictError reach the caller directly.
        Job failures are logged by the worker.

        Returns:
            Initial progress snapshot of the job
        """
        job = self._begin(backup_type)
        snapshot = self.progress.get(job.id)

        worker = threading.Thread(
            target=self._run_in_background,
            args=(job,),
            name=f"backup-{job.id}",
            daemon=True,
        )
        self._worker = worker
        try:
            worker.start()
        except RuntimeError:
            self._end(job)
            raise

        return snapshot

    def join(self, timeout: Optional[float] = None) -> bool:
        """
        Wait for the current worker thread.

        Returns:
            True if no worker is running anymore
        """
        worker = self._worker
        if worker is None:
            return True
        worker.join(timeout)
        return not worker.is_alive()

    def _run_in_background(self, job: BackupJob):
        try:
            metadata = self._run(job)
            logger.info(f"Backup job {metadata.id} completed with status: {metadata.status.value}")
        except Exception as e:
            logger.error(f"Backup job {job.id} failed: {e}")

    def _begin(self, backup_type) -> BackupJob:
        backup_type = BackupType.parse(backup_type)

        if not self._job_lock.acquire(blocking=False):
            active = ', '.join(p.id for p in self.progress.list_active())
            raise ConflictError(f"A backup is already in progress ({active or 'starting'})")

        try:
            now = datetime.now(timezone.utc)
            job = BackupJob(generate_backup_id(now), backup_type, now)
            snapshot = self.progress.register(job.id, start_time=now)
            self._current = job
            self.events.publish(snapshot)
            self._log(job, f"Starting {backup_type.value} backup {job.id}")
            return job
        except Exception:
            self._current = None
            self._job_lock.release()
            raise

    def _end(self, job: BackupJob):
        self.progress.remove(job.id)
        self._current = None
        self._job_lock.release()

    def _run(self, job: BackupJob) -> BackupMetadata:
        try:
            try:
                self._execute_pipeline(job)
            except Exception as e:
                self._fail(job, e)
                raise

            self._apply_retention(job)
            self._notify(job.metadata, success=True)
            return job.metadata
        finally:
            self._end(job)

    def _execute_pipeline(self, job: BackupJob):
        """Execute the main backup workflow steps."""
        self._analyze(job)
        self._prepare(job)
        self._copy(job)

        if self.config.compression.enabled:
            self._compress(job)
        else:
            self._log(job, "Compression disabled, skipping")

        if self.config.verification.enabled:
            self._verify(job)
        else:
            self._log(job, "Verification disabled, skipping")

        self._finalize(job)

    def _analyze(self, job: BackupJob):
        self._log(job, f"Analyzing sources: {', '.join(map(str, self.source.paths))}")
        analysis = self.source.analyze()
        job.analysis = analysis

        metadata = job.metadata
        metadata.file_count = analysis.total_files
        metadata.directory_count = analysis.total_directories
        metadata.source_bytes = analysis.total_bytes

        for skipped in analysis.skipped:
            self._log(job, f"Source missing, skipped: {skipped}")

        self._advance(job, total_files=analysis.total_files, total_bytes=analysis.total_bytes)
        self._log(
            job,
            f"Found {analysis.total_files} files in {analysis.total_directories} directories "
            f"({analysis.total_bytes} bytes)"
        )

    def _prepare(self, job: BackupJob):
        required = job.analysis.total_bytes
        free = self.storage.free_space()
        if free < required:
            raise StorageError(f"Not enough free space: {required} bytes needed, {free} available")

        job.location = self.storage.prepare(job.backup_type.value, job.metadata.name)
        self._log(job, f"Prepared backup directory: {job.location}")

    def _copy(self, job: BackupJob):
        self._transition(job, JobState.COPYING)
        analysis = job.analysis
        counters = {'files': 0, 'bytes': 0}

        def on_file(source_file: SourceFile):
            counters['files'] += 1
            counters['bytes'] += source_file.size
            fraction = self._fraction(counters['files'], analysis.total_files,
                                      counters['bytes'], analysis.total_bytes)
            self._advance(
                job,
                progress=self._scale(COPY_RANGE, fraction),
                current_file=source_file.relative_path,
                files_processed=counters['files'],
                bytes_processed=counters['bytes'],
            )

        self.source.copy(analysis, self.storage.get_full_path(job.location), on_file=on_file)
        self._advance(job, progress=COPY_RANGE[1], current_file=None)
        self._log(job, f"Copied {counters['files']} files ({counters['bytes']} bytes)")

    def _compress(self, job: BackupJob):
        self._transition(job, JobState.COMPRESSING)
        analysis = job.analysis
        compression = self.config.compression
        tree_path = self.storage.get_full_path(job.location)
        counters = {'files': 0, 'bytes': 0}

        def on_file(arcname: str, size: int):
            counters['files'] += 1
            counters['bytes'] += size
            fraction = self._fraction(counters['files'], analysis.total_files,
                                      counters['bytes'], analysis.total_bytes)
            self._advance(job, progress=self._scale(COMPRESS_RANGE, fraction), current_file=arcname)

        self._log(job, f"Creating archive (format: {compression.algorithm}, level: {compression.level})")
        archive_path = create_archive(
            tree_path,
            tree_path,
            compression.algorithm,
            level=compression.level,
            on_file=on_file,
        )

        # The archive replaces the copied tree
        tree_location = job.location
        job.location = self.storage.relative_to_base(archive_path)
        self.storage.delete(tree_location)

        job.metadata.compressed = True
        job.metadata.compression_format = compression.algorithm
        job.metadata.status = BackupStatus.COMPRESSED
        self._advance(job, progress=COMPRESS_RANGE[1], current_file=None)
        self._log(job, f"Archive created: {job.location}")

    def _verify(self, job: BackupJob):
        self._transition(job, JobState.VERIFYING)
        artifact_path = self.storage.get_full_path(job.location)
        expected = sorted(f.relative_path for f in job.analysis.files)

        if job.metadata.compressed:
            found = sorted(list_archive_files(artifact_path))
        else:
            root = Path(artifact_path)
            found = sorted(p.relative_to(root).as_posix() for p in root.rglob('*') if p.is_file())

        if found != expected:
            missing = sorted(set(expected) - set(found))
            unexpected = sorted(set(found) - set(expected))
            raise VerificationError(
                f"Backup verification failed: {len(missing)} missing and "
                f"{len(unexpected)} unexpected files in {job.location}"
            )
        self._log(job, f"Verified {len(found)} files in artifact")

        if self.config.verification.checksum:
            total = self.storage.size(job.location)
            hashed = {'bytes': 0}

            def on_bytes(count: int):
                hashed['bytes'] += count
                fraction = hashed['bytes'] / total if total else 1.0
                self._advance(job, progress=self._scale(VERIFY_RANGE, fraction))

            job.metadata.checksum = compute_checksum(artifact_path, CHECKSUM_ALGORITHM, on_bytes=on_bytes)
            self._log(job, f"Checksum: {job.metadata.checksum}")

        job.metadata.status = BackupStatus.VERIFIED
        self._advance(job, progress=VERIFY_RANGE[1])

    def _finalize(self, job: BackupJob):
        metadata = job.metadata
        metadata.size = self.storage.size(job.location)
        metadata.location = job.location
        metadata.duration_ms = job.elapsed_ms()
        metadata.status = BackupStatus.COMPLETED
        self._log(job, f"Backup completed successfully in {metadata.duration_ms} ms ({metadata.size} bytes)")
        metadata.logs = '\n'.join(job.logs)

        self.history.append(metadata)

        self._transition(job, JobState.COMPLETED, progress=100.0, current_file=None,
                         estimated_completion=None)
        self.progress.remove(job.id)

    def _fail(self, job: BackupJob, error: Exception):
        message = str(error) or error.__class__.__name__
        self._log(job, f"Backup failed: {message}", level=logging.ERROR)

        if job.location:
            try:
                self.storage.delete(job.location)
                self._log(job, f"Removed partial artifact: {job.location}")
            except StorageError as e:
                self._log(job, f"Warning: Failed to remove partial artifact: {e}", level=logging.WARNING)

        analysis = job.analysis
        failed = BackupMetadata(
            id=job.id,
            name=generate_backup_name(job.backup_type, job.started_at, failed=True),
            backup_type=job.backup_type,
            created_at=job.started_at,
            file_count=analysis.total_files if analysis else 0,
            directory_count=analysis.total_directories if analysis else 0,
            source_bytes=analysis.total_bytes if analysis else 0,
            duration_ms=job.elapsed_ms(),
            status=BackupStatus.FAILED,
            error=message,
            logs='\n'.join(job.logs),
        )
        job.metadata = failed

        try:
            self.history.append(failed)
        except Exception as e:
            logger.error(f"Failed to record failed backup {job.id} in history: {e}")

        if job.state not in (JobState.COMPLETED, JobState.FAILED):
            self._transition(job, JobState.FAILED, current_file=None, estimated_completion=None)
        self.progress.remove(job.id)

        self._notify(failed, success=False)

    def _apply_retention(self, job: BackupJob):
        try:
            summary = self.retention.cleanup(job.backup_type)
            if summary['deleted']:
                logger.info(f"Retention removed {len(summary['deleted'])} old {job.backup_type.value} backups")
        except Exception as e:
            logger.error(f"Retention cleanup after backup {job.id} failed: {e}")

    def _notify(self, metadata: BackupMetadata, success: bool):
        settings = self.config.notifications
        if (success and not settings.on_success) or (not success and not settings.on_failure):
            return

        try:
            self.notifier.notify(build_backup_notification(metadata, success, settings.recipients))
        except Exception as e:
            logger.error(f"Failed to send backup notification for {metadata.id}: {e}")

    def _transition(self, job: BackupJob, state: JobState, **changes):
        if state not in TRANSITIONS[job.state]:
            raise RuntimeError(f"Invalid backup state transition: {job.state.value} -> {state.value}")
        job.state = state
        self._advance(job, stage=_PROGRESS_STAGES[state], **changes)

    def _advance(self, job: BackupJob, **changes):
        """Update the job's progress snapshot and publish it."""
        if 'progress' in changes and 'estimated_completion' not in changes:
            changes['estimated_completion'] = self._estimate_completion(job, changes['progress'])
        snapshot = self.progress.update(job.id, **changes)
        self.events.publish(snapshot)

    @staticmethod
    def _estimate_completion(job: BackupJob, progress: float) -> Optional[datetime]:
        if progress <= 0 or progress >= 100:
            return None
        elapsed = time.monotonic() - job.started_monotonic
        remaining = elapsed * (100.0 - progress) / progress
        return datetime.now(timezone.utc) + timedelta(seconds=remaining)

    @staticmethod
    def _fraction(files_done: int, files_total: int, bytes_done: int, bytes_total: int) -> float:
        if bytes_total > 0:
            return min(1.0, bytes_done / bytes_total)
        if files_total > 0:
            return min(1.0, files_done / files_total)
        return 1.0

    @staticmethod
    def _scale(bounds, fraction: float) -> float:
        low, high = bounds
        return low + (high - low) * fraction

    def _log(self, job: BackupJob, message: str, level: int = logging.INFO):
        """
        Add a log message with timestamp to the job log.

        Args:
            job: Job the message belongs to
            message: Log message
            level: Logging level for the application log
        """
        timestamp = datetime.now(timezone.utc).strftime('%Y-%m-%d %H:%M:%S UTC')
        job.logs.append(f"[{timestamp}] {message}")
        logger.log(level, f"[{job.id}] {message}")
