"""
Backup service - composes the backup engine and exposes its command surface.

Everything is constructed explicitly per service instance (no module
globals), so tests can run isolated services side by side.
"""

import logging
import os
import time
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Iterator, List, Optional

from snapvault.backup.config import BackupConfig
from snapvault.backup.errors import InvalidArgumentError, NotFoundError
from snapvault.backup.events import EventBus, Subscription
from snapvault.backup.executor import BackupOrchestrator
from snapvault.backup.history import HistoryStore
from snapvault.backup.notifications import NotificationPort
from snapvault.backup.progress import ProgressRegistry
from snapvault.backup.restore import RestoreEngine
from snapvault.backup.retention import RetentionManager
from snapvault.backup.sources import LocalSource
from snapvault.backup.storage import LocalStorage
from snapvault.backup.types import BackupMetadata, BackupProgress, BackupStatus
from snapvault.scheduler import Scheduler, compute_next_fire_times, utc_now


logger = logging.getLogger(__name__)


HISTORY_FILENAME = 'history.db'

# Dashboard health thresholds
RECENT_FAILURE_WINDOW = timedelta(hours=24)
STALE_BACKUP_WARNING = timedelta(days=2)
STALE_BACKUP_CRITICAL = timedelta(days=7)
TREND_WINDOW = timedelta(days=7)


class BackupService:
    """
    Owns one backup engine: orchestrator, catalog, progress tracking,
    restore and scheduling.
    """

    def __init__(
        self,
        config: BackupConfig,
        backup_root: str,
        source_dirs: List[str],
        exclude_patterns: Optional[List[str]] = None,
        history_url: Optional[str] = None,
        restore_dir: Optional[str] = None,
        timezone_name: str = 'UTC',
        notifier: Optional[NotificationPort] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Build the engine.

        Args:
            config: Backup policy
            backup_root: Directory holding all artifacts
            source_dirs: Directories captured by each backup
            exclude_patterns: Glob patterns skipped while copying
            history_url: SQLAlchemy URL of the catalog (default: SQLite file in backup_root)
            restore_dir: Parent directory for restores without explicit target
            timezone_name: Timezone for cron expressions
            notifier: Receiver of job notifications (default: log only)
            clock: Current-time source for next-run estimates and dashboard checks
        """
        self.config = config
        self.timezone_name = timezone_name
        self._clock = clock or utc_now

        self.storage = LocalStorage(backup_root)
        history_url = history_url or f"sqlite:///{os.path.join(self.storage.base_path, HISTORY_FILENAME)}"
        self.history = HistoryStore(history_url)
        self.progress = ProgressRegistry()
        self.events = EventBus()
        self.retention = RetentionManager(config, self.history, self.storage)
        # Never copy the backup root into itself when it lives inside a source
        exclude_patterns = list(exclude_patterns or []) + [str(self.storage.base_path)]

        self.orchestrator = BackupOrchestrator(
            config=config,
            source=LocalSource(source_dirs, exclude_patterns),
            storage=self.storage,
            history=self.history,
            retention=self.retention,
            progress=self.progress,
            events=self.events,
            notifier=notifier,
        )
        self.restore_engine = RestoreEngine(
            self.history,
            self.storage,
            restore_dir or os.path.join(self.storage.base_path, 'restored'),
        )
        self.scheduler = Scheduler(self.orchestrator, timezone_name)

    @classmethod
    def from_app_config(cls, app_config, notifier: Optional[NotificationPort] = None) -> 'BackupService':
        """Build a service from a Flask config mapping."""
        policy = app_config.get('BACKUP_POLICY') or BackupConfig.from_env()
        return cls(
            config=policy,
            backup_root=app_config['BACKUP_ROOT'],
            source_dirs=app_config['BACKUP_SOURCE_DIRS'],
            exclude_patterns=app_config.get('BACKUP_EXCLUDE_PATTERNS'),
            history_url=app_config.get('BACKUP_HISTORY_URL'),
            restore_dir=app_config.get('BACKUP_RESTORE_DIR'),
            timezone_name=app_config.get('SCHEDULER_TIMEZONE', 'UTC'),
            notifier=notifier,
        )

    # Lifecycle

    def start(self):
        """Start scheduled backups if the policy enables them."""
        if not self.config.enabled:
            logger.info("Scheduled backups disabled (BACKUP_ENABLED is off)")
            return
        self.scheduler.start(self.config)

    def stop(self):
        """Stop the scheduler. Running jobs finish on their own."""
        self.scheduler.stop()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Wait for a background job started by start_backup() or the scheduler."""
        return self.orchestrator.join(timeout)

    def close(self):
        self.stop()
        self.history.close()

    # Commands

    def create_backup(self, backup_type) -> BackupMetadata:
        """Run a backup to completion and return its metadata."""
        return self.orchestrator.create(backup_type)

    def start_backup(self, backup_type) -> BackupProgress:
        """Start a backup in the background and return its first progress snapshot."""
        return self.orchestrator.submit(backup_type)

    def restore(self, backup_id: str, target_path: Optional[str] = None) -> Dict[str, Any]:
        return self.restore_engine.restore(backup_id, target_path)

    # Queries

    def get_progress(self, job_id: str) -> BackupProgress:
        """
        Raises:
            NotFoundError: If the job is unknown or has terminated
        """
        snapshot = self.progress.get(job_id)
        if snapshot is None:
            raise NotFoundError(f"No active backup with id {job_id}")
        return snapshot

    def list_active(self) -> List[BackupProgress]:
        return self.progress.list_active()

    def list_history(self, limit: Optional[int] = None) -> List[BackupMetadata]:
        if limit is not None and limit < 1:
            raise InvalidArgumentError(f"limit must be a positive integer, got {limit}")
        return self.history.all(limit)

    def get_backup(self, backup_id: str) -> BackupMetadata:
        metadata = self.history.get(backup_id)
        if metadata is None:
            raise NotFoundError(f"Backup not found: {backup_id}")
        return metadata

    def next_scheduled(self) -> Dict[str, Optional[datetime]]:
        """Next fire time per scheduled type, from the running scheduler if there is one."""
        fire_times = self.scheduler.next_fire_times()
        if fire_times:
            return fire_times
        return compute_next_fire_times(self.config, self._clock(), self.timezone_name)

    def get_statistics(self) -> Dict[str, Any]:
        """
        Summary over the whole catalog.

        Returns:
            Dict with total_backups, success_rate (percent), total_size and
            average_duration (ms) over completed backups, last_backup and
            next_scheduled fire times
        """
        records = self.history.all()
        completed = [r for r in records if r.status == BackupStatus.COMPLETED]

        total_size = sum(r.size for r in completed)
        average_duration = sum(r.duration_ms for r in completed) / len(completed) if completed else 0
        success_rate = len(completed) / len(records) * 100 if records else 0

        return {
            'total_backups': len(records),
            'success_rate': round(success_rate, 2),
            'total_size': total_size,
            'average_duration': round(average_duration, 2),
            'last_backup': records[0].to_dict() if records else None,
            'next_scheduled': {
                backup_type: fire_time.isoformat() if fire_time else None
                for backup_type, fire_time in self.next_scheduled().items()
            },
        }

    def get_dashboard(self) -> Dict[str, Any]:
        """
        Statistics, active jobs, recent history, health status and 7-day trends.
        """
        now = self._clock()
        statistics = self.get_statistics()
        recent = self.history.all(10)
        last_backup = recent[0] if recent else None

        health = {'overall': 'healthy', 'issues': []}

        recent_failures = [
            r for r in recent
            if r.status == BackupStatus.FAILED and now - r.created_at < RECENT_FAILURE_WINDOW
        ]
        if recent_failures:
            health['overall'] = 'warning'
            health['issues'].append(f"{len(recent_failures)} backup(s) failed in the last 24 hours")

        if last_backup is None:
            health['overall'] = 'critical'
            health['issues'].append('No backups found')
        else:
            age = now - last_backup.created_at
            if age > STALE_BACKUP_WARNING:
                health['overall'] = 'critical' if age > STALE_BACKUP_CRITICAL else 'warning'
                health['issues'].append(f"Last backup was {age.days} days ago")

        last_week = [r for r in recent if now - r.created_at < TREND_WINDOW]
        trends = {
            'backup_frequency': len(last_week),
            'avg_size': sum(r.size for r in last_week) / len(last_week) if last_week else 0,
            'success_rate': (
                len([r for r in last_week if r.status == BackupStatus.COMPLETED]) / len(last_week) * 100
                if last_week else 0
            ),
        }

        return {
            'statistics': statistics,
            'active_backups': [p.to_dict() for p in self.list_active()],
            'recent_history': [r.to_dict() for r in recent[:5]],
            'health_status': health,
            'trends': trends,
        }

    # Progress stream

    def stream_progress(self, job_id: str, timeout: Optional[float] = None) -> Iterator[BackupProgress]:
        """
        Follow the progress of a job until its terminal event.

        The subscription is made before the job is looked up, so a job that
        terminates in between still delivers its final snapshot.

        Args:
            job_id: Job to follow
            timeout: Stop following after this many seconds (the job keeps running)

        Returns:
            Iterator of snapshots, ending with the completed/failed snapshot
            (or earlier when the timeout expires)

        Raises:
            NotFoundError: If the job is neither active nor just finished
        """
        subscription = self.events.subscribe(job_id)
        current = self.progress.get(job_id)

        if current is None:
            terminal = [event for event in subscription.drain() if event.is_terminal]
            subscription.close()
            if not terminal:
                raise NotFoundError(f"No active backup with id {job_id}")
            return iter(terminal[-1:])

        return self._follow(subscription, current, timeout)

    @staticmethod
    def _follow(subscription: Subscription, current: BackupProgress,
                timeout: Optional[float]) -> Iterator[BackupProgress]:
        deadline = time.monotonic() + timeout if timeout is not None else None
        last = current

        with subscription:
            yield current
            while not last.is_terminal:
                remaining = None
                if deadline is not None:
                    remaining = deadline - time.monotonic()
                    if remaining <= 0:
                        logger.info(f"Progress stream for {current.id} timed out")
                        return

                event = subscription.get(timeout=remaining)
                if event is None:
                    continue
                # Snapshots queued before the initial read are older than it
                if not event.is_terminal and event.progress < last.progress:
                    continue
                last = event
                yield event
