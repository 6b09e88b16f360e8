"""
APScheduler configuration for recurring snapvault backups.

Manages:
- One cron job per scheduled backup type (daily, weekly, monthly)
- Next fire time computation for a given reference time
- Submitting due backups to the orchestrator
"""

import logging
from datetime import datetime, timezone
from typing import Dict, Optional

from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from snapvault.backup.config import BackupConfig
from snapvault.backup.errors import ConflictError
from snapvault.backup.types import BackupType, SCHEDULED_TYPES


logger = logging.getLogger(__name__)


JOB_DEFAULTS = {
    'coalesce': True,  # Combine multiple pending instances into one
    'max_instances': 1,  # Only one instance of a job at a time
    'misfire_grace_time': 300  # 5 minutes grace period for misfires
}


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def build_triggers(config: BackupConfig, timezone_name: str = 'UTC') -> Dict[BackupType, CronTrigger]:
    """Create one CronTrigger per scheduled backup type."""
    return {
        backup_type: CronTrigger.from_crontab(config.schedule.for_type(backup_type), timezone=timezone_name)
        for backup_type in SCHEDULED_TYPES
    }


def compute_next_fire_times(config: BackupConfig, now: datetime,
                            timezone_name: str = 'UTC') -> Dict[str, Optional[datetime]]:
    """
    Next fire time per scheduled type, without starting anything.

    Args:
        config: Backup policy with the cron expressions
        now: Timezone-aware reference time

    Returns:
        Dict mapping 'daily', 'weekly' and 'monthly' to the next fire time
    """
    return {
        backup_type.value: trigger.get_next_fire_time(None, now)
        for backup_type, trigger in build_triggers(config, timezone_name).items()
    }


def job_id_for(backup_type: BackupType) -> str:
    return f"backup_{backup_type.value}"


class Scheduler:
    """
    Fires scheduled backups.

    Each run calls orchestrator.submit(type), which returns as soon as the
    job has started. Errors from a run are logged and never unschedule the job.
    """

    def __init__(self, orchestrator, timezone_name: str = 'UTC'):
        """
        Initialize scheduler.

        Args:
            orchestrator: Object with a submit(backup_type) method
            timezone_name: Timezone the cron expressions are evaluated in
        """
        self.orchestrator = orchestrator
        self.timezone_name = timezone_name
        self._scheduler: Optional[BackgroundScheduler] = None

    @property
    def running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    def start(self, config: BackupConfig, paused: bool = False):
        """
        Register the daily, weekly and monthly jobs and start the scheduler.

        A running scheduler is shut down first, so calling start() again after
        a configuration reload never causes duplicate firings.

        Args:
            config: Backup policy with the cron expressions
            paused: Start without processing jobs until resume() is called
        """
        self.stop()

        scheduler = BackgroundScheduler(
            executors={'default': ThreadPoolExecutor(max_workers=3)},
            job_defaults=JOB_DEFAULTS,
            timezone=self.timezone_name
        )

        for backup_type, trigger in build_triggers(config, self.timezone_name).items():
            scheduler.add_job(
                func=self._fire,
                args=[backup_type],
                trigger=trigger,
                id=job_id_for(backup_type),
                name=f"Scheduled {backup_type.value} backup",
                replace_existing=True
            )

        scheduler.start(paused=paused)
        self._scheduler = scheduler

        for backup_type in SCHEDULED_TYPES:
            job = scheduler.get_job(job_id_for(backup_type))
            logger.info(
                f"Scheduled {backup_type.value} backups ({config.schedule.for_type(backup_type)}), "
                f"next run: {self._format(job.next_run_time)}"
            )
        logger.info("Backup scheduler started")

    def resume(self):
        """Start processing jobs of a scheduler started with paused=True."""
        if self._scheduler is not None:
            self._scheduler.resume()

    def stop(self):
        """Remove all jobs and shut the scheduler down. Safe to call repeatedly."""
        scheduler = self._scheduler
        self._scheduler = None

        if scheduler is not None and scheduler.running:
            scheduler.remove_all_jobs()
            scheduler.shutdown(wait=False)
            logger.info("Backup scheduler stopped")

    def get_job(self, backup_type: BackupType):
        """Scheduled APScheduler job of a backup type, or None when stopped."""
        if self._scheduler is None:
            return None
        return self._scheduler.get_job(job_id_for(BackupType.parse(backup_type)))

    def next_fire_times(self) -> Dict[str, Optional[datetime]]:
        """Next fire time per scheduled type (empty when stopped)."""
        if self._scheduler is None:
            return {}

        fire_times = {}
        for backup_type in SCHEDULED_TYPES:
            job = self._scheduler.get_job(job_id_for(backup_type))
            if job is not None:
                fire_times[backup_type.value] = job.next_run_time
        return fire_times

    def _fire(self, backup_type: BackupType) -> bool:
        try:
            logger.info(f"Scheduler starting {backup_type.value} backup")
            progress = self.orchestrator.submit(backup_type)
            logger.info(f"Scheduled {backup_type.value} backup started: {progress.id}")
            return True
        except ConflictError as e:
            logger.warning(f"Scheduled {backup_type.value} backup skipped: {e}")
        except Exception as e:
            logger.error(f"Scheduled {backup_type.value} backup failed: {e}")
        return False

    @staticmethod
    def _format(fire_time: Optional[datetime]) -> str:
        return fire_time.isoformat() if fire_time else 'N/A'
