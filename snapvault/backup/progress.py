"""
In-memory table of running backup jobs.

Snapshots are immutable BackupProgress values; every update swaps in a new
snapshot under a lock, so readers see either the old or the new state.
"""

import threading
from dataclasses import replace
from datetime import datetime, timezone
from typing import Dict, List, Optional

from .errors import NotFoundError
from .types import BackupProgress, ProgressStage


class ProgressRegistry:
    """
    Registry of in-flight job progress keyed by job id.

    Percentages never go backwards within a job: an update carrying a lower
    value than the current one keeps the current value.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._active: Dict[str, BackupProgress] = {}

    def register(self, job_id: str, start_time: Optional[datetime] = None) -> BackupProgress:
        """
        Register a new job in the 'preparing' stage.

        Raises:
            ValueError: If the id is already registered
        """
        snapshot = BackupProgress(
            id=job_id,
            stage=ProgressStage.PREPARING,
            start_time=start_time or datetime.now(timezone.utc),
        )
        with self._lock:
            if job_id in self._active:
                raise ValueError(f"Job already registered: {job_id}")
            self._active[job_id] = snapshot
        return snapshot

    def update(self, job_id: str, **changes) -> BackupProgress:
        """
        Replace the snapshot of a job with an updated copy.

        Args:
            job_id: Job to update
            **changes: BackupProgress fields to change

        Returns:
            The new snapshot

        Raises:
            NotFoundError: If the job is not registered
        """
        with self._lock:
            current = self._active.get(job_id)
            if current is None:
                raise NotFoundError(f"No active backup with id {job_id}")

            if 'progress' in changes:
                value = min(100.0, max(0.0, float(changes['progress'])))
                changes['progress'] = max(current.progress, value)

            snapshot = replace(current, **changes)
            self._active[job_id] = snapshot
            return snapshot

    def get(self, job_id: str) -> Optional[BackupProgress]:
        return self._active.get(job_id)

    def list_active(self) -> List[BackupProgress]:
        with self._lock:
            snapshots = list(self._active.values())
        return sorted(snapshots, key=lambda p: p.start_time)

    def remove(self, job_id: str) -> Optional[BackupProgress]:
        with self._lock:
            return self._active.pop(job_id, None)

    def __len__(self) -> int:
        return len(self._active)

    def __contains__(self, job_id: str) -> bool:
        return job_id in self._active
