"""
Unit tests for retention policy management (snapvault/backup/retention.py).

Tests RetentionManager for cleaning up old backups.
"""

import dataclasses
import os
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest
from freezegun import freeze_time

from snapvault.backup.config import BackupConfig, RetentionConfig
from snapvault.backup.retention import RetentionManager
from snapvault.backup.storage import StorageError
from snapvault.backup.types import BackupMetadata, BackupStatus, BackupType


def add_backup(history, storage, backup_id, days_ago, backup_type=BackupType.DAILY,
               status=BackupStatus.COMPLETED, with_artifact=True):
    """Append a catalog record (and an archive file for it)."""
    location = None
    if status == BackupStatus.COMPLETED:
        location = f"{backup_type.value}/{backup_id}.tar.gz"
        if with_artifact:
            full_path = os.path.join(storage.base_path, location)
            os.makedirs(os.path.dirname(full_path), exist_ok=True)
            with open(full_path, 'wb') as f:
                f.write(b'archive')

    history.append(BackupMetadata(
        id=backup_id,
        name=backup_id,
        backup_type=backup_type,
        created_at=datetime(2024, 1, 15, tzinfo=timezone.utc) - timedelta(days=days_ago),
        status=status,
        location=location,
    ))
    return location


def retention_config(**counts):
    return dataclasses.replace(BackupConfig(), retention=RetentionConfig(**counts))


class TestRetentionManager:
    """Test RetentionManager basic functionality."""

    def test_retention_manager_initialization(self, history, storage):
        """Test RetentionManager initializes correctly."""
        manager = RetentionManager(BackupConfig(), history, storage)

        assert manager is not None
        assert list(manager.logs) == []

    def test_under_limit_is_noop(self, history, storage):
        add_backup(history, storage, 'd1', days_ago=1)
        manager = RetentionManager(retention_config(daily=7), history, storage)

        result = manager.cleanup('daily')

        assert result == {'type': 'daily', 'retention': 7, 'deleted': [], 'errors': []}
        assert history.count() == 1

    @freeze_time("2024-01-15")
    def test_oldest_backups_removed(self, history, storage):
        locations = {
            backup_id: add_backup(history, storage, backup_id, days_ago=days)
            for backup_id, days in [('d1', 4), ('d2', 3), ('d3', 2), ('d4', 1)]
        }
        manager = RetentionManager(retention_config(daily=2), history, storage)

        result = manager.cleanup(BackupType.DAILY)

        assert result['deleted'] == ['d1', 'd2']
        assert [m.id for m in history.list_by_type('daily')] == ['d3', 'd4']
        assert not storage.exists(locations['d1'])
        assert not storage.exists(locations['d2'])
        assert storage.exists(locations['d4'])
        assert any('age: 4 days' in line for line in manager.logs)

    def test_only_completed_and_same_type_counted(self, history, storage):
        add_backup(history, storage, 'd1', days_ago=3)
        add_backup(history, storage, 'f1', days_ago=2, status=BackupStatus.FAILED)
        add_backup(history, storage, 'w1', days_ago=5, backup_type=BackupType.WEEKLY)
        add_backup(history, storage, 'd2', days_ago=1)
        manager = RetentionManager(retention_config(daily=1), history, storage)

        result = manager.cleanup('daily')

        assert result['deleted'] == ['d1']
        assert history.get('f1') is not None
        assert history.get('w1') is not None

    def test_zero_retention_removes_all(self, history, storage):
        add_backup(history, storage, 'm1', days_ago=2, backup_type=BackupType.MANUAL)
        add_backup(history, storage, 'm2', days_ago=1, backup_type=BackupType.MANUAL)
        manager = RetentionManager(retention_config(manual=0), history, storage)

        manager.cleanup('manual')

        assert history.count_by_type('manual', BackupStatus.COMPLETED) == 0

    def test_cleanup_is_idempotent(self, history, storage):
        for i in range(5):
            add_backup(history, storage, f"d{i}", days_ago=10 - i)
        manager = RetentionManager(retention_config(daily=3), history, storage)

        first = manager.cleanup('daily')
        second = manager.cleanup('daily')

        assert len(first['deleted']) == 2
        assert second['deleted'] == []
        assert history.count_by_type('daily', BackupStatus.COMPLETED) == 3

    def test_missing_artifact_counts_as_deleted(self, history, storage):
        add_backup(history, storage, 'd1', days_ago=2, with_artifact=False)
        add_backup(history, storage, 'd2', days_ago=1)
        manager = RetentionManager(retention_config(daily=1), history, storage)

        result = manager.cleanup('daily')

        assert result['deleted'] == ['d1']
        assert result['errors'] == []
        assert history.get('d1') is None
        assert any('already missing' in line for line in manager.logs)

    def test_delete_failure_keeps_record_and_continues(self, history, storage):
        add_backup(history, storage, 'd1', days_ago=3)
        add_backup(history, storage, 'd2', days_ago=2)
        add_backup(history, storage, 'd3', days_ago=1)
        manager = RetentionManager(retention_config(daily=1), history, storage)
        real_delete = storage.delete

        def flaky_delete(location):
            if location.endswith('d1.tar.gz'):
                raise StorageError('Permission denied')
            return real_delete(location)

        with patch.object(storage, 'delete', side_effect=flaky_delete):
            result = manager.cleanup('daily')

        assert result['deleted'] == ['d2']
        assert len(result['errors']) == 1
        assert 'd1' in result['errors'][0]
        assert history.get('d1') is not None
        assert history.get('d2') is None

    def test_cleanup_all(self, history, storage):
        add_backup(history, storage, 'd1', days_ago=2)
        add_backup(history, storage, 'd2', days_ago=1)
        add_backup(history, storage, 'w1', days_ago=1, backup_type=BackupType.WEEKLY)
        manager = RetentionManager(retention_config(daily=1, weekly=1), history, storage)

        results = manager.cleanup_all()

        assert set(results) == {'daily', 'weekly', 'monthly', 'manual'}
        assert results['daily']['deleted'] == ['d1']
        assert results['weekly']['deleted'] == []

    @pytest.mark.parametrize("retention", [0, 1, 2, 5])
    def test_retention_invariant(self, history, storage, retention):
        manager = RetentionManager(retention_config(weekly=retention), history, storage)

        for i in range(6):
            add_backup(history, storage, f"w{i}", days_ago=30 - i, backup_type=BackupType.WEEKLY)
            manager.cleanup('weekly')
            assert history.count_by_type('weekly', BackupStatus.COMPLETED) <= retention
