"""
Unit tests for local artifact storage (snapvault/backup/storage.py).
"""

import os
from collections import namedtuple
from unittest.mock import patch

import pytest

from snapvault.backup.storage import LocalStorage, StorageError


class TestLocalStorage:
    """Test LocalStorage layout and deletion."""

    def test_creates_base_directory(self, tmp_path):
        storage = LocalStorage(str(tmp_path / 'deep' / 'backups'))

        assert storage.base_path.is_dir()

    def test_prepare(self, storage):
        location = storage.prepare('daily', 'backup-daily-2024-01-15T02-00-00-000Z')

        assert location == 'daily/backup-daily-2024-01-15T02-00-00-000Z'
        assert os.path.isdir(storage.get_full_path(location))

    def test_prepare_existing_destination(self, storage):
        storage.prepare('daily', 'backup-1')

        with pytest.raises(StorageError, match='already exists'):
            storage.prepare('daily', 'backup-1')

    def test_paths_outside_root_refused(self, storage):
        with pytest.raises(StorageError, match='outside the backup root'):
            storage.get_full_path('../etc/passwd')

        with pytest.raises(StorageError):
            storage.delete('.')

    def test_relative_to_base(self, storage):
        full_path = os.path.join(storage.base_path, 'manual', 'backup-1.tar.gz')

        assert storage.relative_to_base(full_path) == 'manual/backup-1.tar.gz'

    def test_size_of_file_and_directory(self, storage):
        location = storage.prepare('manual', 'backup-1')
        tree = storage.get_full_path(location)
        os.makedirs(os.path.join(tree, 'sub'))
        with open(os.path.join(tree, 'a.bin'), 'wb') as f:
            f.write(b'x' * 100)
        with open(os.path.join(tree, 'sub', 'b.bin'), 'wb') as f:
            f.write(b'y' * 50)

        assert storage.size(location) == 150
        assert storage.size(f"{location}/a.bin") == 100

    def test_delete_directory_and_file(self, storage):
        location = storage.prepare('manual', 'backup-1')
        archive = os.path.join(storage.base_path, 'manual', 'backup-2.zip')
        with open(archive, 'wb') as f:
            f.write(b'PK')

        assert storage.delete(location) is True
        assert storage.delete('manual/backup-2.zip') is True
        assert not storage.exists(location)
        assert not os.path.exists(archive)

    def test_delete_missing(self, storage):
        assert storage.delete('daily/never-existed') is False

    def test_delete_failure(self, storage):
        location = storage.prepare('manual', 'backup-1')

        with patch('snapvault.backup.storage.shutil.rmtree', side_effect=PermissionError('read-only')):
            with pytest.raises(StorageError, match='Permission denied'):
                storage.delete(location)

    def test_exists_empty_location(self, storage):
        assert storage.exists(None) is False
        assert storage.exists('') is False

    def test_free_space(self, storage):
        usage = namedtuple('usage', 'total used free')(1000, 400, 600)

        with patch('snapvault.backup.storage.shutil.disk_usage', return_value=usage):
            assert storage.free_space() == 600
