"""
Shared pytest fixtures for snapvault tests.

This module provides fixtures for:
- Source trees and archives on disk
- Backup policy, storage, catalog and progress components
- A fully wired BackupOrchestrator and BackupService
- Flask app and test client
"""

import dataclasses
import os
from unittest.mock import MagicMock

import pytest

from snapvault import create_app
from snapvault.backup.config import BackupConfig, CompressionConfig, VerificationConfig
from snapvault.backup.events import EventBus
from snapvault.backup.executor import BackupOrchestrator
from snapvault.backup.history import HistoryStore
from snapvault.backup.progress import ProgressRegistry
from snapvault.backup.retention import RetentionManager
from snapvault.backup.sources import LocalSource
from snapvault.backup.storage import LocalStorage
from snapvault.config import TestingConfig
from snapvault.service import BackupService


@pytest.fixture
def source_dirs(tmp_path):
    """
    Create the three default source directories with a few files.

    Creates:
    - uploads/a.txt, uploads/images/logo.png
    - public/index.html
    - storage/data.json, storage/cache/ignored.pyc
    """
    root = tmp_path / 'app'

    uploads = root / 'uploads'
    (uploads / 'images').mkdir(parents=True)
    (uploads / 'a.txt').write_text('upload a')
    (uploads / 'images' / 'logo.png').write_bytes(b'\x89PNG' + b'\x00' * 60)

    public = root / 'public'
    public.mkdir()
    (public / 'index.html').write_text('<html></html>')

    storage = root / 'storage'
    (storage / 'cache').mkdir(parents=True)
    (storage / 'data.json').write_text('{"orders": []}')
    (storage / 'cache' / 'ignored.pyc').write_bytes(b'compiled python')

    return [str(uploads), str(public), str(storage)]


@pytest.fixture
def large_source(tmp_path):
    """A single source directory with 10 files of 100 KB each (about 1 MB)."""
    root = tmp_path / 'bulk' / 'uploads'
    root.mkdir(parents=True)
    for i in range(10):
        (root / f"file_{i:02d}.bin").write_bytes(os.urandom(100 * 1024))
    return [str(root)]


@pytest.fixture
def backup_config():
    """Default policy: compression (tar.gz) and verification with checksum enabled."""
    return BackupConfig()


@pytest.fixture
def uncompressed_config():
    return dataclasses.replace(
        BackupConfig(),
        compression=CompressionConfig(enabled=False),
    )


@pytest.fixture
def minimal_config():
    """No compression and no verification."""
    return dataclasses.replace(
        BackupConfig(),
        compression=CompressionConfig(enabled=False),
        verification=VerificationConfig(enabled=False, checksum=False),
    )


@pytest.fixture
def storage(tmp_path):
    return LocalStorage(str(tmp_path / 'backups'))


@pytest.fixture
def history():
    """In-memory catalog, fresh for each test."""
    store = HistoryStore('sqlite:///:memory:')
    yield store
    store.close()


@pytest.fixture
def notifier():
    return MagicMock()


@pytest.fixture
def make_orchestrator(storage, history, notifier, source_dirs):
    """
    Factory for orchestrators sharing the storage, catalog and notifier fixtures.

    Usage: orchestrator = make_orchestrator(config, sources=None)
    """
    def _make(config, sources=None, exclude_patterns=('*.pyc',)):
        return BackupOrchestrator(
            config=config,
            source=LocalSource(sources or source_dirs, list(exclude_patterns)),
            storage=storage,
            history=history,
            retention=RetentionManager(config, history, storage),
            progress=ProgressRegistry(),
            events=EventBus(buffer_size=10000),
            notifier=notifier,
        )

    return _make


@pytest.fixture
def orchestrator(make_orchestrator, backup_config):
    return make_orchestrator(backup_config)


@pytest.fixture
def service(tmp_path, backup_config, source_dirs, notifier):
    svc = BackupService(
        config=backup_config,
        backup_root=str(tmp_path / 'backups'),
        source_dirs=source_dirs,
        exclude_patterns=['*.pyc'],
        history_url='sqlite:///:memory:',
        restore_dir=str(tmp_path / 'restored'),
        notifier=notifier,
    )
    yield svc
    svc.close()


@pytest.fixture
def app(tmp_path, monkeypatch, service):
    """
    Create Flask app with test configuration.

    Logs go to a temporary directory and the scheduler is never started.
    """
    monkeypatch.setattr(TestingConfig, 'LOG_DIR', str(tmp_path / 'logs'))
    monkeypatch.setattr(TestingConfig, 'BACKUP_STREAM_TIMEOUT', 10)

    app = create_app('testing', service=service)
    yield app


@pytest.fixture
def client(app):
    """Flask test client for making HTTP requests."""
    return app.test_client()


@pytest.fixture
def temp_files(tmp_path):
    """
    Create temporary test files and directories.

    Creates:
    - test_file1.txt
    - test_file2.log
    - nested/test_file3.txt
    - test_file.pyc (should be excluded in tests)
    """
    data_dir = tmp_path / 'data'
    data_dir.mkdir()

    (data_dir / 'test_file1.txt').write_text('Test content 1')
    (data_dir / 'test_file2.log').write_text('Test log content')

    nested_dir = data_dir / 'nested'
    nested_dir.mkdir()
    (nested_dir / 'test_file3.txt').write_text('Nested test content')

    (data_dir / 'test_file.pyc').write_bytes(b'compiled python')

    return data_dir
