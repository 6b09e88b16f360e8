"""
Unit tests for restoring backups (snapvault/backup/restore.py).
"""

import filecmp
import os
from pathlib import Path
from unittest.mock import patch

import pytest

from snapvault.backup.compression import CompressionError
from snapvault.backup.errors import ConflictError, NotFoundError, VerificationError
from snapvault.backup.restore import RestoreEngine


def _tree_bytes(root: Path) -> dict:
    return {
        p.relative_to(root).as_posix(): p.read_bytes()
        for p in sorted(root.rglob('*')) if p.is_file()
    }


@pytest.fixture
def engine(history, storage, tmp_path):
    return RestoreEngine(history, storage, str(tmp_path / 'restored'))


class TestRestoreEngine:
    """Test restoring compressed and uncompressed backups."""

    def test_restore_compressed_backup(self, orchestrator, engine, source_dirs, tmp_path):
        metadata = orchestrator.create('manual')
        target = tmp_path / 'target'

        result = engine.restore(metadata.id, str(target))

        assert result['success'] is True
        assert result['files'] == 4
        assert result['target_path'] == str(target.resolve())

        uploads = Path(source_dirs[0])
        assert filecmp.cmp(uploads / 'images' / 'logo.png', target / 'uploads' / 'images' / 'logo.png',
                           shallow=False)
        assert (target / 'storage' / 'data.json').read_text() == '{"orders": []}'
        assert not (target / 'storage' / 'cache' / 'ignored.pyc').exists()

    def test_restore_uncompressed_backup(self, make_orchestrator, uncompressed_config, engine, tmp_path):
        orchestrator = make_orchestrator(uncompressed_config)
        metadata = orchestrator.create('daily')
        target = tmp_path / 'target'

        engine.restore(metadata.id, str(target))

        assert (target / 'public' / 'index.html').read_text() == '<html></html>'

    def test_restore_twice_produces_identical_trees(self, orchestrator, engine, tmp_path):
        metadata = orchestrator.create('manual')

        engine.restore(metadata.id, str(tmp_path / 'first'))
        engine.restore(metadata.id, str(tmp_path / 'second'))

        assert _tree_bytes(tmp_path / 'first') == _tree_bytes(tmp_path / 'second')

    def test_restore_into_existing_empty_directory(self, orchestrator, engine, tmp_path):
        metadata = orchestrator.create('manual')
        target = tmp_path / 'empty'
        target.mkdir()

        result = engine.restore(metadata.id, str(target))

        assert result['files'] == 4

    def test_default_target(self, orchestrator, engine, tmp_path):
        metadata = orchestrator.create('manual')

        result = engine.restore(metadata.id)

        assert result['target_path'] == str((tmp_path / 'restored' / metadata.name).resolve())

    def test_unknown_id(self, engine):
        with pytest.raises(NotFoundError):
            engine.restore('backup_0_doesnotexist')

    def test_missing_artifact(self, orchestrator, engine, storage, tmp_path):
        metadata = orchestrator.create('manual')
        storage.delete(metadata.location)

        with pytest.raises(NotFoundError, match='missing'):
            engine.restore(metadata.id, str(tmp_path / 'target'))

    def test_failed_backup_not_restorable(self, orchestrator, engine, history):
        with patch('snapvault.backup.executor.create_archive', side_effect=CompressionError('disk full')):
            with pytest.raises(CompressionError):
                orchestrator.create('manual')

        failed = history.latest('manual')
        with pytest.raises(NotFoundError):
            engine.restore(failed.id)

    def test_non_empty_target_conflicts(self, orchestrator, engine, tmp_path):
        metadata = orchestrator.create('manual')
        target = tmp_path / 'occupied'
        target.mkdir()
        (target / 'keep.txt').write_text('do not overwrite')

        with pytest.raises(ConflictError):
            engine.restore(metadata.id, str(target))

        assert os.listdir(target) == ['keep.txt']

    def test_file_target_conflicts(self, orchestrator, engine, tmp_path):
        metadata = orchestrator.create('manual')
        target = tmp_path / 'a_file'
        target.write_text('x')

        with pytest.raises(ConflictError):
            engine.restore(metadata.id, str(target))


class TestRestoreChecksum:
    """Test corrupted artifacts are refused."""

    def test_corrupted_archive_refused(self, orchestrator, engine, storage, tmp_path):
        metadata = orchestrator.create('manual')
        archive = Path(storage.get_full_path(metadata.location))

        data = bytearray(archive.read_bytes())
        data[len(data) // 2] ^= 0xFF
        archive.write_bytes(bytes(data))

        target = tmp_path / 'target'
        with pytest.raises(VerificationError):
            engine.restore(metadata.id, str(target))

        assert not target.exists()

    def test_corrupted_tree_refused(self, make_orchestrator, uncompressed_config, engine, storage, tmp_path):
        orchestrator = make_orchestrator(uncompressed_config)
        metadata = orchestrator.create('daily')

        tree = Path(storage.get_full_path(metadata.location))
        (tree / 'public' / 'index.html').write_text('<html>tampered</html>')

        with pytest.raises(VerificationError):
            engine.restore(metadata.id, str(tmp_path / 'target'))

    def test_failed_extraction_cleans_up(self, orchestrator, engine, tmp_path):
        metadata = orchestrator.create('manual')
        target = tmp_path / 'target'

        with patch('snapvault.backup.restore.extract_archive', side_effect=CompressionError('bad archive')):
            with pytest.raises(CompressionError):
                engine.restore(metadata.id, str(target))

        assert not target.exists()
