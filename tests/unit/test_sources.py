"""
Unit tests for source handling (snapvault/backup/sources.py).

Tests LocalSource analysis, exclusion and copying.
"""

from pathlib import Path
from unittest.mock import patch

import pytest

from snapvault.backup.sources import LocalSource, SourceError


class TestLocalSourceAnalyze:
    """Test walking source directories."""

    def test_analyze_directory(self, temp_files):
        source = LocalSource(paths=[str(temp_files)])

        analysis = source.analyze()

        assert sorted(f.relative_path for f in analysis.files) == [
            'data/nested/test_file3.txt',
            'data/test_file.pyc',
            'data/test_file1.txt',
            'data/test_file2.log',
        ]
        assert analysis.directories == ['data', 'data/nested']
        assert analysis.total_files == 4
        assert analysis.total_bytes == sum(f.size for f in analysis.files)

    def test_analyze_exclude_patterns(self, temp_files):
        """Test excluding files by pattern."""
        source = LocalSource(paths=[str(temp_files)], exclude_patterns=['*.pyc'])

        analysis = source.analyze()

        assert 'data/test_file.pyc' not in [f.relative_path for f in analysis.files]
        assert analysis.total_files == 3

    def test_analyze_exclude_directory(self, temp_files):
        source = LocalSource(paths=[str(temp_files)], exclude_patterns=['nested'])

        analysis = source.analyze()

        assert analysis.directories == ['data']
        assert all('nested' not in f.relative_path for f in analysis.files)

    def test_analyze_double_star_pattern(self, temp_files):
        source = LocalSource(paths=[str(temp_files)], exclude_patterns=['**/*.log'])

        analysis = source.analyze()

        assert 'data/test_file2.log' not in [f.relative_path for f in analysis.files]

    def test_analyze_single_file(self, temp_files):
        source = LocalSource(paths=[str(temp_files / 'test_file1.txt')])

        analysis = source.analyze()

        assert [f.relative_path for f in analysis.files] == ['test_file1.txt']
        assert analysis.directories == []

    def test_missing_source_skipped(self, temp_files, tmp_path):
        missing = str(tmp_path / 'nonexistent')
        source = LocalSource(paths=[str(temp_files), missing])

        analysis = source.analyze()

        assert analysis.skipped == [missing]
        assert analysis.total_files == 4

    def test_all_sources_missing(self, tmp_path):
        source = LocalSource(paths=[str(tmp_path / 'a'), str(tmp_path / 'b')])

        with pytest.raises(SourceError, match='None of the backup sources exist'):
            source.analyze()

    def test_duplicate_source_names(self, tmp_path):
        (tmp_path / 'one' / 'uploads').mkdir(parents=True)
        (tmp_path / 'two' / 'uploads').mkdir(parents=True)
        source = LocalSource(paths=[str(tmp_path / 'one' / 'uploads'), str(tmp_path / 'two' / 'uploads')])

        with pytest.raises(SourceError, match='share the name'):
            source.analyze()

    def test_empty_directory(self, tmp_path):
        empty = tmp_path / 'empty'
        empty.mkdir()

        analysis = LocalSource(paths=[str(empty)]).analyze()

        assert analysis.total_files == 0
        assert analysis.total_bytes == 0
        assert analysis.directories == ['empty']


class TestLocalSourceCopy:
    """Test copying analyzed files."""

    def test_copy_reproduces_tree(self, temp_files, tmp_path):
        source = LocalSource(paths=[str(temp_files)], exclude_patterns=['*.pyc'])
        analysis = source.analyze()
        dest = tmp_path / 'dest'
        dest.mkdir()

        copied = []
        source.copy(analysis, str(dest), on_file=lambda f: copied.append(f.relative_path))

        assert (dest / 'data' / 'nested' / 'test_file3.txt').read_text() == 'Nested test content'
        assert not (dest / 'data' / 'test_file.pyc').exists()
        assert copied == [f.relative_path for f in analysis.files]

    def test_copy_keeps_empty_directories(self, tmp_path):
        root = tmp_path / 'public'
        (root / 'empty').mkdir(parents=True)
        source = LocalSource(paths=[str(root)])
        dest = tmp_path / 'dest'
        dest.mkdir()

        source.copy(source.analyze(), str(dest))

        assert (dest / 'public' / 'empty').is_dir()

    def test_copy_error(self, temp_files, tmp_path):
        source = LocalSource(paths=[str(temp_files)])
        analysis = source.analyze()

        with patch('snapvault.backup.sources.shutil.copy2', side_effect=OSError('No space left on device')):
            with pytest.raises(SourceError, match='No space left'):
                source.copy(analysis, str(tmp_path / 'dest'))

    def test_copy_permission_error(self, temp_files, tmp_path):
        source = LocalSource(paths=[str(temp_files)])
        analysis = source.analyze()

        with patch('snapvault.backup.sources.shutil.copy2', side_effect=PermissionError('denied')):
            with pytest.raises(SourceError, match='Permission denied'):
                source.copy(analysis, str(tmp_path / 'dest'))

    def test_should_exclude(self):
        source = LocalSource(paths=[], exclude_patterns=['*.pyc', '__pycache__', '.git'])

        assert source._should_exclude(Path('/srv/app/module.pyc'))
        assert source._should_exclude(Path('/srv/app/__pycache__'))
        assert source._should_exclude(Path('/srv/app/.git'))
        assert not source._should_exclude(Path('/srv/app/module.py'))
