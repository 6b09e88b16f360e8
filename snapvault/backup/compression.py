"""
Compression handlers for backup archives.

Supports multiple formats:
- zip: Standard zip compression
- tar.gz: Gzip compressed tar
- tar.bz2: Bzip2 compressed tar
- tar.xz: LZMA compressed tar

Archives hold the contents of a backup directory with paths relative to it,
so extracting an archive reproduces the copied tree.
"""

import os
import tarfile
import zipfile
from pathlib import Path
from typing import Callable, List, Optional

from .errors import BackupIOError


class CompressionError(BackupIOError):
    """Raised when archive creation or extraction fails."""
    pass


ARCHIVE_EXTENSIONS = {
    'zip': 'zip',
    'tar.gz': 'tar.gz',
    'tar.bz2': 'tar.bz2',
    'tar.xz': 'tar.xz',
}

_TAR_WRITE_MODES = {
    'tar.gz': 'w:gz',
    'tar.bz2': 'w:bz2',
    'tar.xz': 'w:xz',
}


def archive_format_from_path(archive_path: str) -> str:
    """
    Detect archive format from the file extension.

    Raises:
        CompressionError: If the extension is not a supported archive type
    """
    for compression_format, extension in ARCHIVE_EXTENSIONS.items():
        if archive_path.endswith(f".{extension}"):
            return compression_format
    raise CompressionError(f"Unrecognized archive type: {archive_path}")


def create_archive(
    source_dir: str,
    output_path: str,
    compression_format: str = 'tar.gz',
    level: Optional[int] = None,
    on_file: Optional[Callable[[str, int], None]] = None
) -> str:
    """
    Create a compressed archive from the contents of a directory.

    Args:
        source_dir: Directory whose contents are archived
        output_path: Path where archive should be created (without extension)
        compression_format: Format to use ('zip', 'tar.gz', 'tar.bz2', 'tar.xz')
        level: Compression level (format default if None)
        on_file: Called with (relative path, size) after each file is added

    Returns:
        Full path to the created archive file

    Raises:
        CompressionError: If archive creation fails
        ValueError: If compression_format is invalid
    """
    source = Path(source_dir)
    if not source.is_dir():
        raise CompressionError(f"Source directory does not exist: {source_dir}")

    if compression_format not in ARCHIVE_EXTENSIONS:
        raise ValueError(
            f"Invalid compression format: {compression_format}. "
            f"Valid options: {list(ARCHIVE_EXTENSIONS.keys())}"
        )

    archive_path = f"{output_path}.{ARCHIVE_EXTENSIONS[compression_format]}"
    entries = sorted(source.rglob('*'))

    try:
        if compression_format == 'zip':
            _create_zip(source, entries, archive_path, level, on_file)
        else:
            _create_tar(source, entries, archive_path, compression_format, level, on_file)
        return archive_path
    except Exception as e:
        # Clean up partial archive on failure
        if os.path.exists(archive_path):
            try:
                os.remove(archive_path)
            except OSError:
                pass
        if isinstance(e, CompressionError):
            raise
        raise CompressionError(f"Failed to create archive: {e}")


def _create_zip(source: Path, entries: List[Path], archive_path: str,
                level: Optional[int], on_file):
    with zipfile.ZipFile(archive_path, 'w', zipfile.ZIP_DEFLATED, compresslevel=level) as zipf:
        for item in entries:
            arcname = item.relative_to(source).as_posix()
            if item.is_dir():
                zipf.write(item, arcname + '/')
            elif item.is_file():
                zipf.write(item, arcname)
                if on_file:
                    on_file(arcname, item.stat().st_size)


def _create_tar(source: Path, entries: List[Path], archive_path: str,
                compression_format: str, level: Optional[int], on_file):
    mode = _TAR_WRITE_MODES[compression_format]
    kwargs = {}
    if level is not None:
        kwargs = {'preset': level} if compression_format == 'tar.xz' else {'compresslevel': level}

    with tarfile.open(archive_path, mode, **kwargs) as tar:
        for item in entries:
            arcname = item.relative_to(source).as_posix()
            tar.add(item, arcname=arcname, recursive=False)
            if on_file and item.is_file():
                on_file(arcname, item.stat().st_size)


def list_archive_files(archive_path: str) -> List[str]:
    """
    List regular files stored in an archive, reading every member.

    Reading through a tar stream forces decompression of the whole archive,
    so truncation or corruption surfaces here as a CompressionError.

    Raises:
        CompressionError: If the archive cannot be read
    """
    compression_format = archive_format_from_path(archive_path)

    try:
        if compression_format == 'zip':
            with zipfile.ZipFile(archive_path, 'r') as zipf:
                bad_member = zipf.testzip()
                if bad_member is not None:
                    raise CompressionError(f"Corrupt archive member: {bad_member}")
                return [info.filename for info in zipf.infolist() if not info.is_dir()]

        names = []
        with tarfile.open(archive_path, 'r:*') as tar:
            for member in tar:
                if member.isfile():
                    extracted = tar.extractfile(member)
                    while extracted.read(1024 * 1024):
                        pass
                    names.append(member.name)
        return names
    except CompressionError:
        raise
    except (tarfile.TarError, zipfile.BadZipFile, OSError, EOFError) as e:
        raise CompressionError(f"Failed to read archive {archive_path}: {e}")


def extract_archive(archive_path: str, target_dir: str):
    """
    Extract an archive into target_dir.

    Tar members that would land outside target_dir, links and device files
    are rejected by the 'data' extraction filter.

    Raises:
        CompressionError: If extraction fails
    """
    compression_format = archive_format_from_path(archive_path)
    os.makedirs(target_dir, exist_ok=True)

    try:
        if compression_format == 'zip':
            with zipfile.ZipFile(archive_path, 'r') as zipf:
                zipf.extractall(target_dir)
        else:
            with tarfile.open(archive_path, 'r:*') as tar:
                tar.extractall(target_dir, filter='data')
    except (tarfile.TarError, zipfile.BadZipFile, OSError, EOFError) as e:
        raise CompressionError(f"Failed to extract archive {archive_path}: {e}")
