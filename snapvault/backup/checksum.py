"""
Checksum calculation for backup artifacts.

Checksums are written as "<algorithm>:<hex digest>". A compressed artifact
is hashed as a single file; an uncompressed artifact is hashed as a tree
(sorted relative paths plus file contents), so renaming or moving a file
inside the tree changes the checksum too.
"""

import hashlib
from pathlib import Path
from typing import Callable, Optional, Union

from .errors import BackupIOError


# Buffer size for streaming file reads (1 MB)
BUFFER_SIZE = 1024 * 1024

SUPPORTED_ALGORITHMS = ('sha256', 'sha512', 'blake2b', 'md5')


def _new_hash(algorithm: str):
    if algorithm not in SUPPORTED_ALGORITHMS:
        raise ValueError(f"Unsupported checksum algorithm: {algorithm}")
    return hashlib.new(algorithm)


def _feed_file(hash_func, file_path: Path, on_bytes: Optional[Callable[[int], None]]):
    with open(file_path, 'rb') as f:
        while True:
            data = f.read(BUFFER_SIZE)
            if not data:
                break
            hash_func.update(data)
            if on_bytes:
                on_bytes(len(data))


def compute_checksum(
    path: Union[str, Path],
    algorithm: str = 'sha256',
    on_bytes: Optional[Callable[[int], None]] = None
) -> str:
    """
    Calculate the checksum of a file or directory tree.

    Args:
        path: Artifact path (file or directory)
        algorithm: Hash algorithm name
        on_bytes: Called with the number of bytes hashed after each chunk

    Returns:
        "<algorithm>:<hex digest>"

    Raises:
        BackupIOError: If the artifact is missing or cannot be read
    """
    path = Path(path)
    hash_func = _new_hash(algorithm)

    try:
        if path.is_file():
            _feed_file(hash_func, path, on_bytes)
        elif path.is_dir():
            for item in sorted(p for p in path.rglob('*') if p.is_file()):
                relative = item.relative_to(path).as_posix()
                hash_func.update(relative.encode('utf-8') + b'\0')
                _feed_file(hash_func, item, on_bytes)
                hash_func.update(b'\0')
        else:
            raise BackupIOError(f"Artifact not found: {path}")
    except OSError as e:
        raise BackupIOError(f"Failed to read {path} for checksum: {e}")

    return f"{algorithm}:{hash_func.hexdigest()}"


def verify_checksum(path: Union[str, Path], expected: str) -> bool:
    """
    Recompute the checksum of an artifact and compare it to expected.

    Args:
        path: Artifact path
        expected: Stored "<algorithm>:<hex digest>" value

    Returns:
        True if the artifact matches
    """
    algorithm, _, digest = expected.partition(':')
    if not digest:
        raise ValueError(f"Malformed checksum: {expected!r}")
    return compute_checksum(path, algorithm) == expected
