# ABOUTME: SHA-256 fingerprints used to detect duplicate uploads.
# ABOUTME: Uploads held in memory are hashed whole; files on disk are streamed.

import hashlib
from pathlib import Path

_READ_SIZE = 1 << 16


def compute_hash(data: bytes) -> str:
    """Hex SHA-256 digest of an upload's bytes."""
    return hashlib.sha256(data).hexdigest()


def compute_file_hash(path: Path) -> str:
    """Hex SHA-256 digest of a file, equal to ``compute_hash(path.read_bytes())``.

    Raises FileNotFoundError when ``path`` is missing.
    """
    digest = hashlib.sha256()
    with path.open("rb") as handle:
        for block in iter(lambda: handle.read(_READ_SIZE), b""):
            digest.update(block)
    return digest.hexdigest()
