"""
Content fingerprints for duplicate detection.

A fingerprint depends only on a document's bytes, never on its path or
name: two differently-named copies of one file have the same fingerprint.
"""

import hashlib
from pathlib import Path

from .errors import StoreIOError

CHUNK_SIZE = 1024 * 1024


def fingerprint_bytes(data: bytes) -> str:
    """SHA-256 hex digest of the given content."""
    return hashlib.sha256(data).hexdigest()


def fingerprint_file(path: str | Path) -> str:
    """SHA-256 hex digest of a file's full content, read in chunks.

    Raises:
        StoreIOError: If the file cannot be read
    """
    digest = hashlib.sha256()
    try:
        with open(path, "rb") as handle:
            for chunk in iter(lambda: handle.read(CHUNK_SIZE), b""):
                digest.update(chunk)
    except OSError as e:
        raise StoreIOError(f"Cannot read {path}: {e.strerror or e}") from e
    return digest.hexdigest()
