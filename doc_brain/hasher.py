"""Content fingerprints for change detection.

Hashes are SHA-256 over the raw file bytes. No newline or encoding
normalization is applied, so a file checked out with different line
endings counts as changed.
"""

import hashlib
from pathlib import Path
from typing import Union

CHUNK_SIZE = 1 << 16


def hash_bytes(data: bytes) -> str:
    """Return the hex SHA-256 digest of raw bytes."""
    return hashlib.sha256(data).hexdigest()


def hash_file(path: Union[str, Path]) -> str:
    """Return the hex SHA-256 digest of a file's bytes."""
    digest = hashlib.sha256()
    with open(path, "rb") as f:
        for block in iter(lambda: f.read(CHUNK_SIZE), b""):
            digest.update(block)
    return digest.hexdigest()
