"""
Content fingerprints for distributable files.
"""

import hashlib
from pathlib import Path

CHUNK_SIZE = 65536


def calculate_file_hash(file_path: Path) -> str:
    """
    SHA256 hex digest of a file's bytes.
    Only the content matters: name, mtime and permissions never change the result.
    Read errors propagate as OSError.
    """
    sha256_hash = hashlib.sha256()
    with open(file_path, "rb") as f:
        for byte_block in iter(lambda: f.read(CHUNK_SIZE), b""):
            sha256_hash.update(byte_block)
    return sha256_hash.hexdigest()
