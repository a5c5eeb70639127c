"""
Resolution of client-supplied relative paths against a fixed root.

This is the only guard against directory traversal for file downloads,
so every rejection raises PathViolation (never a "not found").
"""

import re
from pathlib import Path, PurePosixPath
from urllib.parse import unquote

# Repeated percent-decoding stops after this many rounds (%252e%252e -> %2e%2e -> ..)
MAX_UNQUOTE_ROUNDS = 3

# "C:", "C:/x" (backslashes already turned into slashes). "a:b" is a plain name.
DRIVE_PREFIX = re.compile(r"^[A-Za-z]:(/|$)")


class PathViolation(ValueError):
    """Requested path is malformed or escapes the file root."""

    def __init__(self, requested: str, reason: str):
        super().__init__(f"Invalid file path {requested!r}: {reason}")
        self.requested = requested
        self.reason = reason


def _decode(client_path: str) -> str:
    decoded = client_path
    for _ in range(MAX_UNQUOTE_ROUNDS):
        step = unquote(decoded)
        if step == decoded:
            break
        decoded = step
    return decoded


def normalize_client_path(client_path: str) -> PurePosixPath:
    """
    Syntactic normalization without touching the filesystem.

    Backslashes count as separators, encoded variants are decoded first,
    empty and "." segments collapse, and any ".." segment is rejected.
    """
    if client_path is None:
        raise PathViolation("", "empty path")

    decoded = _decode(client_path)
    if "\x00" in decoded:
        raise PathViolation(client_path, "null byte")

    raw = decoded.replace("\\", "/")
    if not raw:
        raise PathViolation(client_path, "empty path")
    if raw.startswith("/") or DRIVE_PREFIX.match(raw):
        raise PathViolation(client_path, "absolute path")

    parts = [part for part in raw.split("/") if part not in ("", ".")]
    if not parts:
        raise PathViolation(client_path, "empty path")
    if any(part == ".." for part in parts):
        raise PathViolation(client_path, "parent directory segment")

    return PurePosixPath(*parts)


def resolve_path(root: Path, client_path: str) -> Path:
    """
    Join a client path onto root and verify containment.

    Containment is checked on resolved path components (relative_to),
    so "/data-secret" is never accepted as inside "/data", and symlinks
    pointing outside the root are rejected as well.

    Raises:
        PathViolation: the path is malformed or escapes root.
    """
    relative = normalize_client_path(client_path)
    root_resolved = Path(root).resolve()
    target = (root_resolved / Path(*relative.parts)).resolve()

    try:
        target.relative_to(root_resolved)
    except ValueError:
        raise PathViolation(client_path, "outside of file root")

    if target == root_resolved:
        raise PathViolation(client_path, "refers to the file root itself")

    return target
