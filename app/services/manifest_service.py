"""
Manifest Service - Scan the flat file root, fingerprint files, persist manifest.json
"""

import json
from pathlib import Path
from pydantic import ValidationError
from app.core.logger import setup_logger
from app.schemas.manifest import FileEntry, Manifest
from app.utils import json_storage
from app.utils.hashing import calculate_file_hash

logger = setup_logger("PatchServer.Manifest")

MANIFEST_FILE_NAME = "manifest.json"
DEFAULT_VERSION = "1.0.0"


def is_reserved_name(name: str) -> bool:
    """manifest.json and write-then-rename temporaries are never distributed."""
    return name == MANIFEST_FILE_NAME or name.endswith(".tmp")


def is_distributable(path: Path) -> bool:
    """Regular file listed and served under its own name. Symlinks never are."""
    return not path.is_symlink() and path.is_file() and not is_reserved_name(path.name)


class ManifestStore:
    """
    Builds, persists and loads the manifest of a single flat directory.
    Every method is synchronous; callers on the event loop offload to a thread.
    """

    def __init__(self, root: Path):
        self.root = Path(root)

    @property
    def manifest_path(self) -> Path:
        return self.root / MANIFEST_FILE_NAME

    def generate(self, version: str) -> Manifest:
        """
        Scan the immediate entries of root and hash each regular file.

        Raises:
            OSError: listing the directory or reading any file failed.
                     No partial manifest is ever returned.
        """
        entries = []
        # sorted() so repeated scans of the same directory list files identically
        for path in sorted(self.root.iterdir(), key=lambda p: p.name):
            if not is_distributable(path):
                if path.is_symlink():
                    logger.warning(f"Skipping symlink in file root: {path.name}")
                continue
            entries.append(FileEntry(
                file_name=path.name,
                directory=self.root.as_posix(),
                hash=calculate_file_hash(path),
            ))

        logger.info(f"Generated manifest {version} with {len(entries)} files from {self.root}")
        return Manifest(version=version, files=tuple(entries))

    def save(self, manifest: Manifest) -> None:
        """Whole-file replace of manifest.json. Raises OSError on failure."""
        json_storage.write_json(self.manifest_path, manifest.to_json_dict())
        logger.info(f"Saved manifest {manifest.version} to {self.manifest_path}")

    def read(self) -> Manifest | None:
        """Persisted manifest, or None when it is absent or cannot be parsed."""
        try:
            data = json_storage.read_json(self.manifest_path)
        except FileNotFoundError:
            return None
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
            logger.warning(f"Persisted manifest unreadable ({e}); regenerating")
            return None

        try:
            return Manifest.model_validate(data)
        except ValidationError as e:
            logger.warning(f"Persisted manifest invalid ({e.error_count()} errors); regenerating")
            return None

    def load(self) -> Manifest:
        """
        Persisted manifest if present and valid, otherwise a fresh scan at
        version 1.0.0 which is saved before being returned.

        Raises:
            OSError: the fallback scan or save failed.
        """
        cached = self.read()
        if cached is not None:
            logger.info(f"Loaded manifest {cached.version} with {len(cached.files)} files")
            return cached

        manifest = self.generate(DEFAULT_VERSION)
        self.save(manifest)
        return manifest
