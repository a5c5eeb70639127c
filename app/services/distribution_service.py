"""
Distribution Service - serves the current manifest, single files and zip bundles,
runs client verification and creates new patch manifests.
"""

import io
import os
import threading
import zipfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterator, List, Mapping, Tuple
import anyio
from app.core.logger import setup_logger
from app.schemas.manifest import Manifest
from app.services.integrity_service import ReconciliationResult, reconcile
from app.services.manifest_service import ManifestStore, is_distributable
from app.utils.paths import PathViolation, normalize_client_path, resolve_path

logger = setup_logger("PatchServer.Distribution")

ARCHIVE_CHUNK_SIZE = 65536
BUFFERED_ENTRY_LIMIT = 16 * 1024 * 1024


class InvalidVersionError(ValueError):
    """Patch version is missing or blank."""


@dataclass(frozen=True)
class BatchPlan:
    """Files resolved before an archive response starts streaming."""
    entries: Tuple[Tuple[str, Path], ...] = ()
    skipped: Tuple[str, ...] = field(default_factory=tuple)


class _ZipStream(io.RawIOBase):
    """
    Write-only sink for ZipFile. It is not seekable, so zipfile writes
    data descriptors and the archive can be yielded chunk by chunk.
    """

    def __init__(self):
        super().__init__()
        self._chunks: List[bytes] = []

    def writable(self) -> bool:
        return True

    def write(self, b) -> int:
        self._chunks.append(bytes(b))
        return len(b)

    def drain(self) -> bytes:
        data = b"".join(self._chunks)
        self._chunks.clear()
        return data


def etag_matches(if_none_match: str | None, version: str) -> bool:
    """If-None-Match check against the version validator (quotes and W/ tolerated)."""
    if not if_none_match:
        return False
    for candidate in if_none_match.split(","):
        candidate = candidate.strip()
        if candidate == "*":
            return True
        if candidate.startswith("W/"):
            candidate = candidate[2:]
        if candidate.strip('"') == version:
            return True
    return False


class DistributionService:
    """
    Owns the single current Manifest. Readers call get_manifest() once and
    keep using that object; create_patch replaces the reference in one
    assignment, so nobody ever sees a version from one generation with files
    from another.
    """

    def __init__(self, files_root: Path, manifest: Manifest | None = None):
        self.files_root = Path(files_root)
        self.store = ManifestStore(self.files_root)
        self._manifest = manifest if manifest is not None else self.store.load()
        # Serializes patch creation only; reads never take it
        self._patch_lock = threading.Lock()

    def get_manifest(self) -> Manifest:
        return self._manifest

    def get_version(self) -> str:
        return self._manifest.version

    def not_modified(self, manifest: Manifest, if_none_match: str | None) -> bool:
        return etag_matches(if_none_match, manifest.version)

    def resolve(self, client_path: str) -> Path:
        try:
            return resolve_path(self.files_root, client_path)
        except PathViolation as e:
            logger.warning(f"[Security] Rejected path {client_path!r}: {e.reason}")
            raise

    def get_file_path(self, client_path: str) -> Path:
        """
        Absolute path of a downloadable file.

        Raises:
            PathViolation: the path escapes the file root.
            FileNotFoundError: not a regular file directly inside the root,
                               or a symlink.
        """
        target = self.resolve(client_path)
        relative = normalize_client_path(client_path)
        if len(relative.parts) != 1 or not is_distributable(self.files_root / relative.name):
            raise FileNotFoundError(client_path)
        return target

    def plan_batch(self, client_paths: List[str]) -> BatchPlan:
        """
        Resolve every requested path, skipping violations and missing files.
        Entries are named by the requested file name; spellings of the same
        name ("game.exe", "./game.exe") collapse into the first one.
        """
        entries = []
        skipped = []
        requested = set()
        seen = set()
        for client_path in client_paths:
            if client_path in requested:
                continue
            requested.add(client_path)
            try:
                target = self.get_file_path(client_path)
            except PathViolation:
                skipped.append(client_path)
                continue
            except FileNotFoundError:
                logger.warning(f"Batch entry not found, skipping: {client_path!r}")
                skipped.append(client_path)
                continue
            arcname = normalize_client_path(client_path).name
            if arcname in seen:
                continue
            seen.add(arcname)
            entries.append((arcname, target))
        return BatchPlan(entries=tuple(entries), skipped=tuple(skipped))

    def stream_batch(self, plan: BatchPlan) -> Iterator[bytes]:
        """
        Zip archive of the planned entries, yielded incrementally.

        A file that can no longer be read once streaming has started is
        skipped and logged: the response status is already sent by then.
        Files up to BUFFERED_ENTRY_LIMIT are read whole before their entry is
        opened, so a read error leaves nothing behind in the archive. Larger
        files are streamed, and a read error in the middle of one aborts the
        response; the client sees a truncated zip.
        """
        sink = _ZipStream()
        included = 0
        with zipfile.ZipFile(sink, mode="w", compression=zipfile.ZIP_DEFLATED) as archive:
            for arcname, path in plan.entries:
                try:
                    source = open(path, "rb")
                except OSError as e:
                    logger.warning(f"Batch entry unreadable, skipping {arcname}: {e}")
                    continue
                with source:
                    size = os.fstat(source.fileno()).st_size
                    if size <= BUFFERED_ENTRY_LIMIT:
                        try:
                            content = source.read()
                        except OSError as e:
                            logger.warning(f"Batch entry unreadable, skipping {arcname}: {e}")
                            continue
                        archive.writestr(arcname, content)
                    else:
                        large = size > zipfile.ZIP64_LIMIT
                        with archive.open(arcname, mode="w", force_zip64=large) as dest:
                            for chunk in iter(lambda: source.read(ARCHIVE_CHUNK_SIZE), b""):
                                dest.write(chunk)
                                data = sink.drain()
                                if data:
                                    yield data
                included += 1
                data = sink.drain()
                if data:
                    yield data
        logger.info(f"Batch archive sent: {included} included, {len(plan.skipped)} skipped")
        data = sink.drain()
        if data:
            yield data

    def verify(self, client_files: Mapping[str, str]) -> ReconciliationResult:
        return reconcile(self._manifest, client_files)

    def _build_patch(self, version: str) -> Manifest:
        with self._patch_lock:
            manifest = self.store.generate(version)
            self.store.save(manifest)
            # Single reference assignment: the swap readers observe
            self._manifest = manifest
        return manifest

    async def create_patch(self, version: str) -> Manifest:
        """
        Rescan the file root under a new version, persist it, then swap it in.

        Raises:
            InvalidVersionError: version is blank.
            OSError: scanning or saving failed; the served manifest is unchanged.
        """
        version = (version or "").strip()
        if not version:
            raise InvalidVersionError("Version is required")

        manifest = await anyio.to_thread.run_sync(self._build_patch, version)
        logger.info(f"Patch {version} created with {len(manifest.files)} files")
        return manifest
