"""
Update client: fetch the release manifest, compare local files by SHA256
and download only what is missing or stale as a single zip bundle.
"""

import hashlib
import io
import os
import time
import uuid
import zipfile
from pathlib import Path
from typing import Dict, List
import requests
from client.common.logger import install_progress, setup_logger

logger = setup_logger("PatchClient")

RETRY_STATUSES = {429, 502, 503, 504}
RETRIES = 3


class UpdateError(Exception):
    """Raised when the server cannot be reached or answers unexpectedly"""
    pass


def calculate_local_hash(file_path: Path) -> str:
    """SHA256 of a local file"""
    sha256_hash = hashlib.sha256()
    with open(file_path, "rb") as f:
        for chunk in iter(lambda: f.read(65536), b""):
            sha256_hash.update(chunk)
    return sha256_hash.hexdigest()


def safe_target(install_dir: Path, name: str) -> Path:
    """
    Destination for a manifest file name. Manifests are flat, so anything
    with a separator, a parent segment or a drive prefix is refused.
    """
    raw = (name or "").strip()
    if not raw or raw in (".", "..") or "/" in raw or "\\" in raw or ":" in raw or "\x00" in raw:
        raise UpdateError(f"Unsafe file name from server: {name!r}")
    target = (install_dir / raw).resolve()
    if target.parent != install_dir.resolve():
        raise UpdateError(f"File name escapes install dir: {name!r}")
    return target


def _write_atomic(target: Path, data: bytes):
    temp_path = target.parent / f"{target.name}.{uuid.uuid4().hex[:8]}.tmp"
    try:
        with open(temp_path, "wb") as f:
            f.write(data)
        os.replace(temp_path, target)
    except OSError:
        temp_path.unlink(missing_ok=True)
        raise


class PatchClient:
    def __init__(self, server_url: str, token: str | None = None, session=None, timeout: float = 30):
        self.server_url = server_url.rstrip("/")
        self.session = session or requests.Session()
        self.timeout = timeout
        self.headers = {"Authorization": f"Bearer {token}"} if token else {}
        self._manifest: dict | None = None

    def _request(self, method: str, path: str, **kwargs):
        url = f"{self.server_url}{path}"
        headers = {**self.headers, **kwargs.pop("headers", {})}

        for attempt in range(RETRIES):
            try:
                resp = self.session.request(method, url, headers=headers, timeout=self.timeout, **kwargs)
            except requests.RequestException as e:
                logger.warning(f"[{path}] Connection error: {e}. Retrying {attempt + 1}/{RETRIES}...")
                time.sleep(2 * (attempt + 1))
                continue

            if resp.status_code in RETRY_STATUSES and attempt < RETRIES - 1:
                delay = float(resp.headers.get("Retry-After", 2 * (attempt + 1)))
                logger.warning(f"[{path}] Server answered {resp.status_code}. Retrying in {delay:.0f}s...")
                time.sleep(delay)
                continue
            return resp

        raise UpdateError(f"{method} {path} failed after {RETRIES} attempts")

    def fetch_manifest(self) -> dict:
        """Current manifest; reuses the cached copy when the server answers 304"""
        headers = {}
        if self._manifest is not None:
            headers["If-None-Match"] = self._manifest["version"]

        resp = self._request("GET", "/manifest", headers=headers)
        if resp.status_code == 304 and self._manifest is not None:
            logger.debug(f"[Manifest] Unchanged ({self._manifest['version']})")
            return self._manifest
        if resp.status_code != 200:
            raise UpdateError(f"Error fetching manifest: {resp.status_code}")

        try:
            self._manifest = resp.json()
        except ValueError as e:
            raise UpdateError("Manifest response is not valid JSON") from e
        return self._manifest

    def get_version(self) -> str:
        resp = self._request("GET", "/version")
        if resp.status_code != 200:
            raise UpdateError(f"Error fetching version: {resp.status_code}")
        return resp.json()["version"]

    def local_hashes(self, install_dir: Path) -> Dict[str, str]:
        """fileName -> hash for every regular file directly inside install_dir"""
        install_dir = Path(install_dir)
        if not install_dir.exists():
            return {}
        return {
            p.name: calculate_local_hash(p)
            for p in install_dir.iterdir()
            if p.is_file() and not p.name.endswith(".tmp")
        }

    def plan(self, manifest: dict, install_dir: Path) -> List[str]:
        """Names that are missing locally or whose hash differs from the manifest"""
        install_dir = Path(install_dir)
        needed = []
        for entry in manifest.get("files", []):
            name = entry["fileName"]
            target = safe_target(install_dir, name)
            if not target.is_file() or calculate_local_hash(target) != entry["hash"]:
                needed.append(name)
        return needed

    def verify(self, install_dir: Path) -> dict:
        """Ask the server to reconcile the local file set"""
        resp = self._request("POST", "/verify", json=self.local_hashes(install_dir))
        if resp.status_code != 200:
            raise UpdateError(f"Error verifying files: {resp.status_code}")
        return resp.json()

    def download(self, names: List[str], install_dir: Path, manifest: dict) -> List[str]:
        """
        Fetch names as one zip bundle and install each entry whose hash
        matches the manifest. Returns the names actually written.
        """
        if not names:
            return []
        install_dir = Path(install_dir)
        install_dir.mkdir(parents=True, exist_ok=True)
        expected = {entry["fileName"]: entry["hash"] for entry in manifest.get("files", [])}

        resp = self._request("POST", "/files/batch", json={"files": names})
        if resp.status_code != 200:
            raise UpdateError(f"Error downloading bundle: {resp.status_code}")

        skipped = resp.headers.get("X-Batch-Skipped", "")
        if skipped:
            logger.warning(f"Server skipped: {skipped}")

        written = []
        try:
            archive = zipfile.ZipFile(io.BytesIO(resp.content))
        except zipfile.BadZipFile as e:
            raise UpdateError("Downloaded bundle is not a valid zip archive") from e

        with archive, install_progress() as progress:
            entries = archive.infolist()
            task_id = progress.add_task("Installing", total=sum(i.file_size for i in entries), filename="")
            for info in entries:
                progress.update(task_id, filename=info.filename)
                target = safe_target(install_dir, info.filename)
                data = archive.read(info)
                progress.advance(task_id, advance=info.file_size)
                if hashlib.sha256(data).hexdigest() != expected.get(info.filename):
                    logger.error(f"Hash mismatch for {info.filename}, not installing")
                    continue
                _write_atomic(target, data)
                written.append(info.filename)
                logger.debug(f"Installed {info.filename} ({len(data) / 1024:.1f} KB)")

        missing = sorted(set(names) - set(written))
        if missing:
            logger.warning(f"{len(missing)} file(s) still outdated: {', '.join(missing)}")
        return written

    def update(self, install_dir: Path) -> List[str]:
        """Bring install_dir in line with the server manifest"""
        manifest = self.fetch_manifest()
        needed = self.plan(manifest, install_dir)
        if not needed:
            logger.info(f"Up to date ({manifest['version']})")
            return []

        logger.info(f"{len(needed)} file(s) need updating to {manifest['version']}")
        written = self.download(needed, install_dir, manifest)
        logger.info(f"Updated {len(written)}/{len(needed)} file(s)")
        return written
