import io
import os
import threading
import zipfile
from pathlib import Path
import anyio
import pytest
from app.services import distribution_service
from app.services.distribution_service import DistributionService, InvalidVersionError, etag_matches
from app.utils.paths import PathViolation
from tests.conftest import file_hashes


@pytest.fixture
def service(files_dir) -> DistributionService:
    return DistributionService(files_dir)


def test_service_loads_and_persists_initial_manifest(service, files_dir):
    assert service.get_version() == "1.0.0"
    assert (files_dir / "manifest.json").exists()
    assert {e.file_name for e in service.get_manifest().files} == {"game.exe", "data.pak"}


@pytest.mark.parametrize("header, expected", [
    (None, False),
    ("", False),
    ("1.0.0", True),
    ('"1.0.0"', True),
    ('W/"1.0.0"', True),
    ('"0.9", "1.0.0"', True),
    ("*", True),
    ("1.0.1", False),
])
def test_etag_matches(header, expected):
    assert etag_matches(header, "1.0.0") is expected


def test_get_file_path(service, files_dir):
    assert service.get_file_path("game.exe") == (files_dir / "game.exe").resolve()
    with pytest.raises(FileNotFoundError):
        service.get_file_path("missing.exe")
    with pytest.raises(PathViolation):
        service.get_file_path("../game.exe")


def test_path_violation_is_logged(service, caplog):
    with pytest.raises(PathViolation):
        service.get_file_path("..%2fetc%2fpasswd")
    assert any("Rejected path" in r.getMessage() for r in caplog.records)


def _read_archive(chunks) -> zipfile.ZipFile:
    return zipfile.ZipFile(io.BytesIO(b"".join(chunks)))


def test_stream_batch_builds_valid_zip(service, files_dir, monkeypatch):
    monkeypatch.setattr(distribution_service, "BUFFERED_ENTRY_LIMIT", 1024)
    large = bytes(range(256)) * 2000
    (files_dir / "large.bin").write_bytes(large)

    plan = service.plan_batch(["large.bin", "game.exe"])
    chunks = list(service.stream_batch(plan))

    assert len(chunks) > 1
    with _read_archive(chunks) as archive:
        assert archive.testzip() is None
        assert archive.read("large.bin") == large
        assert archive.read("game.exe") == b"test content"


def test_plan_batch_dedupes_and_skips(service):
    plan = service.plan_batch(["game.exe", "game.exe", "../x", "nope", "manifest.json"])

    assert [name for name, _ in plan.entries] == ["game.exe"]
    assert plan.skipped == ("../x", "nope", "manifest.json")


def test_plan_batch_names_entries_by_requested_name(service):
    plan = service.plan_batch(["game.exe", "./game.exe", "game%2Eexe", "data.pak"])

    assert [name for name, _ in plan.entries] == ["game.exe", "data.pak"]
    assert plan.skipped == ()


@pytest.mark.skipif(os.name == "nt", reason="symlinks need privileges on Windows")
def test_symlinked_names_are_not_served(service, files_dir):
    (files_dir / "current.pak").symlink_to(files_dir / "data.pak")
    outside = files_dir.parent / "outside.bin"
    outside.write_bytes(b"secret")
    (files_dir / "linked.bin").symlink_to(outside)

    with pytest.raises(FileNotFoundError):
        service.get_file_path("current.pak")
    with pytest.raises(PathViolation):
        service.get_file_path("linked.bin")

    plan = service.plan_batch(["current.pak", "data.pak", "linked.bin"])
    assert [name for name, _ in plan.entries] == ["data.pak"]
    assert plan.skipped == ("current.pak", "linked.bin")

    manifest = anyio.run(service.create_patch, "1.1.0")
    assert sorted(e.file_name for e in manifest.files) == ["data.pak", "game.exe"]


class _BrokenRead:
    def __init__(self, f):
        self._f = f

    def fileno(self):
        return self._f.fileno()

    def read(self, *args):
        raise OSError("I/O error")

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self._f.close()


@pytest.fixture
def unreadable_data_pak(monkeypatch):
    real_open = open

    def flaky_open(path, mode="r", *args, **kwargs):
        f = real_open(path, mode, *args, **kwargs)
        return _BrokenRead(f) if Path(path).name == "data.pak" else f

    monkeypatch.setattr(distribution_service, "open", flaky_open, raising=False)


def test_stream_batch_skips_entry_failing_mid_read(service, unreadable_data_pak):
    plan = service.plan_batch(["data.pak", "game.exe"])

    with _read_archive(service.stream_batch(plan)) as archive:
        assert archive.testzip() is None
        assert archive.namelist() == ["game.exe"]
        assert archive.read("game.exe") == b"test content"


def test_stream_batch_aborts_on_read_error_in_streamed_entry(service, unreadable_data_pak, monkeypatch):
    monkeypatch.setattr(distribution_service, "BUFFERED_ENTRY_LIMIT", 0)
    plan = service.plan_batch(["game.exe", "data.pak"])

    with pytest.raises(OSError):
        list(service.stream_batch(plan))


def test_stream_batch_skips_files_removed_after_planning(service, files_dir):
    plan = service.plan_batch(["game.exe", "data.pak"])
    (files_dir / "data.pak").unlink()

    with _read_archive(service.stream_batch(plan)) as archive:
        assert archive.namelist() == ["game.exe"]


def test_stream_batch_empty_plan_is_valid_zip(service):
    with _read_archive(service.stream_batch(service.plan_batch(["../nope"]))) as archive:
        assert archive.namelist() == []


def test_create_patch_swaps_manifest(service, files_dir):
    before = service.get_manifest()
    (files_dir / "game.exe").write_bytes(b"patched content")

    after = anyio.run(service.create_patch, "1.1.0")

    assert service.get_manifest() is after
    assert after.version == "1.1.0"
    assert file_hashes(after)["game.exe"] != file_hashes(before)["game.exe"]
    # A reader holding the old reference still sees a consistent old manifest
    assert before.version == "1.0.0"


@pytest.mark.parametrize("version", ["", "   "])
def test_create_patch_rejects_blank_version(service, version):
    with pytest.raises(InvalidVersionError):
        anyio.run(service.create_patch, version)
    assert service.get_version() == "1.0.0"


def test_create_patch_scan_failure_keeps_manifest(service, monkeypatch):
    def fail_generate(version):
        raise OSError("disk gone")

    monkeypatch.setattr(service.store, "generate", fail_generate)

    with pytest.raises(OSError):
        anyio.run(service.create_patch, "2.0.0")
    assert service.get_version() == "1.0.0"


def test_concurrent_patch_and_reads_never_tear(service, files_dir):
    expected = {}
    stop = threading.Event()
    torn = []

    def reader():
        while not stop.is_set():
            manifest = service.get_manifest()
            known = expected.get(manifest.version)
            if known is not None and file_hashes(manifest) != known:
                torn.append(manifest.version)

    readers = [threading.Thread(target=reader) for _ in range(4)]
    for t in readers:
        t.start()
    try:
        for i in range(20):
            version = f"1.0.{i + 1}"
            content = f"build {i}".encode()
            (files_dir / "game.exe").write_bytes(content)
            manifest = anyio.run(service.create_patch, version)
            expected[version] = file_hashes(manifest)
    finally:
        stop.set()
        for t in readers:
            t.join()

    assert torn == []
    assert service.get_version() == "1.0.20"


def test_verify_uses_current_manifest(service):
    hashes = file_hashes(service.get_manifest())
    assert service.verify(hashes).valid
    assert service.verify({}).missing == {"game.exe", "data.pak"}
