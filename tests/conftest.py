from pathlib import Path
import pytest
from fastapi.testclient import TestClient
from jose import jwt
from app.main import create_app
from app.schemas.config import ServerSettings

SECRET = "test-secret"


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


def make_token(sub: str = "user-1", **claims) -> str:
    return jwt.encode({"sub": sub, **claims}, SECRET, algorithm="HS256")


def auth(token: str | None = None) -> dict:
    return {"Authorization": f"Bearer {token or make_token()}"}


def file_hashes(manifest) -> dict:
    return {entry.file_name: entry.hash for entry in manifest.files}


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def files_dir(tmp_path: Path) -> Path:
    root = tmp_path / "files"
    root.mkdir()
    (root / "game.exe").write_bytes(b"test content")
    (root / "data.pak").write_bytes(b"pak data")
    return root


@pytest.fixture
def settings(files_dir: Path) -> ServerSettings:
    return ServerSettings(
        files_dir=files_dir,
        secret_key=SECRET,
        rate_limit_capacity=1000,
    )


@pytest.fixture
def client(settings: ServerSettings):
    with TestClient(create_app(settings)) as test_client:
        yield test_client
