"""
Shared test fixtures.

Every fixture builds fresh, isolated components on pytest's tmp_path:
a new SQLite file, a new cache directory, an in-memory object store.
Nothing here touches the network or the developer's real data.
"""

import pytest

from imagerelay.config.settings import Settings
from imagerelay.core.images.service import ImageService
from imagerelay.core.images.tokens import TokenCodec
from imagerelay.infrastructure.sqlite.client import SQLiteConfig, initialize_database
from imagerelay.infrastructure.sqlite.repositories.images import ImageRepository
from imagerelay.infrastructure.storage.client import MockStorageClient

TEST_KEY = "00112233445566778899aabbccddeeff00112233445566778899aabbccddeeff"
TEST_IV = "0102030405060708090a0b0c0d0e0f10"
TEST_BASE_URL = "https://cdn.example.com/images-bucket"


class FakeClock:
    """Settable clock for time-dependent behavior."""

    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def db_config(tmp_path) -> SQLiteConfig:
    config = SQLiteConfig(path=str(tmp_path / "db" / "metadata.db"))
    initialize_database(config)
    return config


@pytest.fixture
def repository(db_config, clock) -> ImageRepository:
    return ImageRepository(db_config, clock=clock)


@pytest.fixture
def cache_dir(tmp_path):
    path = tmp_path / "cache"
    path.mkdir()
    return path


@pytest.fixture
def storage() -> MockStorageClient:
    return MockStorageClient()


@pytest.fixture
def codec() -> TokenCodec:
    return TokenCodec(TEST_KEY, TEST_IV)


@pytest.fixture
def service(repository, storage, codec, cache_dir) -> ImageService:
    return ImageService(
        repository=repository,
        storage=storage,
        codec=codec,
        cache_dir=str(cache_dir),
        public_base_url=TEST_BASE_URL,
        max_file_size=1024 * 1024,
        allowed_mime_types=["image/png", "image/jpeg", "image/gif"],
    )


@pytest.fixture
def upload_file(tmp_path):
    """Factory writing a temporary upload and returning its path."""
    counter = {"n": 0}

    def _make(content: bytes = b"\x89PNG\r\n\x1a\nfake-image-bytes", suffix: str = ".png") -> str:
        counter["n"] += 1
        path = tmp_path / f"upload-{counter['n']}{suffix}"
        path.write_bytes(content)
        return str(path)

    return _make


@pytest.fixture
def settings(tmp_path) -> Settings:
    """Settings for an app running entirely on tmp_path with mock storage."""
    return Settings(
        _env_file=None,
        api_keys="test-key",
        encryption_key=TEST_KEY,
        encryption_iv=TEST_IV,
        storage_mock_mode=True,
        storage_public_base_url=TEST_BASE_URL,
        database_path=str(tmp_path / "app" / "imagerelay.db"),
        upload_dir=str(tmp_path / "app" / "uploads"),
        max_file_size=1024 * 1024,
        scheduler_enabled=False,
    )
