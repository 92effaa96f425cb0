"""
Tests for the image orchestration service.

Real SQLite repository and cache directory, in-memory object store.
Failure modes of the remote store are simulated by small subclasses of
the mock client.
"""

import asyncio
import os

import pytest

from imagerelay.core.errors import (
    ConflictError,
    NotFoundError,
    PayloadTooLargeError,
    RemoteStorageDriftError,
    RemoteUnavailableError,
    StorageIOError,
    ValidationError,
)
from imagerelay.core.images.models import RequestInfo, UploadedFile
from imagerelay.core.images.service import (
    REMOTE_PREFIX,
    ImageService,
    build_public_url,
    file_extension,
    guess_mime_type,
)
from imagerelay.infrastructure.storage.client import MockStorageClient

TEST_BASE_URL = "https://cdn.example.com/images-bucket"

PNG_BYTES = b"\x89PNG\r\n\x1a\nfake-image-bytes"


class FailingPutStorage(MockStorageClient):
    async def put(self, path, data, content_type=None):
        raise RemoteUnavailableError("connection refused", details={"path": path})


class FailingDeleteStorage(MockStorageClient):
    async def delete(self, path):
        raise RemoteUnavailableError("connection refused", details={"path": path})


class UnreachableStorage(MockStorageClient):
    """put works, but existence checks can't reach the store."""

    async def exists(self, path):
        self._last_error = "timed out"
        return False


def upload(service: ImageService, path: str, name: str = "photo.png", mime: str = "image/png"):
    return asyncio.run(service.upload_image(UploadedFile(path=path, original_name=name, mime_type=mime)))


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

class TestHelpers:

    @pytest.mark.parametrize("base,path,expected", [
        ("https://cdn.test", "/images/a.png", "https://cdn.test/images/a.png"),
        ("https://cdn.test/", "/images/a.png", "https://cdn.test/images/a.png"),
        ("https://cdn.test/", "images/a.png", "https://cdn.test/images/a.png"),
        ("https://cdn.test", "//images/a.png", "https://cdn.test/images/a.png"),
    ])
    def test_build_public_url(self, base, path, expected):
        """Exactly one slash between base and path."""
        assert build_public_url(base, path) == expected

    def test_file_extension(self):
        assert file_extension("Photo.JPG") == "jpg"
        assert file_extension("archive.tar.gz") == "gz"
        assert file_extension("noext") == ""

    def test_guess_mime_type(self):
        assert guess_mime_type("jpg") == "image/jpeg"
        assert guess_mime_type("SVG") == "image/svg+xml"
        assert guess_mime_type("exe") == "application/octet-stream"


# ---------------------------------------------------------------------------
# Upload
# ---------------------------------------------------------------------------

class TestUpload:

    def test_upload_stores_everywhere(self, service, storage, repository, upload_file):
        """Remote object, cache file and record all exist afterwards."""
        temp_path = upload_file(PNG_BYTES)

        result = upload(service, temp_path)

        assert result.size == len(PNG_BYTES)
        assert result.mime_type == "image/png"
        assert result.internal_filename.endswith(".png")
        assert result.public_filename == f"{result.public_token}.png"

        remote_path = f"{REMOTE_PREFIX}/{result.internal_filename}"
        assert storage.get(remote_path) == PNG_BYTES
        assert result.url == f"{TEST_BASE_URL}{remote_path}"

        assert service.cache_path(result.internal_filename).read_bytes() == PNG_BYTES
        assert not os.path.exists(temp_path)

        record = repository.get_by_id(result.id)
        assert record.public_token == result.public_token
        assert record.original_name == "photo.png"

    def test_mime_type_guessed_from_extension(self, service, upload_file):
        result = upload(service, upload_file(suffix=".jpg"), name="photo.jpg", mime=None)
        assert result.mime_type == "image/jpeg"

    def test_rejects_empty_file(self, service, upload_file):
        with pytest.raises(ValidationError, match="empty"):
            upload(service, upload_file(b""))

    def test_rejects_oversized_file(self, service, upload_file):
        with pytest.raises(PayloadTooLargeError, match="exceeds"):
            upload(service, upload_file(b"x" * (1024 * 1024 + 1)))

    def test_rejects_disallowed_type(self, service, upload_file, storage, repository):
        """Validation happens before any side effect."""
        with pytest.raises(ValidationError, match="Unsupported"):
            upload(service, upload_file(suffix=".txt"), name="notes.txt", mime="text/plain")

        assert repository.count(include_deleted=True) == 0
        assert list(service.cache_dir.iterdir()) == []

    def test_missing_temp_file(self, service, tmp_path):
        with pytest.raises(StorageIOError):
            upload(service, str(tmp_path / "gone.png"))

    def test_put_failure_creates_no_record(self, repository, codec, cache_dir, upload_file):
        """The cached copy stays behind for a retry or the orphan sweep."""
        service = ImageService(
            repository=repository,
            storage=FailingPutStorage(),
            codec=codec,
            cache_dir=str(cache_dir),
            public_base_url=TEST_BASE_URL,
        )

        with pytest.raises(RemoteUnavailableError):
            upload(service, upload_file(PNG_BYTES))

        assert repository.count(include_deleted=True) == 0
        cached = list(cache_dir.iterdir())
        assert len(cached) == 1
        assert cached[0].read_bytes() == PNG_BYTES

    def test_regenerates_on_collision(self, service, repository, monkeypatch):
        """A taken name is regenerated rather than overwriting."""
        answers = iter([True, True, False])
        monkeypatch.setattr(repository, "is_name_taken", lambda *args: next(answers))

        generated = asyncio.run(service._generate_unique_name("png"))
        assert generated.internal_filename.endswith(".png")

    def test_gives_up_after_repeated_collisions(self, service, repository, monkeypatch):
        monkeypatch.setattr(repository, "is_name_taken", lambda *args: True)

        with pytest.raises(ConflictError):
            asyncio.run(service._generate_unique_name("png"))


# ---------------------------------------------------------------------------
# Fetch
# ---------------------------------------------------------------------------

class TestGetImage:

    def test_fetch_records_access(self, service, repository, upload_file):
        result = upload(service, upload_file())
        info = RequestInfo(client_ip="192.0.2.1", user_agent="pytest")

        details = asyncio.run(service.get_image(result.public_token, info))

        assert details.id == result.id
        assert details.size == result.size
        assert details.mime_type == "image/png"
        assert details.url == result.url
        assert details.access_count == 1

        logs = repository.get_access_logs(result.id)
        assert logs[0].client_ip == "192.0.2.1"

    def test_accepts_token_with_extension(self, service, upload_file):
        result = upload(service, upload_file())
        details = asyncio.run(service.get_image(result.public_filename))
        assert details.id == result.id

    def test_invalid_token(self, service, repository):
        with pytest.raises(ValidationError):
            asyncio.run(service.get_image("definitely-not-a-token"))

    def test_valid_token_without_record(self, service, codec):
        generated = codec.generate_name("png")
        with pytest.raises(NotFoundError):
            asyncio.run(service.get_image(generated.public_token))

    def test_missing_remote_object_is_drift(self, service, storage, upload_file):
        """Record present, remote gone: not a plain 404."""
        result = upload(service, upload_file())
        asyncio.run(storage.delete(f"{REMOTE_PREFIX}/{result.internal_filename}"))

        with pytest.raises(RemoteStorageDriftError):
            asyncio.run(service.get_image(result.public_token))

    def test_unreachable_remote_is_unavailable(self, repository, codec, cache_dir, upload_file):
        service = ImageService(
            repository=repository,
            storage=UnreachableStorage(),
            codec=codec,
            cache_dir=str(cache_dir),
            public_base_url=TEST_BASE_URL,
        )
        result = upload(service, upload_file())

        with pytest.raises(RemoteUnavailableError):
            asyncio.run(service.get_image(result.public_token))

    def test_access_recording_failure_does_not_fail_fetch(
        self, service, repository, upload_file, monkeypatch
    ):
        result = upload(service, upload_file())

        def broken(*args, **kwargs):
            raise StorageIOError("disk full")

        monkeypatch.setattr(repository, "record_access", broken)

        details = asyncio.run(service.get_image(result.public_token))
        assert details.id == result.id
        assert details.access_count == 0

    def test_concurrent_fetches_count_exactly(self, service, repository, upload_file):
        """N concurrent fetches raise the counter by exactly N."""
        result = upload(service, upload_file())
        n = 25

        async def fetch_many():
            return await asyncio.gather(
                *(service.get_image(result.public_token) for _ in range(n))
            )

        responses = asyncio.run(fetch_many())

        assert len(responses) == n
        assert all(r.id == result.id for r in responses)
        assert repository.get_by_id(result.id).access_count == n
        assert len(repository.get_access_logs(result.id, limit=100)) == n


# ---------------------------------------------------------------------------
# Delete
# ---------------------------------------------------------------------------

class TestDeleteImage:

    def test_delete_removes_remote_cache_and_hides_record(self, service, storage, repository, upload_file):
        result = upload(service, upload_file())
        remote_path = f"{REMOTE_PREFIX}/{result.internal_filename}"

        assert asyncio.run(service.delete_image(result.id)) is True

        assert storage.get(remote_path) is None
        assert not service.cache_path(result.internal_filename).exists()
        assert repository.get_by_id(result.id) is None
        assert repository.count(include_deleted=True) == 1

    def test_token_not_found_after_delete(self, service, repository, upload_file):
        """Access logs survive a soft delete."""
        result = upload(service, upload_file())
        asyncio.run(service.get_image(result.public_token))
        asyncio.run(service.delete_image(result.id))

        with pytest.raises(NotFoundError):
            asyncio.run(service.get_image(result.public_token))
        assert len(repository.get_access_logs(result.id)) == 1

    def test_delete_unknown_id(self, service):
        with pytest.raises(NotFoundError):
            asyncio.run(service.delete_image(424242))

    def test_missing_cache_file_is_not_fatal(self, service, upload_file):
        result = upload(service, upload_file())
        service.cache_path(result.internal_filename).unlink()

        assert asyncio.run(service.delete_image(result.id)) is True

    def test_remote_failure_leaves_everything(self, repository, codec, cache_dir, upload_file):
        """If the remote delete fails nothing else is touched."""
        storage = FailingDeleteStorage()
        service = ImageService(
            repository=repository,
            storage=storage,
            codec=codec,
            cache_dir=str(cache_dir),
            public_base_url=TEST_BASE_URL,
        )
        result = upload(service, upload_file())

        with pytest.raises(RemoteUnavailableError):
            asyncio.run(service.delete_image(result.id))

        assert repository.get_by_id(result.id) is not None
        assert service.cache_path(result.internal_filename).exists()
        assert storage.get(f"{REMOTE_PREFIX}/{result.internal_filename}") is not None


# ---------------------------------------------------------------------------
# List
# ---------------------------------------------------------------------------

class TestListImages:

    def test_pagination_numbers(self, service, upload_file, clock):
        for _ in range(5):
            upload(service, upload_file())
            clock.advance(1)

        page = asyncio.run(service.list_images(page=2, limit=2))

        assert page.pagination.total == 5
        assert page.pagination.page == 2
        assert page.pagination.limit == 2
        assert page.pagination.total_pages == 3
        assert len(page.items) == 2

    def test_limit_is_clamped(self, service):
        page = asyncio.run(service.list_images(page=0, limit=10_000))
        assert page.pagination.page == 1
        assert page.pagination.limit == 100
        assert page.pagination.total_pages == 0

    def test_deleted_excluded(self, service, upload_file):
        kept = upload(service, upload_file())
        gone = upload(service, upload_file())
        asyncio.run(service.delete_image(gone.id))

        page = asyncio.run(service.list_images())
        assert [item.id for item in page.items] == [kept.id]
        assert page.pagination.total == 1
