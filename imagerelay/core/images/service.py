"""
Image relay orchestration.

ImageService keeps three loosely coupled resources consistent:
- the local cache file (uploads land here first)
- the remote object (the durable copy)
- the metadata record (what the rest of the system believes)

None of these share a transaction, so the order of steps is what keeps
them honest:

    upload:  cache copy -> remote put -> record create
    delete:  remote delete -> cache unlink -> record soft delete

A record therefore only exists if its remote put succeeded, and a
record is only flagged deleted after its remote object is gone. When a
step fails, the flow stops and leaves earlier side effects for the
maintenance jobs (orphan sweep) rather than guessing at a rollback.

The repository is synchronous; its calls run in worker threads so
concurrent requests don't queue behind each other on the event loop.
"""

import asyncio
import logging
import math
import os
import shutil
from datetime import datetime
from pathlib import Path
from typing import Iterable, Optional, Protocol

from ..errors import (
    ConflictError,
    ImageRelayError,
    NotFoundError,
    PayloadTooLargeError,
    RemoteStorageDriftError,
    RemoteUnavailableError,
    StorageIOError,
    ValidationError,
)
from .models import (
    GeneratedName,
    ImageDetails,
    ImagePage,
    ImageRecord,
    Pagination,
    RequestInfo,
    UploadedFile,
    UploadResult,
)
from .tokens import TokenCodec, split_extension

logger = logging.getLogger(__name__)

REMOTE_PREFIX = "/images"
MAX_PAGE_SIZE = 100
NAME_ATTEMPTS = 5

MIME_TYPES = {
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
    "gif": "image/gif",
    "webp": "image/webp",
    "svg": "image/svg+xml",
    "bmp": "image/bmp",
    "ico": "image/x-icon",
}

DEFAULT_MIME_TYPE = "application/octet-stream"


# ---------------------------------------------------------------------------
# Protocols (interfaces)
# ---------------------------------------------------------------------------

class MetadataStore(Protocol):
    """
    What the service needs from the metadata store.

    ImageRepository is the real implementation. The service never writes
    rows itself; every mutation goes through one of these calls.
    """

    def create(self, record: ImageRecord) -> ImageRecord: ...
    def get_by_id(self, image_id: int) -> Optional[ImageRecord]: ...
    def get_by_internal_name(self, internal_filename: str) -> Optional[ImageRecord]: ...
    def get_by_public_token(self, public_token: str) -> Optional[ImageRecord]: ...
    def is_name_taken(self, internal_filename: str, public_token: str) -> bool: ...
    def record_access(self, image_id: int, request_info: Optional[RequestInfo] = None) -> bool: ...
    def soft_delete(self, image_id: int) -> bool: ...
    def hard_delete(self, image_id: int) -> bool: ...
    def purge_access_logs_older_than(self, cutoff: datetime) -> int: ...
    def count(self, include_deleted: bool = False) -> int: ...
    def compact(self) -> None: ...

    def list(
        self,
        page: int = 1,
        limit: int = 20,
        sort_by: Optional[str] = None,
        sort_order: Optional[str] = None,
        include_deleted: bool = False,
    ) -> list[ImageRecord]: ...


class ObjectStorage(Protocol):
    """
    What the service needs from the remote object store.

    `exists` reports an unreachable store as False too; `last_error` says
    which of the two it was.
    """

    @property
    def last_error(self) -> Optional[str]: ...

    async def put(self, path: str, data: bytes, content_type: Optional[str] = None) -> None: ...
    async def exists(self, path: str) -> bool: ...
    async def delete(self, path: str) -> None: ...


def build_public_url(base_url: str, remote_path: str) -> str:
    """
    Join a base URL and an object path with exactly one slash between them.

    Trailing slash on the base is stripped; the path gets one leading
    slash.
    """
    base = base_url[:-1] if base_url.endswith("/") else base_url
    path = "/" + remote_path.lstrip("/")
    return f"{base}{path}"


def file_extension(filename: str) -> str:
    """Lower-cased extension without the dot; empty if there is none."""
    return Path(filename or "").suffix.lower().lstrip(".")


def guess_mime_type(extension: str) -> str:
    return MIME_TYPES.get(extension.lower(), DEFAULT_MIME_TYPE)


class ImageService:
    """
    Upload, fetch, delete and list relayed images.

    All collaborators are passed in; the service owns no connections.
    """

    def __init__(
        self,
        repository: MetadataStore,
        storage: ObjectStorage,
        codec: TokenCodec,
        cache_dir: str,
        public_base_url: str,
        max_file_size: Optional[int] = None,
        allowed_mime_types: Optional[Iterable[str]] = None,
    ) -> None:
        self._repository = repository
        self._storage = storage
        self._codec = codec
        self._cache_dir = Path(cache_dir)
        self._public_base_url = public_base_url
        self._max_file_size = max_file_size
        self._allowed_mime_types = (
            {m.lower() for m in allowed_mime_types} if allowed_mime_types else None
        )

        self._cache_dir.mkdir(parents=True, exist_ok=True)

    @property
    def cache_dir(self) -> Path:
        return self._cache_dir

    def cache_path(self, internal_filename: str) -> Path:
        return self._cache_dir / internal_filename

    # -----------------------------------------------------------------------
    # Upload
    # -----------------------------------------------------------------------

    def _validate_upload(self, upload: UploadedFile) -> tuple[str, str]:
        """Check size and type before any side effect. Returns (extension, mime type)."""
        try:
            size = os.path.getsize(upload.path)
        except OSError as e:
            raise StorageIOError(f"Uploaded file is not readable: {e}") from e

        if size == 0:
            raise ValidationError("Uploaded file is empty")

        if self._max_file_size is not None and size > self._max_file_size:
            raise PayloadTooLargeError(
                f"File size exceeds limit ({self._max_file_size} bytes)",
                details={"size": size, "max_file_size": self._max_file_size},
            )

        extension = file_extension(upload.original_name)
        mime_type = (upload.mime_type or "").lower() or guess_mime_type(extension)

        if self._allowed_mime_types is not None and mime_type not in self._allowed_mime_types:
            raise ValidationError(
                "Unsupported file type, only images are accepted",
                details={"mime_type": mime_type},
            )

        return extension, mime_type

    async def _generate_unique_name(self, extension: str) -> GeneratedName:
        """
        Generate a name whose filename and token are both unused.

        Checked against every row, deleted ones included, so a token is
        never handed out twice and an upload never overwrites another
        image's remote object.
        """
        for attempt in range(1, NAME_ATTEMPTS + 1):
            generated = self._codec.generate_name(extension)
            taken = await asyncio.to_thread(
                self._repository.is_name_taken,
                generated.internal_filename,
                generated.public_token,
            )
            if not taken:
                return generated

            logger.warning(
                "Generated image name collided, regenerating",
                extra={"attempt": attempt, "internal_filename": generated.internal_filename}
            )

        raise ConflictError(
            "Could not generate a unique image name",
            details={"attempts": NAME_ATTEMPTS},
        )

    def _copy_to_cache(self, source: str, internal_filename: str) -> bytes:
        destination = self.cache_path(internal_filename)
        try:
            shutil.copyfile(source, destination)
            data = destination.read_bytes()
        except OSError as e:
            logger.error(
                "Failed to copy upload into cache",
                extra={"source": source, "destination": str(destination), "error": str(e)}
            )
            raise StorageIOError(f"Failed to cache uploaded file: {e}") from e

        try:
            os.unlink(source)
        except OSError as e:
            logger.warning(
                "Failed to remove temporary upload file",
                extra={"path": source, "error": str(e)}
            )

        return data

    async def upload_image(self, upload: UploadedFile) -> UploadResult:
        """
        Relay an uploaded file to the object store and record it.

        The record is only created after the remote put succeeds. If the
        put fails, the cached copy is left in place for a retry or for
        the orphan sweep to reclaim.
        """
        extension, mime_type = self._validate_upload(upload)
        generated = await self._generate_unique_name(extension)

        data = await asyncio.to_thread(
            self._copy_to_cache, upload.path, generated.internal_filename
        )

        remote_path = f"{REMOTE_PREFIX}/{generated.internal_filename}"

        try:
            await self._storage.put(remote_path, data, content_type=mime_type)
        except RemoteUnavailableError:
            logger.error(
                "Remote upload failed, cached copy kept for retry",
                extra={
                    "internal_filename": generated.internal_filename,
                    "cache_path": str(self.cache_path(generated.internal_filename)),
                }
            )
            raise

        url = build_public_url(self._public_base_url, remote_path)

        record = await asyncio.to_thread(
            self._repository.create,
            ImageRecord(
                internal_filename=generated.internal_filename,
                original_name=upload.original_name,
                public_token=generated.public_token,
                size_bytes=len(data),
                mime_type=mime_type,
                remote_path=remote_path,
                public_url=url,
            ),
        )

        logger.info(
            "Image uploaded",
            extra={
                "image_id": record.id,
                "internal_filename": record.internal_filename,
                "size_bytes": record.size_bytes,
                "mime_type": record.mime_type,
            }
        )

        return UploadResult(
            id=record.id,
            internal_filename=record.internal_filename,
            public_token=record.public_token,
            public_filename=generated.public_filename,
            url=record.public_url,
            size=record.size_bytes,
            mime_type=record.mime_type,
        )

    # -----------------------------------------------------------------------
    # Fetch
    # -----------------------------------------------------------------------

    async def get_image(
        self,
        public_token: str,
        request_info: Optional[RequestInfo] = None,
    ) -> ImageDetails:
        """
        Resolve a public token to image metadata and record the access.

        Accepts the bare token or "<token>.<ext>". Garbage tokens are
        rejected before the database is touched.
        """
        token, _ = split_extension(public_token or "")

        if not self._codec.validate(token):
            raise ValidationError("Invalid image identifier")

        record = await asyncio.to_thread(self._repository.get_by_public_token, token)
        if record is None:
            raise NotFoundError("Image not found", details={"token": token})

        if not await self._storage.exists(record.remote_path):
            outage = self._storage.last_error
            if outage:
                raise RemoteUnavailableError(
                    f"Could not verify remote object: {outage}",
                    details={"image_id": record.id},
                )
            logger.error(
                "Remote object missing for live record",
                extra={"image_id": record.id, "remote_path": record.remote_path}
            )
            raise RemoteStorageDriftError(
                "Image file is missing from remote storage",
                details={"image_id": record.id},
            )

        recorded = False
        try:
            recorded = await asyncio.to_thread(
                self._repository.record_access, record.id, request_info
            )
        except ImageRelayError as e:
            logger.warning(
                "Failed to record image access",
                extra={"image_id": record.id, "error": str(e)}
            )

        return ImageDetails.from_record(
            record,
            access_count=record.access_count + (1 if recorded else 0),
        )

    # -----------------------------------------------------------------------
    # Delete
    # -----------------------------------------------------------------------

    async def delete_image(self, image_id: int) -> bool:
        """
        Remove an image from the object store, the cache and the listing.

        If the remote delete fails nothing else is touched, so a live
        record always has its remote object (or a delete was never tried).
        """
        record = await asyncio.to_thread(self._repository.get_by_id, image_id)
        if record is None:
            raise NotFoundError("Image not found", details={"image_id": image_id})

        await self._storage.delete(record.remote_path)

        local_path = self.cache_path(record.internal_filename)
        try:
            local_path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            # the sweep will pick it up once the record is flagged
            logger.warning(
                "Failed to remove cached file",
                extra={"path": str(local_path), "error": str(e)}
            )

        changed = await asyncio.to_thread(self._repository.soft_delete, image_id)

        logger.info("Image deleted", extra={"image_id": image_id})
        return changed

    # -----------------------------------------------------------------------
    # List
    # -----------------------------------------------------------------------

    async def list_images(
        self,
        page: int = 1,
        limit: int = 20,
        sort_by: Optional[str] = "created_at",
        sort_order: Optional[str] = "DESC",
        include_deleted: bool = False,
    ) -> ImagePage:
        page = max(1, int(page))
        limit = min(MAX_PAGE_SIZE, max(1, int(limit)))

        records = await asyncio.to_thread(
            self._repository.list, page, limit, sort_by, sort_order, include_deleted
        )
        total = await asyncio.to_thread(self._repository.count, include_deleted)

        return ImagePage(
            items=[ImageDetails.from_record(r) for r in records],
            pagination=Pagination(
                total=total,
                page=page,
                limit=limit,
                total_pages=math.ceil(total / limit),
            ),
        )
