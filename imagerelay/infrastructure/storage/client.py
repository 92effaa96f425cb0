"""
Object storage client for relayed images.

Supports any S3-compatible store (Cloudflare R2, MinIO, AWS S3) with a
mock mode for local development. The core only needs three verbs:
- put: overwrite the object at a path
- exists: HEAD the object
- delete: remove the object

Mock mode keeps objects in memory, enabling API testing without
provisioning actual object storage.

`exists` never raises. The S3 API reports a missing object as a 404 but
an outage or bad credentials as something else; both come back as False,
and the outage is kept in `last_error` for callers that need to tell
"not there" from "couldn't ask".
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional, Protocol

from ...core.errors import RemoteUnavailableError

logger = logging.getLogger(__name__)

_NOT_FOUND_CODES = {"404", "NoSuchKey", "NotFound"}


def object_key(remote_path: str) -> str:
    """S3 keys have no leading slash."""
    return remote_path.lstrip("/")


@dataclass
class StorageConfig:
    """
    Configuration for S3-compatible storage.

    timeout_seconds bounds both connect and read on every call so a hung
    remote surfaces as RemoteUnavailableError instead of a stuck request.
    """
    access_key_id: str
    secret_access_key: str
    bucket_name: str
    endpoint_url: str
    region: str = "auto"
    timeout_seconds: float = 10.0
    max_attempts: int = 3


class StorageClient(Protocol):
    """
    Protocol for object storage operations.

    Using a protocol means tests can provide mocks and we can
    swap storage backends without changing dependent code.
    """

    @property
    def last_error(self) -> Optional[str]:
        """Why the most recent exists() check couldn't reach the store, if it couldn't."""
        ...

    async def put(self, path: str, data: bytes, content_type: Optional[str] = None) -> None:
        """Store bytes at path, overwriting. Raises RemoteUnavailableError."""
        ...

    async def exists(self, path: str) -> bool:
        """True if an object is at path. Never raises."""
        ...

    async def delete(self, path: str) -> None:
        """Remove the object at path. Raises RemoteUnavailableError."""
        ...


class S3StorageClient:
    """
    S3-compatible object storage client.

    Uses boto3 because R2, MinIO and S3 all speak the same API. boto3 is
    synchronous, so every call runs in a worker thread to keep the event
    loop free for other requests and the maintenance tickers.

    No internal locking: concurrent calls on different paths are
    independent, and concurrent calls on the same path are ordered by the
    store, not by us.
    """

    def __init__(self, config: StorageConfig) -> None:
        """
        Initialize the S3 client with boto3.

        boto3 is imported here (not at module level) because mock mode
        doesn't need it.
        """
        try:
            import boto3
            from botocore.config import Config
        except ImportError:
            raise ImportError(
                "boto3 is required for object storage. Install with: pip install boto3"
            )

        self._config = config
        self._last_error: Optional[str] = None

        boto_config = Config(
            signature_version='s3v4',
            s3={'addressing_style': 'path'},
            connect_timeout=config.timeout_seconds,
            read_timeout=config.timeout_seconds,
            retries={'max_attempts': config.max_attempts, 'mode': 'standard'},
        )

        self._s3_client = boto3.client(
            's3',
            endpoint_url=config.endpoint_url,
            aws_access_key_id=config.access_key_id,
            aws_secret_access_key=config.secret_access_key,
            region_name=config.region,
            config=boto_config,
        )

        logger.info(
            "Initialized S3 storage client",
            extra={
                "bucket": config.bucket_name,
                "endpoint": config.endpoint_url,
            }
        )

    @property
    def last_error(self) -> Optional[str]:
        return self._last_error

    async def put(self, path: str, data: bytes, content_type: Optional[str] = None) -> None:
        """Upload bytes to the bucket at the key derived from path."""
        params = {
            'Bucket': self._config.bucket_name,
            'Key': object_key(path),
            'Body': data,
        }
        if content_type:
            params['ContentType'] = content_type

        try:
            await asyncio.to_thread(self._s3_client.put_object, **params)
        except Exception as e:
            logger.error(
                "Failed to upload object",
                extra={"path": path, "error": str(e)}
            )
            raise RemoteUnavailableError(
                f"Upload failed: {e}", details={"path": path}
            ) from e

        logger.info(
            "Uploaded object",
            extra={"path": path, "size_bytes": len(data)}
        )

    async def exists(self, path: str) -> bool:
        """
        HEAD the object.

        A 404 is a clean False with last_error cleared. Any other failure
        is logged, kept in last_error, and also reported as False.
        """
        from botocore.exceptions import ClientError

        try:
            await asyncio.to_thread(
                self._s3_client.head_object,
                Bucket=self._config.bucket_name,
                Key=object_key(path),
            )
        except ClientError as e:
            code = str(e.response.get('Error', {}).get('Code', ''))
            if code in _NOT_FOUND_CODES:
                self._last_error = None
                return False
            self._last_error = str(e)
            logger.warning(
                "Object existence check failed",
                extra={"path": path, "error": str(e)}
            )
            return False
        except Exception as e:
            self._last_error = str(e)
            logger.warning(
                "Object existence check failed",
                extra={"path": path, "error": str(e)}
            )
            return False

        self._last_error = None
        return True

    async def delete(self, path: str) -> None:
        """Delete the object. S3 treats deleting a missing key as success."""
        try:
            await asyncio.to_thread(
                self._s3_client.delete_object,
                Bucket=self._config.bucket_name,
                Key=object_key(path),
            )
        except Exception as e:
            logger.error(
                "Failed to delete object",
                extra={"path": path, "error": str(e)}
            )
            raise RemoteUnavailableError(
                f"Delete failed: {e}", details={"path": path}
            ) from e

        logger.info("Deleted object", extra={"path": path})


# ---------------------------------------------------------------------------
# Mock Storage for Local Development
# ---------------------------------------------------------------------------

class MockStorageClient:
    """
    In-memory storage for local development.

    This mock enables testing the full API flow without provisioning
    real object storage. Objects are stored in a dictionary keyed by
    object key.

    Not suitable for production, but perfect for development and testing.
    """

    def __init__(self) -> None:
        # {object_key: (bytes, content_type)}
        self._objects: dict[str, tuple[bytes, Optional[str]]] = {}
        self._last_error: Optional[str] = None
        logger.info("Initialized mock storage client (in-memory)")

    @property
    def last_error(self) -> Optional[str]:
        return self._last_error

    async def put(self, path: str, data: bytes, content_type: Optional[str] = None) -> None:
        """Store object in memory."""
        self._objects[object_key(path)] = (bytes(data), content_type)

        logger.debug(
            "Stored object in mock storage",
            extra={"path": path, "size_bytes": len(data)}
        )

    async def exists(self, path: str) -> bool:
        self._last_error = None
        return object_key(path) in self._objects

    async def delete(self, path: str) -> None:
        """Delete object from memory. Missing objects are fine."""
        self._objects.pop(object_key(path), None)
        logger.debug("Deleted object from mock storage", extra={"path": path})

    def get(self, path: str) -> Optional[bytes]:
        """Stored bytes at path (for test assertions)."""
        entry = self._objects.get(object_key(path))
        return entry[0] if entry else None


# ---------------------------------------------------------------------------
# Factory Function
# ---------------------------------------------------------------------------

def create_storage_client(
    config: Optional[StorageConfig] = None,
    mock_mode: bool = False,
) -> StorageClient:
    """
    Create storage client based on configuration.

    Args:
        config: Storage configuration (required if not mock_mode)
        mock_mode: If True, return mock client for testing

    Returns:
        StorageClient implementation (S3 or Mock)
    """
    if mock_mode:
        return MockStorageClient()

    if config is None:
        raise ValueError("config is required when not in mock mode")

    return S3StorageClient(config)
