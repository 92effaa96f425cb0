"""
Domain models for relayed images.

These models represent the core concepts: the metadata record for an
image, its access history, and the values exchanged with the HTTP layer.
They have no dependencies on the database, the object store or FastAPI.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional


@dataclass
class ImageRecord:
    """
    Metadata for one relayed image.

    `id` is assigned by the metadata store on insert; records built before
    insertion carry None. `public_token` is derived from the internal name
    by the token codec and is never reused once issued.
    """
    internal_filename: str
    original_name: str
    public_token: str
    size_bytes: int
    mime_type: str
    remote_path: str
    public_url: str
    id: Optional[int] = None
    created_at: Optional[datetime] = None
    last_accessed_at: Optional[datetime] = None
    access_count: int = 0
    deleted: bool = False

    def __post_init__(self) -> None:
        if self.access_count < 0:
            raise ValueError("access_count cannot be negative")
        if self.size_bytes < 0:
            raise ValueError("size_bytes cannot be negative")


@dataclass
class AccessLogEntry:
    """One recorded fetch of an image."""
    image_id: int
    accessed_at: datetime
    id: Optional[int] = None
    client_ip: Optional[str] = None
    user_agent: Optional[str] = None
    referer: Optional[str] = None


@dataclass(frozen=True)
class RequestInfo:
    """Client metadata captured when an image is fetched. All optional."""
    client_ip: Optional[str] = None
    user_agent: Optional[str] = None
    referer: Optional[str] = None


@dataclass(frozen=True)
class UploadedFile:
    """
    A file the HTTP layer has already written to a temporary location.

    Multipart decoding happens outside the core; the orchestrator only
    needs a path, the client's filename and the declared MIME type.
    """
    path: str
    original_name: str
    mime_type: Optional[str] = None


@dataclass(frozen=True)
class GeneratedName:
    """
    A freshly generated internal name and its public counterparts.

    marker_name is what gets encrypted (random part plus marker);
    internal_filename is what lives on disk and in the object store.
    """
    base_name: str
    marker_name: str
    internal_filename: str
    public_token: str
    public_filename: str


@dataclass(frozen=True)
class UploadResult:
    """What the caller learns about a successful upload."""
    id: int
    internal_filename: str
    public_token: str
    public_filename: str
    url: str
    size: int
    mime_type: str


@dataclass(frozen=True)
class ImageDetails:
    """Metadata returned when an image is fetched or listed."""
    id: int
    internal_filename: str
    url: str
    size: int
    mime_type: str
    created_at: Optional[datetime]
    access_count: int
    public_token: Optional[str] = None
    last_accessed_at: Optional[datetime] = None
    deleted: bool = False

    @classmethod
    def from_record(cls, record: ImageRecord, access_count: Optional[int] = None) -> "ImageDetails":
        return cls(
            id=record.id,
            internal_filename=record.internal_filename,
            url=record.public_url,
            size=record.size_bytes,
            mime_type=record.mime_type,
            created_at=record.created_at,
            access_count=record.access_count if access_count is None else access_count,
            public_token=record.public_token,
            last_accessed_at=record.last_accessed_at,
            deleted=record.deleted,
        )


@dataclass(frozen=True)
class Pagination:
    total: int
    page: int
    limit: int
    total_pages: int


@dataclass
class ImagePage:
    """One page of a listing plus the numbers needed to render a pager."""
    items: list[ImageDetails] = field(default_factory=list)
    pagination: Pagination = field(default_factory=lambda: Pagination(0, 1, 20, 0))
