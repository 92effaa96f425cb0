"""
Image API endpoints.

Thin HTTP layer over ImageService:
1. Upload: multipart file -> temp file -> service relays it
2. Fetch: public token -> metadata (and an access log entry)
3. Delete / list: administrative, require an API key

Domain errors raised by the service are translated into status codes by
the exception handler registered in main.py, so these handlers only deal
with the happy path and request parsing.
"""

import logging
import os
import tempfile
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, File, HTTPException, Query, UploadFile, status
from pydantic import BaseModel, Field

from ...core.images.models import ImageDetails, UploadedFile
from ...core.images.service import file_extension
from ..dependencies import (
    AuthenticatedUser,
    ImageServiceDep,
    RequestInfoDep,
)

logger = logging.getLogger(__name__)

router = APIRouter()

UPLOAD_CHUNK_SIZE = 1024 * 1024


# ---------------------------------------------------------------------------
# Request/Response Models
# ---------------------------------------------------------------------------

class UploadResponse(BaseModel):
    """Response after relaying an uploaded image."""
    id: int = Field(description="Image ID")
    internal_filename: str = Field(description="Name of the stored object")
    public_token: str = Field(description="Opaque token used to fetch the image")
    public_filename: str = Field(description="Token with the file extension appended")
    url: str = Field(description="Public URL of the stored object")
    size: int = Field(description="Size in bytes")
    mime_type: str = Field(description="MIME type")


class ImageResponse(BaseModel):
    """Image metadata."""
    id: int
    internal_filename: str
    url: str
    size: int
    mime_type: str
    created_at: Optional[datetime] = None
    access_count: int

    @classmethod
    def from_details(cls, details: ImageDetails) -> "ImageResponse":
        return cls(
            id=details.id,
            internal_filename=details.internal_filename,
            url=details.url,
            size=details.size,
            mime_type=details.mime_type,
            created_at=details.created_at,
            access_count=details.access_count,
        )


class PaginationResponse(BaseModel):
    total: int
    page: int
    limit: int
    total_pages: int


class ImageListResponse(BaseModel):
    """One page of images."""
    items: list[ImageResponse]
    pagination: PaginationResponse


class DeleteResponse(BaseModel):
    success: bool
    message: str


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.post(
    "/upload",
    response_model=UploadResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Upload an image",
    description="Relay an image to object storage and get its public token",
)
async def upload_image(
    service: ImageServiceDep,
    image: UploadFile = File(..., description="Image file"),
) -> UploadResponse:
    """
    Accept a multipart upload and hand it to the service.

    The upload is spooled to a temporary file first; the service copies
    it into the cache and removes the temp file. If anything fails
    before that, the temp file is cleaned up here.
    """
    if not image.filename:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="No image file provided",
        )

    extension = file_extension(image.filename)
    tmp = tempfile.NamedTemporaryFile(suffix=f".{extension}" if extension else "", delete=False)
    try:
        with tmp:
            while True:
                chunk = await image.read(UPLOAD_CHUNK_SIZE)
                if not chunk:
                    break
                tmp.write(chunk)

        result = await service.upload_image(
            UploadedFile(
                path=tmp.name,
                original_name=image.filename,
                mime_type=image.content_type,
            )
        )
    finally:
        if os.path.exists(tmp.name):
            os.unlink(tmp.name)

    return UploadResponse(
        id=result.id,
        internal_filename=result.internal_filename,
        public_token=result.public_token,
        public_filename=result.public_filename,
        url=result.url,
        size=result.size,
        mime_type=result.mime_type,
    )


@router.get(
    "",
    response_model=ImageListResponse,
    summary="List images",
)
async def list_images(
    api_key: AuthenticatedUser,
    service: ImageServiceDep,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    sort: str = Query("created_at", description="Sort column; unknown values use created_at"),
    order: str = Query("desc", description="asc or desc"),
) -> ImageListResponse:
    result = await service.list_images(page=page, limit=limit, sort_by=sort, sort_order=order)

    return ImageListResponse(
        items=[ImageResponse.from_details(item) for item in result.items],
        pagination=PaginationResponse(
            total=result.pagination.total,
            page=result.pagination.page,
            limit=result.pagination.limit,
            total_pages=result.pagination.total_pages,
        ),
    )


@router.get(
    "/{public_token}",
    response_model=ImageResponse,
    summary="Get image by public token",
    description="Accepts the bare token or the token with its file extension",
)
async def get_image(
    public_token: str,
    service: ImageServiceDep,
    request_info: RequestInfoDep,
) -> ImageResponse:
    details = await service.get_image(public_token, request_info)
    return ImageResponse.from_details(details)


@router.delete(
    "/{image_id}",
    response_model=DeleteResponse,
    summary="Delete an image",
)
async def delete_image(
    image_id: int,
    api_key: AuthenticatedUser,
    service: ImageServiceDep,
) -> DeleteResponse:
    changed = await service.delete_image(image_id)

    return DeleteResponse(
        success=True,
        message="Image deleted" if changed else "Image was already deleted",
    )
