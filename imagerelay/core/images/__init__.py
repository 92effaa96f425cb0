"""
Image relay logic.

Contains the orchestration service, the token codec and domain models.
"""

from .models import (
    AccessLogEntry,
    GeneratedName,
    ImageDetails,
    ImagePage,
    ImageRecord,
    Pagination,
    RequestInfo,
    UploadedFile,
    UploadResult,
)
from .service import ImageService, build_public_url
from .tokens import TokenCodec

__all__ = [
    "AccessLogEntry",
    "GeneratedName",
    "ImageDetails",
    "ImagePage",
    "ImageRecord",
    "Pagination",
    "RequestInfo",
    "UploadedFile",
    "UploadResult",
    "ImageService",
    "TokenCodec",
    "build_public_url",
]
