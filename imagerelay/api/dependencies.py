"""
FastAPI dependency injection.

Dependencies provide instances of services, clients, and configuration
to route handlers. Using dependency injection means:
- Routes don't instantiate their own dependencies (easier to test)
- Dependencies can be swapped for testing
- Resource lifecycle is owned by the application lifespan, not by routes

The components themselves are built once in the lifespan handler and
stored on app.state; these functions just hand them out.
"""

import logging
from typing import Annotated

from fastapi import Depends, HTTPException, Request, Security, status
from fastapi.security import APIKeyHeader

from ..components import Components
from ..config.settings import Settings
from ..core.images.models import RequestInfo
from ..core.images.service import ImageService
from ..core.maintenance.scheduler import MaintenanceScheduler
from ..infrastructure.sqlite.repositories.images import ImageRepository

logger = logging.getLogger(__name__)

# API Key security scheme
api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


# ---------------------------------------------------------------------------
# Components
# ---------------------------------------------------------------------------

def get_components(request: Request) -> Components:
    components = getattr(request.app.state, "components", None)
    if components is None:
        # lifespan didn't run or failed
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service is not initialized",
        )
    return components


def get_app_settings(components: Annotated[Components, Depends(get_components)]) -> Settings:
    return components.settings


def get_image_service(components: Annotated[Components, Depends(get_components)]) -> ImageService:
    return components.image_service


def get_image_repository(components: Annotated[Components, Depends(get_components)]) -> ImageRepository:
    return components.repository


def get_scheduler(components: Annotated[Components, Depends(get_components)]) -> MaintenanceScheduler:
    return components.scheduler


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------

async def verify_api_key(
    settings: Annotated[Settings, Depends(get_app_settings)],
    api_key: str = Security(api_key_header),
) -> str:
    """
    Validate API key from request header.

    Only administrative endpoints (delete, list, maintenance triggers)
    require a key; fetching an image by its token is public.

    Raises 403 if key is invalid or missing.
    """
    if not api_key:
        logger.warning("Request missing API key")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="API key required. Provide X-API-Key header.",
        )

    if api_key not in settings.api_keys_list:
        logger.warning(
            "Invalid API key attempt",
            extra={"key_prefix": api_key[:8]}
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid API key",
        )

    return api_key


# ---------------------------------------------------------------------------
# Request metadata
# ---------------------------------------------------------------------------

def get_request_info(request: Request) -> RequestInfo:
    """Client metadata recorded in the access log."""
    return RequestInfo(
        client_ip=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
        referer=request.headers.get("referer") or request.headers.get("referrer"),
    )


# ---------------------------------------------------------------------------
# Convenience Type Aliases
# ---------------------------------------------------------------------------

# These type aliases make route signatures cleaner
AuthenticatedUser = Annotated[str, Depends(verify_api_key)]
ImageServiceDep = Annotated[ImageService, Depends(get_image_service)]
ImageRepositoryDep = Annotated[ImageRepository, Depends(get_image_repository)]
SchedulerDep = Annotated[MaintenanceScheduler, Depends(get_scheduler)]
SettingsDep = Annotated[Settings, Depends(get_app_settings)]
RequestInfoDep = Annotated[RequestInfo, Depends(get_request_info)]
