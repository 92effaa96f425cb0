"""
Explicit construction of the application's long-lived components.

Everything the service needs - database handle, object store client,
token codec, orchestrator, maintenance scheduler - is built here once
from Settings and passed to whoever needs it. Nothing is created lazily
behind a module-level global, so startup order and teardown are visible
in one place and tests can build a fresh set per case.
"""

import logging
from dataclasses import dataclass

from .config.settings import Settings
from .core.images.service import ImageService
from .core.images.tokens import TokenCodec
from .core.maintenance.scheduler import MaintenanceScheduler, build_maintenance_tasks
from .infrastructure.sqlite.client import SQLiteConfig, initialize_database
from .infrastructure.sqlite.repositories.images import ImageRepository
from .infrastructure.storage.client import StorageClient, StorageConfig, create_storage_client

logger = logging.getLogger(__name__)

HOUR = 60 * 60


@dataclass
class Components:
    settings: Settings
    repository: ImageRepository
    storage: StorageClient
    codec: TokenCodec
    image_service: ImageService
    scheduler: MaintenanceScheduler


def build_storage_client(settings: Settings) -> StorageClient:
    if settings.storage_mock_mode:
        return create_storage_client(mock_mode=True)

    config = StorageConfig(
        access_key_id=settings.storage_access_key_id,
        secret_access_key=settings.storage_secret_access_key,
        bucket_name=settings.storage_bucket_name,
        endpoint_url=settings.storage_endpoint_url,
        region=settings.storage_region,
        timeout_seconds=settings.storage_timeout_seconds,
    )
    return create_storage_client(config=config)


def build_components(settings: Settings) -> Components:
    """
    Validate startup preconditions and wire every component.

    Raises ConfigError if secrets or credentials are missing; callers
    must not start serving in that case.
    """
    settings.ensure_startup_preconditions()

    codec = TokenCodec(settings.encryption_key, settings.encryption_iv)

    db_config = SQLiteConfig(path=settings.database_path)
    initialize_database(db_config)
    repository = ImageRepository(db_config)

    storage = build_storage_client(settings)

    image_service = ImageService(
        repository=repository,
        storage=storage,
        codec=codec,
        cache_dir=settings.upload_dir,
        public_base_url=settings.public_base_url,
        max_file_size=settings.max_file_size,
        allowed_mime_types=settings.allowed_mime_types_list,
    )

    scheduler = MaintenanceScheduler(
        build_maintenance_tasks(
            repository,
            cache_dir=settings.upload_dir,
            retention_days=settings.log_retention_days,
            log_retention_interval_seconds=settings.log_retention_interval_hours * HOUR,
            orphan_sweep_interval_seconds=settings.orphan_sweep_interval_hours * HOUR,
            compaction_interval_seconds=settings.compaction_interval_hours * HOUR,
            orphan_min_age_seconds=settings.orphan_min_age_seconds,
        )
    )

    logger.info(
        "Built application components",
        extra={
            "database_path": settings.database_path,
            "upload_dir": settings.upload_dir,
            "storage_mock_mode": settings.storage_mock_mode,
        }
    )

    return Components(
        settings=settings,
        repository=repository,
        storage=storage,
        codec=codec,
        image_service=image_service,
        scheduler=scheduler,
    )
