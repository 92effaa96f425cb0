"""
Application configuration using Pydantic settings.

Configuration is loaded from environment variables with sensible defaults.
Using Pydantic's BaseSettings means we get:
- Type validation at startup (fail fast if config is wrong)
- Documentation of what's required vs optional
- Easy testing with different configurations

The encryption key/IV pair and the object store credentials have no
usable defaults. ensure_startup_preconditions() turns their absence into
a ConfigError, which stops the application from starting.
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from ..core.errors import ConfigError
from ..core.images.tokens import IV_BYTES, KEY_BYTES, parse_hex_secret


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All settings can be overridden via environment variables.
    For lists (like api_keys), use comma-separated values in env.
    """

    # API Configuration
    api_title: str = "ImageRelay API"
    api_version: str = "v1"
    api_keys: str = Field(
        default="dev-key-1",
        description="Comma-separated API keys for admin endpoints (delete, list, maintenance)."
    )

    # Token codec
    encryption_key: str = Field(
        default="",
        description="AES-256 key as 64 hex characters. Required."
    )
    encryption_iv: str = Field(
        default="",
        description="AES IV as 32 hex characters. Required."
    )

    # Object storage (S3-compatible)
    storage_endpoint_url: str = Field(
        default="",
        description="S3-compatible endpoint URL (R2, MinIO, S3)."
    )
    storage_access_key_id: str = Field(
        default="",
        description="Object store access key ID"
    )
    storage_secret_access_key: str = Field(
        default="",
        description="Object store secret access key"
    )
    storage_bucket_name: str = Field(
        default="images",
        description="Bucket holding relayed images"
    )
    storage_region: str = Field(
        default="auto",
        description="Region name passed to the S3 client. R2 uses 'auto'."
    )
    storage_public_base_url: Optional[str] = Field(
        default=None,
        description="Base URL for public image links. Defaults to endpoint/bucket."
    )
    storage_timeout_seconds: float = Field(
        default=10.0,
        description="Connect and read timeout for every object store call."
    )
    storage_mock_mode: bool = Field(
        default=False,
        description="Use in-memory mock instead of a real object store. Enables local dev without credentials."
    )

    # Local storage
    database_path: str = Field(
        default="data/imagerelay.db",
        description="SQLite metadata database file"
    )
    upload_dir: str = Field(
        default="uploads",
        description="Local cache directory for uploaded files"
    )
    max_file_size: int = Field(
        default=10 * 1024 * 1024,
        description="Maximum upload size in bytes."
    )
    allowed_mime_types: str = Field(
        default="image/jpeg,image/png,image/gif,image/webp,image/svg+xml,image/bmp",
        description="Comma-separated MIME types accepted for upload."
    )

    # Maintenance
    log_retention_days: int = Field(
        default=30,
        description="Access log entries older than this are purged."
    )
    log_retention_interval_hours: float = Field(default=24)
    orphan_sweep_interval_hours: float = Field(default=6)
    orphan_min_age_seconds: float = Field(
        default=3600,
        description="Cached files younger than this are never swept, so in-flight uploads survive."
    )
    compaction_interval_hours: float = Field(default=168)
    scheduler_enabled: bool = Field(
        default=True,
        description="Start the periodic maintenance tickers at startup."
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)"
    )

    # CORS
    cors_origins: str = Field(
        default="http://localhost:3000",
        description="Comma-separated list of allowed CORS origins. Use * for development only."
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    @property
    def api_keys_list(self) -> list[str]:
        """Parse comma-separated API keys into a list."""
        return [key.strip() for key in self.api_keys.split(",") if key.strip()]

    @property
    def allowed_mime_types_list(self) -> list[str]:
        return [m.strip().lower() for m in self.allowed_mime_types.split(",") if m.strip()]

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse comma-separated CORS origins into a list."""
        if self.cors_origins == "*":
            return ["*"]
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    @property
    def public_base_url(self) -> str:
        """
        Base URL for public links to stored objects.

        Falls back to path-style addressing on the endpoint:
        {endpoint}/{bucket}. Mock mode gets a mock:// base.
        """
        if self.storage_public_base_url:
            return self.storage_public_base_url
        if self.storage_mock_mode and not self.storage_endpoint_url:
            return f"mock://storage/{self.storage_bucket_name}"
        return f"{self.storage_endpoint_url.rstrip('/')}/{self.storage_bucket_name}"

    def validate_required_fields(self) -> list[str]:
        """
        Validate that required fields are set based on mock mode settings.

        Returns list of missing required fields.
        This is separate from Pydantic validation because requirements
        depend on whether we're in mock mode.
        """
        missing = []

        # The token codec is always required
        if not self.encryption_key:
            missing.append("ENCRYPTION_KEY")
        if not self.encryption_iv:
            missing.append("ENCRYPTION_IV")

        # Object store credentials only required if not in mock mode
        if not self.storage_mock_mode:
            if not self.storage_endpoint_url:
                missing.append("STORAGE_ENDPOINT_URL")
            if not self.storage_access_key_id:
                missing.append("STORAGE_ACCESS_KEY_ID")
            if not self.storage_secret_access_key:
                missing.append("STORAGE_SECRET_ACCESS_KEY")

        return missing

    def ensure_startup_preconditions(self) -> None:
        """
        Raise ConfigError if the application must not start.

        Checks presence of required fields and that the key and IV are
        hex of the right length for AES-256-CBC.
        """
        missing = self.validate_required_fields()
        if missing:
            raise ConfigError(
                f"Missing required configuration: {', '.join(missing)}",
                details={"missing_fields": missing},
            )

        parse_hex_secret(self.encryption_key, KEY_BYTES, "ENCRYPTION_KEY")
        parse_hex_secret(self.encryption_iv, IV_BYTES, "ENCRYPTION_IV")


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Using lru_cache means we only load settings once per process.
    This is safe because settings don't change during runtime.
    For tests, you can call get_settings.cache_clear() to reset.
    """
    return Settings()
