"""
Error taxonomy for the image relay core.

Every failure the core can report maps to exactly one of these classes.
The HTTP layer translates them into status codes; the core itself never
knows about HTTP. Low-level errors (sqlite3, botocore, OSError) are
wrapped at the component boundary so callers only ever see this set.
"""

from typing import Any, Optional


class ImageRelayError(Exception):
    """
    Base exception for the image relay.

    Carries a stable machine-readable code and optional details so the
    API layer can produce structured error responses.
    """

    code = "IMAGE_RELAY_ERROR"

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to API response dict."""
        result: dict[str, Any] = {
            "detail": self.message,
            "code": self.code,
        }
        if self.details:
            result["details"] = self.details
        return result


class ValidationError(ImageRelayError):
    """Malformed public token or unacceptable upload."""

    code = "VALIDATION_ERROR"


class PayloadTooLargeError(ValidationError):
    """Upload exceeds the configured size limit."""

    code = "PAYLOAD_TOO_LARGE"


class NotFoundError(ImageRelayError):
    """No matching non-deleted record."""

    code = "NOT_FOUND"


class RemoteStorageDriftError(ImageRelayError):
    """
    Metadata says the object exists but the remote store doesn't have it.

    Kept separate from NotFoundError: a drift is an operational problem
    that needs attention, not a legitimate absence.
    """

    code = "REMOTE_STORAGE_DRIFT"


class ConflictError(ImageRelayError):
    """Generated internal name or public token collided with an existing row."""

    code = "CONFLICT"


class RemoteUnavailableError(ImageRelayError):
    """Network, auth or timeout failure against the object store."""

    code = "REMOTE_UNAVAILABLE"


class StorageIOError(ImageRelayError):
    """Local disk or database transaction failure."""

    code = "STORAGE_IO_ERROR"


class ConfigError(ImageRelayError):
    """Required secrets or credentials missing at startup. Fatal."""

    code = "CONFIG_ERROR"
