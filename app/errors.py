"""
Error taxonomy for SimplHost.

Every error carries the HTTP status it maps to and a message that is safe
to return to the caller.
"""

from typing import Optional


class AppError(Exception):
    """Base class for errors surfaced to API callers."""

    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class Unauthorized(AppError):
    status_code = 401
    default_message = "Unauthorized"


class ValidationError(AppError):
    status_code = 400
    default_message = "Invalid request"


class PreconditionFailed(AppError):
    status_code = 400
    default_message = "Precondition failed"


class NotFound(AppError):
    status_code = 404
    default_message = "Not found"


class Conflict(AppError):
    status_code = 409
    default_message = "Already exists"


class ProviderError(AppError):
    """The edge provider rejected a request or could not be reached."""

    default_message = "Provider request failed"

    def __init__(self, message: Optional[str] = None, http_status: Optional[int] = None):
        super().__init__(message)
        self.http_status = http_status

    @property
    def transient(self) -> bool:
        """True for transport failures and provider-side 5xx responses."""
        return self.http_status is None or self.http_status >= 500


class ProviderNotFound(ProviderError):
    default_message = "Custom hostname no longer exists at the provider"

    def __init__(self, message: Optional[str] = None):
        super().__init__(message, http_status=404)


class ProviderNotConfigured(ProviderError):
    default_message = "Cloudflare environment variables are not configured"


class StorageError(AppError):
    default_message = "Storage operation failed"


class StorageUnavailable(StorageError):
    default_message = "Storage is unavailable"
