"""
Shared error handling for the feature flags library.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel


class ErrorResponse(BaseModel):
    """Standard error payload format."""

    code: str
    message: str
    details: Dict[str, Any] = {}


class FlagsException(Exception):
    """Base exception for the feature flags library."""

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"

    def to_response(self) -> ErrorResponse:
        """Convert to error payload."""
        return ErrorResponse(
            code=self.code,
            message=self.message,
            details=self.details
        )


class ValidationError(FlagsException):
    """Validation-related errors."""

    def __init__(self, message: str = "Validation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("VALIDATION_ERROR", message, details)


class InvalidGateError(ValidationError):
    """A gate was constructed with an unknown kind or a bad subject."""


class StoreError(FlagsException):
    """Persistent store failure. Never means "flag is off"."""

    def __init__(
        self,
        message: str = "Store error",
        details: Optional[Dict[str, Any]] = None,
        code: str = "STORE_ERROR"
    ):
        super().__init__(code, message, details)


class StoreUnavailableError(StoreError):
    """The backend could not be reached or rejected the operation."""

    def __init__(self, message: str = "Store unavailable", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details, code="STORE_UNAVAILABLE")


class StoreTimeoutError(StoreError):
    """A store operation exceeded its timeout."""

    def __init__(self, message: str = "Store operation timed out", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details, code="STORE_TIMEOUT")


class CorruptRecordError(StoreError):
    """A stored record could not be decoded into gates."""

    def __init__(self, message: str = "Corrupt flag record", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details, code="CORRUPT_RECORD")


class CacheError(FlagsException):
    """Local cache failure. Recovered internally, never surfaced."""

    def __init__(self, message: str = "Cache error", details: Optional[Dict[str, Any]] = None):
        super().__init__("CACHE_ERROR", message, details)


class NotificationError(FlagsException):
    """Invalidation channel failure. Recovered internally, never surfaced."""

    def __init__(self, channel: str, message: str = "Notification channel error", details: Optional[Dict[str, Any]] = None):
        super().__init__("NOTIFICATION_ERROR", f"{channel}: {message}", details)
