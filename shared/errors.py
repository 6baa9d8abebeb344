"""
Shared error handling for the CEP Lookup Service.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    """Standard error response format."""

    request_id: Optional[str] = None
    code: str
    message: str
    details: Dict[str, Any] = Field(default_factory=dict)


class CepServiceException(Exception):
    """Base exception for CEP Lookup Service errors."""

    status_code: int = 500

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self, request_id: Optional[str] = None) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(
            request_id=request_id,
            code=self.code,
            message=self.message,
            details=self.details
        )


class InvalidCepError(CepServiceException):
    """Input does not normalize to exactly 8 digits."""

    status_code = 400

    def __init__(self, message: str = "invalid CEP: expected exactly 8 digits", details: Optional[Dict[str, Any]] = None):
        super().__init__("INVALID_CEP", message, details)


class CepNotFoundError(CepServiceException):
    """Neither the cache nor the directory provider know the CEP."""

    status_code = 404

    def __init__(self, message: str = "cep not found", details: Optional[Dict[str, Any]] = None):
        super().__init__("CEP_NOT_FOUND", message, details)


class CacheReadError(CepServiceException):
    """The persistent store failed while reading, as opposed to a plain miss."""

    def __init__(self, message: str = "query cache failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("CACHE_READ_ERROR", message, details)


class UpstreamError(CepServiceException):
    """The directory provider answered with an unexpected status or body."""

    def __init__(self, status_code: int, message: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        details = dict(details or {})
        details["status_code"] = status_code
        self.upstream_status = status_code
        super().__init__(
            "UPSTREAM_ERROR",
            message or f"viacep returned status {status_code}",
            details
        )


class ProviderTransportError(CepServiceException):
    """The directory provider could not be reached."""

    def __init__(self, message: str = "directory provider unreachable", details: Optional[Dict[str, Any]] = None):
        super().__init__("PROVIDER_TRANSPORT_ERROR", message, details)


class StoreStartupError(CepServiceException):
    """The persistent store could not be opened or bootstrapped."""

    def __init__(self, message: str = "store startup failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("STORE_START_FAILED", message, details)


class StoreNotStartedError(CepServiceException):
    """A store operation was attempted before the pool was created."""

    def __init__(self, message: str = "store not started", details: Optional[Dict[str, Any]] = None):
        super().__init__("STORE_NOT_STARTED", message, details)
