"""
Shared error handling for the reporting backend.
"""

from typing import Dict, Any, Optional

from pydantic import BaseModel


GENERIC_SERVER_ERROR = "Internal server error"


class ErrorResponse(BaseModel):
    """Standard error response format."""

    success: bool = False
    code: str
    message: str
    details: Optional[Dict[str, Any]] = None


class AccessLayerException(Exception):
    """Base exception for reporting services."""

    status_code: int = 400

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self, expose_details: bool = False) -> ErrorResponse:
        """Convert to error response.

        Server-side failures are reported with a generic message; the real
        message and details are only rendered when ``expose_details`` is set.
        """
        if self.status_code >= 500 and not expose_details:
            return ErrorResponse(code=self.code, message=GENERIC_SERVER_ERROR)

        return ErrorResponse(
            code=self.code,
            message=self.message,
            details=self.details if (expose_details and self.details) else None,
        )


class AuthenticationError(AccessLayerException):
    """Authentication-related errors."""

    status_code = 401

    def __init__(self, message: str = "Authentication failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("AUTHENTICATION_ERROR", message, details)


class AuthorizationError(AccessLayerException):
    """Authorization-related errors."""

    status_code = 403

    def __init__(self, message: str = "Authorization failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("AUTHORIZATION_ERROR", message, details)


class ValidationError(AccessLayerException):
    """Validation-related errors."""

    status_code = 400

    def __init__(self, message: str = "Validation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("VALIDATION_ERROR", message, details)


class ConflictError(AccessLayerException):
    """Resource already exists."""

    status_code = 409

    def __init__(self, message: str = "Resource already exists", details: Optional[Dict[str, Any]] = None):
        super().__init__("CONFLICT_ERROR", message, details)


class ServiceError(AccessLayerException):
    """Service-related errors."""

    status_code = 500

    def __init__(self, message: str = "Service error", details: Optional[Dict[str, Any]] = None):
        super().__init__("SERVICE_ERROR", message, details)


class ExternalServiceError(AccessLayerException):
    """External service errors."""

    status_code = 500

    def __init__(self, service: str, message: str = "External service error", details: Optional[Dict[str, Any]] = None):
        self.service = service
        super().__init__("EXTERNAL_SERVICE_ERROR", f"{service}: {message}", details)


class RateLimitError(AccessLayerException):
    """Rate limiting errors."""

    status_code = 429

    def __init__(self, message: str = "Too many requests, please try again later.", details: Optional[Dict[str, Any]] = None):
        super().__init__("RATE_LIMIT_ERROR", message, details)
