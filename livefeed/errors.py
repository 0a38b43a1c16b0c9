"""
Centralized exceptions for the live feed engine.
Error taxonomy and structured error handling.
"""

from typing import Dict, Any, Optional
from fastapi import HTTPException, status


class LiveFeedError(Exception):
    """Base exception for the live feed engine."""

    def __init__(self, message: str, error_code: str = "UNKNOWN", details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        super().__init__(self.message)


class TransportError(LiveFeedError):
    """Connection refused, channel closed, network error or bad poll status."""

    def __init__(self, message: str = "Transport failure", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "TRANSPORT_ERROR", details)


class DecodeError(LiveFeedError):
    """A single message body could not be decoded."""

    def __init__(self, message: str = "Malformed message", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "DECODE_ERROR", details)


class RecordContractError(LiveFeedError):
    """A record violates the canonical record contract (e.g. missing token)."""

    def __init__(self, message: str = "Invalid record", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "RECORD_CONTRACT", details)


class EngineStateError(LiveFeedError):
    """Operation not allowed in the current engine state."""

    def __init__(self, message: str = "Invalid engine state", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "ENGINE_STATE", details)


class ConfigurationError(LiveFeedError):
    """Configuration error."""

    def __init__(self, message: str = "Configuration error", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "CONFIG_ERROR", details)


# Error mapping to HTTP responses
ERROR_TO_HTTP_STATUS = {
    TransportError: status.HTTP_503_SERVICE_UNAVAILABLE,
    DecodeError: status.HTTP_502_BAD_GATEWAY,
    RecordContractError: status.HTTP_422_UNPROCESSABLE_ENTITY,
    EngineStateError: status.HTTP_503_SERVICE_UNAVAILABLE,
    ConfigurationError: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def create_http_exception(error: LiveFeedError) -> HTTPException:
    """Convert LiveFeedError to HTTPException with proper status code."""
    status_code = ERROR_TO_HTTP_STATUS.get(type(error), status.HTTP_500_INTERNAL_SERVER_ERROR)

    return HTTPException(
        status_code=status_code,
        detail={
            "error": error.error_code,
            "message": sanitize_error_message(error.message),
            "details": error.details
        }
    )


def sanitize_error_message(message: str) -> str:
    """Sanitize error messages to prevent information leakage."""
    sensitive_patterns = [
        "password", "secret", "api_key", "access_token", "request_token",
        "refresh_token", "bearer", "authorization"
    ]

    sanitized = message
    for pattern in sensitive_patterns:
        lowered = sanitized.lower()
        idx = lowered.find(pattern)
        while idx != -1:
            sanitized = sanitized[:idx] + "***" + sanitized[idx + len(pattern):]
            lowered = sanitized.lower()
            idx = lowered.find(pattern, idx + 3)

    return sanitized


def create_structured_error_response(error: Exception) -> Dict[str, Any]:
    """Create structured error response for logging."""
    if isinstance(error, LiveFeedError):
        return {
            "error_type": error.error_code,
            "message": sanitize_error_message(error.message),
            "details": error.details,
        }
    return {
        "error_type": "UNKNOWN_ERROR",
        "message": sanitize_error_message(str(error)),
        "details": {},
    }
