"""
Error taxonomy for remote audit API calls.

Transient failures (timeouts, connection problems, 408/429/5xx) derive from
``RetryableError`` so the retry manager backs off and tries again. Permanent
failures (401/403/404 and other 4xx) are raised immediately. Both carry an
``ErrorCategory`` and a human description that the analyzers surface to
the user instead of a generic failure.
"""

from typing import Any, Dict, Optional

from shared.schemas.audit_models import ErrorCategory
from shared.utils.retry import RetryableError


RETRYABLE_STATUS_CODES = frozenset({408, 429})

ERROR_DESCRIPTIONS: Dict[ErrorCategory, str] = {
    ErrorCategory.AUTHENTICATION: "Authentication error: API key may be invalid or expired",
    ErrorCategory.PERMISSION: "Permission error: API key may not have sufficient permissions",
    ErrorCategory.NOT_FOUND: "Not found error: Organization ID may be invalid",
    ErrorCategory.NETWORK: "Network or connection error",
    ErrorCategory.RATE_LIMITED: "Rate limit error: too many requests to the audit API",
    ErrorCategory.SERVER: "Server error: the audit API is currently unavailable",
    ErrorCategory.UNKNOWN: "Unknown API error"
}

ERROR_RECOMMENDATIONS: Dict[ErrorCategory, str] = {
    ErrorCategory.AUTHENTICATION: "Please check your API key or generate a new one in your account settings.",
    ErrorCategory.PERMISSION: "Ensure your API key has the necessary permissions to view organization members.",
    ErrorCategory.NOT_FOUND: "Verify that the organization ID is correct in your configuration."
}


class AuditApiError(Exception):
    """Base error for remote audit API failures."""

    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        category: ErrorCategory = ErrorCategory.UNKNOWN,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.status = status
        self.category = category
        self.details = details or {}

    @property
    def description(self) -> str:
        if self.category == ErrorCategory.UNKNOWN and self.status is not None:
            return f"API error: Status {self.status}"
        return ERROR_DESCRIPTIONS[self.category]

    @property
    def recommendation(self) -> Optional[str]:
        return ERROR_RECOMMENDATIONS.get(self.category)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'error': str(self),
            'status': self.status,
            'category': self.category.value,
            'description': self.description
        }


class RemoteTransientError(AuditApiError, RetryableError):
    """Timeouts, connection failures and retryable HTTP statuses."""
    pass


class RemotePermanentError(AuditApiError):
    """Failures that retrying cannot fix."""
    pass


def classify_status(status: Optional[int]) -> ErrorCategory:
    """Map an HTTP status (None for no response) to an error category."""
    if status is None:
        return ErrorCategory.NETWORK
    if status == 401:
        return ErrorCategory.AUTHENTICATION
    if status == 403:
        return ErrorCategory.PERMISSION
    if status == 404:
        return ErrorCategory.NOT_FOUND
    if status == 429:
        return ErrorCategory.RATE_LIMITED
    if status == 408:
        return ErrorCategory.NETWORK
    if status >= 500:
        return ErrorCategory.SERVER
    return ErrorCategory.UNKNOWN


def is_retryable_status(status: Optional[int]) -> bool:
    if status is None:
        return False
    return status in RETRYABLE_STATUS_CODES or status >= 500


def error_from_status(
    status: int,
    message: str,
    details: Optional[Dict[str, Any]] = None
) -> AuditApiError:
    """Build the classified error for an unsuccessful HTTP response."""
    category = classify_status(status)
    error_cls = RemoteTransientError if is_retryable_status(status) else RemotePermanentError
    return error_cls(message, status=status, category=category, details=details)


def network_error(message: str, details: Optional[Dict[str, Any]] = None) -> RemoteTransientError:
    """Build the error for a request that got no response at all."""
    return RemoteTransientError(message, status=None, category=ErrorCategory.NETWORK, details=details)
