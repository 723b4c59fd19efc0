"""
Error hierarchy and retryability classification.

Provides the base application errors, the transient-error check used by the
stage retry loop, and centralized error categorization for diagnostics.
"""

import asyncio
import re

import httpx

from store_insights.models.schemas import ErrorType

# =============================================================================
# Custom Exceptions
# =============================================================================

class AppError(Exception):
    """Base application exception."""
    pass

class AppTimeoutError(AppError):
    pass

# =============================================================================
# Retryability
# =============================================================================

_HTTP_5XX = re.compile(r"http\s*5\d\d", re.IGNORECASE)

_RETRYABLE_MARKERS = (
    "503",
    "overloaded",
    "429",
    "rate limit",
    "quota",
    "timeout",
    "timed out",
    "connection",
    "network",
)


def is_retryable_error(error: BaseException) -> bool:
    """
    Decide whether an error is transient.

    Errors carrying an explicit ``retryable`` attribute are trusted. Otherwise
    transport exceptions and messages mentioning overload, rate limiting,
    timeouts, connectivity or HTTP 5xx are treated as transient.
    """
    explicit = getattr(error, "retryable", None)
    if isinstance(explicit, bool):
        return explicit

    if isinstance(error, (asyncio.TimeoutError, httpx.TimeoutException, httpx.NetworkError, AppTimeoutError)):
        return True

    message = str(error).lower()
    if any(marker in message for marker in _RETRYABLE_MARKERS):
        return True
    return bool(_HTTP_5XX.search(message))

# =============================================================================
# Error Handler
# =============================================================================

class ErrorHandler:
    """Centralized error handling and categorization."""

    @staticmethod
    def categorize_error(error: BaseException) -> ErrorType:
        """Categorize errors for stage diagnostics."""
        explicit = getattr(error, "error_type", None)
        if explicit:
            return ErrorType(explicit)
        if isinstance(error, (AppTimeoutError, asyncio.TimeoutError, httpx.TimeoutException)):
            return ErrorType.TIMEOUT_ERROR
        if isinstance(error, (ConnectionError, httpx.NetworkError)):
            return ErrorType.API_ERROR
        if isinstance(error, (ValueError, TypeError)):
            return ErrorType.VALIDATION_ERROR

        err_str = str(error).lower()
        if "rate limit" in err_str or "429" in err_str:
            return ErrorType.RATE_LIMIT_ERROR
        if "timeout" in err_str or "timed out" in err_str:
            return ErrorType.TIMEOUT_ERROR
        if "api key" in err_str or "unauthorized" in err_str or "not properly configured" in err_str:
            return ErrorType.CONFIGURATION_ERROR
        if "connection" in err_str:
            return ErrorType.API_ERROR

        return ErrorType.INTERNAL_ERROR


__all__ = ["AppError", "AppTimeoutError", "is_retryable_error", "ErrorHandler"]
