"""
Stowcache — Core Error Types

Defines the exception hierarchy for the cache runtime.
All exceptions inherit from StowcacheError for consistent error handling.

Only two kinds ever reach a caller of the cache contract:
- InvalidKeyError: raised synchronously, before any I/O
- SetupError: raised while a backend opens its storage medium

Environmental faults during reads and writes are reported as values
(a default or False), never as exceptions.
"""

from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Standard error codes attached to every StowcacheError."""

    # Input validation errors
    INVALID_KEY = "INVALID_KEY"
    INVALID_TTL = "INVALID_TTL"

    # Backend errors
    SETUP_FAILED = "SETUP_FAILED"
    SERIALIZATION_FAILED = "SERIALIZATION_FAILED"
    CACHE_FAILURE = "CACHE_FAILURE"

    # Runtime configuration errors
    CONFIGURATION_INVALID = "CONFIGURATION_INVALID"
    DEPENDENCY_MISSING = "DEPENDENCY_MISSING"

    # Internal errors
    INTERNAL_ERROR = "INTERNAL_ERROR"


class StowcacheError(Exception):
    """Base exception for all Stowcache errors."""

    code: ErrorCode = ErrorCode.INTERNAL_ERROR

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to a dictionary (for logs and error payloads)."""
        return {
            "error": self.__class__.__name__,
            "error_code": self.code.value,
            "message": self.message,
            "details": self.details,
        }


class ConfigurationError(StowcacheError):
    """Raised when configuration is invalid or missing."""

    code = ErrorCode.CONFIGURATION_INVALID


class CacheError(StowcacheError):
    """Base exception for cache-related errors."""

    code = ErrorCode.CACHE_FAILURE


class InvalidKeyError(CacheError, ValueError):
    """Raised when a cache key is empty or contains disallowed characters."""

    code = ErrorCode.INVALID_KEY

    def __init__(self, key: Any, reason: str, details: dict[str, Any] | None = None):
        message = f"Invalid cache key {key!r}: {reason}"
        error_details = {"key": key, "reason": reason}
        error_details.update(details or {})
        super().__init__(message, error_details)
        self.key = key


class SetupError(CacheError):
    """Raised when a backend cannot establish its storage medium."""

    code = ErrorCode.SETUP_FAILED

    def __init__(self, backend: str, reason: str, details: dict[str, Any] | None = None):
        message = f"Failed to set up cache backend '{backend}': {reason}"
        error_details = {"backend": backend}
        error_details.update(details or {})
        super().__init__(message, error_details)
        self.backend = backend


class SerializationError(CacheError):
    """Raised when a payload cannot be serialized or deserialized."""

    code = ErrorCode.SERIALIZATION_FAILED


class DependencyError(StowcacheError):
    """Raised when an optional dependency required by a backend is missing."""

    code = ErrorCode.DEPENDENCY_MISSING

    def __init__(
        self,
        package: str,
        feature: str | None = None,
        install_hint: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        if feature:
            message = f"Required dependency '{package}' is missing for {feature}"
        else:
            message = f"Required dependency '{package}' is missing"

        if install_hint:
            message += f". Install with: {install_hint}"

        error_details = details or {}
        error_details.update(
            {
                "package": package,
                "feature": feature,
                "install_hint": install_hint,
            }
        )

        super().__init__(message, error_details)


def extract_error_code(error: Exception) -> ErrorCode:
    """
    Extract the appropriate ErrorCode from an exception.

    Args:
        error: Exception to categorize

    Returns:
        ErrorCode for Stowcache errors, INVALID_TTL for TTL type errors,
        INTERNAL_ERROR for anything else
    """
    if isinstance(error, StowcacheError):
        return error.code

    if isinstance(error, TypeError) and "TTL" in str(error):
        return ErrorCode.INVALID_TTL

    return ErrorCode.INTERNAL_ERROR
