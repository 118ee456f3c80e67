"""
Base Exception Class

This module contains the base exception class that all authguard exceptions
inherit from, plus ConfigurationError which is fundamental enough to live
beside it. Specialized exceptions are in their respective themed modules.

Expected authentication outcomes (locked, rate limited, expired...) are
never exceptions; they are returned as result values. Exceptions are
reserved for configuration errors and for transport failures that the
cache facade absorbs.

Author: System Architect
Date: 2025-12-08
"""

from typing import Any


class AuthGuardError(Exception):
    """
    Base exception for all authguard errors.

    All custom exceptions inherit from this class to enable:
    - Consistent error handling
    - Structured error logging
    - Rich context for debugging

    Attributes:
        message: Error message
        details: Additional error details (dict)

    Example:
        raise CacheOperationError(
            "INCR failed",
            details={"key": "ratelimit:login_source:ab12:42", "tag": "incr"}
        )
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        self.message = message
        self.details = (details or {}).copy()  # Create a copy to prevent external modification
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """
        Convert exception to dictionary for logging.

        Returns:
            Dict with error_type, message and details
        """
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "details": self.details,
        }

    def with_context(self, **context) -> "AuthGuardError":
        """
        Add additional context to the error details.

        Args:
            **context: Key-value pairs to add to details

        Returns:
            Self (for method chaining)
        """
        self.details.update(context)
        return self

    def __repr__(self) -> str:
        details_str = f", details={self.details}" if self.details else ""
        return f"{self.__class__.__name__}(message='{self.message}'{details_str})"

    @classmethod
    def from_exception(cls, exc: Exception, message: str | None = None, **details) -> "AuthGuardError":
        """
        Create an AuthGuardError from another exception.

        Useful for wrapping third-party exceptions (redis, pydantic) with
        additional context.

        Args:
            exc: Original exception to wrap
            message: Custom message (defaults to original exception message)
            **details: Additional context to include

        Returns:
            New instance of ``cls`` carrying the wrapped exception details

        Example:
            >>> try:
            ...     await client.incr(key)
            ... except RedisError as e:
            ...     raise CacheOperationError.from_exception(e, key=key)
        """
        error_message = message or str(exc)
        error_details = {
            "original_error": exc.__class__.__name__,
            "original_message": str(exc),
            **details
        }
        return cls(error_message, details=error_details)


class ConfigurationError(AuthGuardError):
    """Raised when configuration is invalid or missing (fatal at startup)."""
    pass
