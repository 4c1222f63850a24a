"""DBPulse exception hierarchy.

This module defines the exception hierarchy for DBPulse monitoring operations,
providing structured error handling with context and error codes so callers
can tell an unreachable engine from a slow one, and a missing permission
from a missing feature.

Classes:
    DBPulseException: Base exception for all DBPulse operations
    ConfigurationError: Configuration related errors
    ConnectionFailureError: Cannot establish or keep the engine connection
    MonitoringError: Errors raised while collecting telemetry
    PermissionDeniedError: Principal lacks rights on a system catalog
    UnsupportedOnEngineError: Metric has no equivalent on this engine/version
    NotFoundError: Query or session identifier does not exist
    QueryTimeoutError: Native query exceeded its time bound
    ReadOnlyViolationError: Attempt to issue a state-changing statement

Example:
    >>> try:
    ...     details = await monitor.get_query_details("12345")
    ... except NotFoundError as e:
    ...     logger.info("Query aged out of catalog", error_code=e.code, context=e.context)
"""

from typing import Any, Dict, Optional


class DBPulseException(Exception):
    """Base exception for all DBPulse operations.

    This base class provides structured error handling with error codes,
    context information, and optional cause tracking for better debugging
    and monitoring in production environments.

    Attributes:
        code: Unique error code for categorization
        context: Additional context information about the error
        cause: Original exception that caused this error (if any)

    Example:
        >>> raise DBPulseException(
        ...     "Operation failed",
        ...     code="QUERY_EXECUTION_FAILED",
        ...     context={"operation": "top_queries", "database_id": "db001"}
        ... )
    """

    def __init__(
        self,
        message: str,
        *,
        code: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
    ) -> None:
        """Initialize DBPulse exception.

        Args:
            message: Human-readable error description
            code: Unique error code for categorization (defaults to class name)
            context: Additional context information
            cause: Original exception that caused this error
        """
        super().__init__(message)
        self.message = message
        self.code: str = code or self.__class__.__name__
        self.context: Dict[str, Any] = context or {}
        self.cause: Optional[Exception] = cause

    def __str__(self) -> str:
        """Return formatted error message with code."""
        return f"{self.code}: {self.message}"

    def __repr__(self) -> str:
        """Return detailed representation of the exception."""
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"code={self.code!r}, "
            f"context={self.context!r}, "
            f"cause={self.cause!r})"
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for serialization.

        Returns:
            Dictionary representation of the exception
        """
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "code": self.code,
            "context": self.context,
            "cause": str(self.cause) if self.cause else None,
        }


class ConfigurationError(DBPulseException):
    """Configuration related errors.

    Raised when configuration is invalid, missing, or cannot be processed,
    including an unknown platform at adapter selection time.
    """
    pass


class ValidationError(ConfigurationError, ValueError):
    """Data validation errors.

    Raised when input data fails validation rules. Also a ``ValueError`` so
    argument checks such as a top-queries limit below one read naturally to
    callers and to pydantic validators.
    """
    pass


class ConnectionFailureError(DBPulseException):
    """Cannot establish or maintain the connection to the target engine.

    Always surfaced to the caller; adapters never retry.
    """
    pass


class AuthenticationError(ConnectionFailureError):
    """Database authentication errors.

    Raised when the engine rejects the supplied credentials.
    """
    pass


class MonitoringError(DBPulseException):
    """Base class for errors raised while collecting telemetry."""
    pass


class QueryError(MonitoringError):
    """Native query execution errors.

    Raised when a catalog query fails for a reason not covered by a more
    specific subclass.
    """
    pass


class PermissionDeniedError(QueryError):
    """The connecting principal lacks rights to a system catalog.

    Adapters degrade the affected metric instead of failing the whole call.
    """
    pass


class UnsupportedOnEngineError(QueryError):
    """The requested metric has no equivalent on this engine or version.

    Typically a missing extension or a disabled telemetry catalog.
    """
    pass


class NotFoundError(QueryError):
    """A query or session identifier does not exist at call time.

    Expected and recoverable: statements age out of digest catalogs.
    """
    pass


class QueryTimeoutError(DBPulseException):
    """Native query exceeded its configured time bound."""
    pass


class ReadOnlyViolationError(DBPulseException):
    """Attempt to issue a statement that could change engine state."""
    pass


# Error code constants for common scenarios
class ErrorCodes:
    """Common error codes for DBPulse exceptions."""

    # Configuration errors
    CONFIG_NOT_FOUND = "CONFIG_NOT_FOUND"
    CONFIG_INVALID = "CONFIG_INVALID"
    CONFIG_VALIDATION_FAILED = "CONFIG_VALIDATION_FAILED"
    INVALID_LIMIT = "INVALID_LIMIT"
    INVALID_TIME_RANGE = "INVALID_TIME_RANGE"

    # Connection errors
    CONNECTION_TIMEOUT = "CONNECTION_TIMEOUT"
    CONNECTION_REFUSED = "CONNECTION_REFUSED"
    CONNECTION_LOST = "CONNECTION_LOST"
    AUTH_FAILED = "AUTH_FAILED"

    # Monitoring errors
    QUERY_EXECUTION_FAILED = "QUERY_EXECUTION_FAILED"
    QUERY_NOT_FOUND = "QUERY_NOT_FOUND"
    CATALOG_UNAVAILABLE = "CATALOG_UNAVAILABLE"
    FEATURE_UNSUPPORTED = "FEATURE_UNSUPPORTED"

    # Security errors
    INSUFFICIENT_PERMISSIONS = "INSUFFICIENT_PERMISSIONS"
    READ_ONLY_VIOLATION = "READ_ONLY_VIOLATION"

    # Resource errors
    OPERATION_TIMEOUT = "OPERATION_TIMEOUT"
