"""DBPulse core infrastructure.

This package provides the foundational pieces shared by every engine:
component lifecycle, the exception taxonomy, the monitoring contracts
and small utilities.

Modules:
    base: Base classes for long-lived components
    exceptions: Exception hierarchy
    protocols: Monitoring contracts
    utils: Utility functions

Example:
    >>> from dbpulse.core import QueryMonitor, HealthMonitor
    >>> from dbpulse.core.exceptions import NotFoundError
"""

from .base import AsyncComponent, BaseComponent
from .exceptions import (
    AuthenticationError,
    ConfigurationError,
    ConnectionFailureError,
    DBPulseException,
    ErrorCodes,
    MonitoringError,
    NotFoundError,
    PermissionDeniedError,
    QueryError,
    QueryTimeoutError,
    ReadOnlyViolationError,
    UnsupportedOnEngineError,
    ValidationError,
)
from .protocols import DatabaseConnector, HealthMonitor, QueryMonitor

__all__ = [
    # Base classes
    "AsyncComponent",
    "BaseComponent",
    # Exceptions
    "AuthenticationError",
    "ConfigurationError",
    "ConnectionFailureError",
    "DBPulseException",
    "ErrorCodes",
    "MonitoringError",
    "NotFoundError",
    "PermissionDeniedError",
    "QueryError",
    "QueryTimeoutError",
    "ReadOnlyViolationError",
    "UnsupportedOnEngineError",
    "ValidationError",
    # Protocols
    "DatabaseConnector",
    "HealthMonitor",
    "QueryMonitor",
]
