"""Structured logging implementation for DBPulse.

This module provides structured logging with context management and
correlation IDs. Context is stored in ``contextvars`` so that concurrent
monitoring calls running as separate asyncio tasks never see each other's
context.

Classes:
    StructuredLogger: Main structured logging interface
    LogContext: Task-local context for log correlation
    ContextFilter: Filter for adding context to stdlib log records

Example:
    >>> logger = StructuredLogger("monitor.postgresql.prod_db")
    >>> with logger.context(operation="get_health"):
    ...     logger.info("Collecting health", sub_fetches=4)
"""

import contextvars
import logging
import time
import uuid
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, Generator, Optional

import structlog

from ..core.exceptions import DBPulseException

_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class LogContext:
    """Task-local context for log correlation and metadata.

    Example:
        >>> context = LogContext("monitor")
        >>> context.set("database_id", "prod_db")
        >>> context.get_all()
        {'database_id': 'prod_db'}
    """

    def __init__(self, name: str = "dbpulse") -> None:
        self._var: contextvars.ContextVar[Dict[str, Any]] = contextvars.ContextVar(
            f"dbpulse_log_context_{name}_{id(self)}", default={}
        )

    def set(self, key: str, value: Any) -> None:
        """Set context value."""
        updated = dict(self._var.get())
        updated[key] = value
        self._var.set(updated)

    def get(self, key: str, default: Any = None) -> Any:
        """Get context value."""
        return self._var.get().get(key, default)

    def get_all(self) -> Dict[str, Any]:
        """Get a copy of all context values."""
        return dict(self._var.get())

    def clear(self) -> None:
        """Clear all context values."""
        self._var.set({})

    def update(self, context: Dict[str, Any]) -> None:
        """Update context with multiple values."""
        updated = dict(self._var.get())
        updated.update(context)
        self._var.set(updated)

    def replace(self, context: Dict[str, Any]) -> None:
        """Replace the whole context."""
        self._var.set(dict(context))


class ContextFilter(logging.Filter):
    """Logging filter that adds context information to stdlib log records."""

    def __init__(self, context: LogContext) -> None:
        super().__init__()
        self._context = context

    def filter(self, record: logging.LogRecord) -> bool:
        """Add context information to log record; never drops records."""
        for key, value in self._context.get_all().items():
            if not hasattr(record, key):
                setattr(record, key, value)

        if not hasattr(record, 'correlation_id'):
            record.correlation_id = self._context.get('correlation_id', 'unknown')

        if not hasattr(record, 'timestamp_iso'):
            record.timestamp_iso = datetime.fromtimestamp(record.created).isoformat()

        return True


class StructuredLogger:
    """Structured logger with context management and correlation.

    Attributes:
        name: Logger name

    Example:
        >>> logger = StructuredLogger("connector.mssql.reporting")
        >>> logger.set_level("DEBUG")
        >>> logger.debug("Statement issued", operation="top_queries")
    """

    def __init__(
        self,
        name: str,
        *,
        level: str = "INFO",
        enable_correlation: bool = True,
        bound: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Initialize structured logger.

        Args:
            name: Logger name (typically component path)
            level: Initial log level
            enable_correlation: Whether to attach correlation IDs
            bound: Key/value pairs attached to every event from this logger
        """
        self.name = name
        self._enable_correlation = enable_correlation
        self._bound: Dict[str, Any] = dict(bound or {})

        self._logger = structlog.get_logger(name)
        self._context = LogContext(name)

        self._stdlib_logger = logging.getLogger(name)
        self._stdlib_logger.setLevel(getattr(logging, level.upper(), logging.INFO))
        if not any(isinstance(f, ContextFilter) for f in self._stdlib_logger.filters):
            self._stdlib_logger.addFilter(ContextFilter(self._context))

    def _ensure_correlation_id(self) -> str:
        correlation_id = self._context.get('correlation_id')
        if not correlation_id:
            correlation_id = str(uuid.uuid4())
            self._context.set('correlation_id', correlation_id)
        return correlation_id

    def _prepare_event_dict(self, **kwargs: Any) -> Dict[str, Any]:
        event_dict: Dict[str, Any] = {
            'timestamp': time.time(),
            'logger': self.name,
        }
        event_dict.update(self._bound)
        event_dict.update(self._context.get_all())

        if self._enable_correlation:
            event_dict['correlation_id'] = self._ensure_correlation_id()

        event_dict.update(kwargs)
        return event_dict

    @contextmanager
    def context(self, **context_data: Any) -> Generator[None, None, None]:
        """Add context data for the duration of a block.

        Example:
            >>> with logger.context(operation="get_top_queries", limit=20):
            ...     logger.info("Fetching digest rows")
        """
        old_context = self._context.get_all()
        try:
            self._context.update(context_data)
            yield
        finally:
            self._context.replace(old_context)

    def bind(self, **context_data: Any) -> 'StructuredLogger':
        """Create a logger that attaches ``context_data`` to every event.

        Example:
            >>> db_logger = logger.bind(database_id="prod_db")
        """
        bound = dict(self._bound)
        bound.update(context_data)
        return StructuredLogger(
            self.name,
            level=self.get_level(),
            enable_correlation=self._enable_correlation,
            bound=bound,
        )

    def set_level(self, level: str) -> None:
        """Set logging level.

        Args:
            level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)

        Raises:
            DBPulseException: If the level is unknown
        """
        if not isinstance(level, str) or level.upper() not in _LEVELS:
            raise DBPulseException(
                f"Unknown log level: {level}",
                code="UNKNOWN_LOG_LEVEL"
            )

        self._stdlib_logger.setLevel(getattr(logging, level.upper()))

    def get_level(self) -> str:
        """Get current logging level name."""
        return logging.getLevelName(self._stdlib_logger.getEffectiveLevel())

    def debug(self, message: str, **kwargs: Any) -> None:
        """Log debug message."""
        event_dict = self._prepare_event_dict(level="debug", **kwargs)
        self._logger.debug(message, **event_dict)

    def info(self, message: str, **kwargs: Any) -> None:
        """Log info message."""
        event_dict = self._prepare_event_dict(level="info", **kwargs)
        self._logger.info(message, **event_dict)

    def warning(self, message: str, **kwargs: Any) -> None:
        """Log warning message."""
        event_dict = self._prepare_event_dict(level="warning", **kwargs)
        self._logger.warning(message, **event_dict)

    def error(self, message: str, **kwargs: Any) -> None:
        """Log error message."""
        event_dict = self._prepare_event_dict(level="error", **kwargs)
        self._logger.error(message, **event_dict)

    def critical(self, message: str, **kwargs: Any) -> None:
        """Log critical message."""
        event_dict = self._prepare_event_dict(level="critical", **kwargs)
        self._logger.critical(message, **event_dict)

    def exception(self, message: str, **kwargs: Any) -> None:
        """Log error message with the active exception's traceback."""
        event_dict = self._prepare_event_dict(level="error", **kwargs)
        self._logger.error(message, exc_info=True, **event_dict)

    def set_correlation_id(self, correlation_id: str) -> None:
        """Set correlation ID for the current task."""
        if self._enable_correlation:
            self._context.set('correlation_id', correlation_id)

    def get_correlation_id(self) -> Optional[str]:
        """Get correlation ID for the current task, if any."""
        if not self._enable_correlation:
            return None
        return self._context.get('correlation_id')

    def clear_context(self) -> None:
        """Clear all context data for the current task."""
        self._context.clear()

    def get_context(self) -> Dict[str, Any]:
        """Get current context data, including bound values."""
        context = dict(self._bound)
        context.update(self._context.get_all())
        return context

    def __repr__(self) -> str:
        return (
            f"StructuredLogger("
            f"name={self.name!r}, "
            f"level={self.get_level()!r}, "
            f"correlation={self._enable_correlation})"
        )
