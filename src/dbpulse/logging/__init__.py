"""DBPulse structured logging.

This package provides structured logging, timing of monitoring calls and
the statement audit trail that records every statement sent to an engine.

Example:
    >>> from dbpulse.logging import get_logger, get_performance_logger
    >>> logger = get_logger("monitor.postgresql.prod_db")
    >>> perf_logger = get_performance_logger("monitor.postgresql.prod_db")
    >>> with perf_logger.measure("get_health"):
    ...     health = await monitor.get_health()
"""

from .audit import AuditOutcome, StatementAuditEvent, StatementAuditor
from .factory import (
    LoggerFactory,
    configure_logging,
    get_logger,
    get_performance_logger,
    get_statement_auditor,
    shutdown_logging,
)
from .formatters import JSONFormatter, TextFormatter, get_formatter
from .handlers import ConsoleHandler, RotatingFileHandler
from .performance import PerformanceLogger, TimingContext
from .structured import LogContext, StructuredLogger

__all__ = [
    # Factory and configuration
    "LoggerFactory",
    "configure_logging",
    "get_logger",
    "get_performance_logger",
    "get_statement_auditor",
    "shutdown_logging",

    # Formatters
    "JSONFormatter",
    "TextFormatter",
    "get_formatter",

    # Handlers
    "ConsoleHandler",
    "RotatingFileHandler",

    # Performance logging
    "PerformanceLogger",
    "TimingContext",

    # Statement audit
    "AuditOutcome",
    "StatementAuditEvent",
    "StatementAuditor",

    # Structured logging
    "StructuredLogger",
    "LogContext",
]
