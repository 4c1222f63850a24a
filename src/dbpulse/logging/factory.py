"""Logger factory and configuration for DBPulse.

Classes:
    LoggerFactory: Central logger creation and configuration manager
    LoggerConfig: Effective logging settings

Functions:
    configure_logging: Configure logging system globally
    get_logger: Get a cached structured logger
    get_performance_logger: Get a cached performance logger
    get_statement_auditor: Get a cached statement auditor
    shutdown_logging: Tear down the global logging system

Example:
    >>> from dbpulse.logging import configure_logging, get_logger
    >>> configure_logging(level="INFO", format="json")
    >>> logger = get_logger("monitor.postgresql.prod_db")
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import structlog

from .audit import StatementAuditor
from .formatters import get_formatter
from .handlers import ConsoleHandler, RotatingFileHandler
from .performance import PerformanceLogger
from .structured import StructuredLogger
from ..config.models import LoggingConfig
from ..core.exceptions import ValidationError


@dataclass
class LoggerConfig:
    """Effective logging settings.

    Attributes:
        level: Log level
        format: Log format (json, text)
        console_output: Enable console output
        file_path: Rotating log file path, if any
        max_file_size: Maximum file size before rotation
        backup_count: Number of backup files to keep
        correlation_ids: Attach correlation IDs to events
    """
    level: str = "INFO"
    format: str = "json"
    console_output: bool = True
    file_path: Optional[str] = None
    max_file_size: int = 10485760
    backup_count: int = 5
    correlation_ids: bool = True


class LoggerFactory:
    """Factory for creating and configuring DBPulse loggers.

    Example:
        >>> factory = LoggerFactory()
        >>> factory.configure_from_config(config.logging)
        >>> perf_logger = factory.get_performance_logger("monitor.mysql.orders")
    """

    def __init__(self, config: Optional[LoggerConfig] = None) -> None:
        self.config = config or LoggerConfig()
        self.initialized = False
        self._loggers: Dict[str, StructuredLogger] = {}
        self._performance_loggers: Dict[str, PerformanceLogger] = {}
        self._auditors: Dict[str, StatementAuditor] = {}

    def configure_from_config(self, logging_config: LoggingConfig) -> None:
        """Configure factory from a ``LoggingConfig`` instance."""
        self.config = LoggerConfig(
            level=logging_config.level,
            format=logging_config.format,
            console_output=logging_config.console_output,
            file_path=str(logging_config.file_path) if logging_config.file_path else None,
            max_file_size=logging_config.max_file_size,
            backup_count=logging_config.backup_count,
            correlation_ids=logging_config.correlation_ids,
        )
        self.initialized = False
        self._configure_logging_system()

    def configure_from_dict(self, config_dict: Dict[str, Any]) -> None:
        """Configure factory from a dictionary; unknown keys are ignored."""
        for key, value in config_dict.items():
            if hasattr(self.config, key):
                setattr(self.config, key, value)

        self.initialized = False
        self._configure_logging_system()

    def _configure_logging_system(self) -> None:
        if self.initialized:
            return

        self._configure_stdlib_logging()
        self._configure_structlog()
        self.initialized = True

    def _formatter(self, *, colors: bool = False) -> logging.Formatter:
        if self.config.format.lower() == "text":
            return get_formatter("text", colors=colors)
        return get_formatter(self.config.format)

    def _configure_stdlib_logging(self) -> None:
        level = getattr(logging, self.config.level.upper(), logging.INFO)
        root_logger = logging.getLogger()
        root_logger.setLevel(level)
        root_logger.handlers.clear()

        if self.config.console_output:
            console_handler = ConsoleHandler()
            console_handler.setLevel(level)
            console_handler.setFormatter(self._formatter(colors=ConsoleHandler.supports_color()))
            root_logger.addHandler(console_handler)

        if self.config.file_path:
            file_handler = RotatingFileHandler(
                filename=self.config.file_path,
                maxBytes=self.config.max_file_size,
                backupCount=self.config.backup_count,
            )
            file_handler.setLevel(level)
            file_handler.setFormatter(self._formatter())
            root_logger.addHandler(file_handler)

    def _configure_structlog(self) -> None:
        # Rendering happens once, in the handlers' ProcessorFormatter
        structlog.configure(
            processors=[
                structlog.stdlib.filter_by_level,
                structlog.stdlib.add_logger_name,
                structlog.stdlib.add_log_level,
                structlog.stdlib.PositionalArgumentsFormatter(),
                structlog.processors.TimeStamper(fmt="iso"),
                structlog.processors.StackInfoRenderer(),
                structlog.processors.UnicodeDecoder(),
                structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
            ],
            wrapper_class=structlog.stdlib.BoundLogger,
            logger_factory=structlog.stdlib.LoggerFactory(),
            context_class=dict,
            cache_logger_on_first_use=True,
        )

    def get_logger(
        self,
        name: str,
        *,
        level: Optional[str] = None,
        enable_correlation: Optional[bool] = None,
    ) -> StructuredLogger:
        """Get or create a structured logger."""
        if not self.initialized:
            self._configure_logging_system()

        cache_key = f"{name}_{level}_{enable_correlation}"
        if cache_key not in self._loggers:
            self._loggers[cache_key] = StructuredLogger(
                name,
                level=level or self.config.level,
                enable_correlation=(
                    enable_correlation if enable_correlation is not None
                    else self.config.correlation_ids
                ),
            )
        return self._loggers[cache_key]

    def get_performance_logger(
        self,
        name: str,
        *,
        auto_log: bool = True,
        track_metrics: bool = True,
    ) -> PerformanceLogger:
        """Get or create a performance logger."""
        cache_key = f"{name}_{auto_log}_{track_metrics}"
        if cache_key not in self._performance_loggers:
            self._performance_loggers[cache_key] = PerformanceLogger(
                name,
                auto_log=auto_log,
                track_metrics=track_metrics,
                logger=self.get_logger(f"perf.{name}"),
            )
        return self._performance_loggers[cache_key]

    def get_statement_auditor(self, name: str, *, max_events: int = 10000) -> StatementAuditor:
        """Get or create a statement auditor, usually one per database id."""
        if name not in self._auditors:
            self._auditors[name] = StatementAuditor(
                name,
                max_events=max_events,
                logger=self.get_logger(f"audit.{name}"),
            )
        return self._auditors[name]

    def set_level(self, level: str, logger_name: Optional[str] = None) -> None:
        """Set log level for one logger name or for everything.

        Raises:
            ValidationError: If the level is unknown
        """
        if level.upper() not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValidationError(f"Invalid log level: {level}", code="CONFIG_INVALID")

        if logger_name:
            logging.getLogger(logger_name).setLevel(getattr(logging, level.upper()))
            return

        self.config.level = level
        for logger in self._loggers.values():
            logger.set_level(level)
        logging.getLogger().setLevel(getattr(logging, level.upper()))

    def get_logger_info(self) -> Dict[str, Any]:
        """Describe the effective configuration and cached loggers."""
        return {
            "config": {
                "level": self.config.level,
                "format": self.config.format,
                "console_output": self.config.console_output,
                "file_path": self.config.file_path,
            },
            "initialized": self.initialized,
            "loggers": {
                "structured": list(self._loggers.keys()),
                "performance": list(self._performance_loggers.keys()),
                "audit": list(self._auditors.keys()),
            },
            "handlers": [type(handler).__name__ for handler in logging.getLogger().handlers],
        }

    def shutdown(self) -> None:
        """Shutdown logging system and clean up resources."""
        self._loggers.clear()
        self._performance_loggers.clear()
        self._auditors.clear()

        for handler in list(logging.getLogger().handlers):
            handler.close()
            logging.getLogger().removeHandler(handler)

        self.initialized = False

    def __repr__(self) -> str:
        return (
            f"LoggerFactory("
            f"level={self.config.level!r}, "
            f"format={self.config.format!r}, "
            f"initialized={self.initialized})"
        )


_global_factory = LoggerFactory()


def configure_logging(
    *,
    level: str = "INFO",
    format: str = "json",
    console_output: bool = True,
    file_path: Optional[str] = None,
    **kwargs: Any
) -> None:
    """Configure DBPulse logging globally.

    Example:
        >>> configure_logging(level="DEBUG", format="text")
    """
    _global_factory.configure_from_dict({
        "level": level,
        "format": format,
        "console_output": console_output,
        "file_path": file_path,
        **kwargs
    })


def get_logger(
    name: str,
    *,
    level: Optional[str] = None,
    enable_correlation: Optional[bool] = None,
) -> StructuredLogger:
    """Get or create a structured logger using the global factory."""
    return _global_factory.get_logger(name, level=level, enable_correlation=enable_correlation)


def get_performance_logger(
    name: str,
    *,
    auto_log: bool = True,
    track_metrics: bool = True,
) -> PerformanceLogger:
    """Get or create a performance logger using the global factory."""
    return _global_factory.get_performance_logger(
        name, auto_log=auto_log, track_metrics=track_metrics
    )


def get_statement_auditor(name: str) -> StatementAuditor:
    """Get or create a statement auditor using the global factory."""
    return _global_factory.get_statement_auditor(name)


def get_factory() -> LoggerFactory:
    return _global_factory


def shutdown_logging() -> None:
    """Shutdown the global logging system and clean up resources."""
    _global_factory.shutdown()
