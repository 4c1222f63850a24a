"""Logging-specific test configuration and fixtures."""

import logging

import pytest
import structlog

from dbpulse.logging.factory import LoggerFactory


@pytest.fixture
def logger_factory():
    """Create clean logger factory for testing."""
    factory = LoggerFactory()
    yield factory
    factory.shutdown()


@pytest.fixture
def make_record():
    """Build stdlib log records with optional extra attributes."""
    def factory(msg="Operation completed", level=logging.INFO, name="monitor.test", **extra):
        record = logging.LogRecord(name, level, __file__, 42, msg, None, None)
        record.__dict__.update(extra)
        return record
    return factory


@pytest.fixture(autouse=True)
def cleanup_global_logging():
    """Clean up global logging state after each test."""
    yield

    from dbpulse.logging.factory import _global_factory
    _global_factory.shutdown()

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(logging.WARNING)

    structlog.configure(
        processors=[structlog.testing.LogCapture()],
        wrapper_class=structlog.make_filtering_bound_logger(logging.DEBUG),
        logger_factory=structlog.testing.ReturnLoggerFactory(),
        cache_logger_on_first_use=False,
    )
