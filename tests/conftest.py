"""Pytest configuration and shared fixtures.

This module provides pytest configuration and shared fixtures for all tests
in the DBPulse test suite, including an in-memory connector that answers
catalog statements by their operation tag.
"""

import contextlib
import inspect
import logging
import pytest
import tempfile
import structlog
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Generator, List, Optional, Tuple
from unittest.mock import MagicMock

from dbpulse.core.exceptions import DBPulseException, ErrorCodes, ReadOnlyViolationError
from dbpulse.logging.audit import AuditOutcome, StatementAuditEvent, StatementAuditor
from dbpulse.monitoring.sqltext import check_read_only, leading_keyword, statement_operation

# Configure test logging to suppress noise during tests
structlog.configure(
    processors=[structlog.testing.LogCapture()],
    wrapper_class=structlog.make_filtering_bound_logger(logging.DEBUG),
    logger_factory=structlog.testing.ReturnLoggerFactory(),
    cache_logger_on_first_use=False,
)


class FakeConnector:
    """Connector double keyed by the ``/* dbpulse:<operation> */`` tag.

    A response may be a list of row dicts, a single row dict, a scalar
    (returned as a one-column row), an exception instance to raise, or a
    callable ``(sql, params)`` returning any of those, optionally awaitable.
    Statements are checked with the same read-only guard as real connectors.
    """

    def __init__(
        self,
        platform: str = "postgresql",
        database_name: str = "appdb",
        responses: Optional[Dict[str, Any]] = None,
        auditor: Optional[StatementAuditor] = None,
    ) -> None:
        self.platform = platform
        self.auditor = auditor
        self._database_name = database_name
        self.responses: Dict[str, Any] = dict(responses or {})
        self.calls: List[Tuple[Optional[str], str, Tuple[Any, ...]]] = []
        self.null_bound_operations: List[Optional[str]] = []
        self.closed = False

    @property
    def database_name(self) -> str:
        return self._database_name

    def operations(self) -> List[Optional[str]]:
        return [operation for operation, _, _ in self.calls]

    def params_for(self, operation: str) -> Tuple[Any, ...]:
        for called, _, params in self.calls:
            if called == operation:
                return params
        raise AssertionError(f"operation {operation!r} was never issued")

    def sql_for(self, operation: str) -> str:
        for called, sql, _ in self.calls:
            if called == operation:
                return sql
        raise AssertionError(f"operation {operation!r} was never issued")

    def _audit(self, sql: str, outcome: AuditOutcome, error_code: Optional[str] = None) -> None:
        if self.auditor is None:
            return
        self.auditor.record(
            StatementAuditEvent(
                platform=self.platform,
                database_id=self._database_name,
                operation=statement_operation(sql),
                keyword=leading_keyword(sql),
                statement=sql,
                outcome=outcome,
                error_code=error_code,
            )
        )

    async def _respond(self, sql: str, params: Tuple[Any, ...]) -> Any:
        allowed, reason = check_read_only(sql)
        if not allowed:
            self._audit(sql, AuditOutcome.REJECTED, ErrorCodes.READ_ONLY_VIOLATION)
            raise ReadOnlyViolationError(reason, code=ErrorCodes.READ_ONLY_VIOLATION)

        operation = statement_operation(sql)
        self.calls.append((operation, sql, params))
        self._audit(sql, AuditOutcome.ISSUED)

        response = self.responses.get(operation)
        if isinstance(response, BaseException):
            raise response
        if callable(response):
            response = response(sql, params)
            if inspect.isawaitable(response):
                response = await response
            if isinstance(response, BaseException):
                raise response
        return response

    async def fetch(self, sql: str, *params: Any, timeout: Optional[float] = None) -> List[Dict[str, Any]]:
        response = await self._respond(sql, params)
        if response is None:
            return []
        if isinstance(response, dict):
            return [response]
        if isinstance(response, list):
            return response
        return [{"value": response}]

    async def fetchrow(self, sql: str, *params: Any, timeout: Optional[float] = None) -> Optional[Dict[str, Any]]:
        rows = await self.fetch(sql, *params, timeout=timeout)
        return rows[0] if rows else None

    async def fetchval(self, sql: str, *params: Any, timeout: Optional[float] = None) -> Any:
        row = await self.fetchrow(sql, *params, timeout=timeout)
        if not row:
            return None
        return next(iter(row.values()))

    async def fetchval_null_bound(self, sql: str, *, timeout: Optional[float] = None) -> Any:
        self.null_bound_operations.append(statement_operation(sql))
        return await self.fetchval(sql, timeout=timeout)

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Provide temporary directory for test files."""
    with tempfile.TemporaryDirectory() as temp_dir:
        yield Path(temp_dir)


@pytest.fixture
def mock_logger():
    """Mock structured logger for testing."""
    logger = MagicMock()
    logger.bind.return_value = logger
    logger.info = MagicMock()
    logger.error = MagicMock()
    logger.warning = MagicMock()
    logger.debug = MagicMock()
    return logger


@pytest.fixture
def make_connector() -> Callable[..., FakeConnector]:
    """Build fake connectors: ``make_connector("mysql", responses={...})``."""
    def factory(
        platform: str = "postgresql",
        responses: Optional[Dict[str, Any]] = None,
        database_name: str = "appdb",
        auditor: Optional[StatementAuditor] = None,
    ) -> FakeConnector:
        return FakeConnector(platform, database_name, responses, auditor)
    return factory


# Optional extras some health monitors add to the contract
STORAGE_EXTRAS = ("get_top_tables", "get_index_fragmentation", "get_missing_indexes")


@pytest.fixture
def walk_contract() -> Callable[..., Any]:
    """Call every monitor contract method once, tolerating domain errors.

    Returns an async function ``walk(query_monitor, health_monitor, query_id)``;
    what was issued is read back from the connector's auditor.
    """
    async def walk(query_monitor: Any, health_monitor: Any, query_id: str) -> None:
        end = datetime(2024, 3, 2, tzinfo=timezone.utc)
        calls = [
            lambda: query_monitor.get_top_queries(5),
            lambda: query_monitor.get_query_details(query_id),
            lambda: query_monitor.get_execution_plan(query_id),
            lambda: query_monitor.get_query_statistics(end - timedelta(days=1), end),
            lambda: query_monitor.get_running_queries(),
            lambda: health_monitor.get_health(),
            lambda: health_monitor.get_database_size(),
            lambda: health_monitor.get_connection_stats(),
            lambda: health_monitor.get_resource_utilization(),
            lambda: health_monitor.get_configuration(),
        ]
        calls.extend(
            getattr(health_monitor, name)
            for name in STORAGE_EXTRAS
            if hasattr(health_monitor, name)
        )
        for call in calls:
            with contextlib.suppress(DBPulseException):
                await call()
    return walk


@pytest.fixture
def sample_database_config_data() -> dict:
    """Sample database configuration data for testing."""
    return {
        "id": "test_db",
        "platform": "postgresql",
        "host": "localhost",
        "port": 5432,
        "database": "test_database",
        "credentials": {
            "username": "monitor",
            "password": "test_password",
        },
        "ssl_config": {
            "enabled": False,  # Disabled for testing
        },
        "pool_config": {
            "min_size": 0,
            "max_size": 2,
        },
        "connection_timeout": 5,
        "query_timeout": 10,
    }


@pytest.fixture
def sample_config_data(sample_database_config_data: dict) -> dict:
    """Sample top-level configuration data for testing."""
    database = {k: v for k, v in sample_database_config_data.items() if k != "id"}
    return {
        "logging": {
            "level": "DEBUG",
            "format": "json",
            "console_output": True,
        },
        "monitoring": {
            "default_top_queries": 25,
            "max_top_queries": 100,
            "slow_query_threshold_ms": 500,
        },
        "databases": {
            "test_db": database,
        },
    }


@pytest.fixture
def database_config(sample_database_config_data: dict):
    """Validated PostgreSQL database configuration."""
    from dbpulse.config.models import DatabaseConfig
    return DatabaseConfig(**sample_database_config_data)


@pytest.fixture
def config_file(temp_dir: Path, sample_config_data: dict) -> Path:
    """Create temporary configuration file."""
    import yaml

    config_path = temp_dir / "dbpulse.yaml"
    with open(config_path, 'w') as f:
        yaml.dump(sample_config_data, f)
    return config_path


# Pytest markers for different test categories
def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line(
        "markers", "unit: marks tests as unit tests (fast, isolated)"
    )
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests (live database engines)"
    )
    config.addinivalue_line(
        "markers", "slow: marks tests that take > 1 second"
    )
    config.addinivalue_line(
        "markers", "database: marks tests exercising the connector and registry layer"
    )


# Auto-mark tests based on their location
def pytest_collection_modifyitems(config, items):
    """Automatically mark tests based on their location."""
    tests_root = Path(__file__).parent
    for item in items:
        test_path = Path(str(item.fspath)).relative_to(tests_root)

        if test_path.parts[0] == "unit":
            item.add_marker(pytest.mark.unit)
        elif test_path.parts[0] == "integration":
            item.add_marker(pytest.mark.integration)
            item.add_marker(pytest.mark.slow)

        if "database" in test_path.parts:
            item.add_marker(pytest.mark.database)


# Clean up between tests
@pytest.fixture(autouse=True)
def reset_global_registry():
    """Drop the process-wide monitor registry between tests."""
    yield

    from dbpulse.database import registry
    registry._global_registry = None
