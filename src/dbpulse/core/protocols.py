"""Protocol definitions for DBPulse components.

This module defines the typing protocols that establish contracts between
the engine adapters and everything that consumes them. Consumers depend only
on these protocols and the unified domain model, never on a concrete adapter.

Protocols:
    DatabaseConnector: Read-only I/O surface an adapter issues native queries through
    QueryMonitor: Query-level telemetry every engine adapter must provide
    HealthMonitor: Instance-level telemetry every engine adapter must provide

Example:
    >>> async def report(queries: QueryMonitor, health: HealthMonitor) -> None:
    ...     top = await queries.get_top_queries(10)
    ...     snapshot = await health.get_health()
"""

from datetime import datetime
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Protocol, runtime_checkable

if TYPE_CHECKING:
    from ..database.models import (
        ConnectionStatistics,
        DatabaseHealth,
        DatabaseSize,
        ExecutionPlan,
        QueryDetails,
        QueryMetric,
        QueryStatistic,
        ResourceUtilization,
        RunningQuery,
    )


@runtime_checkable
class DatabaseConnector(Protocol):
    """Protocol for the read-only statement channel to one engine.

    Implementations own connection pooling, per-statement time bounds,
    cancellation, read-only enforcement and driver error translation.
    Every row is returned as a plain ``dict`` keyed by column name.
    """

    platform: str

    @property
    def database_name(self) -> str:
        """Name of the database this connector is attached to."""
        ...

    async def fetch(
        self, sql: str, *params: Any, timeout: Optional[float] = None
    ) -> List[Dict[str, Any]]:
        """Run a read-only statement and return all rows."""
        ...

    async def fetchrow(
        self, sql: str, *params: Any, timeout: Optional[float] = None
    ) -> Optional[Dict[str, Any]]:
        """Run a read-only statement and return the first row, if any."""
        ...

    async def fetchval(
        self, sql: str, *params: Any, timeout: Optional[float] = None
    ) -> Any:
        """Run a read-only statement and return the first column of the first row."""
        ...

    async def fetchval_null_bound(self, sql: str, *, timeout: Optional[float] = None) -> Any:
        """Like ``fetchval``, binding NULL to every parameter the statement declares."""
        ...

    async def close(self) -> None:
        """Release pooled connections."""
        ...


@runtime_checkable
class QueryMonitor(Protocol):
    """Query-level telemetry contract.

    All methods are coroutines and honor asyncio cancellation: cancelling
    the awaiting task aborts the in-flight native query.
    """

    async def get_top_queries(self, limit: Optional[int] = None) -> "List[QueryMetric]":
        """Return statements ordered by total accumulated time, descending.

        ``limit`` defaults to ``MonitoringConfig.default_top_queries`` and
        must be at least 1 (``ValidationError`` otherwise); values above the
        engine-safe maximum are capped. An empty list means the
        engine has no telemetry catalog enabled.
        """
        ...

    async def get_query_details(self, query_id: str) -> "QueryDetails":
        """Return details for one statement; raises ``NotFoundError``."""
        ...

    async def get_execution_plan(self, query_id: str) -> "ExecutionPlan":
        """Return the execution plan for one statement.

        Potentially slow: some engines re-explain the statement live.
        """
        ...

    async def get_query_statistics(
        self, start: datetime, end: datetime
    ) -> "List[QueryStatistic]":
        """Return per-statement samples inside ``[start, end]``.

        Empty, with a logged warning, when the engine's catalog has no
        timestamp dimension.
        """
        ...

    async def get_running_queries(self) -> "List[RunningQuery]":
        """Return currently executing, non-idle sessions except our own."""
        ...


@runtime_checkable
class HealthMonitor(Protocol):
    """Instance-level telemetry contract."""

    async def get_health(self) -> "DatabaseHealth":
        """Return a classified health snapshot.

        Sub-metrics are fetched independently; a permission failure on one
        catalog zeroes that metric and adds a warning issue instead of
        failing the call.
        """
        ...

    async def get_database_size(
        self, previous: "Optional[DatabaseSize]" = None
    ) -> "DatabaseSize":
        """Return current size, with growth derived from ``previous`` if given."""
        ...

    async def get_connection_stats(self) -> "ConnectionStatistics":
        """Return session counts by state, database and user."""
        ...

    async def get_resource_utilization(self) -> "ResourceUtilization":
        """Return CPU, memory, disk, network and wait figures the engine exposes."""
        ...

    async def get_configuration(self) -> Dict[str, str]:
        """Return performance and resource related settings (best effort)."""
        ...
