"""DBPulse database layer.

This package holds the unified telemetry model, the read-only connectors
for each supported engine and the registry that pairs a platform with its
monitor adapters.

Supported Platforms:
- PostgreSQL (asyncpg)
- Microsoft SQL Server (aioodbc)
- MySQL (aiomysql)
"""

from .models import (
    ConnectionStatistics,
    DatabaseHealth,
    DatabaseSize,
    ExecutionPlan,
    ExecutionPlanNode,
    HealthIssue,
    HealthStatus,
    IndexFragmentation,
    IssueSeverity,
    MissingIndex,
    QueryDetails,
    QueryMetric,
    QueryStatistic,
    ResourceUtilization,
    RunningQuery,
    TableSize,
    WaitStatistic,
)

from .base import BaseDatabaseConnector
from .connectors import MSSQLConnector, MySQLConnector, PostgreSQLConnector
from .registry import (
    MonitorRegistration,
    MonitorRegistry,
    get_available_platforms,
    get_global_registry,
    register_builtin_monitors,
)
from .factory import MonitorFactory, MonitorSession, create_monitors

__all__ = [
    # Models
    "ConnectionStatistics",
    "DatabaseHealth",
    "DatabaseSize",
    "ExecutionPlan",
    "ExecutionPlanNode",
    "HealthIssue",
    "HealthStatus",
    "IndexFragmentation",
    "IssueSeverity",
    "MissingIndex",
    "QueryDetails",
    "QueryMetric",
    "QueryStatistic",
    "ResourceUtilization",
    "RunningQuery",
    "TableSize",
    "WaitStatistic",

    # Connectors
    "BaseDatabaseConnector",
    "MSSQLConnector",
    "MySQLConnector",
    "PostgreSQLConnector",

    # Registry and factory
    "MonitorFactory",
    "MonitorRegistration",
    "MonitorRegistry",
    "MonitorSession",
    "create_monitors",
    "get_available_platforms",
    "get_global_registry",
    "register_builtin_monitors",
]
