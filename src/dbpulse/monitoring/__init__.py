"""DBPulse monitoring.

Pure classification and SQL text helpers shared by every engine, the
partial-failure fan-out used by composite health calls, and the engine
adapters implementing the query and health monitor contracts.

Example:
    >>> from dbpulse.monitoring import classify_health, generate_issues
    >>> status = classify_health(health)
"""

from .classifier import annotate_health, classify_health, generate_issues, permission_issue
from .fanout import SubFetch, fan_out, gather_or_cancel
from .sizing import apply_growth
from .sqltext import (
    check_read_only,
    extract_tables,
    is_read_only_statement,
    normalize_query,
    tag_statement,
)
from .adapters import (
    MSSQLHealthMonitor,
    MSSQLQueryMonitor,
    MySQLHealthMonitor,
    MySQLQueryMonitor,
    PostgreSQLHealthMonitor,
    PostgreSQLQueryMonitor,
)

__all__ = [
    # Classification
    "annotate_health",
    "classify_health",
    "generate_issues",
    "permission_issue",

    # Composite health
    "SubFetch",
    "fan_out",
    "gather_or_cancel",
    "apply_growth",

    # SQL text
    "check_read_only",
    "extract_tables",
    "is_read_only_statement",
    "normalize_query",
    "tag_statement",

    # Adapters
    "MSSQLHealthMonitor",
    "MSSQLQueryMonitor",
    "MySQLHealthMonitor",
    "MySQLQueryMonitor",
    "PostgreSQLHealthMonitor",
    "PostgreSQLQueryMonitor",
]
