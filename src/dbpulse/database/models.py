# src/dbpulse/database/models.py
"""Unified domain model shared by every engine adapter.

All timestamps are aware UTC datetimes, durations are milliseconds and sizes
are bytes. Instances are built fresh per monitoring call and never mutated;
derived copies are made with ``dataclasses.replace``.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from dbpulse.core.utils import FormatUtils


class HealthStatus(str, Enum):
    """Classifier output for a health snapshot."""
    HEALTHY = "Healthy"
    WARNING = "Warning"
    CRITICAL = "Critical"
    UNKNOWN = "Unknown"


class IssueSeverity(str, Enum):
    """Severity of a generated health issue."""
    WARNING = "Warning"
    CRITICAL = "Critical"


def usage_percent(used: float, maximum: float) -> float:
    """Return ``used / maximum * 100``, or 0.0 when the maximum is unknown."""
    if not maximum or maximum <= 0:
        return 0.0
    return used / maximum * 100.0


@dataclass(frozen=True)
class QueryMetric:
    """Aggregated statistics for one normalized statement."""
    query_id: str
    query_text: str
    execution_count: int
    total_time_ms: float
    average_time_ms: float
    min_time_ms: float
    max_time_ms: float
    rows_returned: int
    database_name: str
    last_executed_at: Optional[datetime] = None


@dataclass(frozen=True)
class ExecutionPlanNode:
    """One operator in an execution plan tree."""
    operation_type: str
    description: str = ""
    cost: float = 0.0
    cost_percentage: float = 0.0
    rows_estimated: float = 0.0
    rows_actual: Optional[float] = None
    children: Tuple["ExecutionPlanNode", ...] = ()

    def walk(self):
        """Yield this node and all descendants depth-first."""
        yield self
        for child in self.children:
            yield from child.walk()


@dataclass(frozen=True)
class ExecutionPlan:
    """Engine plan; ``plan_xml``/``plan_json`` are opaque to consumers."""
    query_id: str
    platform_type: str
    plan_text: str
    plan_xml: Optional[str] = None
    plan_json: Optional[str] = None
    nodes: Tuple[ExecutionPlanNode, ...] = ()
    estimated_cost: float = 0.0
    actual_cost: Optional[float] = None
    generated_at: Optional[datetime] = None


@dataclass(frozen=True)
class QueryDetails:
    """Detailed view of one statement."""
    query_id: str
    query_text: str
    normalized_query: str
    statistics: Dict[str, Any] = field(default_factory=dict)
    tables_accessed: Tuple[str, ...] = ()
    indexes_used: Tuple[str, ...] = ()
    estimated_cost: float = 0.0
    execution_plan: Optional[ExecutionPlan] = None


@dataclass(frozen=True)
class QueryStatistic:
    """One time-stamped execution sample for a statement."""
    timestamp: datetime
    query_id: str
    execution_time_ms: float
    rows_returned: int = 0
    cpu_time_ms: float = 0.0
    logical_reads: int = 0
    physical_reads: int = 0


@dataclass(frozen=True)
class RunningQuery:
    """Snapshot of an executing session."""
    session_id: int
    query_text: str
    start_time: Optional[datetime]
    duration: timedelta
    status: str
    user_name: str
    database_name: str
    cpu_time_ms: float = 0.0
    memory_usage_kb: int = 0

    @property
    def duration_ms(self) -> float:
        return self.duration.total_seconds() * 1000.0


@dataclass(frozen=True)
class HealthIssue:
    """Generated, human-readable diagnostic attached to a health snapshot."""
    category: str
    description: str
    severity: IssueSeverity
    recommendation: str


@dataclass(frozen=True)
class DatabaseHealth:
    """Instance health snapshot.

    ``status`` and ``issues`` are filled by the classifier and issue
    generator; adapters build the snapshot with ``UNKNOWN`` first and
    annotate a copy.
    """
    database_name: str
    platform_type: str
    platform_version: str
    checked_at: datetime
    uptime_hours: float = 0.0
    active_connections: int = 0
    max_connections: int = 0
    connection_usage_percent: float = 0.0
    disk_usage_percent: float = 0.0
    cpu_usage_percent: float = 0.0
    memory_usage_percent: float = 0.0
    total_queries: int = 0
    average_query_time_ms: float = 0.0
    slow_queries: int = 0
    status: HealthStatus = HealthStatus.UNKNOWN
    issues: Tuple[HealthIssue, ...] = ()


@dataclass(frozen=True)
class DatabaseSize:
    """Storage footprint of one database."""
    database_name: str
    total_size_bytes: int
    data_size_bytes: int
    log_size_bytes: int = 0
    index_size_bytes: int = 0
    free_space_bytes: int = 0
    growth_rate_bytes_per_day: float = 0.0
    last_measured: Optional[datetime] = None
    previous_measurement: Optional[datetime] = None
    projected_size_in_30_days: int = 0
    projected_size_in_90_days: int = 0

    @property
    def total_size_formatted(self) -> str:
        return FormatUtils.format_bytes(self.total_size_bytes)

    @property
    def data_size_formatted(self) -> str:
        return FormatUtils.format_bytes(self.data_size_bytes)

    @property
    def log_size_formatted(self) -> str:
        return FormatUtils.format_bytes(self.log_size_bytes)

    @property
    def index_size_formatted(self) -> str:
        return FormatUtils.format_bytes(self.index_size_bytes)


@dataclass(frozen=True)
class TableSize:
    """Storage footprint of one user table; sizes include every partition."""
    schema_name: str
    table_name: str
    row_count: int = 0
    total_size_bytes: int = 0
    data_size_bytes: int = 0
    index_size_bytes: int = 0
    unused_size_bytes: int = 0

    @property
    def total_size_formatted(self) -> str:
        return FormatUtils.format_bytes(self.total_size_bytes)


@dataclass(frozen=True)
class IndexFragmentation:
    """Logical fragmentation of one index."""
    schema_name: str
    table_name: str
    index_name: str
    fragmentation_percent: float = 0.0
    page_count: int = 0
    index_type: str = ""


@dataclass(frozen=True)
class MissingIndex:
    """Index the optimizer reported it would have used.

    ``impact_score`` is average cost times average improvement percentage
    times seeks plus scans; only the ordering between suggestions matters.
    """
    table_name: str
    equality_columns: str = ""
    inequality_columns: str = ""
    included_columns: str = ""
    impact_score: float = 0.0
    user_seeks: int = 0
    user_scans: int = 0


@dataclass(frozen=True)
class ConnectionStatistics:
    """Session counts at one instant."""
    measured_at: datetime
    total_connections: int = 0
    active_connections: int = 0
    idle_connections: int = 0
    sleeping_connections: int = 0
    max_connections: int = 0
    connections_by_database: Dict[str, int] = field(default_factory=dict)
    connections_by_user: Dict[str, int] = field(default_factory=dict)
    peak_connections_24h: int = 0
    peak_connections_time: Optional[datetime] = None

    @property
    def usage_percent(self) -> float:
        return usage_percent(self.total_connections, self.max_connections)


@dataclass(frozen=True)
class WaitStatistic:
    """Accumulated waits of one type."""
    wait_type: str
    wait_count: int = 0
    wait_time_ms: float = 0.0
    average_wait_time_ms: float = 0.0
    percentage_of_total: float = 0.0


@dataclass(frozen=True)
class ResourceUtilization:
    """Host and engine resource figures; zero means not exposed."""
    measured_at: datetime
    cpu_usage_percent: float = 0.0
    database_cpu_percent: float = 0.0
    system_cpu_percent: float = 0.0
    total_memory_bytes: int = 0
    used_memory_bytes: int = 0
    free_memory_bytes: int = 0
    buffer_cache_bytes: int = 0
    procedure_cache_bytes: int = 0
    disk_reads_per_sec: float = 0.0
    disk_writes_per_sec: float = 0.0
    disk_read_latency_ms: float = 0.0
    disk_write_latency_ms: float = 0.0
    network_bytes_received_per_sec: float = 0.0
    network_bytes_sent_per_sec: float = 0.0
    top_waits: Tuple[WaitStatistic, ...] = ()

    @property
    def memory_usage_percent(self) -> float:
        return usage_percent(self.used_memory_bytes, self.total_memory_bytes)
