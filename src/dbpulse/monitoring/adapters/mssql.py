# src/dbpulse/monitoring/adapters/mssql.py
"""SQL Server adapters over the dynamic management views and Query Store.

Query identifiers are ``query_hash`` rendered as ``0x`` followed by 16
uppercase hex digits, e.g. ``"0x8D3F9A0C11B2E4F7"``. Plan cache rows sharing
a hash are aggregated. DMV times are microseconds; memory is counted in
8 KB pages.
"""

import xml.etree.ElementTree as ET
from datetime import datetime
from typing import Any, Dict, Iterator, List, Optional, Tuple

from dbpulse.config.models import MonitoringConfig
from dbpulse.core.exceptions import ErrorCodes, NotFoundError, UnsupportedOnEngineError
from dbpulse.core.protocols import DatabaseConnector
from dbpulse.core.utils import ensure_utc, safe_float, safe_int, utc_now
from dbpulse.database.models import (
    ConnectionStatistics,
    DatabaseHealth,
    DatabaseSize,
    ExecutionPlan,
    ExecutionPlanNode,
    IndexFragmentation,
    MissingIndex,
    QueryDetails,
    QueryMetric,
    QueryStatistic,
    ResourceUtilization,
    RunningQuery,
    TableSize,
    usage_percent,
)
from dbpulse.logging import get_logger, get_performance_logger
from dbpulse.monitoring.classifier import annotate_health
from dbpulse.monitoring.fanout import SubFetch, fan_out
from dbpulse.monitoring.helpers import (
    build_wait_statistics,
    flatten_plan,
    render_plan_text,
    resolve_limit,
    resolve_top_limit,
    seconds_to_timedelta,
    validate_time_range,
)
from dbpulse.monitoring.sizing import apply_growth
from dbpulse.monitoring.sqltext import (
    STATEMENT_TAG_PATTERN,
    extract_tables,
    normalize_query,
    tag_statement,
)

PLATFORM = "mssql"

# DMV and Query Store times are microseconds
NATIVE_UNITS_PER_MS = 1000
PAGE_SIZE_BYTES = 8192
PAGE_SIZE_KB = 8

QUERY_STATS_CATALOG = "sys.dm_exec_query_stats"
QUERY_STORE_CATALOG = "sys.query_store_runtime_stats"
INTROSPECTION_PATTERN = "%sys.dm[_]%"
QUERY_STORE_ACTIVE_STATES = frozenset({"READ_WRITE", "READ_ONLY"})

SHOWPLAN_NAMESPACE = "{http://schemas.microsoft.com/sqlserver/2004/07/showplan}"
_RELOP = f"{SHOWPLAN_NAMESPACE}RelOp"
_OBJECT = f"{SHOWPLAN_NAMESPACE}Object"
_RUNTIME_INFORMATION = f"{SHOWPLAN_NAMESPACE}RunTimeInformation"
_RUNTIME_COUNTERS = f"{SHOWPLAN_NAMESPACE}RunTimeCountersPerThread"

# Waits that accumulate on an idle server
BENIGN_WAITS = (
    "BROKER_EVENTHANDLER", "BROKER_RECEIVE_WAITFOR", "BROKER_TASK_STOP",
    "BROKER_TO_FLUSH", "BROKER_TRANSMITTER", "CHECKPOINT_QUEUE", "CLR_AUTO_EVENT",
    "CLR_MANUAL_EVENT", "DIRTY_PAGE_POLL", "DISPATCHER_QUEUE_SEMAPHORE",
    "FT_IFTS_SCHEDULER_IDLE_WAIT", "HADR_FILESTREAM_IOMGR_IOCOMPLETION",
    "LAZYWRITER_SLEEP", "LOGMGR_QUEUE", "ONDEMAND_TASK_QUEUE",
    "REQUEST_FOR_DEADLOCK_SEARCH", "SLEEP_TASK", "SP_SERVER_DIAGNOSTICS_SLEEP",
    "SQLTRACE_BUFFER_FLUSH", "SQLTRACE_INCREMENTAL_FLUSH_SLEEP", "WAITFOR",
    "XE_DISPATCHER_WAIT", "XE_TIMER_EVENT",
)

_STATEMENT_TEXT = """
    SUBSTRING(qt.text, (qs.statement_start_offset / 2) + 1,
        ((CASE qs.statement_end_offset
            WHEN -1 THEN DATALENGTH(qt.text)
            ELSE qs.statement_end_offset
        END - qs.statement_start_offset) / 2) + 1)
"""


def _to_ms(value: Any) -> float:
    return safe_float(value) / NATIVE_UNITS_PER_MS


def _placeholders(count: int) -> str:
    return ", ".join("?" for _ in range(count))


def normalize_query_hash(query_id: str) -> str:
    """Canonical ``0x``-prefixed uppercase form of a query hash."""
    text = str(query_id).strip()
    if text[:2].lower() == "0x":
        text = text[2:]
    return "0x" + text.upper()


def _child_relops(element: ET.Element) -> Iterator[ET.Element]:
    """Nearest ``RelOp`` descendants; operators nest inside operator-specific elements."""
    for child in element:
        if child.tag == _RELOP:
            yield child
        else:
            yield from _child_relops(child)


def _relop_target(relop: ET.Element) -> str:
    for operator in relop:
        if operator.tag == _RELOP:
            continue
        obj = operator.find(_OBJECT)
        if obj is not None:
            table = (obj.get("Table") or "").strip("[]")
            index = (obj.get("Index") or "").strip("[]")
            return f"{table} using {index}" if table and index else table or index
    return ""


def _relop_actual_rows(relop: ET.Element) -> Optional[float]:
    # Present only in actual plans; cached plans carry estimates alone
    runtime = relop.find(_RUNTIME_INFORMATION)
    if runtime is None:
        return None
    counters = [
        element for element in runtime.findall(_RUNTIME_COUNTERS)
        if element.get("ActualRows") is not None
    ]
    if not counters:
        return None
    return sum(safe_float(element.get("ActualRows")) for element in counters)


def parse_showplan_xml(plan_xml: str) -> Optional[ExecutionPlanNode]:
    """Build a node tree from ShowPlan XML.

    Cost percentages are relative to the root operator's subtree cost.
    """
    document = ET.fromstring(plan_xml)
    root = next(document.iter(_RELOP), None)
    if root is None:
        return None

    root_cost = safe_float(root.get("EstimatedTotalSubtreeCost"))

    def build(relop: ET.Element) -> ExecutionPlanNode:
        cost = safe_float(relop.get("EstimatedTotalSubtreeCost"))
        return ExecutionPlanNode(
            operation_type=relop.get("PhysicalOp") or relop.get("LogicalOp") or "Unknown",
            description=_relop_target(relop),
            cost=cost,
            cost_percentage=(cost / root_cost * 100.0) if root_cost else 0.0,
            rows_estimated=safe_float(relop.get("EstimateRows")),
            rows_actual=_relop_actual_rows(relop),
            children=tuple(build(child) for child in _child_relops(relop)),
        )

    return build(root)


class MSSQLQueryMonitor:
    """Query-level telemetry for SQL Server.

    Execution plans are read from the plan cache and never produced by
    running the statement.
    """

    platform = PLATFORM

    def __init__(
        self,
        connector: DatabaseConnector,
        *,
        monitoring: Optional[MonitoringConfig] = None,
        database_id: Optional[str] = None,
    ) -> None:
        self.connector = connector
        self.monitoring = monitoring or MonitoringConfig()
        name = database_id or connector.database_name
        self.logger = get_logger(f"monitor.{PLATFORM}.{name}")
        self.perf_logger = get_performance_logger(f"monitor.{PLATFORM}.{name}")

    async def get_top_queries(self, limit: Optional[int] = None) -> List[QueryMetric]:
        capped = resolve_top_limit(limit, self.monitoring)
        with self.perf_logger.measure("get_top_queries", limit=capped):
            try:
                rows = await self.connector.fetch(
                    tag_statement(
                        "top_queries",
                        f"""
                        SELECT TOP (?)
                            CONVERT(VARCHAR(64), qs.query_hash, 1) AS query_id,
                            MAX({_STATEMENT_TEXT}) AS query_text,
                            SUM(qs.execution_count) AS calls,
                            SUM(qs.total_elapsed_time) AS total_time,
                            MIN(qs.min_elapsed_time) AS min_time,
                            MAX(qs.max_elapsed_time) AS max_time,
                            SUM(qs.total_rows) AS rows_returned,
                            MAX(DB_NAME(qt.dbid)) AS database_name,
                            MAX(qs.last_execution_time) AS last_executed_at
                        FROM sys.dm_exec_query_stats qs
                        CROSS APPLY sys.dm_exec_sql_text(qs.sql_handle) qt
                        WHERE qt.text NOT LIKE ?
                          AND qt.text NOT LIKE ?
                        GROUP BY qs.query_hash
                        ORDER BY SUM(qs.total_elapsed_time) DESC
                        """,
                    ),
                    capped,
                    STATEMENT_TAG_PATTERN,
                    INTROSPECTION_PATTERN,
                )
            except UnsupportedOnEngineError as e:
                self.logger.warning(
                    "Statement statistics catalog unavailable",
                    catalog=QUERY_STATS_CATALOG,
                    error_code=e.code,
                )
                return []

            metrics = []
            for row in rows:
                calls = safe_int(row.get("calls"))
                total_ms = _to_ms(row.get("total_time"))
                metrics.append(
                    QueryMetric(
                        query_id=row.get("query_id") or "",
                        query_text=(row.get("query_text") or "").strip(),
                        execution_count=calls,
                        total_time_ms=total_ms,
                        average_time_ms=total_ms / calls if calls else 0.0,
                        min_time_ms=_to_ms(row.get("min_time")),
                        max_time_ms=_to_ms(row.get("max_time")),
                        rows_returned=safe_int(row.get("rows_returned")),
                        database_name=row.get("database_name") or self.connector.database_name,
                        last_executed_at=ensure_utc(row.get("last_executed_at")),
                    )
                )
            return metrics

    async def get_query_details(self, query_id: str) -> QueryDetails:
        """Aggregated plan cache statistics for one query hash.

        Raises:
            NotFoundError: If the hash is not in the plan cache
        """
        query_hash = normalize_query_hash(query_id)
        with self.perf_logger.measure("get_query_details"):
            row = await self.connector.fetchrow(
                tag_statement(
                    "query_details",
                    f"""
                    SELECT CONVERT(VARCHAR(64), qs.query_hash, 1) AS query_id,
                           MAX({_STATEMENT_TEXT}) AS query_text,
                           SUM(qs.execution_count) AS calls,
                           SUM(qs.total_elapsed_time) AS total_time,
                           MIN(qs.min_elapsed_time) AS min_time,
                           MAX(qs.max_elapsed_time) AS max_time,
                           SUM(qs.total_worker_time) AS cpu_time,
                           SUM(qs.total_logical_reads) AS logical_reads,
                           SUM(qs.total_physical_reads) AS physical_reads,
                           SUM(qs.total_logical_writes) AS logical_writes,
                           SUM(qs.total_rows) AS rows_returned,
                           COUNT(DISTINCT qs.plan_handle) AS cached_plans,
                           MAX(qs.last_execution_time) AS last_executed_at
                    FROM sys.dm_exec_query_stats qs
                    CROSS APPLY sys.dm_exec_sql_text(qs.sql_handle) qt
                    WHERE qs.query_hash = CONVERT(BINARY(8), ?, 1)
                    GROUP BY qs.query_hash
                    """,
                ),
                query_hash,
            )
            if row is None:
                raise NotFoundError(
                    f"Query hash {query_hash} is not in the plan cache",
                    code=ErrorCodes.QUERY_NOT_FOUND,
                    context={"query_id": query_hash, "catalog": QUERY_STATS_CATALOG},
                )

            calls = safe_int(row.get("calls"))
            total_ms = _to_ms(row.get("total_time"))
            average_ms = total_ms / calls if calls else 0.0
            query_text = (row.get("query_text") or "").strip()
            last_executed = ensure_utc(row.get("last_executed_at"))

            statistics = {
                "calls": calls,
                "total_time_ms": total_ms,
                "mean_time_ms": average_ms,
                "min_time_ms": _to_ms(row.get("min_time")),
                "max_time_ms": _to_ms(row.get("max_time")),
                "cpu_time_ms": _to_ms(row.get("cpu_time")),
                "logical_reads": safe_int(row.get("logical_reads")),
                "physical_reads": safe_int(row.get("physical_reads")),
                "logical_writes": safe_int(row.get("logical_writes")),
                "rows": safe_int(row.get("rows_returned")),
                "cached_plans": safe_int(row.get("cached_plans")),
                "last_executed_at": last_executed.isoformat() if last_executed else None,
            }

            return QueryDetails(
                query_id=row.get("query_id") or query_hash,
                query_text=query_text,
                normalized_query=normalize_query(query_text),
                statistics=statistics,
                tables_accessed=tuple(extract_tables(query_text)),
                estimated_cost=average_ms * calls,
            )

    async def get_execution_plan(self, query_id: str) -> ExecutionPlan:
        """Most recently used cached plan for the hash.

        An evicted plan yields an opaque plan carrying only the statement text.
        """
        details = await self.get_query_details(query_id)
        with self.perf_logger.measure("get_execution_plan"):
            plan_xml = await self.connector.fetchval(
                tag_statement(
                    "execution_plan",
                    """
                    SELECT TOP (1) tqp.query_plan
                    FROM sys.dm_exec_query_stats qs
                    CROSS APPLY sys.dm_exec_text_query_plan(
                        qs.plan_handle, qs.statement_start_offset, qs.statement_end_offset
                    ) tqp
                    WHERE qs.query_hash = CONVERT(BINARY(8), ?, 1)
                      AND tqp.query_plan IS NOT NULL
                    ORDER BY qs.last_execution_time DESC
                    """,
                ),
                details.query_id,
            )

            if not plan_xml:
                self.logger.warning("No cached plan for query", query_id=details.query_id)
                return ExecutionPlan(
                    query_id=details.query_id,
                    platform_type=PLATFORM,
                    plan_text=details.query_text,
                    generated_at=utc_now(),
                )

            root = parse_showplan_xml(plan_xml)
            return ExecutionPlan(
                query_id=details.query_id,
                platform_type=PLATFORM,
                plan_text=render_plan_text(root) if root else details.query_text,
                plan_xml=plan_xml,
                nodes=flatten_plan(root),
                estimated_cost=root.cost if root else 0.0,
                generated_at=utc_now(),
            )

    async def _query_store_enabled(self) -> bool:
        state = await self.connector.fetchval(
            tag_statement(
                "query_store_state",
                "SELECT actual_state_desc FROM sys.database_query_store_options",
            )
        )
        return str(state or "").upper() in QUERY_STORE_ACTIVE_STATES

    async def get_query_statistics(
        self, start: datetime, end: datetime
    ) -> List[QueryStatistic]:
        """Per-interval averages from Query Store inside ``[start, end]``.

        Empty, with a warning, when Query Store is off or unavailable.
        """
        start_utc, end_utc = validate_time_range(start, end)
        with self.perf_logger.measure("get_query_statistics"):
            try:
                if not await self._query_store_enabled():
                    self.logger.warning(
                        "Query Store is not enabled; no time-bucketed statistics",
                        catalog=QUERY_STORE_CATALOG,
                    )
                    return []

                rows = await self.connector.fetch(
                    tag_statement(
                        "query_statistics",
                        """
                        SELECT CAST(SWITCHOFFSET(rsi.start_time, '+00:00') AS DATETIME2) AS bucket_start,
                               CONVERT(VARCHAR(64), q.query_hash, 1) AS query_id,
                               rs.avg_duration AS avg_duration,
                               rs.avg_rowcount AS avg_rowcount,
                               rs.avg_cpu_time AS avg_cpu_time,
                               rs.avg_logical_io_reads AS avg_logical_reads,
                               rs.avg_physical_io_reads AS avg_physical_reads
                        FROM sys.query_store_runtime_stats rs
                        JOIN sys.query_store_runtime_stats_interval rsi
                          ON rsi.runtime_stats_interval_id = rs.runtime_stats_interval_id
                        JOIN sys.query_store_plan p ON p.plan_id = rs.plan_id
                        JOIN sys.query_store_query q ON q.query_id = p.query_id
                        WHERE rsi.start_time >= ?
                          AND rsi.end_time <= ?
                        ORDER BY rsi.start_time, q.query_hash
                        """,
                    ),
                    start_utc.replace(tzinfo=None),
                    end_utc.replace(tzinfo=None),
                )
            except UnsupportedOnEngineError as e:
                self.logger.warning(
                    "Query Store catalog unavailable",
                    catalog=QUERY_STORE_CATALOG,
                    error_code=e.code,
                )
                return []

            return [
                QueryStatistic(
                    timestamp=ensure_utc(row["bucket_start"]),
                    query_id=row.get("query_id") or "",
                    execution_time_ms=_to_ms(row.get("avg_duration")),
                    rows_returned=int(round(safe_float(row.get("avg_rowcount")))),
                    cpu_time_ms=_to_ms(row.get("avg_cpu_time")),
                    logical_reads=int(round(safe_float(row.get("avg_logical_reads")))),
                    physical_reads=int(round(safe_float(row.get("avg_physical_reads")))),
                )
                for row in rows
            ]

    async def get_running_queries(self) -> List[RunningQuery]:
        with self.perf_logger.measure("get_running_queries"):
            rows = await self.connector.fetch(
                tag_statement(
                    "running_queries",
                    """
                    SELECT TOP (?)
                        r.session_id,
                        t.text AS query_text,
                        DATEADD(MILLISECOND, -r.total_elapsed_time, SYSUTCDATETIME()) AS start_time,
                        r.total_elapsed_time AS elapsed_ms,
                        r.status,
                        s.login_name,
                        DB_NAME(r.database_id) AS database_name,
                        r.cpu_time,
                        r.granted_query_memory
                    FROM sys.dm_exec_requests r
                    JOIN sys.dm_exec_sessions s ON s.session_id = r.session_id
                    OUTER APPLY sys.dm_exec_sql_text(r.sql_handle) t
                    WHERE s.is_user_process = 1
                      AND r.session_id <> @@SPID
                      AND r.status NOT IN ('sleeping', 'background')
                      AND (t.text IS NULL OR t.text NOT LIKE ?)
                    ORDER BY r.total_elapsed_time DESC
                    """,
                ),
                self.monitoring.running_query_limit,
                STATEMENT_TAG_PATTERN,
            )

            return [
                RunningQuery(
                    session_id=safe_int(row.get("session_id")),
                    query_text=row.get("query_text") or "",
                    start_time=ensure_utc(row.get("start_time")),
                    duration=seconds_to_timedelta(safe_float(row.get("elapsed_ms")) / 1000.0),
                    status=row.get("status") or "",
                    user_name=row.get("login_name") or "",
                    database_name=row.get("database_name") or "",
                    cpu_time_ms=safe_float(row.get("cpu_time")),
                    memory_usage_kb=safe_int(row.get("granted_query_memory")) * PAGE_SIZE_KB,
                )
                for row in rows
            ]


class MSSQLHealthMonitor:
    """Instance-level telemetry for SQL Server.

    Most views here need ``VIEW SERVER STATE``; without it the affected
    health fields are zeroed and reported as permission issues.
    """

    platform = PLATFORM

    def __init__(
        self,
        connector: DatabaseConnector,
        *,
        monitoring: Optional[MonitoringConfig] = None,
        database_id: Optional[str] = None,
    ) -> None:
        self.connector = connector
        self.monitoring = monitoring or MonitoringConfig()
        name = database_id or connector.database_name
        self.logger = get_logger(f"monitor.{PLATFORM}.{name}")
        self.perf_logger = get_performance_logger(f"monitor.{PLATFORM}.{name}")

    async def _version(self) -> str:
        value = await self.connector.fetchval(tag_statement("health.version", "SELECT @@VERSION"))
        lines = str(value or "").strip().splitlines()
        return lines[0].strip() if lines else ""

    async def _uptime_hours(self) -> float:
        value = await self.connector.fetchval(
            tag_statement(
                "health.uptime",
                """
                SELECT DATEDIFF(SECOND, sqlserver_start_time, SYSDATETIME()) / 3600.0
                FROM sys.dm_os_sys_info
                """,
            )
        )
        return safe_float(value)

    async def _connections(self) -> Tuple[int, int]:
        row = await self.connector.fetchrow(
            tag_statement(
                "health.connections",
                """
                SELECT (SELECT COUNT(*) FROM sys.dm_exec_sessions WHERE is_user_process = 1)
                           AS active_connections,
                       @@MAX_CONNECTIONS AS max_connections
                """,
            )
        )
        row = row or {}
        return safe_int(row.get("active_connections")), safe_int(row.get("max_connections"))

    async def _query_stats(self) -> Tuple[int, float, int]:
        threshold_us = self.monitoring.slow_query_threshold_ms * NATIVE_UNITS_PER_MS
        row = await self.connector.fetchrow(
            tag_statement(
                "health.query_stats",
                """
                SELECT COUNT(*) AS total_queries,
                       COALESCE(AVG(qs.total_elapsed_time * 1.0 / NULLIF(qs.execution_count, 0)), 0)
                           AS average_time,
                       COALESCE(SUM(CASE
                           WHEN qs.total_elapsed_time * 1.0 / NULLIF(qs.execution_count, 0) > ?
                           THEN 1 ELSE 0 END), 0) AS slow_queries
                FROM sys.dm_exec_query_stats qs
                """,
            ),
            float(threshold_us),
        )
        row = row or {}
        return (
            safe_int(row.get("total_queries")),
            _to_ms(row.get("average_time")),
            safe_int(row.get("slow_queries")),
        )

    async def _disk_usage_percent(self) -> float:
        row = await self.connector.fetchrow(
            tag_statement(
                "health.disk",
                """
                SELECT SUM(CAST(FILEPROPERTY(name, 'SpaceUsed') AS BIGINT)) AS used_pages,
                       SUM(CAST(size AS BIGINT)) AS allocated_pages
                FROM sys.database_files
                WHERE type_desc = 'ROWS'
                """,
            )
        )
        row = row or {}
        return usage_percent(safe_int(row.get("used_pages")), safe_int(row.get("allocated_pages")))

    async def _cpu(self) -> Tuple[float, float]:
        """Latest scheduler monitor sample: (SQL Server CPU %, total host CPU %)."""
        row = await self.connector.fetchrow(
            tag_statement(
                "health.cpu",
                """
                SELECT TOP (1)
                    CONVERT(XML, record).value(
                        '(./Record/SchedulerMonitorEvent/SystemHealth/ProcessUtilization)[1]', 'int'
                    ) AS sql_cpu,
                    100 - CONVERT(XML, record).value(
                        '(./Record/SchedulerMonitorEvent/SystemHealth/SystemIdle)[1]', 'int'
                    ) AS total_cpu
                FROM sys.dm_os_ring_buffers
                WHERE ring_buffer_type = N'RING_BUFFER_SCHEDULER_MONITOR'
                  AND record LIKE ?
                ORDER BY timestamp DESC
                """,
            ),
            "%<SystemHealth>%",
        )
        row = row or {}
        return safe_float(row.get("sql_cpu")), safe_float(row.get("total_cpu"))

    async def _memory(self) -> Tuple[int, int]:
        """(total, available) physical memory in bytes."""
        row = await self.connector.fetchrow(
            tag_statement(
                "health.memory",
                """
                SELECT total_physical_memory_kb, available_physical_memory_kb
                FROM sys.dm_os_sys_memory
                """,
            )
        )
        row = row or {}
        return (
            safe_int(row.get("total_physical_memory_kb")) * 1024,
            safe_int(row.get("available_physical_memory_kb")) * 1024,
        )

    async def get_health(self) -> DatabaseHealth:
        with self.perf_logger.measure("get_health"):
            values, issues = await fan_out(
                [
                    SubFetch("platform version", "@@VERSION", self._version, default=""),
                    SubFetch("uptime", "sys.dm_os_sys_info", self._uptime_hours, default=0.0),
                    SubFetch("connections", "sys.dm_exec_sessions", self._connections, default=(0, 0)),
                    SubFetch(
                        "query statistics", QUERY_STATS_CATALOG, self._query_stats,
                        default=(0, 0.0, 0),
                    ),
                    SubFetch("disk usage", "sys.database_files", self._disk_usage_percent, default=0.0),
                    SubFetch("CPU usage", "sys.dm_os_ring_buffers", self._cpu, default=(0.0, 0.0)),
                    SubFetch("memory usage", "sys.dm_os_sys_memory", self._memory, default=(0, 0)),
                ],
                self.logger,
            )
            (
                version,
                uptime_hours,
                (active, maximum),
                (total, average_ms, slow),
                disk_percent,
                (sql_cpu, _),
                (memory_total, memory_available),
            ) = values

            health = DatabaseHealth(
                database_name=self.connector.database_name,
                platform_type=PLATFORM,
                platform_version=version,
                checked_at=utc_now(),
                uptime_hours=uptime_hours,
                active_connections=active,
                max_connections=maximum,
                connection_usage_percent=usage_percent(active, maximum),
                disk_usage_percent=disk_percent,
                cpu_usage_percent=sql_cpu,
                memory_usage_percent=usage_percent(memory_total - memory_available, memory_total),
                total_queries=total,
                average_query_time_ms=average_ms,
                slow_queries=slow,
            )
            return annotate_health(health, issues)

    async def get_database_size(self, previous: Optional[DatabaseSize] = None) -> DatabaseSize:
        """Allocated data and log files; free space is unused data file space."""
        with self.perf_logger.measure("get_database_size"):
            files = await self.connector.fetch(
                tag_statement(
                    "database_size",
                    """
                    SELECT type_desc,
                           SUM(CAST(size AS BIGINT)) AS allocated_pages,
                           SUM(CAST(FILEPROPERTY(name, 'SpaceUsed') AS BIGINT)) AS used_pages
                    FROM sys.database_files
                    GROUP BY type_desc
                    """,
                )
            )
            index_pages = await self.connector.fetchval(
                tag_statement(
                    "database_size.indexes",
                    """
                    SELECT COALESCE(SUM(used_page_count), 0)
                    FROM sys.dm_db_partition_stats
                    WHERE index_id > 1
                    """,
                )
            )

            by_type = {row["type_desc"]: row for row in files}
            data_files = by_type.get("ROWS", {})
            log_files = by_type.get("LOG", {})
            data_allocated = safe_int(data_files.get("allocated_pages")) * PAGE_SIZE_BYTES
            data_used = safe_int(data_files.get("used_pages")) * PAGE_SIZE_BYTES
            log_allocated = safe_int(log_files.get("allocated_pages")) * PAGE_SIZE_BYTES
            index_size = safe_int(index_pages) * PAGE_SIZE_BYTES

            size = DatabaseSize(
                database_name=self.connector.database_name,
                total_size_bytes=data_allocated + log_allocated,
                data_size_bytes=max(0, data_used - index_size),
                log_size_bytes=log_allocated,
                index_size_bytes=index_size,
                free_space_bytes=max(0, data_allocated - data_used),
                last_measured=utc_now(),
            )
            return apply_growth(size, previous)

    async def get_top_tables(self, limit: Optional[int] = None) -> List[TableSize]:
        """User tables by reserved pages, largest first.

        Data is the heap or clustered index including LOB and overflow pages;
        index size is every other used page.
        """
        capped = resolve_limit(
            limit, self.monitoring.top_tables_limit, self.monitoring.max_top_queries
        )
        with self.perf_logger.measure("get_top_tables"):
            rows = await self.connector.fetch(
                tag_statement(
                    "top_tables",
                    """
                    SELECT TOP (?)
                        s.name AS schema_name,
                        t.name AS table_name,
                        SUM(CASE WHEN ps.index_id IN (0, 1) THEN ps.row_count ELSE 0 END) AS row_count,
                        SUM(ps.reserved_page_count) AS reserved_pages,
                        SUM(ps.used_page_count) AS used_pages,
                        SUM(CASE WHEN ps.index_id IN (0, 1) THEN ps.used_page_count ELSE 0 END)
                            AS data_pages
                    FROM sys.dm_db_partition_stats ps
                    JOIN sys.tables t ON t.object_id = ps.object_id
                    JOIN sys.schemas s ON s.schema_id = t.schema_id
                    WHERE t.is_ms_shipped = 0
                    GROUP BY s.name, t.name
                    ORDER BY SUM(ps.reserved_page_count) DESC, s.name, t.name
                    """,
                ),
                capped,
            )
            tables = []
            for row in rows:
                reserved = safe_int(row.get("reserved_pages"))
                used = safe_int(row.get("used_pages"))
                data = safe_int(row.get("data_pages"))
                tables.append(
                    TableSize(
                        schema_name=row.get("schema_name") or "",
                        table_name=row.get("table_name") or "",
                        row_count=safe_int(row.get("row_count")),
                        total_size_bytes=reserved * PAGE_SIZE_BYTES,
                        data_size_bytes=data * PAGE_SIZE_BYTES,
                        index_size_bytes=max(0, used - data) * PAGE_SIZE_BYTES,
                        unused_size_bytes=max(0, reserved - used) * PAGE_SIZE_BYTES,
                    )
                )
            return tables

    async def get_index_fragmentation(
        self, threshold_percent: Optional[float] = None
    ) -> List[IndexFragmentation]:
        """Indexes of the current database fragmented above ``threshold_percent``.

        Uses the ``LIMITED`` scan mode; on large databases this still reads
        every index's upper levels and can take a while. Heaps and indexes
        below ``fragmentation_min_pages`` are left out.
        """
        if threshold_percent is None:
            threshold_percent = self.monitoring.fragmentation_threshold_percent
        with self.perf_logger.measure("get_index_fragmentation"):
            rows = await self.connector.fetch(
                tag_statement(
                    "index_fragmentation",
                    """
                    SELECT OBJECT_SCHEMA_NAME(ips.object_id) AS schema_name,
                           OBJECT_NAME(ips.object_id) AS table_name,
                           i.name AS index_name,
                           ips.avg_fragmentation_in_percent AS fragmentation_percent,
                           ips.page_count,
                           i.type_desc AS index_type
                    FROM sys.dm_db_index_physical_stats(DB_ID(), NULL, NULL, NULL, 'LIMITED') ips
                    JOIN sys.indexes i ON i.object_id = ips.object_id AND i.index_id = ips.index_id
                    WHERE ips.avg_fragmentation_in_percent > ?
                      AND ips.page_count > ?
                      AND i.name IS NOT NULL
                    ORDER BY ips.avg_fragmentation_in_percent DESC, i.name
                    """,
                ),
                float(threshold_percent),
                self.monitoring.fragmentation_min_pages,
            )
            return [
                IndexFragmentation(
                    schema_name=row.get("schema_name") or "",
                    table_name=row.get("table_name") or "",
                    index_name=row.get("index_name") or "",
                    fragmentation_percent=safe_float(row.get("fragmentation_percent")),
                    page_count=safe_int(row.get("page_count")),
                    index_type=row.get("index_type") or "",
                )
                for row in rows
            ]

    async def get_missing_indexes(self, limit: Optional[int] = None) -> List[MissingIndex]:
        """Optimizer missing-index suggestions for the current database, highest impact first.

        The DMVs reset on restart and cap at 500 groups.
        """
        capped = resolve_limit(
            limit, self.monitoring.missing_index_limit, self.monitoring.max_top_queries
        )
        with self.perf_logger.measure("get_missing_indexes"):
            rows = await self.connector.fetch(
                tag_statement(
                    "missing_indexes",
                    """
                    SELECT TOP (?)
                        OBJECT_NAME(mid.object_id, mid.database_id) AS table_name,
                        mid.equality_columns,
                        mid.inequality_columns,
                        mid.included_columns,
                        migs.avg_total_user_cost * migs.avg_user_impact
                            * (migs.user_seeks + migs.user_scans) AS impact_score,
                        migs.user_seeks,
                        migs.user_scans
                    FROM sys.dm_db_missing_index_groups mig
                    JOIN sys.dm_db_missing_index_group_stats migs
                        ON migs.group_handle = mig.index_group_handle
                    JOIN sys.dm_db_missing_index_details mid
                        ON mid.index_handle = mig.index_handle
                    WHERE mid.database_id = DB_ID()
                    ORDER BY impact_score DESC, mid.index_handle
                    """,
                ),
                capped,
            )
            return [
                MissingIndex(
                    table_name=row.get("table_name") or "",
                    equality_columns=row.get("equality_columns") or "",
                    inequality_columns=row.get("inequality_columns") or "",
                    included_columns=row.get("included_columns") or "",
                    impact_score=safe_float(row.get("impact_score")),
                    user_seeks=safe_int(row.get("user_seeks")),
                    user_scans=safe_int(row.get("user_scans")),
                )
                for row in rows
            ]

    async def get_connection_stats(self) -> ConnectionStatistics:
        """User session counts; sleeping sessions holding a transaction count as sleeping."""
        with self.perf_logger.measure("get_connection_stats"):
            totals = await self.connector.fetchrow(
                tag_statement(
                    "connection_stats",
                    """
                    SELECT COUNT(*) AS total,
                           COALESCE(SUM(CASE WHEN status <> 'sleeping' THEN 1 ELSE 0 END), 0) AS active,
                           COALESCE(SUM(CASE WHEN status = 'sleeping' AND open_transaction_count = 0
                                        THEN 1 ELSE 0 END), 0) AS idle,
                           COALESCE(SUM(CASE WHEN status = 'sleeping' AND open_transaction_count > 0
                                        THEN 1 ELSE 0 END), 0) AS sleeping,
                           @@MAX_CONNECTIONS AS max_connections
                    FROM sys.dm_exec_sessions
                    WHERE is_user_process = 1
                    """,
                )
            )
            by_database = await self.connector.fetch(
                tag_statement(
                    "connection_stats.by_database",
                    """
                    SELECT COALESCE(DB_NAME(database_id), '') AS name, COUNT(*) AS connections
                    FROM sys.dm_exec_sessions
                    WHERE is_user_process = 1
                    GROUP BY database_id
                    """,
                )
            )
            by_user = await self.connector.fetch(
                tag_statement(
                    "connection_stats.by_user",
                    """
                    SELECT login_name AS name, COUNT(*) AS connections
                    FROM sys.dm_exec_sessions
                    WHERE is_user_process = 1
                    GROUP BY login_name
                    """,
                )
            )

            totals = totals or {}
            measured_at = utc_now()
            total = safe_int(totals.get("total"))
            return ConnectionStatistics(
                measured_at=measured_at,
                total_connections=total,
                active_connections=safe_int(totals.get("active")),
                idle_connections=safe_int(totals.get("idle")),
                sleeping_connections=safe_int(totals.get("sleeping")),
                max_connections=safe_int(totals.get("max_connections")),
                connections_by_database={
                    row["name"]: safe_int(row["connections"]) for row in by_database
                },
                connections_by_user={row["name"]: safe_int(row["connections"]) for row in by_user},
                peak_connections_24h=total,
                peak_connections_time=measured_at,
            )

    async def _buffer_cache_bytes(self) -> int:
        value = await self.connector.fetchval(
            tag_statement(
                "resource.buffer_cache",
                """
                SELECT cntr_value
                FROM sys.dm_os_performance_counters
                WHERE counter_name = 'Database Cache Memory (KB)'
                  AND object_name LIKE ?
                """,
            ),
            "%Memory Manager%",
        )
        return safe_int(value) * 1024

    async def _procedure_cache_bytes(self) -> int:
        value = await self.connector.fetchval(
            tag_statement(
                "resource.plan_cache",
                """
                SELECT COALESCE(SUM(CAST(size_in_bytes AS BIGINT)), 0)
                FROM sys.dm_exec_cached_plans
                """,
            )
        )
        return safe_int(value)

    async def _wait_rows(self) -> List[Tuple[str, int, float]]:
        rows = await self.connector.fetch(
            tag_statement(
                "resource.waits",
                f"""
                SELECT TOP (?) wait_type, waiting_tasks_count, wait_time_ms
                FROM sys.dm_os_wait_stats
                WHERE wait_time_ms > 0
                  AND wait_type NOT IN ({_placeholders(len(BENIGN_WAITS))})
                ORDER BY wait_time_ms DESC
                """,
            ),
            self.monitoring.wait_statistics_limit,
            *BENIGN_WAITS,
        )
        return [
            (row["wait_type"], row["waiting_tasks_count"], row["wait_time_ms"]) for row in rows
        ]

    async def _file_io(self) -> Tuple[float, float, float, float]:
        """(reads/s, writes/s, read latency ms, write latency ms) over all database files.

        The counters are cumulative since instance start, so rates are
        averaged over uptime.
        """
        row = await self.connector.fetchrow(
            tag_statement(
                "resource.file_io",
                """
                SELECT COALESCE(SUM(vfs.num_of_reads), 0) AS reads,
                       COALESCE(SUM(vfs.num_of_writes), 0) AS writes,
                       COALESCE(SUM(vfs.io_stall_read_ms), 0) AS read_stall_ms,
                       COALESCE(SUM(vfs.io_stall_write_ms), 0) AS write_stall_ms,
                       (SELECT DATEDIFF(SECOND, sqlserver_start_time, SYSDATETIME())
                        FROM sys.dm_os_sys_info) AS uptime_seconds
                FROM sys.dm_io_virtual_file_stats(NULL, NULL) vfs
                """,
            )
        )
        row = row or {}
        reads = safe_int(row.get("reads"))
        writes = safe_int(row.get("writes"))
        uptime = safe_float(row.get("uptime_seconds"))
        return (
            reads / uptime if uptime > 0 else 0.0,
            writes / uptime if uptime > 0 else 0.0,
            safe_float(row.get("read_stall_ms")) / reads if reads else 0.0,
            safe_float(row.get("write_stall_ms")) / writes if writes else 0.0,
        )

    async def get_resource_utilization(self) -> ResourceUtilization:
        with self.perf_logger.measure("get_resource_utilization"):
            values, _ = await fan_out(
                [
                    SubFetch("CPU usage", "sys.dm_os_ring_buffers", self._cpu, default=(0.0, 0.0)),
                    SubFetch("memory usage", "sys.dm_os_sys_memory", self._memory, default=(0, 0)),
                    SubFetch(
                        "buffer cache", "sys.dm_os_performance_counters", self._buffer_cache_bytes,
                        default=0,
                    ),
                    SubFetch(
                        "plan cache", "sys.dm_exec_cached_plans", self._procedure_cache_bytes,
                        default=0,
                    ),
                    SubFetch("wait statistics", "sys.dm_os_wait_stats", self._wait_rows, default=[]),
                    SubFetch(
                        "file I/O", "sys.dm_io_virtual_file_stats", self._file_io,
                        default=(0.0, 0.0, 0.0, 0.0),
                    ),
                ],
                self.logger,
            )
            (
                (sql_cpu, total_cpu),
                (memory_total, memory_available),
                buffer_cache,
                plan_cache,
                waits,
                (reads_per_sec, writes_per_sec, read_latency_ms, write_latency_ms),
            ) = values

            return ResourceUtilization(
                measured_at=utc_now(),
                cpu_usage_percent=total_cpu,
                database_cpu_percent=sql_cpu,
                system_cpu_percent=max(0.0, total_cpu - sql_cpu),
                total_memory_bytes=memory_total,
                used_memory_bytes=max(0, memory_total - memory_available),
                free_memory_bytes=memory_available,
                buffer_cache_bytes=buffer_cache,
                procedure_cache_bytes=plan_cache,
                disk_reads_per_sec=reads_per_sec,
                disk_writes_per_sec=writes_per_sec,
                disk_read_latency_ms=read_latency_ms,
                disk_write_latency_ms=write_latency_ms,
                top_waits=build_wait_statistics(waits, self.monitoring.wait_statistics_limit),
            )

    async def get_configuration(self) -> Dict[str, str]:
        """Server options from ``sys.configurations`` (values in use)."""
        with self.perf_logger.measure("get_configuration"):
            rows = await self.connector.fetch(
                tag_statement(
                    "configuration",
                    "SELECT name, value_in_use FROM sys.configurations ORDER BY name",
                )
            )
            return {row["name"]: str(row["value_in_use"]) for row in rows}
