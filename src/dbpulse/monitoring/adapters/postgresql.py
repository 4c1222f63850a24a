# src/dbpulse/monitoring/adapters/postgresql.py
"""PostgreSQL adapters over ``pg_stat_statements`` and ``pg_stat_activity``.

Query identifiers are ``pg_stat_statements.queryid`` rendered as decimal
text, e.g. ``"-4134127405581012325"``. Times in ``pg_stat_statements`` are
already milliseconds.

Requires the ``pg_stat_statements`` extension for query-level telemetry;
without it top queries come back empty and health query statistics are 0.
"""

import json
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

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
from dbpulse.monitoring.fanout import SubFetch, fan_out, gather_or_cancel
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
    has_positional_placeholders,
    is_read_only_statement,
    leading_keyword,
    normalize_query,
    tag_statement,
)

PLATFORM = "postgresql"

# pg_stat_statements reports milliseconds
NATIVE_TIME_TO_MS = 1.0

PG13_VERSION_NUM = 130000
PG16_VERSION_NUM = 160000

STATEMENTS_CATALOG = "pg_stat_statements"
ACTIVITY_CATALOG = "pg_stat_activity"
INTROSPECTION_PATTERN = "%pg_stat%"

_TIMING_COLUMNS_PG13 = {
    "total": "total_exec_time",
    "mean": "mean_exec_time",
    "min": "min_exec_time",
    "max": "max_exec_time",
    "stddev": "stddev_exec_time",
}
_TIMING_COLUMNS_LEGACY = {
    "total": "total_time",
    "mean": "mean_time",
    "min": "min_time",
    "max": "max_time",
    "stddev": "stddev_time",
}

_CONFIGURATION_CATEGORIES = ("Resource Usage%", "Query Tuning%")


def timing_columns(version_num: int) -> Dict[str, str]:
    """``pg_stat_statements`` timing column names for a server version."""
    return _TIMING_COLUMNS_PG13 if version_num >= PG13_VERSION_NUM else _TIMING_COLUMNS_LEGACY


async def server_version_num(connector: DatabaseConnector) -> int:
    value = await connector.fetchval(
        tag_statement("server_version_num", "SELECT current_setting('server_version_num')::int")
    )
    return safe_int(value)


def _to_ms(value: Any) -> float:
    return safe_float(value) * NATIVE_TIME_TO_MS


def _query_metric(row: Dict[str, Any], database_name: str) -> QueryMetric:
    calls = safe_int(row.get("calls"))
    total_ms = _to_ms(row.get("total_time"))
    return QueryMetric(
        query_id=str(row.get("query_id") or ""),
        query_text=row.get("query_text") or "",
        execution_count=calls,
        total_time_ms=total_ms,
        average_time_ms=total_ms / calls if calls else 0.0,
        min_time_ms=_to_ms(row.get("min_time")),
        max_time_ms=_to_ms(row.get("max_time")),
        rows_returned=safe_int(row.get("rows")),
        database_name=row.get("database_name") or database_name,
    )


def parse_plan_json(plan_json: Any) -> Optional[ExecutionPlanNode]:
    """Build a node tree from ``EXPLAIN (FORMAT JSON)`` output.

    Cost percentages are relative to the root's total cost.
    """
    document = json.loads(plan_json) if isinstance(plan_json, (str, bytes)) else plan_json
    if isinstance(document, list):
        document = document[0] if document else {}
    root = (document or {}).get("Plan")
    if not root:
        return None

    root_cost = safe_float(root.get("Total Cost"))

    def build(node: Dict[str, Any]) -> ExecutionPlanNode:
        cost = safe_float(node.get("Total Cost"))
        target = node.get("Relation Name") or node.get("CTE Name") or node.get("Function Name") or ""
        if node.get("Index Name"):
            target = f"{target} using {node['Index Name']}" if target else node["Index Name"]
        return ExecutionPlanNode(
            operation_type=node.get("Node Type", "Unknown"),
            description=target,
            cost=cost,
            cost_percentage=(cost / root_cost * 100.0) if root_cost else 0.0,
            rows_estimated=safe_float(node.get("Plan Rows")),
            rows_actual=safe_float(node["Actual Rows"]) if "Actual Rows" in node else None,
            children=tuple(build(child) for child in node.get("Plans", ())),
        )

    return build(root)


class PostgreSQLQueryMonitor:
    """Query-level telemetry for PostgreSQL.

    Example:
        >>> monitor = PostgreSQLQueryMonitor(connector)
        >>> top = await monitor.get_top_queries(20)
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
        """Statements ordered by total execution time, highest first.

        Raises:
            ValidationError: If ``limit`` is below 1
        """
        capped = resolve_top_limit(limit, self.monitoring)
        with self.perf_logger.measure("get_top_queries", limit=capped):
            try:
                columns = timing_columns(await server_version_num(self.connector))
                rows = await self.connector.fetch(
                    tag_statement(
                        "top_queries",
                        f"""
                        SELECT s.queryid::text AS query_id,
                               s.query AS query_text,
                               s.calls AS calls,
                               s.{columns['total']} AS total_time,
                               s.{columns['min']} AS min_time,
                               s.{columns['max']} AS max_time,
                               s.rows AS rows,
                               d.datname AS database_name
                        FROM pg_stat_statements s
                        LEFT JOIN pg_database d ON d.oid = s.dbid
                        WHERE s.query NOT LIKE $1
                          AND s.query NOT LIKE $2
                        ORDER BY s.{columns['total']} DESC
                        LIMIT $3
                        """,
                    ),
                    STATEMENT_TAG_PATTERN,
                    INTROSPECTION_PATTERN,
                    capped,
                )
            except UnsupportedOnEngineError as e:
                self.logger.warning(
                    "Statement statistics catalog unavailable",
                    catalog=STATEMENTS_CATALOG,
                    error_code=e.code,
                )
                return []

            return [_query_metric(row, self.connector.database_name) for row in rows]

    async def get_query_details(self, query_id: str) -> QueryDetails:
        """Detailed statistics for one ``queryid``.

        Raises:
            NotFoundError: If no statement has that identifier
        """
        with self.perf_logger.measure("get_query_details"):
            columns = timing_columns(await server_version_num(self.connector))
            row = await self.connector.fetchrow(
                tag_statement(
                    "query_details",
                    f"""
                    SELECT queryid::text AS query_id,
                           query AS query_text,
                           calls,
                           {columns['total']} AS total_time,
                           {columns['mean']} AS mean_time,
                           {columns['min']} AS min_time,
                           {columns['max']} AS max_time,
                           {columns['stddev']} AS stddev_time,
                           rows,
                           shared_blks_hit,
                           shared_blks_read,
                           shared_blks_written,
                           temp_blks_read,
                           temp_blks_written
                    FROM pg_stat_statements
                    WHERE queryid::text = $1
                    ORDER BY {columns['total']} DESC
                    LIMIT 1
                    """,
                ),
                str(query_id),
            )
            if row is None:
                raise NotFoundError(
                    f"No statement with queryid {query_id}",
                    code=ErrorCodes.QUERY_NOT_FOUND,
                    context={"query_id": query_id, "catalog": STATEMENTS_CATALOG},
                )

            calls = safe_int(row.get("calls"))
            total_ms = _to_ms(row.get("total_time"))
            average_ms = total_ms / calls if calls else 0.0
            blocks_hit = safe_int(row.get("shared_blks_hit"))
            blocks_read = safe_int(row.get("shared_blks_read"))
            query_text = row.get("query_text") or ""

            statistics = {
                "calls": calls,
                "total_time_ms": total_ms,
                "mean_time_ms": average_ms,
                "min_time_ms": _to_ms(row.get("min_time")),
                "max_time_ms": _to_ms(row.get("max_time")),
                "stddev_time_ms": _to_ms(row.get("stddev_time")),
                "rows": safe_int(row.get("rows")),
                "shared_blks_hit": blocks_hit,
                "shared_blks_read": blocks_read,
                "shared_blks_written": safe_int(row.get("shared_blks_written")),
                "temp_blks_read": safe_int(row.get("temp_blks_read")),
                "temp_blks_written": safe_int(row.get("temp_blks_written")),
                "cache_hit_ratio": (
                    blocks_hit / (blocks_hit + blocks_read) * 100.0
                    if blocks_hit + blocks_read else 0.0
                ),
            }

            return QueryDetails(
                query_id=str(row.get("query_id") or query_id),
                query_text=query_text,
                normalized_query=normalize_query(query_text),
                statistics=statistics,
                tables_accessed=tuple(extract_tables(query_text)),
                estimated_cost=average_ms * calls,
            )

    async def get_execution_plan(self, query_id: str) -> ExecutionPlan:
        """Re-plan the statement with ``EXPLAIN (FORMAT JSON)``.

        Statements still carrying ``$n`` parameters are planned with
        ``GENERIC_PLAN`` on PostgreSQL 16+; on older servers an opaque plan
        with no nodes is returned.
        """
        details = await self.get_query_details(query_id)
        with self.perf_logger.measure("get_execution_plan"):
            version_num = await server_version_num(self.connector)
            statement = details.query_text.strip().rstrip(";")

            options = ["FORMAT JSON"]
            if has_positional_placeholders(statement):
                if version_num < PG16_VERSION_NUM:
                    self.logger.warning(
                        "Parameterized statement cannot be planned before PostgreSQL 16",
                        query_id=query_id,
                        server_version_num=version_num,
                    )
                    return ExecutionPlan(
                        query_id=details.query_id,
                        platform_type=PLATFORM,
                        plan_text=statement,
                        generated_at=utc_now(),
                    )
                options.append("GENERIC_PLAN")
            elif (
                self.monitoring.explain_analyze
                and leading_keyword(statement) == "SELECT"
                and is_read_only_statement(statement)
            ):
                options.append("ANALYZE")

            explain = tag_statement("execution_plan", f"EXPLAIN ({', '.join(options)}) {statement}")
            if "GENERIC_PLAN" in options:
                # Each $n must still be bound; the values are ignored
                plan_json = await self.connector.fetchval_null_bound(explain)
            else:
                plan_json = await self.connector.fetchval(explain)
            if not isinstance(plan_json, str):
                plan_json = json.dumps(plan_json)

            root = parse_plan_json(plan_json)
            document = json.loads(plan_json)
            top = document[0] if isinstance(document, list) and document else {}
            execution_time = top.get("Execution Time") if isinstance(top, dict) else None

            return ExecutionPlan(
                query_id=details.query_id,
                platform_type=PLATFORM,
                plan_text=render_plan_text(root) if root else statement,
                plan_json=plan_json,
                nodes=flatten_plan(root),
                estimated_cost=root.cost if root else 0.0,
                actual_cost=safe_float(execution_time) if execution_time is not None else None,
                generated_at=utc_now(),
            )

    async def get_query_statistics(
        self, start: datetime, end: datetime
    ) -> List[QueryStatistic]:
        """Always empty: ``pg_stat_statements`` keeps no timestamp dimension."""
        start_utc, end_utc = validate_time_range(start, end)
        self.logger.warning(
            "Time-bucketed query statistics are not available on PostgreSQL",
            catalog=STATEMENTS_CATALOG,
            start=start_utc.isoformat(),
            end=end_utc.isoformat(),
        )
        return []

    async def get_running_queries(self) -> List[RunningQuery]:
        """Non-idle client sessions other than the monitoring session."""
        with self.perf_logger.measure("get_running_queries"):
            rows = await self.connector.fetch(
                tag_statement(
                    "running_queries",
                    """
                    SELECT pid,
                           query,
                           query_start AT TIME ZONE 'UTC' AS query_start,
                           EXTRACT(EPOCH FROM (clock_timestamp() - query_start)) AS duration_seconds,
                           state,
                           usename,
                           datname
                    FROM pg_stat_activity
                    WHERE state IS NOT NULL
                      AND state <> 'idle'
                      AND pid <> pg_backend_pid()
                      AND backend_type = 'client backend'
                      AND query NOT LIKE $1
                    ORDER BY query_start
                    LIMIT $2
                    """,
                ),
                STATEMENT_TAG_PATTERN,
                self.monitoring.running_query_limit,
            )

            return [
                RunningQuery(
                    session_id=safe_int(row.get("pid")),
                    query_text=row.get("query") or "",
                    start_time=ensure_utc(row.get("query_start")),
                    duration=seconds_to_timedelta(row.get("duration_seconds")),
                    status=row.get("state") or "",
                    user_name=row.get("usename") or "",
                    database_name=row.get("datname") or "",
                )
                for row in rows
            ]


class PostgreSQLHealthMonitor:
    """Instance-level telemetry for PostgreSQL."""

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
        value = await self.connector.fetchval(tag_statement("health.version", "SELECT version()"))
        return str(value or "")

    async def _uptime_hours(self) -> float:
        value = await self.connector.fetchval(
            tag_statement(
                "health.uptime",
                "SELECT EXTRACT(EPOCH FROM (now() - pg_postmaster_start_time())) / 3600.0",
            )
        )
        return safe_float(value)

    async def _connections(self) -> Tuple[int, int]:
        row = await self.connector.fetchrow(
            tag_statement(
                "health.connections",
                """
                SELECT COUNT(*) AS active_connections,
                       current_setting('max_connections')::int AS max_connections
                FROM pg_stat_activity
                WHERE backend_type = 'client backend'
                """,
            )
        )
        row = row or {}
        return safe_int(row.get("active_connections")), safe_int(row.get("max_connections"))

    async def _query_stats(self) -> Tuple[int, float, int]:
        columns = timing_columns(await server_version_num(self.connector))
        row = await self.connector.fetchrow(
            tag_statement(
                "health.query_stats",
                f"""
                SELECT COUNT(*) AS total_queries,
                       COALESCE(AVG({columns['mean']}), 0) AS average_time,
                       COUNT(*) FILTER (WHERE {columns['mean']} > $1) AS slow_queries
                FROM pg_stat_statements
                """,
            ),
            float(self.monitoring.slow_query_threshold_ms),
        )
        row = row or {}
        return (
            safe_int(row.get("total_queries")),
            _to_ms(row.get("average_time")),
            safe_int(row.get("slow_queries")),
        )

    async def get_health(self) -> DatabaseHealth:
        """Compose a health snapshot; each sub-metric degrades independently."""
        with self.perf_logger.measure("get_health"):
            values, issues = await fan_out(
                [
                    SubFetch("platform version", "version()", self._version, default=""),
                    SubFetch("uptime", "pg_postmaster_start_time()", self._uptime_hours, default=0.0),
                    SubFetch("connections", ACTIVITY_CATALOG, self._connections, default=(0, 0)),
                    SubFetch(
                        "query statistics", STATEMENTS_CATALOG, self._query_stats,
                        default=(0, 0.0, 0),
                    ),
                ],
                self.logger,
            )
            version, uptime_hours, (active, maximum), (total, average_ms, slow) = values

            health = DatabaseHealth(
                database_name=self.connector.database_name,
                platform_type=PLATFORM,
                platform_version=version,
                checked_at=utc_now(),
                uptime_hours=uptime_hours,
                active_connections=active,
                max_connections=maximum,
                connection_usage_percent=usage_percent(active, maximum),
                total_queries=total,
                average_query_time_ms=average_ms,
                slow_queries=slow,
            )
            return annotate_health(health, issues)

    async def get_database_size(self, previous: Optional[DatabaseSize] = None) -> DatabaseSize:
        """Database and index footprint; WAL is cluster-wide so log size is 0."""
        with self.perf_logger.measure("get_database_size"):
            row = await self.connector.fetchrow(
                tag_statement(
                    "database_size",
                    """
                    SELECT pg_database_size(current_database()) AS total_size,
                           (SELECT COALESCE(SUM(pg_relation_size(indexrelid)), 0)
                            FROM pg_stat_user_indexes) AS index_size
                    """,
                )
            )
            row = row or {}
            total = safe_int(row.get("total_size"))
            index = safe_int(row.get("index_size"))

            size = DatabaseSize(
                database_name=self.connector.database_name,
                total_size_bytes=total,
                data_size_bytes=max(0, total - index),
                index_size_bytes=index,
                last_measured=utc_now(),
            )
            return apply_growth(size, previous)

    async def get_top_tables(self, limit: Optional[int] = None) -> List[TableSize]:
        """User tables by total size, TOAST included, largest first.

        Row counts are the planner's live tuple estimates.
        """
        capped = resolve_limit(
            limit, self.monitoring.top_tables_limit, self.monitoring.max_top_queries
        )
        with self.perf_logger.measure("get_top_tables"):
            rows = await self.connector.fetch(
                tag_statement(
                    "top_tables",
                    """
                    SELECT schemaname AS schema_name,
                           relname AS table_name,
                           n_live_tup AS row_count,
                           pg_total_relation_size(relid) AS total_size,
                           pg_relation_size(relid) AS data_size,
                           pg_indexes_size(relid) AS index_size
                    FROM pg_stat_user_tables
                    ORDER BY pg_total_relation_size(relid) DESC, schemaname, relname
                    LIMIT $1
                    """,
                ),
                capped,
            )
            return [
                TableSize(
                    schema_name=row.get("schema_name") or "",
                    table_name=row.get("table_name") or "",
                    row_count=safe_int(row.get("row_count")),
                    total_size_bytes=safe_int(row.get("total_size")),
                    data_size_bytes=safe_int(row.get("data_size")),
                    index_size_bytes=safe_int(row.get("index_size")),
                )
                for row in rows
            ]

    async def get_connection_stats(self) -> ConnectionStatistics:
        """Session counts by state, database and user.

        No history is kept, so the 24h peak is the current total.
        """
        with self.perf_logger.measure("get_connection_stats"):
            totals, by_database, by_user = await gather_or_cancel(
                self.connector.fetchrow(
                    tag_statement(
                        "connection_stats",
                        """
                        SELECT COUNT(*) AS total,
                               COUNT(*) FILTER (WHERE state = 'active') AS active,
                               COUNT(*) FILTER (WHERE state = 'idle') AS idle,
                               COUNT(*) FILTER (WHERE state = 'idle in transaction') AS sleeping,
                               current_setting('max_connections')::int AS max_connections
                        FROM pg_stat_activity
                        WHERE backend_type = 'client backend'
                        """,
                    )
                ),
                self.connector.fetch(
                    tag_statement(
                        "connection_stats.by_database",
                        """
                        SELECT COALESCE(datname, '') AS name, COUNT(*) AS connections
                        FROM pg_stat_activity
                        WHERE backend_type = 'client backend'
                        GROUP BY datname
                        ORDER BY connections DESC
                        """,
                    )
                ),
                self.connector.fetch(
                    tag_statement(
                        "connection_stats.by_user",
                        """
                        SELECT COALESCE(usename, '') AS name, COUNT(*) AS connections
                        FROM pg_stat_activity
                        WHERE backend_type = 'client backend'
                        GROUP BY usename
                        ORDER BY connections DESC
                        """,
                    )
                ),
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
                SELECT (SELECT setting::bigint FROM pg_settings WHERE name = 'shared_buffers')
                       * current_setting('block_size')::bigint
                """,
            )
        )
        return safe_int(value)

    async def _wait_rows(self) -> List[Tuple[str, int, float]]:
        rows = await self.connector.fetch(
            tag_statement(
                "resource.waits",
                """
                SELECT wait_event_type || ':' || wait_event AS wait_type,
                       COUNT(*) AS waiting
                FROM pg_stat_activity
                WHERE wait_event IS NOT NULL
                  AND state = 'active'
                  AND pid <> pg_backend_pid()
                GROUP BY wait_event_type, wait_event
                ORDER BY waiting DESC
                LIMIT $1
                """,
            ),
            self.monitoring.wait_statistics_limit,
        )
        return [(row["wait_type"], row["waiting"], 0.0) for row in rows]

    async def get_resource_utilization(self) -> ResourceUtilization:
        """Buffer cache size and currently sampled wait events.

        PostgreSQL exposes no host CPU, memory or disk rates through SQL;
        those fields stay 0.
        """
        with self.perf_logger.measure("get_resource_utilization"):
            (buffer_cache, wait_rows), _ = await fan_out(
                [
                    SubFetch("buffer cache", "pg_settings", self._buffer_cache_bytes, default=0),
                    SubFetch("wait events", ACTIVITY_CATALOG, self._wait_rows, default=[]),
                ],
                self.logger,
            )
            return ResourceUtilization(
                measured_at=utc_now(),
                buffer_cache_bytes=buffer_cache,
                top_waits=build_wait_statistics(wait_rows, self.monitoring.wait_statistics_limit),
            )

    async def get_configuration(self) -> Dict[str, str]:
        """Resource usage and query tuning settings plus ``max_connections``."""
        with self.perf_logger.measure("get_configuration"):
            rows = await self.connector.fetch(
                tag_statement(
                    "configuration",
                    """
                    SELECT name, setting
                    FROM pg_settings
                    WHERE category LIKE $1
                       OR category LIKE $2
                       OR name = $3
                    ORDER BY name
                    """,
                ),
                *_CONFIGURATION_CATEGORIES,
                "max_connections",
            )
            return {row["name"]: str(row["setting"]) for row in rows}
