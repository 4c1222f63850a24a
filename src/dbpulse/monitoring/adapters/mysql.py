# src/dbpulse/monitoring/adapters/mysql.py
"""MySQL adapters over ``performance_schema`` and ``information_schema``.

Query identifiers are the statement ``DIGEST`` (64 lowercase hex characters
on MySQL 8.0). Timer columns are picoseconds. Digest text has comments
stripped, so our own statements are recognised by their sample text, which
needs MySQL 8.0 or later.
"""

import json
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from dbpulse.config.models import MonitoringConfig
from dbpulse.core.exceptions import ErrorCodes, NotFoundError, UnsupportedOnEngineError
from dbpulse.core.protocols import DatabaseConnector
from dbpulse.core.utils import safe_float, safe_int, utc_now
from dbpulse.database.models import (
    ConnectionStatistics,
    DatabaseHealth,
    DatabaseSize,
    ExecutionPlan,
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
    resolve_limit,
    resolve_top_limit,
    seconds_to_timedelta,
    validate_time_range,
)
from dbpulse.monitoring.sizing import apply_growth
from dbpulse.monitoring.sqltext import (
    STATEMENT_TAG_PATTERN,
    extract_tables,
    is_read_only_statement,
    normalize_query,
    tag_statement,
)

PLATFORM = "mysql"

# performance_schema timers are picoseconds
NATIVE_UNITS_PER_MS = 1_000_000_000

DIGEST_CATALOG = "performance_schema.events_statements_summary_by_digest"
INTROSPECTION_PATTERNS = ("%performance_schema%", "%information_schema%")

# Truncated sample text ends with an ellipsis and cannot be explained
TRUNCATION_MARKER = "..."

TUNING_VARIABLES = (
    "innodb_buffer_pool_size",
    "innodb_buffer_pool_instances",
    "innodb_log_file_size",
    "innodb_flush_log_at_trx_commit",
    "innodb_io_capacity",
    "join_buffer_size",
    "long_query_time",
    "max_connections",
    "max_heap_table_size",
    "sort_buffer_size",
    "table_open_cache",
    "thread_cache_size",
    "tmp_table_size",
)


def _to_ms(value: Any) -> float:
    return safe_float(value) / NATIVE_UNITS_PER_MS


def _from_epoch(value: Any) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.fromtimestamp(safe_float(value), tz=timezone.utc)


def _placeholders(count: int) -> str:
    return ", ".join("%s" for _ in range(count))


class MySQLQueryMonitor:
    """Query-level telemetry for MySQL from the statement digest summary."""

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
                        """
                        SELECT DIGEST AS query_id,
                               DIGEST_TEXT AS query_text,
                               COUNT_STAR AS calls,
                               SUM_TIMER_WAIT AS total_time,
                               MIN_TIMER_WAIT AS min_time,
                               MAX_TIMER_WAIT AS max_time,
                               SUM_ROWS_SENT AS rows_sent,
                               SCHEMA_NAME AS database_name,
                               UNIX_TIMESTAMP(LAST_SEEN) AS last_seen_epoch
                        FROM performance_schema.events_statements_summary_by_digest
                        WHERE DIGEST IS NOT NULL
                          AND DIGEST_TEXT NOT LIKE %s
                          AND DIGEST_TEXT NOT LIKE %s
                          AND (QUERY_SAMPLE_TEXT IS NULL OR QUERY_SAMPLE_TEXT NOT LIKE %s)
                        ORDER BY SUM_TIMER_WAIT DESC
                        LIMIT %s
                        """,
                    ),
                    *INTROSPECTION_PATTERNS,
                    STATEMENT_TAG_PATTERN,
                    capped,
                )
            except UnsupportedOnEngineError as e:
                self.logger.warning(
                    "Statement digest catalog unavailable",
                    catalog=DIGEST_CATALOG,
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
                        query_text=row.get("query_text") or "",
                        execution_count=calls,
                        total_time_ms=total_ms,
                        average_time_ms=total_ms / calls if calls else 0.0,
                        min_time_ms=_to_ms(row.get("min_time")),
                        max_time_ms=_to_ms(row.get("max_time")),
                        rows_returned=safe_int(row.get("rows_sent")),
                        database_name=row.get("database_name") or self.connector.database_name,
                        last_executed_at=_from_epoch(row.get("last_seen_epoch")),
                    )
                )
            return metrics

    async def _digest_row(self, query_id: str) -> Dict[str, Any]:
        row = await self.connector.fetchrow(
            tag_statement(
                "query_details",
                """
                SELECT DIGEST AS query_id,
                       DIGEST_TEXT AS query_text,
                       QUERY_SAMPLE_TEXT AS sample_text,
                       SCHEMA_NAME AS schema_name,
                       COUNT_STAR AS calls,
                       SUM_TIMER_WAIT AS total_time,
                       MIN_TIMER_WAIT AS min_time,
                       MAX_TIMER_WAIT AS max_time,
                       SUM_LOCK_TIME AS lock_time,
                       SUM_ROWS_SENT AS rows_sent,
                       SUM_ROWS_EXAMINED AS rows_examined,
                       SUM_CREATED_TMP_TABLES AS tmp_tables,
                       SUM_CREATED_TMP_DISK_TABLES AS tmp_disk_tables,
                       SUM_SELECT_FULL_JOIN AS full_joins,
                       SUM_SELECT_SCAN AS full_scans,
                       SUM_SORT_ROWS AS sort_rows,
                       SUM_NO_INDEX_USED AS no_index_used,
                       UNIX_TIMESTAMP(FIRST_SEEN) AS first_seen_epoch,
                       UNIX_TIMESTAMP(LAST_SEEN) AS last_seen_epoch
                FROM performance_schema.events_statements_summary_by_digest
                WHERE DIGEST = %s
                ORDER BY SUM_TIMER_WAIT DESC
                LIMIT 1
                """,
            ),
            str(query_id).lower(),
        )
        if row is None:
            raise NotFoundError(
                f"No statement digest {query_id}",
                code=ErrorCodes.QUERY_NOT_FOUND,
                context={"query_id": query_id, "catalog": DIGEST_CATALOG},
            )
        return row

    async def get_query_details(self, query_id: str) -> QueryDetails:
        """Digest summary for one statement digest.

        Raises:
            NotFoundError: If the digest is not in the summary table
        """
        with self.perf_logger.measure("get_query_details"):
            row = await self._digest_row(query_id)

            calls = safe_int(row.get("calls"))
            total_ms = _to_ms(row.get("total_time"))
            average_ms = total_ms / calls if calls else 0.0
            query_text = row.get("query_text") or ""
            first_seen = _from_epoch(row.get("first_seen_epoch"))
            last_seen = _from_epoch(row.get("last_seen_epoch"))

            statistics = {
                "calls": calls,
                "total_time_ms": total_ms,
                "mean_time_ms": average_ms,
                "min_time_ms": _to_ms(row.get("min_time")),
                "max_time_ms": _to_ms(row.get("max_time")),
                "lock_time_ms": _to_ms(row.get("lock_time")),
                "rows_sent": safe_int(row.get("rows_sent")),
                "rows_examined": safe_int(row.get("rows_examined")),
                "tmp_tables": safe_int(row.get("tmp_tables")),
                "tmp_disk_tables": safe_int(row.get("tmp_disk_tables")),
                "full_joins": safe_int(row.get("full_joins")),
                "full_scans": safe_int(row.get("full_scans")),
                "sort_rows": safe_int(row.get("sort_rows")),
                "no_index_used": safe_int(row.get("no_index_used")),
                "schema_name": row.get("schema_name"),
                "first_seen": first_seen.isoformat() if first_seen else None,
                "last_seen": last_seen.isoformat() if last_seen else None,
            }

            return QueryDetails(
                query_id=row.get("query_id") or query_id,
                query_text=query_text,
                normalized_query=normalize_query(query_text),
                statistics=statistics,
                tables_accessed=tuple(extract_tables(query_text)),
                estimated_cost=average_ms * calls,
            )

    async def get_execution_plan(self, query_id: str) -> ExecutionPlan:
        """``EXPLAIN FORMAT=JSON`` of the digest's sample statement.

        The JSON document is returned as is, without operator nodes. A
        missing, truncated or non-read-only sample yields an opaque plan.
        """
        with self.perf_logger.measure("get_execution_plan"):
            row = await self._digest_row(query_id)
            digest = row.get("query_id") or query_id
            sample = (row.get("sample_text") or "").strip().rstrip(";")

            if (
                not sample
                or sample.endswith(TRUNCATION_MARKER)
                or not is_read_only_statement(sample)
            ):
                self.logger.warning("Statement sample cannot be explained", query_id=digest)
                return ExecutionPlan(
                    query_id=digest,
                    platform_type=PLATFORM,
                    plan_text=row.get("query_text") or sample,
                    generated_at=utc_now(),
                )

            plan_json = await self.connector.fetchval(
                tag_statement("execution_plan", f"EXPLAIN FORMAT=JSON {sample}")
            )
            plan_json = plan_json if isinstance(plan_json, str) else json.dumps(plan_json)
            document = json.loads(plan_json)
            cost_info = document.get("query_block", {}).get("cost_info", {})

            return ExecutionPlan(
                query_id=digest,
                platform_type=PLATFORM,
                plan_text=json.dumps(document, indent=2),
                plan_json=plan_json,
                estimated_cost=safe_float(cost_info.get("query_cost")),
                generated_at=utc_now(),
            )

    async def get_query_statistics(
        self, start: datetime, end: datetime
    ) -> List[QueryStatistic]:
        """Digests last seen inside ``[start, end]``, one sample per digest.

        The summary table keeps lifetime totals only, so each sample carries
        lifetime averages stamped with the digest's ``LAST_SEEN``.
        """
        start_utc, end_utc = validate_time_range(start, end)
        with self.perf_logger.measure("get_query_statistics"):
            try:
                rows = await self.connector.fetch(
                    tag_statement(
                        "query_statistics",
                        """
                        SELECT DIGEST AS query_id,
                               UNIX_TIMESTAMP(LAST_SEEN) AS last_seen_epoch,
                               AVG_TIMER_WAIT AS average_time,
                               COUNT_STAR AS calls,
                               SUM_ROWS_SENT AS rows_sent,
                               SUM_ROWS_EXAMINED AS rows_examined
                        FROM performance_schema.events_statements_summary_by_digest
                        WHERE DIGEST IS NOT NULL
                          AND LAST_SEEN BETWEEN FROM_UNIXTIME(%s) AND FROM_UNIXTIME(%s)
                        ORDER BY LAST_SEEN
                        """,
                    ),
                    start_utc.timestamp(),
                    end_utc.timestamp(),
                )
            except UnsupportedOnEngineError as e:
                self.logger.warning(
                    "Statement digest catalog unavailable",
                    catalog=DIGEST_CATALOG,
                    error_code=e.code,
                )
                return []

            statistics = []
            for row in rows:
                calls = safe_int(row.get("calls"))
                statistics.append(
                    QueryStatistic(
                        timestamp=_from_epoch(row.get("last_seen_epoch")),
                        query_id=row.get("query_id") or "",
                        execution_time_ms=_to_ms(row.get("average_time")),
                        rows_returned=safe_int(row.get("rows_sent")) // calls if calls else 0,
                        logical_reads=safe_int(row.get("rows_examined")) // calls if calls else 0,
                    )
                )
            return statistics

    async def get_running_queries(self) -> List[RunningQuery]:
        with self.perf_logger.measure("get_running_queries"):
            rows = await self.connector.fetch(
                tag_statement(
                    "running_queries",
                    """
                    SELECT ID AS session_id,
                           USER AS user_name,
                           DB AS database_name,
                           COMMAND AS command,
                           TIME AS elapsed_seconds,
                           STATE AS state,
                           INFO AS query_text
                    FROM information_schema.PROCESSLIST
                    WHERE COMMAND NOT IN ('Sleep', 'Daemon', 'Binlog Dump')
                      AND ID <> CONNECTION_ID()
                      AND (INFO IS NULL OR INFO NOT LIKE %s)
                    ORDER BY TIME DESC
                    LIMIT %s
                    """,
                ),
                STATEMENT_TAG_PATTERN,
                self.monitoring.running_query_limit,
            )

            now = utc_now()
            running = []
            for row in rows:
                duration = seconds_to_timedelta(row.get("elapsed_seconds"))
                running.append(
                    RunningQuery(
                        session_id=safe_int(row.get("session_id")),
                        query_text=row.get("query_text") or "",
                        start_time=now - duration,
                        duration=duration,
                        status=row.get("state") or row.get("command") or "",
                        user_name=row.get("user_name") or "",
                        database_name=row.get("database_name") or "",
                    )
                )
            return running


class MySQLHealthMonitor:
    """Instance-level telemetry for MySQL.

    Host CPU and disk usage are not visible through SQL and stay 0.
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

    async def _global_status(self, operation: str, name: str) -> Any:
        return await self.connector.fetchval(
            tag_statement(
                operation,
                """
                SELECT VARIABLE_VALUE
                FROM performance_schema.global_status
                WHERE VARIABLE_NAME = %s
                """,
            ),
            name,
        )

    async def _version(self) -> str:
        value = await self.connector.fetchval(tag_statement("health.version", "SELECT VERSION()"))
        return str(value or "")

    async def _uptime_hours(self) -> float:
        return safe_float(await self._global_status("health.uptime", "Uptime")) / 3600.0

    async def _connections(self) -> Tuple[int, int]:
        row = await self.connector.fetchrow(
            tag_statement(
                "health.connections",
                """
                SELECT (SELECT VARIABLE_VALUE
                        FROM performance_schema.global_status
                        WHERE VARIABLE_NAME = 'Threads_connected') AS active_connections,
                       @@GLOBAL.max_connections AS max_connections
                """,
            )
        )
        row = row or {}
        return safe_int(row.get("active_connections")), safe_int(row.get("max_connections"))

    async def _query_stats(self) -> Tuple[int, float, int]:
        threshold_ps = self.monitoring.slow_query_threshold_ms * NATIVE_UNITS_PER_MS
        row = await self.connector.fetchrow(
            tag_statement(
                "health.query_stats",
                """
                SELECT COUNT(*) AS total_queries,
                       COALESCE(AVG(AVG_TIMER_WAIT), 0) AS average_time,
                       COALESCE(SUM(AVG_TIMER_WAIT > %s), 0) AS slow_queries
                FROM performance_schema.events_statements_summary_by_digest
                WHERE DIGEST IS NOT NULL
                """,
            ),
            int(threshold_ps),
        )
        row = row or {}
        return (
            safe_int(row.get("total_queries")),
            _to_ms(row.get("average_time")),
            safe_int(row.get("slow_queries")),
        )

    async def get_health(self) -> DatabaseHealth:
        with self.perf_logger.measure("get_health"):
            values, issues = await fan_out(
                [
                    SubFetch("platform version", "VERSION()", self._version, default=""),
                    SubFetch(
                        "uptime", "performance_schema.global_status", self._uptime_hours,
                        default=0.0,
                    ),
                    SubFetch(
                        "connections", "performance_schema.global_status", self._connections,
                        default=(0, 0),
                    ),
                    SubFetch(
                        "query statistics", DIGEST_CATALOG, self._query_stats,
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
        """Table and index footprint of the current schema.

        Redo and binary logs are server-wide, so log size is 0.
        """
        with self.perf_logger.measure("get_database_size"):
            row = await self.connector.fetchrow(
                tag_statement(
                    "database_size",
                    """
                    SELECT COALESCE(SUM(DATA_LENGTH), 0) AS data_size,
                           COALESCE(SUM(INDEX_LENGTH), 0) AS index_size,
                           COALESCE(SUM(DATA_FREE), 0) AS free_space
                    FROM information_schema.TABLES
                    WHERE TABLE_SCHEMA = DATABASE()
                    """,
                )
            )
            row = row or {}
            data = safe_int(row.get("data_size"))
            index = safe_int(row.get("index_size"))

            size = DatabaseSize(
                database_name=self.connector.database_name,
                total_size_bytes=data + index,
                data_size_bytes=data,
                index_size_bytes=index,
                free_space_bytes=safe_int(row.get("free_space")),
                last_measured=utc_now(),
            )
            return apply_growth(size, previous)

    async def get_top_tables(self, limit: Optional[int] = None) -> List[TableSize]:
        """Base tables of the current schema by data plus index length.

        ``TABLE_ROWS`` is an estimate for InnoDB; unused size is ``DATA_FREE``.
        """
        capped = resolve_limit(
            limit, self.monitoring.top_tables_limit, self.monitoring.max_top_queries
        )
        with self.perf_logger.measure("get_top_tables"):
            rows = await self.connector.fetch(
                tag_statement(
                    "top_tables",
                    """
                    SELECT TABLE_SCHEMA AS schema_name,
                           TABLE_NAME AS table_name,
                           COALESCE(TABLE_ROWS, 0) AS row_count,
                           COALESCE(DATA_LENGTH, 0) AS data_size,
                           COALESCE(INDEX_LENGTH, 0) AS index_size,
                           COALESCE(DATA_FREE, 0) AS free_size
                    FROM information_schema.TABLES
                    WHERE TABLE_SCHEMA = DATABASE()
                      AND TABLE_TYPE = 'BASE TABLE'
                    ORDER BY COALESCE(DATA_LENGTH, 0) + COALESCE(INDEX_LENGTH, 0) DESC, TABLE_NAME
                    LIMIT %s
                    """,
                ),
                capped,
            )
            tables = []
            for row in rows:
                data = safe_int(row.get("data_size"))
                index = safe_int(row.get("index_size"))
                tables.append(
                    TableSize(
                        schema_name=row.get("schema_name") or "",
                        table_name=row.get("table_name") or "",
                        row_count=safe_int(row.get("row_count")),
                        total_size_bytes=data + index,
                        data_size_bytes=data,
                        index_size_bytes=index,
                        unused_size_bytes=safe_int(row.get("free_size")),
                    )
                )
            return tables

    async def get_connection_stats(self) -> ConnectionStatistics:
        """Threads by command; idle threads holding an InnoDB transaction count as sleeping."""
        with self.perf_logger.measure("get_connection_stats"):
            totals = await self.connector.fetchrow(
                tag_statement(
                    "connection_stats",
                    """
                    SELECT COUNT(*) AS total,
                           COALESCE(SUM(p.COMMAND <> 'Sleep'), 0) AS active,
                           COALESCE(SUM(p.COMMAND = 'Sleep' AND t.trx_mysql_thread_id IS NULL), 0)
                               AS idle,
                           COALESCE(SUM(p.COMMAND = 'Sleep' AND t.trx_mysql_thread_id IS NOT NULL), 0)
                               AS sleeping,
                           @@GLOBAL.max_connections AS max_connections
                    FROM information_schema.PROCESSLIST p
                    LEFT JOIN information_schema.INNODB_TRX t ON t.trx_mysql_thread_id = p.ID
                    WHERE p.COMMAND <> 'Daemon'
                    """,
                )
            )
            by_database = await self.connector.fetch(
                tag_statement(
                    "connection_stats.by_database",
                    """
                    SELECT COALESCE(DB, '') AS name, COUNT(*) AS connections
                    FROM information_schema.PROCESSLIST
                    WHERE COMMAND <> 'Daemon'
                    GROUP BY DB
                    """,
                )
            )
            by_user = await self.connector.fetch(
                tag_statement(
                    "connection_stats.by_user",
                    """
                    SELECT USER AS name, COUNT(*) AS connections
                    FROM information_schema.PROCESSLIST
                    WHERE COMMAND <> 'Daemon'
                    GROUP BY USER
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

    async def _buffer_pool_bytes(self) -> int:
        value = await self.connector.fetchval(
            tag_statement("resource.buffer_pool", "SELECT @@GLOBAL.innodb_buffer_pool_size")
        )
        return safe_int(value)

    async def _instrumented_memory_bytes(self) -> int:
        value = await self.connector.fetchval(
            tag_statement(
                "resource.memory",
                """
                SELECT COALESCE(SUM(CURRENT_NUMBER_OF_BYTES_USED), 0)
                FROM performance_schema.memory_summary_global_by_event_name
                """,
            )
        )
        return safe_int(value)

    async def _wait_rows(self) -> List[Tuple[str, int, float]]:
        rows = await self.connector.fetch(
            tag_statement(
                "resource.waits",
                """
                SELECT EVENT_NAME AS wait_type,
                       COUNT_STAR AS wait_count,
                       SUM_TIMER_WAIT AS wait_time
                FROM performance_schema.events_waits_summary_global_by_event_name
                WHERE EVENT_NAME <> 'idle'
                  AND COUNT_STAR > 0
                ORDER BY SUM_TIMER_WAIT DESC
                LIMIT %s
                """,
            ),
            self.monitoring.wait_statistics_limit,
        )
        return [(row["wait_type"], row["wait_count"], _to_ms(row["wait_time"])) for row in rows]

    async def get_resource_utilization(self) -> ResourceUtilization:
        """Buffer pool size, instrumented memory and top wait events."""
        with self.perf_logger.measure("get_resource_utilization"):
            (buffer_pool, used_memory, waits), _ = await fan_out(
                [
                    SubFetch(
                        "buffer pool", "@@GLOBAL.innodb_buffer_pool_size", self._buffer_pool_bytes,
                        default=0,
                    ),
                    SubFetch(
                        "memory usage", "performance_schema.memory_summary_global_by_event_name",
                        self._instrumented_memory_bytes, default=0,
                    ),
                    SubFetch(
                        "wait statistics",
                        "performance_schema.events_waits_summary_global_by_event_name",
                        self._wait_rows,
                        default=[],
                    ),
                ],
                self.logger,
            )
            return ResourceUtilization(
                measured_at=utc_now(),
                used_memory_bytes=used_memory,
                buffer_cache_bytes=buffer_pool,
                top_waits=build_wait_statistics(waits, self.monitoring.wait_statistics_limit),
            )

    async def get_configuration(self) -> Dict[str, str]:
        """Selected tuning variables from ``performance_schema.global_variables``."""
        with self.perf_logger.measure("get_configuration"):
            rows = await self.connector.fetch(
                tag_statement(
                    "configuration",
                    f"""
                    SELECT VARIABLE_NAME AS name, VARIABLE_VALUE AS value
                    FROM performance_schema.global_variables
                    WHERE VARIABLE_NAME IN ({_placeholders(len(TUNING_VARIABLES))})
                    ORDER BY VARIABLE_NAME
                    """,
                ),
                *TUNING_VARIABLES,
            )
            return {row["name"]: str(row["value"]) for row in rows}
