"""Unit tests for the PostgreSQL query and health monitors."""

import asyncio
import json
from datetime import datetime, timedelta, timezone

import pytest

from dbpulse.config.models import MonitoringConfig
from dbpulse.core.exceptions import (
    ConnectionFailureError,
    ErrorCodes,
    NotFoundError,
    PermissionDeniedError,
    UnsupportedOnEngineError,
    ValidationError,
)
from dbpulse.core.protocols import HealthMonitor, QueryMonitor
from dbpulse.database.models import DatabaseSize, HealthStatus, IssueSeverity
from dbpulse.logging.audit import StatementAuditor
from dbpulse.monitoring.adapters.postgresql import (
    PostgreSQLHealthMonitor,
    PostgreSQLQueryMonitor,
    parse_plan_json,
    timing_columns,
)
from dbpulse.monitoring.sqltext import READ_ONLY_KEYWORDS

PG16 = 160004
PG12 = 120015

TOP_ROWS = [
    {
        "query_id": "-4134127405581012325",
        "query_text": "SELECT * FROM orders WHERE customer_id = $1",
        "calls": 200,
        "total_time": 5000.0,
        "min_time": 1.0,
        "max_time": 300.0,
        "rows": 4000,
        "database_name": "shop",
    },
    {
        "query_id": "77",
        "query_text": "SELECT 1",
        "calls": 0,
        "total_time": 0,
        "min_time": 0,
        "max_time": 0,
        "rows": 0,
        "database_name": None,
    },
]

DETAIL_ROW = {
    "query_id": "42",
    "query_text": "SELECT * FROM orders o JOIN customers c ON o.cid = c.id WHERE o.total > 100",
    "calls": 10,
    "total_time": 250.0,
    "mean_time": 25.0,
    "min_time": 5.0,
    "max_time": 90.0,
    "stddev_time": 12.0,
    "rows": 1000,
    "shared_blks_hit": 90,
    "shared_blks_read": 10,
    "shared_blks_written": 0,
    "temp_blks_read": 0,
    "temp_blks_written": 0,
}

PLAN_DOCUMENT = [
    {
        "Plan": {
            "Node Type": "Hash Join",
            "Total Cost": 200.0,
            "Plan Rows": 1000,
            "Plans": [
                {
                    "Node Type": "Seq Scan",
                    "Relation Name": "orders",
                    "Total Cost": 150.0,
                    "Plan Rows": 1000,
                },
                {
                    "Node Type": "Index Scan",
                    "Relation Name": "customers",
                    "Index Name": "customers_pkey",
                    "Total Cost": 50.0,
                    "Plan Rows": 1,
                },
            ],
        }
    }
]


@pytest.fixture
def query_monitor(make_connector):
    def build(responses, monitoring=None):
        connector = make_connector("postgresql", responses)
        return PostgreSQLQueryMonitor(connector, monitoring=monitoring), connector
    return build


@pytest.fixture
def health_monitor(make_connector):
    def build(responses, monitoring=None):
        connector = make_connector("postgresql", responses)
        return PostgreSQLHealthMonitor(connector, monitoring=monitoring), connector
    return build


class TestContracts:
    """Test that the adapters satisfy the monitoring protocols."""

    def test_protocols(self, make_connector):
        connector = make_connector()
        assert isinstance(PostgreSQLQueryMonitor(connector), QueryMonitor)
        assert isinstance(PostgreSQLHealthMonitor(connector), HealthMonitor)


class TestTimingColumns:

    def test_pg13_and_later(self):
        assert timing_columns(130000)["total"] == "total_exec_time"

    def test_legacy(self):
        assert timing_columns(PG12)["mean"] == "mean_time"


class TestTopQueries:
    """Test top query retrieval."""

    @pytest.mark.asyncio
    async def test_maps_rows(self, query_monitor):
        monitor, connector = query_monitor({"server_version_num": PG16, "top_queries": TOP_ROWS})

        metrics = await monitor.get_top_queries(10)

        assert len(metrics) == 2
        first = metrics[0]
        assert first.query_id == "-4134127405581012325"
        assert first.execution_count == 200
        assert first.total_time_ms == 5000.0
        assert first.average_time_ms == 25.0
        assert first.max_time_ms == 300.0
        assert first.rows_returned == 4000
        assert first.database_name == "shop"
        assert "total_exec_time" in connector.sql_for("top_queries")

    @pytest.mark.asyncio
    async def test_zero_calls_average_is_zero(self, query_monitor):
        monitor, _ = query_monitor({"server_version_num": PG16, "top_queries": TOP_ROWS})

        metrics = await monitor.get_top_queries(10)

        assert metrics[1].average_time_ms == 0.0
        assert metrics[1].database_name == "appdb"

    @pytest.mark.asyncio
    async def test_legacy_columns(self, query_monitor):
        monitor, connector = query_monitor({"server_version_num": PG12, "top_queries": []})

        await monitor.get_top_queries(5)

        assert "s.total_time AS total_time" in connector.sql_for("top_queries")

    @pytest.mark.asyncio
    async def test_limit_passed_and_self_filtered(self, query_monitor):
        monitor, connector = query_monitor({"server_version_num": PG16, "top_queries": []})

        await monitor.get_top_queries(7)

        assert connector.params_for("top_queries") == ("%dbpulse:%", "%pg_stat%", 7)

    @pytest.mark.asyncio
    async def test_limit_capped(self, query_monitor):
        monitoring = MonitoringConfig(default_top_queries=10, max_top_queries=20)
        monitor, connector = query_monitor(
            {"server_version_num": PG16, "top_queries": []}, monitoring
        )

        await monitor.get_top_queries(1000)

        assert connector.params_for("top_queries")[-1] == 20

    @pytest.mark.asyncio
    async def test_invalid_limit_issues_nothing(self, query_monitor):
        monitor, connector = query_monitor({})

        with pytest.raises(ValidationError):
            await monitor.get_top_queries(0)
        assert connector.calls == []

    @pytest.mark.asyncio
    async def test_missing_extension_yields_empty(self, query_monitor):
        monitor, _ = query_monitor({
            "server_version_num": PG16,
            "top_queries": UnsupportedOnEngineError("relation pg_stat_statements does not exist"),
        })

        assert await monitor.get_top_queries(10) == []

    @pytest.mark.asyncio
    async def test_connection_failure_propagates(self, query_monitor):
        monitor, _ = query_monitor({
            "server_version_num": ConnectionFailureError("refused", code=ErrorCodes.CONNECTION_REFUSED),
        })

        with pytest.raises(ConnectionFailureError):
            await monitor.get_top_queries(10)

    @pytest.mark.asyncio
    async def test_records_timing(self, query_monitor):
        monitor, _ = query_monitor({"server_version_num": PG16, "top_queries": []})

        await monitor.get_top_queries(3)

        assert monitor.perf_logger.get_metrics("get_top_queries").total_calls >= 1

    @pytest.mark.asyncio
    async def test_default_limit_from_configuration(self, query_monitor):
        monitor, connector = query_monitor({"server_version_num": PG16, "top_queries": []})
        await monitor.get_top_queries()
        assert connector.params_for("top_queries")[-1] == 50

        monitor, connector = query_monitor(
            {"server_version_num": PG16, "top_queries": []},
            MonitoringConfig(default_top_queries=25),
        )
        await monitor.get_top_queries()
        assert connector.params_for("top_queries")[-1] == 25

    @pytest.mark.asyncio
    async def test_repeated_calls_agree(self, query_monitor):
        monitor, _ = query_monitor({"server_version_num": PG16, "top_queries": TOP_ROWS})

        first = await monitor.get_top_queries(10)
        second = await monitor.get_top_queries(10)

        assert first == second
        assert [metric.query_id for metric in first] == ["-4134127405581012325", "77"]


class TestQueryDetails:
    """Test query detail retrieval."""

    @pytest.mark.asyncio
    async def test_details(self, query_monitor):
        monitor, connector = query_monitor({"server_version_num": PG16, "query_details": DETAIL_ROW})

        details = await monitor.get_query_details("42")

        assert connector.params_for("query_details") == ("42",)
        assert details.query_id == "42"
        assert details.tables_accessed == ("orders", "customers")
        assert details.normalized_query.endswith("o.total > ?")
        assert details.statistics["calls"] == 10
        assert details.statistics["mean_time_ms"] == 25.0
        assert details.statistics["cache_hit_ratio"] == 90.0
        assert details.estimated_cost == 250.0

    @pytest.mark.asyncio
    async def test_unknown_query(self, query_monitor):
        monitor, _ = query_monitor({"server_version_num": PG16, "query_details": None})

        with pytest.raises(NotFoundError) as exc_info:
            await monitor.get_query_details("999")
        assert exc_info.value.code == ErrorCodes.QUERY_NOT_FOUND


class TestExecutionPlan:
    """Test EXPLAIN based plans."""

    def test_parse_plan_json(self):
        root = parse_plan_json(json.dumps(PLAN_DOCUMENT))

        assert root.operation_type == "Hash Join"
        assert root.cost_percentage == 100.0
        assert [child.operation_type for child in root.children] == ["Seq Scan", "Index Scan"]
        assert root.children[0].description == "orders"
        assert root.children[0].cost_percentage == 75.0
        assert root.children[1].description == "customers using customers_pkey"
        assert root.children[1].rows_actual is None

    def test_parse_plan_without_plan(self):
        assert parse_plan_json([]) is None

    @pytest.mark.asyncio
    async def test_plan(self, query_monitor):
        row = dict(DETAIL_ROW, query_text="SELECT * FROM orders o JOIN customers c ON o.cid = c.id")
        monitor, connector = query_monitor({
            "server_version_num": PG16,
            "query_details": row,
            "execution_plan": json.dumps(PLAN_DOCUMENT),
        })

        plan = await monitor.get_execution_plan("42")

        sql = connector.sql_for("execution_plan")
        assert "EXPLAIN (FORMAT JSON) SELECT" in sql
        assert connector.null_bound_operations == []
        assert "ANALYZE" not in sql
        assert plan.platform_type == "postgresql"
        assert plan.estimated_cost == 200.0
        assert plan.actual_cost is None
        assert [node.operation_type for node in plan.nodes] == ["Hash Join", "Seq Scan", "Index Scan"]
        assert plan.plan_json is not None
        assert plan.plan_text.startswith("Hash Join")

    @pytest.mark.asyncio
    async def test_generic_plan_for_parameters(self, query_monitor):
        row = dict(DETAIL_ROW, query_text="SELECT * FROM orders WHERE id = $1")
        monitor, connector = query_monitor({
            "server_version_num": PG16,
            "query_details": row,
            "execution_plan": json.dumps(PLAN_DOCUMENT),
        })

        await monitor.get_execution_plan("42")

        assert "GENERIC_PLAN" in connector.sql_for("execution_plan")
        assert connector.null_bound_operations == ["execution_plan"]

    @pytest.mark.asyncio
    async def test_parameters_before_pg16_give_opaque_plan(self, query_monitor):
        row = dict(DETAIL_ROW, query_text="SELECT * FROM orders WHERE id = $1")
        monitor, connector = query_monitor({"server_version_num": PG12, "query_details": row})

        plan = await monitor.get_execution_plan("42")

        assert "execution_plan" not in connector.operations()
        assert plan.nodes == ()
        assert plan.plan_text == "SELECT * FROM orders WHERE id = $1"

    @pytest.mark.asyncio
    async def test_explain_analyze_when_enabled(self, query_monitor):
        document = [dict(PLAN_DOCUMENT[0], **{"Execution Time": 12.5})]
        row = dict(DETAIL_ROW, query_text="SELECT * FROM orders")
        monitor, connector = query_monitor(
            {"server_version_num": PG16, "query_details": row, "execution_plan": json.dumps(document)},
            MonitoringConfig(explain_analyze=True),
        )

        plan = await monitor.get_execution_plan("42")

        assert "ANALYZE" in connector.sql_for("execution_plan")
        assert plan.actual_cost == 12.5

    @pytest.mark.asyncio
    async def test_missing_statement(self, query_monitor):
        monitor, _ = query_monitor({"server_version_num": PG16, "query_details": None})

        with pytest.raises(NotFoundError):
            await monitor.get_execution_plan("1")


class TestQueryStatistics:

    @pytest.mark.asyncio
    async def test_always_empty(self, query_monitor):
        monitor, connector = query_monitor({})
        end = datetime.now(timezone.utc)

        assert await monitor.get_query_statistics(end - timedelta(hours=1), end) == []
        assert connector.calls == []

    @pytest.mark.asyncio
    async def test_inverted_range(self, query_monitor):
        monitor, _ = query_monitor({})
        end = datetime.now(timezone.utc)

        with pytest.raises(ValidationError):
            await monitor.get_query_statistics(end, end - timedelta(hours=1))


class TestRunningQueries:

    @pytest.mark.asyncio
    async def test_running(self, query_monitor):
        started = datetime(2024, 3, 1, 12, 0)
        monitor, connector = query_monitor({
            "running_queries": [{
                "pid": 4242,
                "query": "SELECT pg_sleep(1)",
                "query_start": started,
                "duration_seconds": 2.5,
                "state": "active",
                "usename": "app",
                "datname": "shop",
            }],
        })

        running = await monitor.get_running_queries()

        assert len(running) == 1
        assert running[0].session_id == 4242
        assert running[0].start_time == started.replace(tzinfo=timezone.utc)
        assert running[0].duration_ms == 2500.0
        assert running[0].user_name == "app"
        assert connector.params_for("running_queries") == ("%dbpulse:%", 200)


def health_responses(**overrides):
    responses = {
        "health.version": "PostgreSQL 16.2 on x86_64-pc-linux-gnu",
        "health.uptime": 48.0,
        "health.connections": {"active_connections": 95, "max_connections": 100},
        "server_version_num": PG16,
        "health.query_stats": {"total_queries": 120, "average_time": 12.5, "slow_queries": 10},
    }
    responses.update(overrides)
    return responses


class TestHealth:
    """Test the composite health snapshot."""

    @pytest.mark.asyncio
    async def test_critical_on_saturation(self, health_monitor):
        monitor, connector = health_monitor(health_responses())

        health = await monitor.get_health()

        assert health.platform_type == "postgresql"
        assert health.platform_version.startswith("PostgreSQL 16.2")
        assert health.uptime_hours == 48.0
        assert health.connection_usage_percent == 95.0
        assert health.total_queries == 120
        assert health.average_query_time_ms == 12.5
        assert health.slow_queries == 10
        assert health.status is HealthStatus.CRITICAL
        assert len(health.issues) == 1
        assert health.issues[0].category == "Connections"
        assert connector.params_for("health.query_stats") == (1000.0,)

    @pytest.mark.asyncio
    async def test_healthy(self, health_monitor):
        monitor, _ = health_monitor(health_responses(**{
            "health.connections": {"active_connections": 5, "max_connections": 100},
        }))

        health = await monitor.get_health()

        assert health.status is HealthStatus.HEALTHY
        assert health.issues == ()

    @pytest.mark.asyncio
    async def test_permission_denied_degrades_one_metric(self, health_monitor):
        monitor, _ = health_monitor(health_responses(**{
            "health.connections": {"active_connections": 5, "max_connections": 100},
            "health.query_stats": PermissionDeniedError("permission denied for view pg_stat_statements"),
        }))

        health = await monitor.get_health()

        assert health.total_queries == 0
        assert health.slow_queries == 0
        assert health.uptime_hours == 48.0
        assert len(health.issues) == 1
        assert health.issues[0].category == "Permissions"
        assert health.issues[0].severity is IssueSeverity.WARNING
        assert health.status is HealthStatus.HEALTHY

    @pytest.mark.asyncio
    async def test_missing_extension_zeroes_query_stats(self, health_monitor):
        monitor, _ = health_monitor(health_responses(**{
            "health.query_stats": UnsupportedOnEngineError("missing"),
        }))

        health = await monitor.get_health()

        assert health.total_queries == 0
        assert all(issue.category != "Permissions" for issue in health.issues)

    @pytest.mark.asyncio
    async def test_connection_failure_propagates(self, health_monitor):
        monitor, _ = health_monitor(health_responses(**{
            "health.uptime": ConnectionFailureError("connection lost"),
        }))

        with pytest.raises(ConnectionFailureError):
            await monitor.get_health()

    @pytest.mark.asyncio
    async def test_cancellation_propagates(self, health_monitor):
        started = asyncio.Event()

        async def hang(sql, params):
            started.set()
            await asyncio.sleep(10)

        monitor, _ = health_monitor(health_responses(**{"health.uptime": hang}))

        task = asyncio.ensure_future(monitor.get_health())
        await started.wait()
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task


class TestDatabaseSize:

    @pytest.mark.asyncio
    async def test_size(self, health_monitor):
        monitor, _ = health_monitor({"database_size": {"total_size": 10_000, "index_size": 2_500}})

        size = await monitor.get_database_size()

        assert size.database_name == "appdb"
        assert size.total_size_bytes == 10_000
        assert size.index_size_bytes == 2_500
        assert size.data_size_bytes == 7_500
        assert size.log_size_bytes == 0
        assert size.projected_size_in_30_days == 10_000
        assert size.last_measured is not None

    @pytest.mark.asyncio
    async def test_growth_from_previous(self, health_monitor):
        monitor, _ = health_monitor({"database_size": {"total_size": 10_000, "index_size": 0}})
        previous = DatabaseSize(
            database_name="appdb",
            total_size_bytes=5_000,
            data_size_bytes=5_000,
            last_measured=datetime.now(timezone.utc) - timedelta(days=5),
        )

        size = await monitor.get_database_size(previous)

        assert size.growth_rate_bytes_per_day == pytest.approx(1_000.0, rel=1e-3)
        assert size.projected_size_in_30_days == pytest.approx(40_000, rel=1e-3)


class TestConnectionStats:

    @pytest.mark.asyncio
    async def test_stats(self, health_monitor):
        monitor, _ = health_monitor({
            "connection_stats": {
                "total": 12, "active": 3, "idle": 7, "sleeping": 2, "max_connections": 100,
            },
            "connection_stats.by_database": [
                {"name": "shop", "connections": 10}, {"name": "", "connections": 2},
            ],
            "connection_stats.by_user": [{"name": "app", "connections": 12}],
        })

        stats = await monitor.get_connection_stats()

        assert stats.total_connections == 12
        assert stats.active_connections == 3
        assert stats.idle_connections == 7
        assert stats.sleeping_connections == 2
        assert stats.connections_by_database == {"shop": 10, "": 2}
        assert stats.connections_by_user == {"app": 12}
        assert stats.peak_connections_24h == 12
        assert stats.peak_connections_time == stats.measured_at
        assert stats.usage_percent == 12.0

    @pytest.mark.asyncio
    async def test_permission_denied_propagates(self, health_monitor):
        monitor, _ = health_monitor({
            "connection_stats": PermissionDeniedError("denied"),
            "connection_stats.by_database": [],
            "connection_stats.by_user": [],
        })

        with pytest.raises(PermissionDeniedError):
            await monitor.get_connection_stats()

    @pytest.mark.asyncio
    async def test_failure_cancels_sibling_statements(self, health_monitor):
        cancelled = asyncio.Event()
        finished = []

        async def slow_by_user(sql, params):
            try:
                await asyncio.sleep(10)
            except asyncio.CancelledError:
                cancelled.set()
                raise
            finished.append(sql)
            return []

        monitor, _ = health_monitor({
            "connection_stats": {"total": 1},
            "connection_stats.by_database": ConnectionFailureError("down"),
            "connection_stats.by_user": slow_by_user,
        })

        with pytest.raises(ConnectionFailureError):
            await monitor.get_connection_stats()

        assert cancelled.is_set()
        assert finished == []


class TestResourceUtilization:

    @pytest.mark.asyncio
    async def test_resources(self, health_monitor):
        monitor, connector = health_monitor({
            "resource.buffer_cache": 134_217_728,
            "resource.waits": [
                {"wait_type": "Lock:transactionid", "waiting": 3},
                {"wait_type": "IO:DataFileRead", "waiting": 1},
            ],
        })

        resources = await monitor.get_resource_utilization()

        assert resources.buffer_cache_bytes == 134_217_728
        assert resources.cpu_usage_percent == 0.0
        assert [w.wait_type for w in resources.top_waits] == ["Lock:transactionid", "IO:DataFileRead"]
        assert resources.top_waits[0].percentage_of_total == 75.0
        assert connector.params_for("resource.waits") == (10,)

    @pytest.mark.asyncio
    async def test_degrades_without_issue(self, health_monitor):
        monitor, _ = health_monitor({
            "resource.buffer_cache": PermissionDeniedError("denied"),
            "resource.waits": [],
        })

        resources = await monitor.get_resource_utilization()

        assert resources.buffer_cache_bytes == 0
        assert resources.top_waits == ()


class TestConfiguration:

    @pytest.mark.asyncio
    async def test_configuration(self, health_monitor):
        monitor, connector = health_monitor({
            "configuration": [
                {"name": "max_connections", "setting": 100},
                {"name": "work_mem", "setting": "4096"},
            ],
        })

        settings = await monitor.get_configuration()

        assert settings == {"max_connections": "100", "work_mem": "4096"}
        assert connector.params_for("configuration") == (
            "Resource Usage%", "Query Tuning%", "max_connections",
        )


class TestTopTables:

    @pytest.mark.asyncio
    async def test_tables(self, health_monitor):
        monitor, connector = health_monitor({
            "top_tables": [
                {
                    "schema_name": "public",
                    "table_name": "orders",
                    "row_count": 120000,
                    "total_size": 90_000_000,
                    "data_size": 60_000_000,
                    "index_size": 25_000_000,
                },
            ],
        })

        tables = await monitor.get_top_tables()

        assert len(tables) == 1
        assert tables[0].schema_name == "public"
        assert tables[0].table_name == "orders"
        assert tables[0].row_count == 120000
        assert tables[0].total_size_bytes == 90_000_000
        assert tables[0].index_size_bytes == 25_000_000
        assert "pg_stat_user_tables" in connector.sql_for("top_tables")
        assert connector.params_for("top_tables") == (20,)

    @pytest.mark.asyncio
    async def test_limit_capped(self, health_monitor):
        monitor, connector = health_monitor(
            {"top_tables": []}, MonitoringConfig(default_top_queries=5, max_top_queries=10)
        )

        await monitor.get_top_tables(100)

        assert connector.params_for("top_tables") == (10,)

    @pytest.mark.asyncio
    async def test_invalid_limit(self, health_monitor):
        monitor, connector = health_monitor({})

        with pytest.raises(ValidationError):
            await monitor.get_top_tables(0)
        assert connector.calls == []


class TestReadOnlyStatements:
    """Every statement the adapters issue passes the read-only guard."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("query_text", [
        "SELECT * FROM orders o JOIN customers c ON o.cid = c.id",
        "SELECT * FROM orders WHERE id = $1",
    ])
    async def test_contract_issues_only_reads(self, make_connector, walk_contract, query_text):
        auditor = StatementAuditor("postgresql.appdb")
        responses = health_responses(
            top_queries=TOP_ROWS,
            query_details=dict(DETAIL_ROW, query_text=query_text),
            execution_plan=json.dumps(PLAN_DOCUMENT),
        )
        connector = make_connector("postgresql", responses, auditor=auditor)

        await walk_contract(
            PostgreSQLQueryMonitor(connector), PostgreSQLHealthMonitor(connector), "42"
        )

        assert auditor.rejected() == []
        assert {event.keyword for event in auditor.events} <= READ_ONLY_KEYWORDS
        assert {
            "top_queries", "query_details", "execution_plan", "running_queries",
            "health.version", "database_size", "connection_stats",
            "resource.waits", "configuration", "top_tables",
        } <= {event.operation for event in auditor.events}
