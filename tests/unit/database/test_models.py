"""Unit tests for the unified telemetry model."""

import dataclasses
from datetime import datetime, timedelta, timezone

import pytest

from dbpulse.database.models import (
    ConnectionStatistics,
    DatabaseHealth,
    DatabaseSize,
    ExecutionPlanNode,
    HealthStatus,
    ResourceUtilization,
    RunningQuery,
    usage_percent,
)

NOW = datetime(2024, 3, 1, tzinfo=timezone.utc)


class TestUsagePercent:

    @pytest.mark.parametrize("used, maximum, expected", [
        (50, 200, 25.0),
        (0, 100, 0.0),
        (10, 0, 0.0),
        (10, None, 0.0),
        (120, 100, 120.0),
    ])
    def test_usage(self, used, maximum, expected):
        assert usage_percent(used, maximum) == expected


class TestImmutability:

    def test_snapshots_are_frozen(self):
        health = DatabaseHealth(
            database_name="appdb", platform_type="postgresql", platform_version="16.2", checked_at=NOW
        )

        with pytest.raises(dataclasses.FrozenInstanceError):
            health.status = HealthStatus.HEALTHY

    def test_health_defaults_to_unknown(self):
        health = DatabaseHealth(
            database_name="appdb", platform_type="mysql", platform_version="8.0.36", checked_at=NOW
        )
        assert health.status is HealthStatus.UNKNOWN
        assert health.issues == ()

    def test_status_values(self):
        assert HealthStatus.CRITICAL.value == "Critical"
        assert HealthStatus("Warning") is HealthStatus.WARNING


class TestDerivedProperties:

    def test_size_formatting(self):
        size = DatabaseSize(
            database_name="appdb",
            total_size_bytes=1048576,
            data_size_bytes=524288,
            log_size_bytes=0,
            index_size_bytes=2048,
        )

        assert size.total_size_formatted == "1.00 MB"
        assert size.data_size_formatted == "512.00 KB"
        assert size.log_size_formatted == "0 B"
        assert size.index_size_formatted == "2.00 KB"

    def test_connection_usage(self):
        stats = ConnectionStatistics(measured_at=NOW, total_connections=30, max_connections=120)
        assert stats.usage_percent == 25.0

    def test_memory_usage(self):
        resources = ResourceUtilization(measured_at=NOW, total_memory_bytes=0, used_memory_bytes=10)
        assert resources.memory_usage_percent == 0.0

    def test_running_query_duration(self):
        query = RunningQuery(
            session_id=1,
            query_text="SELECT 1",
            start_time=NOW,
            duration=timedelta(seconds=2.5),
            status="active",
            user_name="app",
            database_name="appdb",
        )
        assert query.duration_ms == 2500.0

    def test_plan_walk(self):
        leaf = ExecutionPlanNode(operation_type="Index Scan")
        root = ExecutionPlanNode(
            operation_type="Nested Loop",
            children=(ExecutionPlanNode(operation_type="Hash", children=(leaf,)),),
        )

        assert [node.operation_type for node in root.walk()] == ["Nested Loop", "Hash", "Index Scan"]
