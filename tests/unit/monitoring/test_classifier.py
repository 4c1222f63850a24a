"""Unit tests for health classification and issue generation."""

from dataclasses import replace
from datetime import datetime, timezone

import pytest

from dbpulse.database.models import DatabaseHealth, HealthStatus, IssueSeverity
from dbpulse.monitoring.classifier import (
    CONNECTION_RECOMMENDATION,
    SLOW_QUERY_RECOMMENDATION,
    annotate_health,
    classify_health,
    generate_issues,
    permission_issue,
)


def snapshot(usage: float = 0.0, slow: int = 0) -> DatabaseHealth:
    return DatabaseHealth(
        database_name="appdb",
        platform_type="postgresql",
        platform_version="PostgreSQL 16.2",
        checked_at=datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc),
        connection_usage_percent=usage,
        slow_queries=slow,
    )


class TestClassifyHealth:
    """Test status thresholds."""

    @pytest.mark.parametrize("usage,slow,expected", [
        (0.0, 0, HealthStatus.HEALTHY),
        (70.0, 50, HealthStatus.HEALTHY),
        (70.01, 0, HealthStatus.WARNING),
        (0.0, 51, HealthStatus.WARNING),
        (90.0, 0, HealthStatus.WARNING),
        (90.01, 0, HealthStatus.CRITICAL),
        (0.0, 100, HealthStatus.WARNING),
        (0.0, 101, HealthStatus.CRITICAL),
        (50.0, 500, HealthStatus.CRITICAL),
    ])
    def test_thresholds(self, usage, slow, expected):
        """Thresholds are strictly greater than."""
        assert classify_health(snapshot(usage, slow)) is expected

    def test_critical_takes_precedence(self):
        """A critical indicator wins over a warning one."""
        assert classify_health(snapshot(75.0, 150)) is HealthStatus.CRITICAL


class TestGenerateIssues:
    """Test threshold issue generation."""

    def test_no_issues_when_quiet(self):
        assert generate_issues(snapshot(80.0, 50)) == []

    def test_connection_warning_issue(self):
        issues = generate_issues(snapshot(85.0, 0))

        assert len(issues) == 1
        assert issues[0].category == "Connections"
        assert issues[0].severity is IssueSeverity.WARNING
        assert "85.0%" in issues[0].description
        assert issues[0].recommendation == CONNECTION_RECOMMENDATION

    def test_connection_critical_issue(self):
        issues = generate_issues(snapshot(95.0, 0))
        assert issues[0].severity is IssueSeverity.CRITICAL

    def test_slow_query_issues(self):
        warning = generate_issues(snapshot(0.0, 51))
        critical = generate_issues(snapshot(0.0, 101))

        assert warning[0].category == "Performance"
        assert warning[0].severity is IssueSeverity.WARNING
        assert warning[0].recommendation == SLOW_QUERY_RECOMMENDATION
        assert critical[0].severity is IssueSeverity.CRITICAL
        assert "101" in critical[0].description

    def test_connection_issue_listed_before_slow_query_issue(self):
        issues = generate_issues(snapshot(95.0, 101))
        assert [issue.category for issue in issues] == ["Connections", "Performance"]


class TestAnnotateHealth:
    """Test annotating a snapshot with status and issues."""

    def test_saturated_instance(self):
        """95 of 100 connections with 10 slow queries is critical with one issue."""
        health = replace(
            snapshot(95.0, 10), active_connections=95, max_connections=100
        )

        annotated = annotate_health(health)

        assert annotated.status is HealthStatus.CRITICAL
        assert len(annotated.issues) == 1
        assert annotated.issues[0].category == "Connections"
        assert annotated.issues[0].severity is IssueSeverity.CRITICAL

    def test_original_snapshot_unchanged(self):
        health = snapshot(95.0, 0)
        annotate_health(health)
        assert health.status is HealthStatus.UNKNOWN
        assert health.issues == ()

    def test_extra_issues_follow_threshold_issues(self):
        extra = permission_issue("query statistics", "pg_stat_statements")

        annotated = annotate_health(snapshot(85.0, 0), [extra])

        assert [issue.category for issue in annotated.issues] == ["Connections", "Permissions"]
        assert annotated.status is HealthStatus.WARNING

    def test_permission_issue_does_not_change_status(self):
        annotated = annotate_health(snapshot(), [permission_issue("uptime", "sys.dm_os_sys_info")])
        assert annotated.status is HealthStatus.HEALTHY


class TestPermissionIssue:
    """Test degraded sub-metric issues."""

    def test_fields(self):
        issue = permission_issue("connections", "pg_stat_activity")

        assert issue.category == "Permissions"
        assert issue.severity is IssueSeverity.WARNING
        assert "pg_stat_activity" in issue.description
        assert "connections" in issue.recommendation
