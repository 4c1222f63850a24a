"""Engine-independent health classification and issue generation.

Pure functions with no I/O. Thresholds are shared by every adapter so that
health states are comparable across engines.

Example:
    >>> health = annotate_health(snapshot)
    >>> health.status
    <HealthStatus.CRITICAL: 'Critical'>
"""

from dataclasses import replace
from typing import Iterable, List, Protocol

from dbpulse.database.models import (
    DatabaseHealth,
    HealthIssue,
    HealthStatus,
    IssueSeverity,
)

# Status thresholds (strictly greater than)
CRITICAL_CONNECTION_PERCENT = 90.0
WARNING_CONNECTION_PERCENT = 70.0
CRITICAL_SLOW_QUERIES = 100
WARNING_SLOW_QUERIES = 50

# Issue thresholds (strictly greater than)
CONNECTION_ISSUE_PERCENT = 80.0
SLOW_QUERY_ISSUE_COUNT = 50

CONNECTIONS_CATEGORY = "Connections"
PERFORMANCE_CATEGORY = "Performance"
PERMISSIONS_CATEGORY = "Permissions"

CONNECTION_RECOMMENDATION = (
    "Consider increasing the maximum connection limit or investigating connection leaks"
)
SLOW_QUERY_RECOMMENDATION = "Review slow queries and consider optimization or indexing"
PERMISSION_RECOMMENDATION = (
    "Grant the monitoring principal read access to {catalog} to collect {metric}"
)


class HealthIndicators(Protocol):
    """Anything carrying the two metrics the classifier looks at."""

    connection_usage_percent: float
    slow_queries: int


def classify_health(indicators: HealthIndicators) -> HealthStatus:
    """Map connection saturation and slow-query count to a status.

    Example:
        >>> classify_health(replace(snapshot, connection_usage_percent=90.0))
        <HealthStatus.WARNING: 'Warning'>
    """
    usage = indicators.connection_usage_percent
    slow = indicators.slow_queries

    if usage > CRITICAL_CONNECTION_PERCENT or slow > CRITICAL_SLOW_QUERIES:
        return HealthStatus.CRITICAL

    if usage > WARNING_CONNECTION_PERCENT or slow > WARNING_SLOW_QUERIES:
        return HealthStatus.WARNING

    return HealthStatus.HEALTHY


def generate_issues(indicators: HealthIndicators) -> List[HealthIssue]:
    """Produce threshold issues for connection saturation and slow queries."""
    issues: List[HealthIssue] = []
    usage = indicators.connection_usage_percent
    slow = indicators.slow_queries

    if usage > CONNECTION_ISSUE_PERCENT:
        issues.append(
            HealthIssue(
                category=CONNECTIONS_CATEGORY,
                description=f"Connection usage is high: {usage:.1f}%",
                severity=(
                    IssueSeverity.CRITICAL
                    if usage > CRITICAL_CONNECTION_PERCENT
                    else IssueSeverity.WARNING
                ),
                recommendation=CONNECTION_RECOMMENDATION,
            )
        )

    if slow > SLOW_QUERY_ISSUE_COUNT:
        issues.append(
            HealthIssue(
                category=PERFORMANCE_CATEGORY,
                description=f"High number of slow queries: {slow}",
                severity=(
                    IssueSeverity.CRITICAL
                    if slow > CRITICAL_SLOW_QUERIES
                    else IssueSeverity.WARNING
                ),
                recommendation=SLOW_QUERY_RECOMMENDATION,
            )
        )

    return issues


def permission_issue(metric: str, catalog: str) -> HealthIssue:
    """Describe a metric that could not be collected for lack of rights."""
    return HealthIssue(
        category=PERMISSIONS_CATEGORY,
        description=f"Permission denied reading {catalog}; {metric} reported as 0",
        severity=IssueSeverity.WARNING,
        recommendation=PERMISSION_RECOMMENDATION.format(catalog=catalog, metric=metric),
    )


def annotate_health(
    health: DatabaseHealth, extra_issues: Iterable[HealthIssue] = ()
) -> DatabaseHealth:
    """Return a copy of ``health`` with status and issues filled in.

    Threshold issues come first, followed by ``extra_issues`` (degraded
    sub-metrics) in the order given.
    """
    issues = generate_issues(health) + list(extra_issues)
    return replace(health, status=classify_health(health), issues=tuple(issues))
