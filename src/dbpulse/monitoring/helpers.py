"""Small pure helpers shared by the engine adapters."""

from datetime import datetime, timedelta
from typing import Iterable, List, Optional, Tuple

from dbpulse.config.models import MonitoringConfig
from dbpulse.core.exceptions import ErrorCodes, ValidationError
from dbpulse.core.utils import ensure_utc, safe_float, safe_int
from dbpulse.database.models import ExecutionPlanNode, WaitStatistic


def resolve_top_limit(limit: Optional[int], monitoring: MonitoringConfig) -> int:
    """Validate a top-queries limit and cap it at ``max_top_queries``.

    ``None`` means ``default_top_queries``.

    Raises:
        ValidationError: If ``limit`` is below 1 or not an integer
    """
    return resolve_limit(limit, monitoring.default_top_queries, monitoring.max_top_queries)


def resolve_limit(limit: Optional[int], default: int, maximum: int) -> int:
    """Validate a row limit, substituting ``default`` for ``None`` and capping at ``maximum``."""
    if limit is None:
        limit = default
    if isinstance(limit, bool) or not isinstance(limit, int) or limit < 1:
        raise ValidationError(
            f"limit must be an integer >= 1, got {limit!r}",
            code=ErrorCodes.INVALID_LIMIT,
            context={"limit": limit},
        )
    return min(limit, maximum)


def validate_time_range(start: datetime, end: datetime) -> Tuple[datetime, datetime]:
    """Normalize both bounds to UTC and require ``start <= end``.

    Raises:
        ValidationError: If the range is inverted
    """
    start_utc = ensure_utc(start)
    end_utc = ensure_utc(end)
    if start_utc > end_utc:
        raise ValidationError(
            "start must not be after end",
            code=ErrorCodes.INVALID_TIME_RANGE,
            context={"start": start_utc.isoformat(), "end": end_utc.isoformat()},
        )
    return start_utc, end_utc


def seconds_to_timedelta(seconds: object) -> timedelta:
    """Elapsed seconds from a catalog column; negative clock skew clamps to zero."""
    return timedelta(seconds=max(0.0, safe_float(seconds)))


def build_wait_statistics(
    rows: Iterable[Tuple[str, object, object]], limit: Optional[int] = None
) -> Tuple[WaitStatistic, ...]:
    """Build wait statistics from ``(wait_type, count, time_ms)`` triples.

    Percentages are shares of the total wait time of the rows given. When no
    row carries a wait time (sampled waits), shares of the wait count are
    used instead.
    """
    triples: List[Tuple[str, int, float]] = [
        (str(wait_type), safe_int(count), safe_float(time_ms))
        for wait_type, count, time_ms in rows
    ]
    triples.sort(key=lambda item: (item[2], item[1]), reverse=True)
    if limit is not None:
        triples = triples[:limit]

    total_ms = sum(time_ms for _, _, time_ms in triples)
    total_count = sum(count for _, count, _ in triples)

    def share(count: int, time_ms: float) -> float:
        if total_ms:
            return time_ms / total_ms * 100.0
        if total_count:
            return count / total_count * 100.0
        return 0.0

    return tuple(
        WaitStatistic(
            wait_type=wait_type,
            wait_count=count,
            wait_time_ms=time_ms,
            average_wait_time_ms=time_ms / count if count else 0.0,
            percentage_of_total=share(count, time_ms),
        )
        for wait_type, count, time_ms in triples
    )


def flatten_plan(root: Optional[ExecutionPlanNode]) -> Tuple[ExecutionPlanNode, ...]:
    """Depth-first operator sequence of a plan tree, root first."""
    return tuple(root.walk()) if root is not None else ()


def render_plan_text(root: ExecutionPlanNode) -> str:
    """Indented one-line-per-operator rendering of a plan tree.

    Example:
        Hash Join (cost=120.50 rows=1000)
          -> Seq Scan on orders (cost=45.00 rows=1000)
    """
    lines: List[str] = []

    def visit(node: ExecutionPlanNode, depth: int) -> None:
        label = node.operation_type
        if node.description:
            label += f" on {node.description}"
        prefix = "  " * depth + ("-> " if depth else "")
        lines.append(f"{prefix}{label} (cost={node.cost:.2f} rows={node.rows_estimated:.0f})")
        for child in node.children:
            visit(child, depth + 1)

    visit(root, 0)
    return "\n".join(lines)
