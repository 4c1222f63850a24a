"""Partial-failure fan-out for composite health calls.

Each sub-fetch runs concurrently and independently. A sub-fetch that fails
for lack of permission yields its default value plus a warning issue; one
that hits an unsupported catalog or another query error yields its default
and a log line. Connection failures, timeouts and cancellation propagate and
cancel the sibling sub-fetches.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, List, Optional, Sequence, Tuple

from dbpulse.core.exceptions import PermissionDeniedError, QueryError
from dbpulse.database.models import HealthIssue
from dbpulse.logging.structured import StructuredLogger
from dbpulse.monitoring.classifier import permission_issue


@dataclass(frozen=True)
class SubFetch:
    """One independently degradable metric.

    Attributes:
        metric: Human-readable metric name used in issues and logs
        catalog: Catalog or view the metric is read from
        fetch: Zero-argument coroutine function producing the value
        default: Value reported when the fetch degrades
    """
    metric: str
    catalog: str
    fetch: Callable[[], Awaitable[Any]]
    default: Any = 0


async def gather_or_cancel(*coros: Awaitable[Any]) -> List[Any]:
    """Await ``coros`` concurrently, in order.

    If any of them fails, or the caller is cancelled, the others are
    cancelled and awaited before the error propagates.
    """
    tasks = [asyncio.ensure_future(coro) for coro in coros]
    try:
        return await asyncio.gather(*tasks)
    except BaseException:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise


async def _guarded(
    sub_fetch: SubFetch, logger: StructuredLogger
) -> Tuple[Any, Optional[HealthIssue]]:
    try:
        return await sub_fetch.fetch(), None
    except PermissionDeniedError as e:
        logger.warning(
            "Permission denied for health sub-metric",
            metric=sub_fetch.metric,
            catalog=sub_fetch.catalog,
            error_code=e.code,
        )
        return sub_fetch.default, permission_issue(sub_fetch.metric, sub_fetch.catalog)
    except QueryError as e:
        logger.warning(
            "Health sub-metric unavailable",
            metric=sub_fetch.metric,
            catalog=sub_fetch.catalog,
            error_code=e.code,
            error=e.message,
        )
        return sub_fetch.default, None


async def fan_out(
    fetches: Sequence[SubFetch], logger: StructuredLogger
) -> Tuple[List[Any], List[HealthIssue]]:
    """Run ``fetches`` concurrently and merge their results.

    Returns:
        Tuple of (values in the order of ``fetches``, degradation issues)
    """
    outcomes = await gather_or_cancel(*(_guarded(sub_fetch, logger) for sub_fetch in fetches))

    values = [value for value, _ in outcomes]
    issues = [issue for _, issue in outcomes if issue is not None]
    return values, issues
