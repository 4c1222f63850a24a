"""Unit tests for the partial-failure fan-out."""

import asyncio

import pytest

from dbpulse.core.exceptions import (
    ConnectionFailureError,
    NotFoundError,
    PermissionDeniedError,
    QueryTimeoutError,
    UnsupportedOnEngineError,
)
from dbpulse.monitoring.fanout import SubFetch, fan_out, gather_or_cancel


def returning(value):
    async def fetch():
        return value
    return fetch


def raising(error):
    async def fetch():
        raise error
    return fetch


class TestFanOut:
    """Test independent degradation of sub-fetches."""

    @pytest.mark.asyncio
    async def test_values_in_order(self, mock_logger):
        values, issues = await fan_out(
            [
                SubFetch("a", "cat_a", returning(1)),
                SubFetch("b", "cat_b", returning("two")),
                SubFetch("c", "cat_c", returning((3, 4))),
            ],
            mock_logger,
        )

        assert values == [1, "two", (3, 4)]
        assert issues == []

    @pytest.mark.asyncio
    async def test_permission_denied_yields_default_and_issue(self, mock_logger):
        values, issues = await fan_out(
            [
                SubFetch("uptime", "sys.dm_os_sys_info", returning(12.5), default=0.0),
                SubFetch(
                    "connections", "sys.dm_exec_sessions",
                    raising(PermissionDeniedError("denied")), default=(0, 0),
                ),
            ],
            mock_logger,
        )

        assert values == [12.5, (0, 0)]
        assert len(issues) == 1
        assert issues[0].category == "Permissions"
        assert "sys.dm_exec_sessions" in issues[0].description
        mock_logger.warning.assert_called()

    @pytest.mark.asyncio
    async def test_unsupported_yields_default_without_issue(self, mock_logger):
        values, issues = await fan_out(
            [SubFetch("query statistics", "pg_stat_statements",
                      raising(UnsupportedOnEngineError("missing")), default=(0, 0.0, 0))],
            mock_logger,
        )

        assert values == [(0, 0.0, 0)]
        assert issues == []
        mock_logger.warning.assert_called_once()

    @pytest.mark.asyncio
    async def test_other_query_errors_degrade(self, mock_logger):
        values, issues = await fan_out(
            [SubFetch("x", "cat", raising(NotFoundError("gone")), default=None)],
            mock_logger,
        )
        assert values == [None]
        assert issues == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error", [
        ConnectionFailureError("unreachable"),
        QueryTimeoutError("slow"),
        RuntimeError("bug"),
    ])
    async def test_fatal_errors_propagate(self, mock_logger, error):
        with pytest.raises(type(error)):
            await fan_out(
                [
                    SubFetch("ok", "cat", returning(1)),
                    SubFetch("bad", "cat", raising(error)),
                ],
                mock_logger,
            )

    @pytest.mark.asyncio
    async def test_fatal_error_cancels_siblings(self, mock_logger):
        sibling_cancelled = asyncio.Event()

        async def slow():
            try:
                await asyncio.sleep(10)
            except asyncio.CancelledError:
                sibling_cancelled.set()
                raise

        with pytest.raises(ConnectionFailureError):
            await fan_out(
                [
                    SubFetch("slow", "cat", slow),
                    SubFetch("bad", "cat", raising(ConnectionFailureError("down"))),
                ],
                mock_logger,
            )

        assert sibling_cancelled.is_set()

    @pytest.mark.asyncio
    async def test_cancellation_of_caller_cancels_sub_fetches(self, mock_logger):
        started = asyncio.Event()
        cancelled = asyncio.Event()

        async def blocking():
            started.set()
            try:
                await asyncio.sleep(10)
            except asyncio.CancelledError:
                cancelled.set()
                raise

        task = asyncio.ensure_future(fan_out([SubFetch("b", "cat", blocking)], mock_logger))
        await started.wait()
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task
        assert cancelled.is_set()

    @pytest.mark.asyncio
    async def test_empty(self, mock_logger):
        assert await fan_out([], mock_logger) == ([], [])


class TestGatherOrCancel:
    """Test all-or-nothing concurrent statements."""

    @pytest.mark.asyncio
    async def test_results_in_order(self):
        assert await gather_or_cancel(returning(1)(), returning(2)()) == [1, 2]

    @pytest.mark.asyncio
    async def test_failure_cancels_and_awaits_siblings(self):
        states = []

        async def slow():
            try:
                await asyncio.sleep(10)
            except asyncio.CancelledError:
                states.append("cancelled")
                raise
            states.append("finished")

        with pytest.raises(ConnectionFailureError):
            await gather_or_cancel(slow(), raising(ConnectionFailureError("down"))())

        assert states == ["cancelled"]
