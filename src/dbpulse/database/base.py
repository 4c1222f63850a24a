# src/dbpulse/database/base.py
"""Read-only statement channel shared by every engine connector.

A connector owns the driver pool for one configured database and is the only
place native statements leave the process. For every statement it:

1. refuses anything the read-only guard does not accept,
2. records the statement with the auditor, if one is attached,
3. bounds execution with ``query_timeout`` and aborts the connection when
   the bound is exceeded or the awaiting task is cancelled,
4. translates driver exceptions into the DBPulse taxonomy.

No statement is ever retried.
"""

import asyncio
import ssl
import time
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from dbpulse.config.models import DatabaseConfig
from dbpulse.core import AsyncComponent
from dbpulse.core.exceptions import (
    ConnectionFailureError,
    DBPulseException,
    ErrorCodes,
    QueryTimeoutError,
    ReadOnlyViolationError,
)
from dbpulse.logging import get_logger, get_performance_logger
from dbpulse.logging.audit import AuditOutcome, StatementAuditEvent, StatementAuditor
from dbpulse.monitoring.sqltext import check_read_only, leading_keyword, statement_operation


class BaseDatabaseConnector(AsyncComponent[DatabaseConfig], ABC):
    """Abstract base class for engine connectors.

    Subclasses supply the driver specifics: pool creation, row fetching,
    connection abort and error translation. The pool is created lazily on
    the first statement, so constructing a connector never touches the
    network.
    """

    component_name = "BaseDatabaseConnector"
    version = "1.0.0"
    platform: str = "unknown"

    def __init__(
        self,
        config: DatabaseConfig,
        *,
        auditor: Optional[StatementAuditor] = None,
    ) -> None:
        super().__init__(config)
        self.logger = get_logger(f"connector.{self.platform}.{config.id}")
        self.perf_logger = get_performance_logger(f"connector.{self.platform}", auto_log=False)
        self.auditor = auditor
        self._connection_pool: Any = None

    @property
    def database_name(self) -> str:
        return self.config.database

    @property
    def is_connected(self) -> bool:
        return self.is_initialized and self._connection_pool is not None

    def get_connection_info(self) -> Dict[str, Any]:
        """Connection details for diagnostics; never includes the password."""
        return {
            "platform": self.platform,
            "database_id": self.config.id,
            "connection_string": self.config.connection_string,
            "connected": self.is_connected,
            "query_timeout": self.config.query_timeout,
        }

    async def _async_initialize(self) -> None:
        self.logger.info(
            "Opening connection pool",
            host=self.config.host,
            port=self.config.effective_port,
            database=self.config.database,
        )

        try:
            self._connection_pool = await asyncio.wait_for(
                self._create_connection_pool(),
                timeout=self.config.connection_timeout,
            )
        except asyncio.TimeoutError as e:
            raise ConnectionFailureError(
                f"Timed out connecting to {self.platform} after "
                f"{self.config.connection_timeout}s",
                code=ErrorCodes.CONNECTION_TIMEOUT,
                context=self._error_context(),
                cause=e,
            ) from e
        except DBPulseException:
            raise
        except Exception as e:
            translated = self._translate_error(e, None)
            if not isinstance(translated, ConnectionFailureError):
                translated = ConnectionFailureError(
                    f"Failed to connect to {self.platform}: {e}",
                    code=ErrorCodes.CONNECTION_REFUSED,
                    context=self._error_context(),
                    cause=e,
                )
            raise translated from e

        self.logger.info("Connection pool opened")

    async def _async_cleanup(self) -> None:
        if self._connection_pool is not None:
            pool, self._connection_pool = self._connection_pool, None
            await self._close_pool(pool)
            self.logger.info("Connection pool closed")

    async def close(self) -> None:
        """Release the pool; the connector reconnects on next use."""
        await self.cleanup()

    async def fetch(
        self, sql: str, *params: Any, timeout: Optional[float] = None
    ) -> List[Dict[str, Any]]:
        """Run a read-only statement and return every row as a dict.

        Raises:
            ReadOnlyViolationError: The statement is not a plain read
            QueryTimeoutError: The statement exceeded its time bound
            ConnectionFailureError: The engine is unreachable
            QueryError: Any other engine-side failure, translated
        """
        return await self._run(sql, params, timeout)

    async def fetchrow(
        self, sql: str, *params: Any, timeout: Optional[float] = None
    ) -> Optional[Dict[str, Any]]:
        rows = await self._run(sql, params, timeout)
        return rows[0] if rows else None

    async def fetchval(
        self, sql: str, *params: Any, timeout: Optional[float] = None
    ) -> Any:
        """Return the first column of the first row, or None."""
        row = await self.fetchrow(sql, *params, timeout=timeout)
        if not row:
            return None
        return next(iter(row.values()))

    async def fetchval_null_bound(self, sql: str, *, timeout: Optional[float] = None) -> Any:
        """Like ``fetchval`` with every declared parameter bound to NULL.

        Used for ``EXPLAIN (GENERIC_PLAN)`` of statements that still carry
        placeholders; the engine plans without looking at the values.
        """
        rows = await self._run(sql, (), timeout, fetch_rows=self._fetch_rows_null_bound)
        if not rows:
            return None
        return next(iter(rows[0].values()))

    async def _fetch_rows_null_bound(self, conn: Any, sql: str) -> List[Dict[str, Any]]:
        """Drivers that can describe a statement override this."""
        return await self._fetch_rows(conn, sql, ())

    async def _run(
        self,
        sql: str,
        params: Sequence[Any],
        timeout: Optional[float],
        fetch_rows: Optional[Callable[[Any, str], Awaitable[List[Dict[str, Any]]]]] = None,
    ) -> List[Dict[str, Any]]:
        operation = statement_operation(sql)
        keyword = leading_keyword(sql)

        allowed, reason = check_read_only(sql)
        if not allowed:
            self._audit(sql, operation, keyword, AuditOutcome.REJECTED, ErrorCodes.READ_ONLY_VIOLATION)
            raise ReadOnlyViolationError(
                f"Refusing to run statement on {self.platform}: {reason}",
                code=ErrorCodes.READ_ONLY_VIOLATION,
                context=self._error_context(operation, keyword=keyword),
            )

        if not self.is_connected:
            await self.initialize()

        bound = timeout if timeout is not None else self.config.query_timeout
        self._audit(sql, operation, keyword, AuditOutcome.ISSUED)

        with self.perf_logger.measure(operation or keyword.lower()) as timer:
            try:
                async with self._connection_pool.acquire() as conn:
                    try:
                        if fetch_rows is None:
                            pending = self._fetch_rows(conn, sql, params)
                        else:
                            pending = fetch_rows(conn, sql)
                        rows = await asyncio.wait_for(pending, timeout=bound)
                    except asyncio.TimeoutError as e:
                        await self._abort(conn, operation, "timeout")
                        raise QueryTimeoutError(
                            f"{self.platform} statement exceeded {bound}s",
                            code=ErrorCodes.OPERATION_TIMEOUT,
                            context=self._error_context(operation, timeout=bound),
                            cause=e,
                        ) from e
                    except asyncio.CancelledError:
                        await self._abort(conn, operation, "cancelled")
                        raise
            except DBPulseException as e:
                self._audit(sql, operation, keyword, AuditOutcome.FAILED, e.code)
                raise
            except Exception as e:
                translated = self._translate_error(e, operation)
                self._audit(sql, operation, keyword, AuditOutcome.FAILED, translated.code)
                self.logger.warning(
                    "Statement failed",
                    operation=operation,
                    error_type=type(e).__name__,
                    error_code=translated.code,
                )
                raise translated from e

        self.logger.debug(
            "Statement completed",
            operation=operation,
            rows=len(rows),
            duration_ms=timer.duration_ms,
        )
        return rows

    async def _abort(self, conn: Any, operation: Optional[str], reason: str) -> None:
        """Abort an in-flight connection so it never returns to the pool busy."""
        self.logger.warning("Aborting in-flight statement", operation=operation, reason=reason)
        try:
            await self._abort_connection(conn)
        except Exception as e:
            self.logger.error(
                "Connection abort failed",
                operation=operation,
                error_type=type(e).__name__,
                error=str(e),
            )

    def _audit(
        self,
        sql: str,
        operation: Optional[str],
        keyword: str,
        outcome: AuditOutcome,
        error_code: Optional[str] = None,
    ) -> None:
        if self.auditor is None:
            return
        self.auditor.record(
            StatementAuditEvent(
                platform=self.platform,
                database_id=self.config.id,
                operation=operation,
                keyword=keyword,
                statement=sql,
                outcome=outcome,
                error_code=error_code,
            )
        )

    def _error_context(self, operation: Optional[str] = None, **extra: Any) -> Dict[str, Any]:
        context: Dict[str, Any] = {
            "platform": self.platform,
            "database_id": self.config.id,
            "host": self.config.host,
            "database": self.config.database,
        }
        if operation:
            context["operation"] = operation
        context.update(extra)
        return context

    def _ssl_context(self) -> Optional[ssl.SSLContext]:
        """Build an SSL context from ``ssl_config``, or None when disabled."""
        ssl_config = self.config.ssl_config
        if not ssl_config.enabled:
            return None

        context = ssl.create_default_context(
            cafile=str(ssl_config.ca_file) if ssl_config.ca_file else None
        )
        if ssl_config.cert_file and ssl_config.key_file:
            context.load_cert_chain(str(ssl_config.cert_file), str(ssl_config.key_file))

        if ssl_config.verify_mode == "none":
            context.check_hostname = False
            context.verify_mode = ssl.CERT_NONE
        else:
            context.check_hostname = ssl_config.check_hostname
            context.verify_mode = (
                ssl.CERT_OPTIONAL if ssl_config.verify_mode == "optional" else ssl.CERT_REQUIRED
            )
        return context

    @abstractmethod
    async def _create_connection_pool(self) -> Any:
        """Create and return the driver's connection pool."""

    @abstractmethod
    async def _close_pool(self, pool: Any) -> None:
        """Close the driver's connection pool."""

    @abstractmethod
    async def _fetch_rows(
        self, conn: Any, sql: str, params: Sequence[Any]
    ) -> List[Dict[str, Any]]:
        """Execute ``sql`` on an acquired connection and return dict rows."""

    @abstractmethod
    async def _abort_connection(self, conn: Any) -> None:
        """Forcibly close an acquired connection."""

    @abstractmethod
    def _translate_error(self, error: Exception, operation: Optional[str]) -> DBPulseException:
        """Map a driver exception onto the DBPulse taxonomy."""

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"database_id={self.config.id!r}, "
            f"connected={self.is_connected})"
        )
