# src/dbpulse/database/connectors/mysql.py
"""MySQL connector built on aiomysql.

Sessions are opened with ``SET SESSION TRANSACTION READ ONLY`` and
autocommit, and use a dict cursor. Statements use ``%s`` placeholders.
"""

from typing import Any, Dict, List, Optional, Sequence

import aiomysql

from dbpulse.core.exceptions import (
    AuthenticationError,
    ConnectionFailureError,
    DBPulseException,
    ErrorCodes,
    PermissionDeniedError,
    QueryError,
    QueryTimeoutError,
    ReadOnlyViolationError,
    UnsupportedOnEngineError,
)
from dbpulse.database.base import BaseDatabaseConnector

APPLICATION_NAME = "dbpulse"

# Server error numbers
ER_ACCESS_DENIED = 1045
PERMISSION_ERRORS = frozenset({1044, 1142, 1143, 1227})
UNSUPPORTED_ERRORS = frozenset({1146, 1054, 1109})
TIMEOUT_ERRORS = frozenset({3024, 1317})
READ_ONLY_ERRORS = frozenset({1792})
# Client error numbers
CONNECTION_ERRORS = frozenset({2002, 2003, 2005, 2006, 2013})


def _error_number(error: Exception) -> Optional[int]:
    if error.args and isinstance(error.args[0], int):
        return error.args[0]
    return None


class MySQLConnector(BaseDatabaseConnector):
    """MySQL connector for servers with ``performance_schema`` enabled."""

    component_name = "MySQLConnector"
    version = "1.0.0"
    platform = "mysql"

    async def _create_connection_pool(self) -> aiomysql.Pool:
        pool_config = self.config.pool_config
        return await aiomysql.create_pool(
            host=self.config.host,
            port=self.config.effective_port,
            db=self.config.database,
            user=self.config.credentials.username,
            password=self.config.credentials.password.get_secret_value(),
            minsize=pool_config.min_size,
            maxsize=pool_config.max_size,
            pool_recycle=pool_config.max_inactive_connection_lifetime,
            connect_timeout=self.config.connection_timeout,
            autocommit=True,
            cursorclass=aiomysql.DictCursor,
            init_command="SET SESSION TRANSACTION READ ONLY",
            program_name=APPLICATION_NAME,
            ssl=self._ssl_context(),
        )

    async def _close_pool(self, pool: aiomysql.Pool) -> None:
        pool.close()
        await pool.wait_closed()

    async def _fetch_rows(
        self, conn: Any, sql: str, params: Sequence[Any]
    ) -> List[Dict[str, Any]]:
        async with conn.cursor() as cursor:
            await cursor.execute(sql, tuple(params) if params else None)
            rows = await cursor.fetchall()
        return [dict(row) for row in rows]

    async def _abort_connection(self, conn: Any) -> None:
        conn.close()

    def _translate_error(self, error: Exception, operation: Optional[str]) -> DBPulseException:
        number = _error_number(error)
        context = self._error_context(operation)
        if number is not None:
            context["mysql_errno"] = number

        if number == ER_ACCESS_DENIED:
            return AuthenticationError(
                f"MySQL authentication failed: {error}",
                code=ErrorCodes.AUTH_FAILED,
                context=context,
                cause=error,
            )
        if number in PERMISSION_ERRORS:
            return PermissionDeniedError(
                f"Insufficient privileges: {error}",
                code=ErrorCodes.INSUFFICIENT_PERMISSIONS,
                context=context,
                cause=error,
            )
        if number in UNSUPPORTED_ERRORS:
            return UnsupportedOnEngineError(
                f"Catalog unavailable on this server: {error}",
                code=ErrorCodes.CATALOG_UNAVAILABLE,
                context=context,
                cause=error,
            )
        if number in TIMEOUT_ERRORS:
            return QueryTimeoutError(
                f"Statement interrupted by server: {error}",
                code=ErrorCodes.OPERATION_TIMEOUT,
                context=context,
                cause=error,
            )
        if number in READ_ONLY_ERRORS:
            return ReadOnlyViolationError(
                f"Server refused a write in a read-only session: {error}",
                code=ErrorCodes.READ_ONLY_VIOLATION,
                context=context,
                cause=error,
            )
        if number in CONNECTION_ERRORS or isinstance(
            error, (aiomysql.InterfaceError, ConnectionError, OSError)
        ):
            return ConnectionFailureError(
                f"MySQL connection failed: {error}",
                code=ErrorCodes.CONNECTION_LOST if operation else ErrorCodes.CONNECTION_REFUSED,
                context=context,
                cause=error,
            )
        return QueryError(
            f"MySQL statement failed: {error}",
            code=ErrorCodes.QUERY_EXECUTION_FAILED,
            context=context,
            cause=error,
        )
