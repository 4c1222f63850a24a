# src/dbpulse/database/connectors/mssql.py
"""Microsoft SQL Server connector built on aioodbc.

Connections are opened with ``ApplicationIntent=ReadOnly`` and the ODBC
read-only access mode. A primary replica enforces neither, so there the
statement guard and the login's own permissions are the only write barriers.
Statements use ``?`` placeholders. The ODBC driver name comes from
``options["odbc_driver"]``.
"""

import re
from typing import Any, Dict, List, Optional, Sequence

import aioodbc
import pyodbc

from dbpulse.core.exceptions import (
    AuthenticationError,
    ConnectionFailureError,
    DBPulseException,
    ErrorCodes,
    PermissionDeniedError,
    QueryError,
    QueryTimeoutError,
    UnsupportedOnEngineError,
)
from dbpulse.database.base import BaseDatabaseConnector

APPLICATION_NAME = "dbpulse"
DEFAULT_ODBC_DRIVER = "ODBC Driver 18 for SQL Server"

AUTH_SQLSTATES = frozenset({"28000"})
CONNECTION_SQLSTATES = frozenset({"08001", "08S01", "08004", "HYT01", "01000"})
TIMEOUT_SQLSTATES = frozenset({"HYT00"})
UNSUPPORTED_SQLSTATES = frozenset({"42S02", "42S22"})
# Native error numbers: permission denied on object, column, database, server
PERMISSION_NATIVE_ERRORS = frozenset({229, 230, 262, 297, 300})

_NATIVE_ERROR = re.compile(r"\((\d+)\)")
_PERMISSION_TEXT = re.compile(r"permission.*denied", re.IGNORECASE)


def _quote_odbc_value(value: str) -> str:
    """Brace-quote a connection string value when it needs it."""
    if any(ch in value for ch in ";{}=") or value != value.strip():
        return "{" + value.replace("}", "}}") + "}"
    return value


def _sqlstate(error: Exception) -> Optional[str]:
    if error.args and isinstance(error.args[0], str) and len(error.args[0]) == 5:
        return error.args[0]
    return None


def _native_errors(error: Exception) -> List[int]:
    message = str(error.args[1]) if len(error.args) > 1 else str(error)
    return [int(number) for number in _NATIVE_ERROR.findall(message)]


class MSSQLConnector(BaseDatabaseConnector):
    """SQL Server connector for the dynamic management views and Query Store."""

    component_name = "MSSQLConnector"
    version = "1.0.0"
    platform = "mssql"

    def build_dsn(self) -> str:
        """ODBC connection string for this database, password included."""
        credentials = self.config.credentials
        ssl_config = self.config.ssl_config
        parts = {
            "DRIVER": "{" + self.config.options.get("odbc_driver", DEFAULT_ODBC_DRIVER) + "}",
            "SERVER": f"{self.config.host},{self.config.effective_port}",
            "DATABASE": _quote_odbc_value(self.config.database),
            "UID": _quote_odbc_value(credentials.username),
            "PWD": _quote_odbc_value(credentials.password.get_secret_value()),
            "APP": APPLICATION_NAME,
            "ApplicationIntent": "ReadOnly",
            "Encrypt": "yes" if ssl_config.enabled else "no",
            "TrustServerCertificate": "no" if ssl_config.verify_mode == "required" else "yes",
        }
        return ";".join(f"{key}={value}" for key, value in parts.items())

    async def _create_connection_pool(self) -> Any:
        pool_config = self.config.pool_config
        return await aioodbc.create_pool(
            dsn=self.build_dsn(),
            minsize=pool_config.min_size,
            maxsize=pool_config.max_size,
            pool_recycle=pool_config.max_inactive_connection_lifetime,
            autocommit=True,
            timeout=self.config.connection_timeout,
            readonly=True,
        )

    async def _close_pool(self, pool: Any) -> None:
        pool.close()
        await pool.wait_closed()

    async def _fetch_rows(
        self, conn: Any, sql: str, params: Sequence[Any]
    ) -> List[Dict[str, Any]]:
        async with conn.cursor() as cursor:
            await cursor.execute(sql, *params)
            if cursor.description is None:
                return []
            columns = [column[0] for column in cursor.description]
            rows = await cursor.fetchall()
        return [dict(zip(columns, row)) for row in rows]

    async def _abort_connection(self, conn: Any) -> None:
        await conn.close()

    def _translate_error(self, error: Exception, operation: Optional[str]) -> DBPulseException:
        sqlstate = _sqlstate(error) if isinstance(error, pyodbc.Error) else None
        native = _native_errors(error) if isinstance(error, pyodbc.Error) else []
        context = self._error_context(operation)
        if sqlstate:
            context["sqlstate"] = sqlstate
        if native:
            context["native_errors"] = native

        if sqlstate in AUTH_SQLSTATES:
            return AuthenticationError(
                f"SQL Server authentication failed: {error}",
                code=ErrorCodes.AUTH_FAILED,
                context=context,
                cause=error,
            )
        if PERMISSION_NATIVE_ERRORS.intersection(native) or _PERMISSION_TEXT.search(str(error)):
            return PermissionDeniedError(
                f"Insufficient privileges: {error}",
                code=ErrorCodes.INSUFFICIENT_PERMISSIONS,
                context=context,
                cause=error,
            )
        if sqlstate in TIMEOUT_SQLSTATES:
            return QueryTimeoutError(
                f"Statement timed out on server: {error}",
                code=ErrorCodes.OPERATION_TIMEOUT,
                context=context,
                cause=error,
            )
        if sqlstate in UNSUPPORTED_SQLSTATES:
            return UnsupportedOnEngineError(
                f"Catalog unavailable on this server: {error}",
                code=ErrorCodes.CATALOG_UNAVAILABLE,
                context=context,
                cause=error,
            )
        if (
            sqlstate in CONNECTION_SQLSTATES
            or isinstance(error, (pyodbc.InterfaceError, pyodbc.OperationalError))
            or isinstance(error, (ConnectionError, OSError))
        ):
            return ConnectionFailureError(
                f"SQL Server connection failed: {error}",
                code=ErrorCodes.CONNECTION_LOST if operation else ErrorCodes.CONNECTION_REFUSED,
                context=context,
                cause=error,
            )
        return QueryError(
            f"SQL Server statement failed: {error}",
            code=ErrorCodes.QUERY_EXECUTION_FAILED,
            context=context,
            cause=error,
        )
