# src/dbpulse/database/connectors/postgresql.py
"""PostgreSQL connector built on asyncpg.

Every pooled session is opened with ``default_transaction_read_only=on``, so
the engine itself rejects writes even if the statement guard were bypassed.
"""

from typing import Any, Dict, List, Optional, Sequence

import asyncpg

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

# Missing relation, function or column usually means an extension is absent
# or older than expected; pg_stat_statements not in shared_preload_libraries
# raises ObjectNotInPrerequisiteState.
_UNSUPPORTED_ERRORS = (
    asyncpg.UndefinedTableError,
    asyncpg.UndefinedFunctionError,
    asyncpg.UndefinedColumnError,
    asyncpg.ObjectNotInPrerequisiteStateError,
    asyncpg.FeatureNotSupportedError,
)

# InterfaceError is client-side misuse such as a bind mismatch, so it falls
# through to QueryError
_CONNECTION_ERRORS = (
    asyncpg.PostgresConnectionError,
    asyncpg.InvalidCatalogNameError,
    asyncpg.TooManyConnectionsError,
    ConnectionError,
    OSError,
)


class PostgreSQLConnector(BaseDatabaseConnector):
    """PostgreSQL connector; rows come back from asyncpg ``Record`` as dicts."""

    component_name = "PostgreSQLConnector"
    version = "1.0.0"
    platform = "postgresql"

    async def _create_connection_pool(self) -> asyncpg.Pool:
        pool_config = self.config.pool_config
        return await asyncpg.create_pool(
            host=self.config.host,
            port=self.config.effective_port,
            database=self.config.database,
            user=self.config.credentials.username,
            password=self.config.credentials.password.get_secret_value(),
            min_size=pool_config.min_size,
            max_size=pool_config.max_size,
            max_inactive_connection_lifetime=pool_config.max_inactive_connection_lifetime,
            timeout=self.config.connection_timeout,
            ssl=self._ssl_context(),
            server_settings={
                "application_name": APPLICATION_NAME,
                "default_transaction_read_only": "on",
            },
        )

    async def _close_pool(self, pool: asyncpg.Pool) -> None:
        await pool.close()

    async def _fetch_rows(
        self, conn: Any, sql: str, params: Sequence[Any]
    ) -> List[Dict[str, Any]]:
        records = await conn.fetch(sql, *params)
        return [dict(record) for record in records]

    async def _fetch_rows_null_bound(self, conn: Any, sql: str) -> List[Dict[str, Any]]:
        statement = await conn.prepare(sql)
        nulls = [None] * len(statement.get_parameters())
        records = await statement.fetch(*nulls)
        return [dict(record) for record in records]

    async def _abort_connection(self, conn: Any) -> None:
        conn.terminate()

    def _translate_error(self, error: Exception, operation: Optional[str]) -> DBPulseException:
        context = self._error_context(operation)
        sqlstate = getattr(error, "sqlstate", None)
        if sqlstate:
            context["sqlstate"] = sqlstate

        if isinstance(error, asyncpg.InsufficientPrivilegeError):
            return PermissionDeniedError(
                f"Insufficient privileges: {error}",
                code=ErrorCodes.INSUFFICIENT_PERMISSIONS,
                context=context,
                cause=error,
            )
        if isinstance(error, _UNSUPPORTED_ERRORS):
            return UnsupportedOnEngineError(
                f"Catalog unavailable on this server: {error}",
                code=ErrorCodes.CATALOG_UNAVAILABLE,
                context=context,
                cause=error,
            )
        if isinstance(error, asyncpg.QueryCanceledError):
            return QueryTimeoutError(
                f"Statement cancelled by server: {error}",
                code=ErrorCodes.OPERATION_TIMEOUT,
                context=context,
                cause=error,
            )
        if isinstance(error, asyncpg.ReadOnlySQLTransactionError):
            return ReadOnlyViolationError(
                f"Server refused a write in a read-only session: {error}",
                code=ErrorCodes.READ_ONLY_VIOLATION,
                context=context,
                cause=error,
            )
        if isinstance(
            error,
            (asyncpg.InvalidAuthorizationSpecificationError, asyncpg.InvalidPasswordError),
        ):
            return AuthenticationError(
                f"PostgreSQL authentication failed: {error}",
                code=ErrorCodes.AUTH_FAILED,
                context=context,
                cause=error,
            )
        if isinstance(error, _CONNECTION_ERRORS):
            return ConnectionFailureError(
                f"PostgreSQL connection failed: {error}",
                code=ErrorCodes.CONNECTION_LOST if operation else ErrorCodes.CONNECTION_REFUSED,
                context=context,
                cause=error,
            )
        return QueryError(
            f"PostgreSQL statement failed: {error}",
            code=ErrorCodes.QUERY_EXECUTION_FAILED,
            context=context,
            cause=error,
        )
