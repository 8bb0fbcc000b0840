"""Schema-routed query execution with error classification and self-healing pools.

Every query names its schema explicitly. There is no implicit fallback to
another schema: the only connections used are the ones from that schema's
pool, whose ``search_path`` is ``<schema>,public``.
"""

import logging
import time
from collections.abc import AsyncIterator, Mapping
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import exc as sa_exc
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncConnection

from tenantflow.db.registry import ConnectionPoolRegistry, SchemaPool
from tenantflow.tenancy.errors import (
    ErrorKind,
    PermissionDeniedError,
    PoolConnectionError,
    QueryError,
    QueryTimeoutError,
    SchemaNotFoundError,
    TableMissingError,
)
from tenantflow.tenancy.schema_names import SchemaIdentifier
from tenantflow.utils.logging import QueryLogger
from tenantflow.utils.metrics import TenancyMetrics

logger = logging.getLogger(__name__)

Params = Mapping[str, Any] | None

# SQLSTATE codes (PostgreSQL appendix A)
_INVALID_SCHEMA = "3F000"
_RELATION_MISSING = {"42P01", "42703", "42883", _INVALID_SCHEMA}
_PERMISSION_DENIED = {"42501"}
_TIMEOUT = {"57014", "55P03"}
_CONNECTION_STATES = {"57P01", "57P02", "57P03"}


@dataclass
class QueryResult:
    """Outcome of ``safe_query``: rows, or an empty list plus the error."""

    data: list[dict[str, Any]] = field(default_factory=list)
    error: QueryError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def _sqlstate(exc: BaseException) -> str | None:
    """Find a SQLSTATE on the exception, its DBAPI ``orig`` or their causes."""
    seen: set[int] = set()
    pending: list[BaseException | None] = [exc]
    while pending:
        current = pending.pop()
        if current is None or id(current) in seen:
            continue
        seen.add(id(current))
        for attr in ("sqlstate", "pgcode"):
            code = getattr(current, attr, None)
            if isinstance(code, str) and code:
                return code
        pending.extend([getattr(current, "orig", None), current.__cause__])
    return None


def classify_error(exc: BaseException) -> ErrorKind:
    """Classify a database failure.

    SQLSTATE wins when present; otherwise exception type, then message text.
    """
    code = _sqlstate(exc)
    if code:
        if code in _RELATION_MISSING:
            return ErrorKind.relation_missing
        if code in _PERMISSION_DENIED:
            return ErrorKind.permission_denied
        if code in _TIMEOUT:
            return ErrorKind.timeout
        if code.startswith("08") or code in _CONNECTION_STATES:
            return ErrorKind.connection_error

    # TimeoutError is an OSError subclass, so it must be checked first
    if isinstance(exc, (TimeoutError, sa_exc.TimeoutError)):
        return ErrorKind.timeout
    if isinstance(exc, sa_exc.DBAPIError) and exc.connection_invalidated:
        return ErrorKind.connection_error
    if isinstance(exc, (OSError, sa_exc.DisconnectionError, sa_exc.InterfaceError)):
        return ErrorKind.connection_error

    message = str(exc).lower()
    if "does not exist" in message:
        return ErrorKind.relation_missing
    if "permission denied" in message:
        return ErrorKind.permission_denied
    if "timeout" in message or "timed out" in message:
        return ErrorKind.timeout
    if "connection" in message or "terminated" in message:
        return ErrorKind.connection_error
    return ErrorKind.other


def is_database_error(exc: BaseException) -> bool:
    """True for driver, SQLAlchemy or socket failures; False for caller code errors."""
    if isinstance(exc, (sa_exc.SQLAlchemyError, OSError)):
        return True
    return _sqlstate(exc) is not None


def to_query_error(exc: BaseException, schema: SchemaIdentifier, elapsed_ms: float) -> QueryError:
    """Wrap a raw failure in the matching typed error."""
    if isinstance(exc, QueryError):
        return exc

    kind = classify_error(exc)
    message = f"{schema}: {exc}"

    if kind is ErrorKind.relation_missing:
        if _sqlstate(exc) == _INVALID_SCHEMA or "schema" in str(exc).lower():
            return SchemaNotFoundError(message, schema=schema.value, elapsed_ms=elapsed_ms)
        return TableMissingError(message, schema=schema.value, elapsed_ms=elapsed_ms)
    if kind is ErrorKind.permission_denied:
        return PermissionDeniedError(message, schema=schema.value, elapsed_ms=elapsed_ms)
    if kind is ErrorKind.connection_error:
        return PoolConnectionError(message, schema=schema.value, elapsed_ms=elapsed_ms)
    if kind is ErrorKind.timeout:
        return QueryTimeoutError(message, schema=schema.value, elapsed_ms=elapsed_ms)
    return QueryError(message, schema=schema.value, elapsed_ms=elapsed_ms)


class QueryExecutor:
    """Runs parameterized SQL against a named tenant schema."""

    def __init__(
        self,
        registry: ConnectionPoolRegistry,
        *,
        slow_query_threshold_ms: int = 1000,
        query_logger: QueryLogger | None = None,
        metrics: TenancyMetrics | None = None,
    ) -> None:
        self._registry = registry
        self._slow_ms = slow_query_threshold_ms
        self._log = query_logger or QueryLogger()
        self._metrics = metrics or TenancyMetrics()

    @property
    def registry(self) -> ConnectionPoolRegistry:
        return self._registry

    async def query(
        self, schema: SchemaIdentifier, sql: str, params: Params = None
    ) -> list[dict[str, Any]]:
        """Execute a statement and return its rows as dicts.

        Raises:
            QueryError: Typed subclass describing the failure.
        """
        pool = self._acquire_pool(schema)
        start = time.perf_counter()

        try:
            async with pool.connect() as conn:
                rows = await self._execute(conn, sql, params)
                await conn.commit()
        except Exception as e:
            elapsed_ms = (time.perf_counter() - start) * 1000
            error = to_query_error(e, schema, elapsed_ms)
            await self._on_failure(pool, sql, params, error)
            raise error from e

        self._on_success(schema, sql, params, (time.perf_counter() - start) * 1000)
        return rows

    async def safe_query(
        self, schema: SchemaIdentifier, sql: str, params: Params = None
    ) -> QueryResult:
        """Execute a read; never raises.

        A missing relation (schema not yet provisioned) comes back as an empty
        ``data`` list with the error attached.
        """
        try:
            return QueryResult(data=await self.query(schema, sql, params))
        except QueryError as e:
            return QueryResult(data=[], error=e)

    @asynccontextmanager
    async def transaction(self, schema: SchemaIdentifier) -> AsyncIterator["TenantTransaction"]:
        """Run several statements on one connection inside one transaction.

        Commits on normal exit, rolls back if the block raises. Exceptions
        raised by the caller's own code inside the block are re-raised as is.

        Raises:
            QueryError: Typed failure (the transaction is rolled back).
        """
        pool = self._acquire_pool(schema)
        start = time.perf_counter()
        try:
            async with pool.begin() as conn:
                yield TenantTransaction(conn, schema)
        except QueryError as e:
            await self._on_failure(pool, "<transaction>", None, e)
            raise
        except Exception as e:
            if not is_database_error(e):
                raise
            elapsed_ms = (time.perf_counter() - start) * 1000
            error = to_query_error(e, schema, elapsed_ms)
            await self._on_failure(pool, "<transaction>", None, error)
            raise error from e

        self._on_success(schema, "<transaction>", None, (time.perf_counter() - start) * 1000)

    def _acquire_pool(self, schema: SchemaIdentifier) -> SchemaPool:
        try:
            return self._registry.get_or_create(schema)
        except RuntimeError as e:
            # Registry closed during shutdown
            error = PoolConnectionError(f"{schema}: {e}", schema=schema.value)
            self._metrics.record_query("error", 0.0)
            self._metrics.inc_query_error(error.kind.value)
            self._log.log_error(schema, "<acquire>", None, error)
            raise error from e

    @staticmethod
    async def _execute(conn: AsyncConnection, sql: str, params: Params) -> list[dict[str, Any]]:
        result = await conn.execute(text(sql), dict(params or {}))
        if not result.returns_rows:
            return []
        return [dict(row) for row in result.mappings().all()]

    def _on_success(
        self, schema: SchemaIdentifier, sql: str, params: Params, elapsed_ms: float
    ) -> None:
        self._metrics.record_query("success", elapsed_ms)
        if elapsed_ms > self._slow_ms:
            self._metrics.inc_slow_query()
            self._log.log_slow(schema, sql, params, elapsed_ms)
        else:
            self._log.log_query(schema, sql, params, elapsed_ms)

    async def _on_failure(
        self, pool: SchemaPool, sql: str, params: Params, error: QueryError
    ) -> None:
        self._metrics.record_query("error", error.elapsed_ms)
        self._metrics.inc_query_error(error.kind.value)
        self._log.log_error(pool.schema, sql, params, error)

        if error.kind is ErrorKind.connection_error:
            await self._registry.evict(pool.schema, expected=pool)


class TenantTransaction:
    """Statement runner bound to one connection of one schema."""

    def __init__(self, conn: AsyncConnection, schema: SchemaIdentifier) -> None:
        self._conn = conn
        self.schema = schema

    async def query(self, sql: str, params: Params = None) -> list[dict[str, Any]]:
        start = time.perf_counter()
        try:
            return await QueryExecutor._execute(self._conn, sql, params)
        except Exception as e:
            raise to_query_error(e, self.schema, (time.perf_counter() - start) * 1000) from e
