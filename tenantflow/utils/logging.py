"""Structured logging for tenant query execution."""

import logging
from typing import Any

from tenantflow.tenancy.errors import QueryError
from tenantflow.tenancy.schema_names import SchemaIdentifier

logger = logging.getLogger(__name__)

_HINTS = {
    "relation_missing": "Table may not exist yet; check whether the schema is provisioned",
    "permission_denied": "Check database grants for the schema",
    "connection_error": "Pool evicted; next call builds a fresh pool",
    "timeout": "Query or connection acquisition timed out",
}


class QueryLogger:
    """Structured logger for tenant queries.

    Outside debug mode, SQL text is cut to ``max_chars`` and parameters are
    never written.
    """

    def __init__(self, max_chars: int = 100, debug: bool = False) -> None:
        self._max_chars = max_chars
        self._debug = debug

    def preview(self, sql: str) -> str:
        """Collapse whitespace and truncate SQL for logs."""
        compact = " ".join(sql.split())
        if self._debug or len(compact) <= self._max_chars:
            return compact
        return compact[: self._max_chars] + "..."

    def _payload(
        self, schema: SchemaIdentifier, sql: str, params: Any, elapsed_ms: float
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "schema": schema.value,
            "query": self.preview(sql),
            "elapsed_ms": round(elapsed_ms, 2),
        }
        if self._debug and params:
            payload["params"] = params
        return payload

    def log_query(
        self, schema: SchemaIdentifier, sql: str, params: Any, elapsed_ms: float
    ) -> None:
        """Log a successful query at DEBUG."""
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug(
                f"[{schema}] query ok",
                extra={"structured": self._payload(schema, sql, params, elapsed_ms)},
            )

    def log_slow(
        self, schema: SchemaIdentifier, sql: str, params: Any, elapsed_ms: float
    ) -> None:
        """Log a query that crossed the slow-query threshold."""
        logger.warning(
            f"Slow query detected ({elapsed_ms:.0f}ms) for {schema}: {self.preview(sql)}",
            extra={"structured": self._payload(schema, sql, params, elapsed_ms)},
        )

    def log_error(
        self, schema: SchemaIdentifier, sql: str, params: Any, error: QueryError
    ) -> None:
        """Log a classified query failure."""
        payload = self._payload(schema, sql, params, error.elapsed_ms)
        payload["error_kind"] = error.kind.value
        payload["error"] = str(error)
        hint = _HINTS.get(error.kind.value)
        if hint:
            payload["hint"] = hint
        logger.error(f"[{schema}] query failed ({error.kind.value})", extra={"structured": payload})
