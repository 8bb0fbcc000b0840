"""Per-schema connection pool registry.

One bounded pool per tenant schema, created lazily on first access and shared
by every request for that schema until it is evicted or the process shuts down.
"""

import asyncio
import logging
import threading
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from tenantflow.tenancy.schema_names import SchemaIdentifier
from tenantflow.utils.metrics import TenancyMetrics

logger = logging.getLogger(__name__)

EngineFactory = Callable[[SchemaIdentifier], AsyncEngine]


@dataclass(frozen=True)
class PoolStats:
    """Point-in-time counters for one schema pool."""

    schema: str
    total_count: int
    idle_count: int
    waiting_count: int
    max_connections: int


@dataclass
class SchemaPool:
    """Connection pool handle for a single tenant schema."""

    schema: SchemaIdentifier
    engine: AsyncEngine
    max_connections: int
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    waiting_count: int = 0

    @property
    def idle_count(self) -> int:
        return int(self.engine.pool.checkedin())

    @property
    def in_use_count(self) -> int:
        return int(self.engine.pool.checkedout())

    @property
    def total_count(self) -> int:
        return self.idle_count + self.in_use_count

    def stats(self) -> PoolStats:
        return PoolStats(
            schema=self.schema.value,
            total_count=self.total_count,
            idle_count=self.idle_count,
            waiting_count=self.waiting_count,
            max_connections=self.max_connections,
        )

    @asynccontextmanager
    async def connect(self) -> AsyncIterator[AsyncConnection]:
        """Acquire a pooled connection, counting callers blocked on acquisition."""
        self.waiting_count += 1
        acquired = False
        try:
            async with self.engine.connect() as conn:
                self.waiting_count -= 1
                acquired = True
                yield conn
        finally:
            if not acquired:
                self.waiting_count -= 1

    @asynccontextmanager
    async def begin(self) -> AsyncIterator[AsyncConnection]:
        """Acquire a pooled connection inside a transaction."""
        self.waiting_count += 1
        acquired = False
        try:
            async with self.engine.begin() as conn:
                self.waiting_count -= 1
                acquired = True
                yield conn
        finally:
            if not acquired:
                self.waiting_count -= 1

    async def dispose(self) -> None:
        await self.engine.dispose()


class ConnectionPoolRegistry:
    """Owns one ``SchemaPool`` per schema.

    The map is the only process-wide mutable state in the tenancy layer. All
    mutations happen under ``_lock`` and never across an ``await``, so
    concurrent first access to a schema yields exactly one pool.
    """

    def __init__(
        self,
        engine_factory: EngineFactory,
        *,
        max_connections: int = 5,
        metrics: TenancyMetrics | None = None,
    ) -> None:
        self._engine_factory = engine_factory
        self._max_connections = max_connections
        self._metrics = metrics or TenancyMetrics()
        self._pools: dict[SchemaIdentifier, SchemaPool] = {}
        self._lock = threading.Lock()
        self._closed = False

    @property
    def max_connections(self) -> int:
        return self._max_connections

    def get_or_create(self, schema: SchemaIdentifier) -> SchemaPool:
        """Return the schema's pool, creating it on first access.

        Raises:
            RuntimeError: If the registry has been closed.
        """
        if not isinstance(schema, SchemaIdentifier):
            raise TypeError("schema must be a SchemaIdentifier from resolve_schema_name()")

        with self._lock:
            if self._closed:
                raise RuntimeError("ConnectionPoolRegistry is closed")

            pool = self._pools.get(schema)
            if pool is None:
                pool = SchemaPool(
                    schema=schema,
                    engine=self._engine_factory(schema),
                    max_connections=self._max_connections,
                )
                self._pools[schema] = pool
                created = True
            else:
                created = False

        if created:
            self._metrics.inc_pool_event("created")
            logger.info(
                f"Created connection pool for {schema}",
                extra={"structured": {"schema": schema.value, "max": self._max_connections}},
            )
        return pool

    def get(self, schema: SchemaIdentifier) -> SchemaPool | None:
        """Return the live pool for a schema without creating one."""
        with self._lock:
            return self._pools.get(schema)

    def snapshot(self) -> list[SchemaPool]:
        """All live pools, ordered by schema name."""
        with self._lock:
            pools = list(self._pools.values())
        return sorted(pools, key=lambda p: p.schema.value)

    def __len__(self) -> int:
        with self._lock:
            return len(self._pools)

    def __contains__(self, schema: Any) -> bool:
        with self._lock:
            return schema in self._pools

    async def evict(self, schema: SchemaIdentifier, expected: SchemaPool | None = None) -> bool:
        """Remove and dispose a schema's pool.

        When ``expected`` is given, the pool is only removed if it is still
        that object; a newer pool created by a concurrent request is kept.

        Returns:
            True if a pool was removed.
        """
        with self._lock:
            current = self._pools.get(schema)
            if current is None or (expected is not None and current is not expected):
                return False
            del self._pools[schema]

        self._metrics.inc_pool_event("evicted")
        logger.warning(
            f"Evicted connection pool for {schema}",
            extra={"structured": {"schema": schema.value}},
        )
        try:
            await current.dispose()
        except Exception as e:
            logger.error(f"Error disposing evicted pool for {schema}: {e}")
        return True

    async def close_all(self) -> None:
        """Dispose every pool; used at process shutdown."""
        with self._lock:
            pools = list(self._pools.values())
            self._pools.clear()
            self._closed = True

        results = await asyncio.gather(*(p.dispose() for p in pools), return_exceptions=True)
        for pool, result in zip(pools, results, strict=True):
            if isinstance(result, Exception):
                logger.error(f"Error closing pool for {pool.schema}: {result}")
            else:
                self._metrics.inc_pool_event("closed")

        logger.info(f"Closed {len(pools)} schema connection pools")
