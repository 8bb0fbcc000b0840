"""Observability over live schema pools.

Purely read-only: thresholds produce issues, never evictions.
"""

import asyncio
import logging
from dataclasses import asdict, dataclass, field
from typing import Any

from sqlalchemy import text

from tenantflow.db.registry import ConnectionPoolRegistry, PoolStats, SchemaPool

logger = logging.getLogger(__name__)


@dataclass
class HealthReport:
    healthy: bool
    issues: list[str] = field(default_factory=list)
    checked: int = 0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class PoolMonitor:
    """Stats and health probes for every pool in a registry."""

    def __init__(
        self,
        registry: ConnectionPoolRegistry,
        *,
        total_threshold: int | None = None,
        waiting_threshold: int = 5,
        probe_timeout_seconds: float = 5.0,
    ) -> None:
        self._registry = registry
        self._total_threshold = total_threshold
        self._waiting_threshold = waiting_threshold
        self._probe_timeout = probe_timeout_seconds

    def get_pool_stats(self) -> list[PoolStats]:
        """Counters for every live pool, ordered by schema."""
        return [pool.stats() for pool in self._registry.snapshot()]

    async def health_check(self) -> HealthReport:
        """Probe every pool with ``SELECT 1`` and flag leaks or contention.

        Probes run concurrently; a failed probe marks the report unhealthy
        but is reported only against its own schema.
        """
        pools = self._registry.snapshot()
        results = await asyncio.gather(*(self._probe(pool) for pool in pools))

        issues: list[str] = []
        healthy = True
        for pool, error in zip(pools, results, strict=True):
            if error is not None:
                healthy = False
                issues.append(f"Schema {pool.schema}: health check failed - {error}")

            stats = pool.stats()
            if self._total_threshold is None:
                # Overflow is disabled, so a leak shows up as a saturated pool
                if pool.in_use_count >= stats.max_connections:
                    issues.append(
                        f"Schema {pool.schema}: all {stats.max_connections} connections "
                        "checked out, possible connection leak"
                    )
            elif stats.total_count > self._total_threshold:
                issues.append(
                    f"Schema {pool.schema}: high connection count ({stats.total_count}), "
                    "possible connection leak"
                )
            if stats.waiting_count > self._waiting_threshold:
                issues.append(
                    f"Schema {pool.schema}: {stats.waiting_count} requests waiting for a connection"
                )

        if issues:
            logger.warning(
                f"Pool health check found {len(issues)} issues",
                extra={"structured": {"issues": issues, "healthy": healthy}},
            )
        return HealthReport(healthy=healthy, issues=issues, checked=len(pools))

    async def _probe(self, pool: SchemaPool) -> str | None:
        try:
            async with asyncio.timeout(self._probe_timeout):
                async with pool.connect() as conn:
                    await conn.execute(text("SELECT 1"))
        except TimeoutError:
            return f"timed out after {self._probe_timeout}s"
        except Exception as e:
            return f"{type(e).__name__}: {e}"
        return None
