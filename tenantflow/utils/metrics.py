"""Prometheus metrics for tenant query routing, pools and provisioning."""

from prometheus_client import Counter, Histogram

tenant_query_latency_ms = Histogram(
    "tenant_query_latency_ms",
    "Tenant query latency in milliseconds",
    ["outcome"],
    buckets=[5, 10, 25, 50, 100, 250, 500, 1000, 2500, 5000, 10000],
)

tenant_query_errors_total = Counter(
    "tenant_query_errors_total",
    "Total failed tenant queries",
    ["kind"],
)

tenant_slow_queries_total = Counter(
    "tenant_slow_queries_total",
    "Tenant queries exceeding the slow-query threshold",
)

schema_pool_events_total = Counter(
    "schema_pool_events_total",
    "Schema pool lifecycle events",
    ["event"],
)

provisioning_runs_total = Counter(
    "provisioning_runs_total",
    "Schema provisioning runs",
    ["strategy", "outcome"],
)

cross_tenant_access_total = Counter(
    "cross_tenant_access_total",
    "Cross-tenant access decisions",
    ["decision"],
)


class PrometheusTenancyMetrics:
    """Prometheus-based tenancy metrics implementation."""

    def record_query(self, outcome: str, latency_ms: float) -> None:
        """Record query latency."""
        tenant_query_latency_ms.labels(outcome=outcome).observe(latency_ms)

    def inc_query_error(self, kind: str) -> None:
        """Increment error counter."""
        tenant_query_errors_total.labels(kind=kind).inc()

    def inc_slow_query(self) -> None:
        """Increment slow query counter."""
        tenant_slow_queries_total.inc()

    def inc_pool_event(self, event: str) -> None:
        """Increment pool lifecycle counter (created/evicted/closed)."""
        schema_pool_events_total.labels(event=event).inc()

    def inc_provisioning(self, strategy: str, outcome: str) -> None:
        """Increment provisioning counter."""
        provisioning_runs_total.labels(strategy=strategy, outcome=outcome).inc()

    def inc_cross_tenant(self, decision: str) -> None:
        """Increment cross-tenant access counter."""
        cross_tenant_access_total.labels(decision=decision).inc()


class TenancyMetrics:
    """No-op metrics interface."""

    def record_query(self, outcome: str, latency_ms: float) -> None:
        pass

    def inc_query_error(self, kind: str) -> None:
        pass

    def inc_slow_query(self) -> None:
        pass

    def inc_pool_event(self, event: str) -> None:
        pass

    def inc_provisioning(self, strategy: str, outcome: str) -> None:
        pass

    def inc_cross_tenant(self, decision: str) -> None:
        pass
