"""Prometheus metrics endpoint."""

from fastapi import APIRouter, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

router = APIRouter()


@router.get("/metrics")
async def metrics() -> Response:
    """Prometheus metrics endpoint.

    Exposes all registered Prometheus metrics including:
    - tenant_query_latency_ms{outcome}
    - tenant_query_errors_total{kind}
    - schema_pool_events_total{event}
    - provisioning_runs_total{strategy, outcome}
    - cross_tenant_access_total{decision}
    """
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
