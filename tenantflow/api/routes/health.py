"""Health check endpoints.

- /health: liveness, always 200
- /healthz: shared database plus every live schema pool; 503 when degraded
"""

from typing import Annotated, Any

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy import text

from tenantflow.api.auth import get_runtime
from tenantflow.runtime import TenancyRuntime

router = APIRouter()


async def check_db(runtime: TenancyRuntime) -> tuple[bool, str]:
    """Check shared database connectivity.

    Returns:
        (is_ok, status_message)
    """
    try:
        async with runtime.shared_engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return (True, "ok")
    except Exception as e:
        return (False, f"error: {type(e).__name__}")


@router.get("/health")
async def health() -> dict[str, str]:
    """Simple health check for Docker/k8s.

    Returns:
        200 OK always (application is running)
    """
    return {"status": "ok"}


@router.get("/healthz", response_model=None)
async def healthz(
    runtime: Annotated[TenancyRuntime, Depends(get_runtime)],
) -> dict[str, Any] | JSONResponse:
    """Health check endpoint.

    Returns:
        200 with component status if core systems ok
        503 if the shared database or any schema pool fails its probe
    """
    db_ok, db_status = await check_db(runtime)
    pools = await runtime.monitor.health_check()

    core_ok = db_ok and pools.healthy
    response_body = {
        "status": "ok" if core_ok else "degraded",
        "components": {
            "db": db_status,
            "pools": {
                "healthy": pools.healthy,
                "checked": pools.checked,
                "issues": pools.issues,
            },
        },
    }

    if not core_ok:
        return JSONResponse(content=response_body, status_code=503)
    return response_body
