"""FastAPI application."""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from tenantflow.api.routes.admin import router as admin_router
from tenantflow.api.routes.campaigns import router as campaigns_router
from tenantflow.api.routes.health import router as health_router
from tenantflow.api.routes.metrics import router as metrics_router
from tenantflow.runtime import TenancyRuntime, build_runtime


def create_app(runtime: TenancyRuntime | None = None) -> FastAPI:
    """Build the app; the runtime is created at startup unless one is injected."""

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        app.state.runtime = runtime or build_runtime()
        try:
            yield
        finally:
            await app.state.runtime.aclose()

    app = FastAPI(title="Tenantflow API", version="0.1.0", lifespan=lifespan)

    # Register routes
    app.include_router(health_router, tags=["health"])
    app.include_router(metrics_router, tags=["metrics"])
    app.include_router(admin_router, tags=["admin"])
    app.include_router(campaigns_router, tags=["campaigns"])

    @app.get("/")
    async def root() -> dict[str, str]:
        """Root endpoint."""
        return {"message": "Tenantflow API", "version": "0.1.0"}

    return app


app = create_app()
