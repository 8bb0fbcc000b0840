"""Auth dependencies.

The resolver returns None for unauthenticated requests; this module maps that
to 401 and non-master access to master-only routes to 403.
"""

from typing import Annotated

from fastapi import Depends, HTTPException, Request, status

from tenantflow.db.context import TenantContext
from tenantflow.runtime import TenancyRuntime


def get_runtime(request: Request) -> TenancyRuntime:
    """Runtime stored on the app by the lifespan handler."""
    runtime: TenancyRuntime | None = getattr(request.app.state, "runtime", None)
    if runtime is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Tenancy runtime not initialized",
        )
    return runtime


async def get_tenant_context(
    request: Request,
    runtime: Annotated[TenancyRuntime, Depends(get_runtime)],
) -> TenantContext:
    """Resolve the caller's tenant context.

    Raises:
        HTTPException: 401 if the request is not authenticated
    """
    context = await runtime.resolver.resolve(request)
    if context is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return context


async def require_master(
    context: Annotated[TenantContext, Depends(get_tenant_context)],
) -> TenantContext:
    """Allow only master administrators.

    Raises:
        HTTPException: 403 for any other role
    """
    if not context.is_master:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Master role required",
        )
    return context
