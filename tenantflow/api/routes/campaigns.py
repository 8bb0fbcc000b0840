"""Campaign reads: the caller's own schema, or another organization's through the validator."""

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status

from tenantflow.api.auth import get_runtime, get_tenant_context
from tenantflow.db.context import TenantContext
from tenantflow.db.tenant_repository import CAMPAIGNS, TenantRepository
from tenantflow.models.entities import Campaign
from tenantflow.runtime import TenancyRuntime
from tenantflow.tenancy.errors import InvalidSlugError
from tenantflow.tenancy.schema_names import resolve_schema_name

router = APIRouter()

Runtime = Annotated[TenancyRuntime, Depends(get_runtime)]
Context = Annotated[TenantContext, Depends(get_tenant_context)]


@router.get("/campaigns", response_model=list[Campaign])
async def list_campaigns(
    runtime: Runtime,
    context: Context,
    status_filter: Annotated[str | None, Query(alias="status")] = None,
    limit: Annotated[int, Query(ge=1, le=500)] = 100,
) -> list[Campaign]:
    """Campaigns in the caller's own schema (empty if not provisioned yet)."""
    repo = TenantRepository.for_context(runtime.executor, CAMPAIGNS, context)
    where = {"status": status_filter} if status_filter else None
    return await repo.find_many(where, limit=limit)


@router.get("/organizations/{org_id}/campaigns", response_model=list[Campaign])
async def list_org_campaigns(
    org_id: str,
    request: Request,
    runtime: Runtime,
    context: Context,
    limit: Annotated[int, Query(ge=1, le=500)] = 100,
) -> list[Campaign]:
    """Campaigns of a specific organization.

    Raises:
        HTTPException: 404 for unknown organizations, 403 for denied cross-tenant access
    """
    org = await runtime.directory.get_organization(org_id)
    if org is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Organization not found")

    try:
        schema = resolve_schema_name(org.slug)
    except InvalidSlugError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e

    decision = await runtime.validator.validate(
        context, org.id, schema, method=request.method, path=request.url.path
    )
    if not decision.allowed:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=decision.reason)

    repo = TenantRepository(runtime.executor, CAMPAIGNS, schema)
    return await repo.find_many(limit=limit)
