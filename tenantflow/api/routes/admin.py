"""Master administration: pool observability, provisioning, cross-tenant reads."""

from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status

from tenantflow.api.auth import get_runtime, require_master
from tenantflow.db.context import TenantContext
from tenantflow.db.repositories import OrganizationRecord, ProvisioningMode
from tenantflow.models.admin import (
    PoolHealthOut,
    PoolStatsOut,
    ProvisioningStatusOut,
    ProvisionResponse,
    ProvisionResultOut,
)
from tenantflow.provisioning.provisioner import ProvisionOptions
from tenantflow.runtime import TenancyRuntime
from tenantflow.tenancy.schema_names import SchemaIdentifier, qualified

router = APIRouter(prefix="/admin")

Runtime = Annotated[TenancyRuntime, Depends(get_runtime)]
Master = Annotated[TenantContext, Depends(require_master)]


async def _load_org(runtime: TenancyRuntime, org_id: str) -> OrganizationRecord:
    org = await runtime.directory.get_organization(org_id)
    if org is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Organization not found")
    return org


async def _authorize(
    runtime: TenancyRuntime, context: TenantContext, org_id: str, request: Request
) -> None:
    decision = await runtime.validator.validate(
        context, org_id, method=request.method, path=request.url.path
    )
    if not decision.allowed:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=decision.reason)


@router.get("/pools", response_model=list[PoolStatsOut])
async def list_pools(runtime: Runtime, _: Master) -> list[PoolStatsOut]:
    """Counters for every live schema pool."""
    return [
        PoolStatsOut(
            schema_name=s.schema,
            total_count=s.total_count,
            idle_count=s.idle_count,
            waiting_count=s.waiting_count,
            max_connections=s.max_connections,
        )
        for s in runtime.monitor.get_pool_stats()
    ]


@router.get("/pools/health", response_model=PoolHealthOut)
async def pools_health(runtime: Runtime, _: Master) -> PoolHealthOut:
    """Probe every live schema pool."""
    report = await runtime.monitor.health_check()
    return PoolHealthOut(healthy=report.healthy, issues=report.issues, checked=report.checked)


@router.post("/organizations/{org_id}/provision", response_model=ProvisionResponse)
async def provision_organization(
    org_id: str,
    request: Request,
    runtime: Runtime,
    context: Master,
    mode: Annotated[ProvisioningMode, Query()] = ProvisioningMode.sync,
    dry_run: Annotated[bool, Query()] = False,
) -> ProvisionResponse:
    """Create or upgrade an organization's schema.

    Sync mode returns the full result; async mode returns the audit id and
    runs in the background (poll provisioning-status).
    """
    org = await _load_org(runtime, org_id)
    await _authorize(runtime, context, org_id, request)

    outcome = await runtime.provisioning.provision_tenant(
        org.slug,
        org.id,
        ProvisionOptions(dry_run=dry_run, mode=mode, user_id=context.user_id),
    )
    result = (
        ProvisionResultOut(**outcome.result.to_dict()) if outcome.result is not None else None
    )
    return ProvisionResponse(audit_id=outcome.audit_id, mode=outcome.mode.value, result=result)


@router.get(
    "/organizations/{org_id}/provisioning-status", response_model=ProvisioningStatusOut
)
async def provisioning_status(
    org_id: str, request: Request, runtime: Runtime, context: Master
) -> ProvisioningStatusOut:
    """Latest provisioning attempt for an organization."""
    await _authorize(runtime, context, org_id, request)

    entry = await runtime.provisioning.get_status(org_id)
    if entry is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="No provisioning attempts recorded"
        )
    return ProvisioningStatusOut(
        id=entry.id,
        org_id=entry.org_id,
        org_slug=entry.org_slug,
        mode=entry.mode.value,
        status=entry.status.value,
        summary=entry.summary,
        error=entry.error,
        duration_ms=entry.duration_ms,
        user_id=entry.user_id,
        created_at=entry.created_at,
        updated_at=entry.updated_at,
    )


@router.get("/campaigns")
async def all_campaigns(
    request: Request, runtime: Runtime, context: Master
) -> list[dict[str, Any]]:
    """Campaign headlines across every active tenant."""

    async def read(schema: SchemaIdentifier) -> list[dict[str, Any]]:
        result = await runtime.executor.safe_query(
            schema,
            f'SELECT "id", "name", "status", "startDate", "endDate" '
            f'FROM {qualified(schema, "Campaign")} ORDER BY "startDate" DESC',
        )
        return result.data

    return await runtime.fanout.collect(
        context, read, method=request.method, path=request.url.path
    )
