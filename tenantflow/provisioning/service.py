"""Provisioning entry point used at organization creation and by admin upgrades."""

import asyncio
import logging
import time
from dataclasses import dataclass

from tenantflow.db.repositories import ProvisioningAuditEntry, ProvisioningMode
from tenantflow.provisioning.audit import ProvisioningAuditLog
from tenantflow.provisioning.provisioner import (
    ProvisionOptions,
    ProvisionResult,
    SchemaProvisioner,
)
from tenantflow.tenancy.errors import InvalidSlugError

logger = logging.getLogger(__name__)


@dataclass
class ProvisioningOutcome:
    """What ``provision_tenant`` hands back.

    ``result`` is None in async mode; poll ``get_status`` with the org id.
    ``audit_id`` is None for dry runs, which are not audited.
    """

    audit_id: str | None
    mode: ProvisioningMode
    result: ProvisionResult | None = None


class TenantProvisioningService:
    """Runs the provisioner with an audit trail, inline or in the background."""

    def __init__(self, provisioner: SchemaProvisioner, audit: ProvisioningAuditLog) -> None:
        self._provisioner = provisioner
        self._audit = audit
        self._tasks: set[asyncio.Task[ProvisionResult]] = set()

    async def provision_tenant(
        self, org_slug: str, org_id: str, options: ProvisionOptions | None = None
    ) -> ProvisioningOutcome:
        """Provision one organization's schema.

        In sync mode the run is awaited and its result returned. In async mode
        a background task is started and the audit id returned immediately.
        """
        options = options or ProvisionOptions()

        if options.dry_run:
            result = await self._safe_provision(org_slug, org_id, options)
            return ProvisioningOutcome(audit_id=None, mode=options.mode, result=result)

        audit_id = await self._audit.record_start(org_id, org_slug, options.mode, options.user_id)

        if options.mode is ProvisioningMode.async_:
            task = asyncio.create_task(self._run(audit_id, org_slug, org_id, options))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
            logger.info(f"Provisioning for {org_slug} started in background (audit {audit_id})")
            return ProvisioningOutcome(audit_id=audit_id, mode=options.mode)

        result = await self._run(audit_id, org_slug, org_id, options)
        return ProvisioningOutcome(audit_id=audit_id, mode=options.mode, result=result)

    async def get_status(self, org_id: str) -> ProvisioningAuditEntry | None:
        """Latest provisioning attempt for an organization."""
        return await self._audit.get_status(org_id)

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def wait_pending(self) -> None:
        """Wait for background runs (shutdown and tests)."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def _safe_provision(
        self, org_slug: str, org_id: str, options: ProvisionOptions
    ) -> ProvisionResult:
        start = time.perf_counter()
        try:
            return await self._provisioner.provision(org_slug, org_id, options)
        except InvalidSlugError as e:
            logger.warning(f"Rejected provisioning for {org_slug!r}: {e}")
            error = str(e)
        except Exception as e:
            logger.exception(f"Provisioning crashed for {org_slug}")
            error = f"{type(e).__name__}: {e}"

        return ProvisionResult(
            success=False,
            schema_name="",
            errors=[error],
            duration_ms=int((time.perf_counter() - start) * 1000),
        )

    async def _run(
        self, audit_id: str, org_slug: str, org_id: str, options: ProvisionOptions
    ) -> ProvisionResult:
        result = await self._safe_provision(org_slug, org_id, options)

        if result.success:
            await self._audit.record_success(audit_id, result.summary, result.duration_ms)
        else:
            await self._audit.record_failure(
                audit_id,
                "; ".join(result.errors),
                {
                    "schema": result.schema_name,
                    "changes": result.changes,
                    "errors": result.errors,
                    "summary": result.summary,
                },
                result.duration_ms,
            )
        return result
