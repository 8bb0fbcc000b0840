"""Cross-tenant authorization choke-point.

Every read or write against a schema other than the caller's own goes through
``AccessValidator.validate`` first. Master cross-org access is allowed and
audited before the decision is returned; everything else is denied.
"""

import logging
from dataclasses import dataclass

from tenantflow.db.context import TenantContext
from tenantflow.db.repositories import AccessAuditEntry, AccessAuditStore, OrganizationDirectory
from tenantflow.tenancy.errors import InvalidSlugError, UnauthorizedCrossTenantAccess
from tenantflow.tenancy.schema_names import SchemaIdentifier, resolve_schema_name
from tenantflow.utils.metrics import TenancyMetrics

logger = logging.getLogger(__name__)

DENIED_REASON = "Unauthorized cross-tenant access"


@dataclass(frozen=True)
class AccessDecision:
    allowed: bool
    reason: str | None = None


class AccessValidator:
    """Decides whether a context may act on a target organization."""

    def __init__(
        self,
        audit_store: AccessAuditStore,
        directory: OrganizationDirectory | None = None,
        *,
        metrics: TenancyMetrics | None = None,
    ) -> None:
        self._audit = audit_store
        self._directory = directory
        self._metrics = metrics or TenancyMetrics()

    async def validate(
        self,
        context: TenantContext,
        target_org_id: str,
        target_schema: SchemaIdentifier | None = None,
        *,
        method: str | None = None,
        path: str | None = None,
    ) -> AccessDecision:
        """Authorize ``context`` against ``target_org_id``.

        Args:
            context: Resolved caller context
            target_org_id: Organization the caller wants to act on
            target_schema: Schema of that organization, if already known
            method: HTTP method, for the audit record
            path: HTTP path, for the audit record

        Returns:
            AccessDecision; denied decisions carry a reason
        """
        if target_org_id == context.organization_id:
            self._metrics.inc_cross_tenant("same_org")
            return AccessDecision(allowed=True)

        schema = target_schema or await self._schema_for(target_org_id)

        if context.is_master:
            self._metrics.inc_cross_tenant("master_allowed")
            logger.info(
                f"Master user {context.user_id} accessing organization {target_org_id}",
                extra={
                    "structured": {
                        "user_id": context.user_id,
                        "home_org_id": context.organization_id,
                        "accessed_org_id": target_org_id,
                        "accessed_schema": str(schema),
                        "method": method,
                        "path": path,
                    }
                },
            )
            await self._record(context, target_org_id, schema, True, method, path, None)
            return AccessDecision(allowed=True)

        self._metrics.inc_cross_tenant("denied")
        logger.warning(
            f"Denied cross-tenant access by {context.user_id} "
            f"from {context.organization_id} to {target_org_id}",
            extra={
                "structured": {
                    "user_id": context.user_id,
                    "role": context.role,
                    "home_org_id": context.organization_id,
                    "accessed_org_id": target_org_id,
                    "method": method,
                    "path": path,
                }
            },
        )
        await self._record(context, target_org_id, schema, False, method, path, DENIED_REASON)
        return AccessDecision(allowed=False, reason=DENIED_REASON)

    async def ensure(
        self,
        context: TenantContext,
        target_org_id: str,
        target_schema: SchemaIdentifier | None = None,
        *,
        method: str | None = None,
        path: str | None = None,
    ) -> None:
        """Raising form of ``validate`` for write paths.

        Raises:
            UnauthorizedCrossTenantAccess: If access is denied
        """
        decision = await self.validate(
            context, target_org_id, target_schema, method=method, path=path
        )
        if not decision.allowed:
            raise UnauthorizedCrossTenantAccess(
                context.user_id, target_org_id, decision.reason or DENIED_REASON
            )

    async def _schema_for(self, org_id: str) -> str:
        if self._directory is None:
            return ""
        try:
            org = await self._directory.get_organization(org_id)
            return resolve_schema_name(org.slug).value if org is not None else ""
        except InvalidSlugError:
            return ""
        except Exception as e:
            logger.error(f"Directory lookup for {org_id} failed: {e}")
            return ""

    async def _record(
        self,
        context: TenantContext,
        target_org_id: str,
        schema: SchemaIdentifier | str,
        allowed: bool,
        method: str | None,
        path: str | None,
        reason: str | None,
    ) -> None:
        entry = AccessAuditEntry(
            user_id=context.user_id,
            user_role=context.role,
            home_org_id=context.organization_id,
            accessed_org_id=target_org_id,
            accessed_schema=str(schema),
            allowed=allowed,
            method=method,
            path=path,
            reason=reason,
        )
        try:
            await self._audit.record(entry)
        except Exception as e:
            logger.error(f"Failed to record tenant access for {context.user_id}: {e}")
