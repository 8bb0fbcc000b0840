"""Master-only fan-out of one read across every active tenant schema."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from tenantflow.db.context import TenantContext
from tenantflow.db.repositories import OrganizationDirectory, OrganizationRecord
from tenantflow.tenancy.access import AccessValidator
from tenantflow.tenancy.errors import InvalidSlugError, UnauthorizedCrossTenantAccess
from tenantflow.tenancy.schema_names import SchemaIdentifier, resolve_schema_name

logger = logging.getLogger(__name__)

SchemaReader = Callable[[SchemaIdentifier], Awaitable[list[dict[str, Any]]]]


class TenantFanout:
    """Runs a reader against every active organization's schema.

    Each organization is authorized through the AccessValidator (so every
    foreign schema read is audited); organizations whose reader fails are
    skipped and logged.
    """

    def __init__(
        self,
        directory: OrganizationDirectory,
        validator: AccessValidator,
        *,
        concurrency: int = 4,
    ) -> None:
        self._directory = directory
        self._validator = validator
        self._semaphore = asyncio.Semaphore(concurrency)

    async def collect(
        self,
        context: TenantContext,
        reader: SchemaReader,
        *,
        method: str | None = None,
        path: str | None = None,
    ) -> list[dict[str, Any]]:
        """Concatenate rows from every tenant, tagged with ``_org_slug``.

        Raises:
            UnauthorizedCrossTenantAccess: If the context is not master
        """
        if not context.is_master:
            raise UnauthorizedCrossTenantAccess(
                context.user_id, "*", "Fan-out across tenants requires master role"
            )

        orgs = await self._directory.list_active()
        batches = await asyncio.gather(
            *(self._read_one(context, org, reader, method, path) for org in orgs)
        )
        return [row for batch in batches for row in batch]

    async def _read_one(
        self,
        context: TenantContext,
        org: OrganizationRecord,
        reader: SchemaReader,
        method: str | None,
        path: str | None,
    ) -> list[dict[str, Any]]:
        try:
            schema = resolve_schema_name(org.slug)
        except InvalidSlugError as e:
            logger.warning(f"Skipping organization {org.id}: {e}")
            return []

        decision = await self._validator.validate(context, org.id, schema, method=method, path=path)
        if not decision.allowed:
            return []

        async with self._semaphore:
            try:
                rows = await reader(schema)
            except Exception as e:
                logger.error(
                    f"Fan-out read failed for {schema}: {e}",
                    extra={"structured": {"schema": schema.value, "org_id": org.id}},
                )
                return []

        return [{**row, "_org_slug": org.slug} for row in rows]
