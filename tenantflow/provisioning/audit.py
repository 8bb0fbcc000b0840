"""Provisioning audit trail in the shared schema.

Auditing must never block or fail the operation being audited: every store
error is caught and logged here and never re-raised.
"""

import logging
import uuid
from typing import Any

from tenantflow.db.repositories import (
    ProvisioningAuditEntry,
    ProvisioningAuditStore,
    ProvisioningMode,
    ProvisioningStatus,
)

logger = logging.getLogger(__name__)


class ProvisioningAuditLog:
    """Records provisioning attempts and their single terminal outcome."""

    def __init__(self, store: ProvisioningAuditStore) -> None:
        self._store = store
        self._table_ready = False

    async def _ensure_table(self) -> None:
        if self._table_ready:
            return
        await self._store.ensure_table()
        self._table_ready = True

    async def record_start(
        self,
        org_id: str,
        org_slug: str,
        mode: ProvisioningMode = ProvisioningMode.sync,
        user_id: str | None = None,
    ) -> str:
        """Insert a ``started`` row before any DDL runs.

        Returns:
            The audit id. It is returned even if the write failed, so the
            caller can carry on with provisioning.
        """
        audit_id = str(uuid.uuid4())
        try:
            await self._ensure_table()
            await self._store.insert_started(
                ProvisioningAuditEntry(
                    id=audit_id,
                    org_id=org_id,
                    org_slug=org_slug,
                    mode=mode,
                    status=ProvisioningStatus.started,
                    user_id=user_id,
                )
            )
        except Exception as e:
            logger.error(
                f"Failed to record provisioning start for {org_slug}: {e}",
                extra={"structured": {"audit_id": audit_id, "org_id": org_id}},
            )
        return audit_id

    async def record_success(
        self, audit_id: str, summary: dict[str, Any], duration_ms: int
    ) -> None:
        """Mark a started attempt as succeeded."""
        await self._finish(
            audit_id,
            status=ProvisioningStatus.success,
            duration_ms=duration_ms,
            summary=summary,
        )

    async def record_failure(
        self,
        audit_id: str,
        error: str,
        details: dict[str, Any] | None,
        duration_ms: int,
    ) -> None:
        """Mark a started attempt as failed."""
        await self._finish(
            audit_id,
            status=ProvisioningStatus.failed,
            duration_ms=duration_ms,
            error=error,
            details=details,
        )

    async def _finish(self, audit_id: str, **values: Any) -> None:
        try:
            await self._ensure_table()
            updated = await self._store.finish(audit_id, **values)
        except Exception as e:
            logger.error(
                f"Failed to record provisioning {values['status'].value} for {audit_id}: {e}"
            )
            return

        if not updated:
            logger.warning(
                f"Provisioning audit {audit_id} not in started state; {values['status'].value} ignored"
            )

    async def get_status(self, org_id: str) -> ProvisioningAuditEntry | None:
        """Latest attempt for an organization, or None (also on read errors)."""
        try:
            await self._ensure_table()
            return await self._store.latest_for_org(org_id)
        except Exception as e:
            logger.error(f"Failed to read provisioning status for {org_id}: {e}")
            return None
