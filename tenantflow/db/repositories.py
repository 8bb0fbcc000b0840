"""Repository protocol interfaces for shared-schema data and tenant schema inspection."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any, Protocol

from tenantflow.tenancy.schema_names import SchemaIdentifier

if TYPE_CHECKING:
    from tenantflow.provisioning.catalog import (
        ColumnSpec,
        IndexSpec,
        SchemaCatalog,
        SeedSpec,
        TableSpec,
    )


@dataclass
class OrganizationRecord:
    """Organization directory entry (shared schema)."""

    id: str
    slug: str
    name: str
    is_active: bool = True


@dataclass
class IdentityRecord:
    """Authenticated user as returned by the identity/session service."""

    user_id: str
    organization_id: str
    organization_slug: str
    role: str


class ProvisioningMode(str, Enum):
    """How a provisioning run was invoked."""

    sync = "sync"
    async_ = "async"


class ProvisioningStatus(str, Enum):
    """Provisioning audit lifecycle."""

    started = "started"
    success = "success"
    failed = "failed"


@dataclass
class ProvisioningAuditEntry:
    """One provisioning attempt."""

    id: str
    org_id: str
    org_slug: str
    mode: ProvisioningMode
    status: ProvisioningStatus
    summary: dict[str, Any] | None = None
    error: str | None = None
    details: dict[str, Any] | None = None
    duration_ms: int | None = None
    user_id: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass
class AccessAuditEntry:
    """A cross-tenant access decision (append-only)."""

    user_id: str
    user_role: str
    home_org_id: str
    accessed_org_id: str
    accessed_schema: str
    allowed: bool
    method: str | None = None
    path: str | None = None
    reason: str | None = None
    timestamp: datetime | None = None
    id: int | None = None


class IdentityService(Protocol):
    """External identity/session service."""

    async def resolve_token(self, token: str) -> IdentityRecord | None:
        """Resolve a session token to a user, or None if unauthenticated."""
        ...


class OrganizationDirectory(Protocol):
    """External organization directory."""

    async def get_organization(self, org_id: str) -> OrganizationRecord | None:
        """Get organization by id."""
        ...

    async def get_by_slug(self, slug: str) -> OrganizationRecord | None:
        """Get organization by slug."""
        ...

    async def list_active(self) -> list[OrganizationRecord]:
        """List all active organizations, ordered by slug."""
        ...


class AccessAuditStore(Protocol):
    """Durable log of cross-tenant access decisions."""

    async def record(self, entry: AccessAuditEntry) -> None:
        """Append an entry."""
        ...

    async def list_for_org(self, accessed_org_id: str, limit: int = 100) -> list[AccessAuditEntry]:
        """Most recent entries for an accessed organization."""
        ...


class ProvisioningAuditStore(Protocol):
    """Durable log of provisioning attempts."""

    async def ensure_table(self) -> None:
        """Create the audit table if missing."""
        ...

    async def insert_started(self, entry: ProvisioningAuditEntry) -> None:
        """Insert a new row in ``started`` state."""
        ...

    async def finish(
        self,
        audit_id: str,
        *,
        status: ProvisioningStatus,
        duration_ms: int,
        summary: dict[str, Any] | None = None,
        error: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> bool:
        """Move a ``started`` row to a terminal state; False if nothing changed."""
        ...

    async def latest_for_org(self, org_id: str) -> ProvisioningAuditEntry | None:
        """Most recent attempt for an organization."""
        ...


@dataclass
class SchemaState:
    """Snapshot of what a tenant schema currently contains."""

    tables: set[str] = field(default_factory=set)
    columns: dict[str, set[str]] = field(default_factory=dict)
    indexes: set[str] = field(default_factory=set)


class TenantSchemaStore(Protocol):
    """Catalog inspection and additive DDL for tenant schemas."""

    async def count_base_tables(self, schema: SchemaIdentifier) -> int:
        """Number of base tables in the schema (0 if it does not exist)."""
        ...

    async def inspect(self, schema: SchemaIdentifier) -> SchemaState:
        """Tables, columns per table and index names present in the schema."""
        ...

    async def bootstrap(
        self, schema: SchemaIdentifier, catalog: "SchemaCatalog", org_id: str
    ) -> list[str]:
        """Create the schema and the whole catalog in one transaction.

        Returns:
            Tables whose default rows were seeded.
        """
        ...

    async def create_table(self, schema: SchemaIdentifier, table: "TableSpec") -> None:
        """CREATE TABLE IF NOT EXISTS."""
        ...

    async def add_column(
        self, schema: SchemaIdentifier, table: "TableSpec", column: "ColumnSpec"
    ) -> None:
        """ALTER TABLE ... ADD COLUMN IF NOT EXISTS."""
        ...

    async def create_index(self, schema: SchemaIdentifier, index: "IndexSpec") -> None:
        """CREATE INDEX IF NOT EXISTS."""
        ...

    async def seed_exists(self, schema: SchemaIdentifier, seed: "SeedSpec", org_id: str) -> bool:
        """True if the organization's default row is already present."""
        ...

    async def seed_missing(self, schema: SchemaIdentifier, seed: "SeedSpec", org_id: str) -> bool:
        """Insert the organization's default row if absent; True if inserted."""
        ...
