"""In-memory implementations of repository interfaces."""

from datetime import UTC, datetime
from typing import Any

from tenantflow.db.repositories import (
    AccessAuditEntry,
    IdentityRecord,
    OrganizationRecord,
    ProvisioningAuditEntry,
    ProvisioningStatus,
    SchemaState,
)
from tenantflow.provisioning.catalog import (
    ColumnSpec,
    IndexSpec,
    SchemaCatalog,
    SeedSpec,
    TableSpec,
)
from tenantflow.tenancy.errors import TableMissingError
from tenantflow.tenancy.schema_names import SchemaIdentifier


class InMemoryOrganizationDirectory:
    """In-memory implementation of OrganizationDirectory."""

    def __init__(self, organizations: list[OrganizationRecord] | None = None) -> None:
        self._orgs: dict[str, OrganizationRecord] = {}
        for org in organizations or []:
            self.add(org)

    def add(self, org: OrganizationRecord) -> None:
        self._orgs[org.id] = org

    async def get_organization(self, org_id: str) -> OrganizationRecord | None:
        """Get organization by id."""
        return self._orgs.get(org_id)

    async def get_by_slug(self, slug: str) -> OrganizationRecord | None:
        """Get organization by slug."""
        for org in self._orgs.values():
            if org.slug == slug:
                return org
        return None

    async def list_active(self) -> list[OrganizationRecord]:
        """List active organizations ordered by slug."""
        return sorted((o for o in self._orgs.values() if o.is_active), key=lambda o: o.slug)


class InMemoryIdentityService:
    """In-memory implementation of IdentityService (token -> identity)."""

    def __init__(self, tokens: dict[str, IdentityRecord] | None = None) -> None:
        self._tokens = dict(tokens or {})

    def issue(self, token: str, identity: IdentityRecord) -> None:
        self._tokens[token] = identity

    async def resolve_token(self, token: str) -> IdentityRecord | None:
        """Resolve a token, or None if unknown."""
        return self._tokens.get(token)


class InMemoryAccessAuditStore:
    """In-memory implementation of AccessAuditStore."""

    def __init__(self) -> None:
        self.entries: list[AccessAuditEntry] = []
        self.fail_with: Exception | None = None

    async def record(self, entry: AccessAuditEntry) -> None:
        """Append an entry."""
        if self.fail_with is not None:
            raise self.fail_with
        entry.id = len(self.entries) + 1
        entry.timestamp = entry.timestamp or datetime.now(UTC)
        self.entries.append(entry)

    async def list_for_org(self, accessed_org_id: str, limit: int = 100) -> list[AccessAuditEntry]:
        """Most recent entries for an accessed organization."""
        matching = [e for e in self.entries if e.accessed_org_id == accessed_org_id]
        return list(reversed(matching))[:limit]


class InMemoryProvisioningAuditStore:
    """In-memory implementation of ProvisioningAuditStore."""

    def __init__(self) -> None:
        self.rows: dict[str, ProvisioningAuditEntry] = {}
        self.table_ready = False
        self.fail_with: Exception | None = None

    async def ensure_table(self) -> None:
        """Mark the table as created."""
        if self.fail_with is not None:
            raise self.fail_with
        self.table_ready = True

    async def insert_started(self, entry: ProvisioningAuditEntry) -> None:
        """Insert a row in ``started`` state."""
        if self.fail_with is not None:
            raise self.fail_with
        now = datetime.now(UTC)
        entry.status = ProvisioningStatus.started
        entry.created_at = entry.created_at or now
        entry.updated_at = entry.updated_at or now
        self.rows[entry.id] = entry

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
        """Apply a terminal status to a ``started`` row."""
        if self.fail_with is not None:
            raise self.fail_with
        row = self.rows.get(audit_id)
        if row is None or row.status is not ProvisioningStatus.started:
            return False

        row.status = status
        row.duration_ms = duration_ms
        row.summary = summary
        row.error = error
        row.details = details
        row.updated_at = datetime.now(UTC)
        return True

    async def latest_for_org(self, org_id: str) -> ProvisioningAuditEntry | None:
        """Most recent attempt for an organization (insertion order breaks ties)."""
        matching = [r for r in self.rows.values() if r.org_id == org_id]
        return matching[-1] if matching else None


class InMemoryTenantSchemaStore:
    """In-memory TenantSchemaStore.

    ``fail_on`` holds table, column (``Table.column``) or index names whose
    creation raises, to exercise partial convergence.
    """

    def __init__(self) -> None:
        self.schemas: dict[SchemaIdentifier, SchemaState] = {}
        self.seeds: set[tuple[SchemaIdentifier, str, str]] = set()
        self.fail_on: set[str] = set()
        self.bootstrap_calls = 0
        self.ddl_log: list[str] = []

    def _state(self, schema: SchemaIdentifier) -> SchemaState:
        return self.schemas.setdefault(schema, SchemaState())

    def _check(self, schema: SchemaIdentifier, name: str) -> None:
        if name in self.fail_on:
            raise TableMissingError(f"{schema}: cannot create {name}", schema=schema.value)

    def apply_catalog(
        self,
        schema: SchemaIdentifier,
        catalog: SchemaCatalog,
        *,
        skip: set[str] | None = None,
        org_id: str | None = None,
    ) -> None:
        """Pre-populate a schema with the catalog, leaving out ``skip`` names."""
        skip = skip or set()
        state = self._state(schema)
        for table in catalog.tables:
            if table.name in skip:
                continue
            state.tables.add(table.name)
            state.columns[table.name] = {
                c.name for c in table.columns if f"{table.name}.{c.name}" not in skip
            }
        state.indexes.update(
            i.name for i in catalog.indexes if i.name not in skip and i.table in state.tables
        )
        if org_id is not None:
            for seed in catalog.seeds:
                if seed.table in state.tables and seed.table not in skip:
                    self.seeds.add((schema, seed.table, org_id))

    async def count_base_tables(self, schema: SchemaIdentifier) -> int:
        state = self.schemas.get(schema)
        return len(state.tables) if state else 0

    async def inspect(self, schema: SchemaIdentifier) -> SchemaState:
        state = self.schemas.get(schema) or SchemaState()
        return SchemaState(
            tables=set(state.tables),
            columns={t: set(cols) for t, cols in state.columns.items()},
            indexes=set(state.indexes),
        )

    async def bootstrap(
        self, schema: SchemaIdentifier, catalog: SchemaCatalog, org_id: str
    ) -> list[str]:
        self.bootstrap_calls += 1
        before = self.schemas.get(schema) or SchemaState()
        added: list[str] = []
        for table in catalog.tables:
            self._check(schema, table.name)
            if table.name in before.tables:
                present = before.columns.get(table.name, set())
                for column in table.columns:
                    if column.name not in present:
                        self._check(schema, f"{table.name}.{column.name}")
                        added.append(f"{table.name}.{column.name}")
        for index in catalog.indexes:
            self._check(schema, index.name)

        # Nothing above mutated state, so a failure leaves the schema untouched
        self.ddl_log.append(f"bootstrap {schema}")
        self.ddl_log.extend(f"add column {name}" for name in added)
        state = self._state(schema)
        for table in catalog.tables:
            state.tables.add(table.name)
            state.columns.setdefault(table.name, set()).update(table.column_names)
        state.indexes.update(i.name for i in catalog.indexes)

        seeded = []
        for seed in catalog.seeds:
            key = (schema, seed.table, org_id)
            if key not in self.seeds:
                self.seeds.add(key)
                seeded.append(seed.table)
        return seeded

    async def create_table(self, schema: SchemaIdentifier, table: TableSpec) -> None:
        self._check(schema, table.name)
        self.ddl_log.append(f"create table {table.name}")
        state = self._state(schema)
        state.tables.add(table.name)
        state.columns.setdefault(table.name, set()).update(table.column_names)

    async def add_column(self, schema: SchemaIdentifier, table: TableSpec, column: ColumnSpec) -> None:
        self._check(schema, f"{table.name}.{column.name}")
        self.ddl_log.append(f"add column {table.name}.{column.name}")
        self._state(schema).columns.setdefault(table.name, set()).add(column.name)

    async def create_index(self, schema: SchemaIdentifier, index: IndexSpec) -> None:
        self._check(schema, index.name)
        self.ddl_log.append(f"create index {index.name}")
        self._state(schema).indexes.add(index.name)

    async def seed_exists(self, schema: SchemaIdentifier, seed: SeedSpec, org_id: str) -> bool:
        return (schema, seed.table, org_id) in self.seeds

    async def seed_missing(self, schema: SchemaIdentifier, seed: SeedSpec, org_id: str) -> bool:
        key = (schema, seed.table, org_id)
        if key in self.seeds:
            return False
        self.ddl_log.append(f"seed {seed.table}")
        self.seeds.add(key)
        return True
