"""SQL implementations of repository interfaces."""

from datetime import UTC, datetime
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from tenantflow.db.executor import QueryExecutor
from tenantflow.db.models import (
    Organization,
    ProvisioningAudit,
    TenantAccessLog,
    User,
    UserSession,
)
from tenantflow.db.repositories import (
    AccessAuditEntry,
    IdentityRecord,
    OrganizationRecord,
    ProvisioningAuditEntry,
    ProvisioningMode,
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
from tenantflow.tenancy.schema_names import SchemaIdentifier


def _aware(value: datetime) -> datetime:
    # sqlite hands back naive datetimes
    return value if value.tzinfo is not None else value.replace(tzinfo=UTC)


def _to_org(row: Organization) -> OrganizationRecord:
    return OrganizationRecord(id=row.id, slug=row.slug, name=row.name, is_active=row.is_active)


class SqlOrganizationDirectory:
    """SQL implementation of OrganizationDirectory."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get_organization(self, org_id: str) -> OrganizationRecord | None:
        """Get organization by id."""
        async with self._session_factory() as session:
            row = await session.get(Organization, org_id)
        return _to_org(row) if row is not None else None

    async def get_by_slug(self, slug: str) -> OrganizationRecord | None:
        """Get organization by slug."""
        async with self._session_factory() as session:
            result = await session.execute(select(Organization).where(Organization.slug == slug))
            row = result.scalar_one_or_none()
        return _to_org(row) if row is not None else None

    async def list_active(self) -> list[OrganizationRecord]:
        """List active organizations ordered by slug."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(Organization)
                .where(Organization.is_active.is_(True))
                .order_by(Organization.slug)
            )
            return [_to_org(row) for row in result.scalars().all()]


class SqlSessionIdentityService:
    """IdentityService backed by the ``user_session`` table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def resolve_token(self, token: str) -> IdentityRecord | None:
        """Resolve an unexpired session token to its user and organization."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(UserSession, User, Organization)
                .join(User, UserSession.user_id == User.id)
                .join(Organization, User.organization_id == Organization.id)
                .where(UserSession.token == token)
            )
            row = result.first()

        if row is None:
            return None

        user_session, user, org = row
        if _aware(user_session.expires_at) <= datetime.now(UTC):
            return None

        return IdentityRecord(
            user_id=user.id,
            organization_id=org.id,
            organization_slug=org.slug,
            role=user.role,
        )


class SqlAccessAuditStore:
    """SQL implementation of AccessAuditStore."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def record(self, entry: AccessAuditEntry) -> None:
        """Append an entry."""
        async with self._session_factory() as session:
            session.add(
                TenantAccessLog(
                    user_id=entry.user_id,
                    user_role=entry.user_role,
                    home_org_id=entry.home_org_id,
                    accessed_org_id=entry.accessed_org_id,
                    accessed_schema=entry.accessed_schema,
                    method=entry.method,
                    path=entry.path,
                    allowed=entry.allowed,
                    reason=entry.reason,
                    timestamp=entry.timestamp or datetime.now(UTC),
                )
            )
            await session.commit()

    async def list_for_org(self, accessed_org_id: str, limit: int = 100) -> list[AccessAuditEntry]:
        """Most recent entries for an accessed organization."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(TenantAccessLog)
                .where(TenantAccessLog.accessed_org_id == accessed_org_id)
                .order_by(TenantAccessLog.timestamp.desc(), TenantAccessLog.id.desc())
                .limit(limit)
            )
            rows = result.scalars().all()

        return [
            AccessAuditEntry(
                id=row.id,
                user_id=row.user_id,
                user_role=row.user_role,
                home_org_id=row.home_org_id,
                accessed_org_id=row.accessed_org_id,
                accessed_schema=row.accessed_schema,
                method=row.method,
                path=row.path,
                allowed=row.allowed,
                reason=row.reason,
                timestamp=row.timestamp,
            )
            for row in rows
        ]


class SqlProvisioningAuditStore:
    """SQL implementation of ProvisioningAuditStore."""

    def __init__(self, engine: AsyncEngine) -> None:
        self._engine = engine
        self._session_factory = async_sessionmaker(bind=engine, expire_on_commit=False)

    async def ensure_table(self) -> None:
        """CREATE TABLE IF NOT EXISTS for the audit table."""
        table = ProvisioningAudit.__table__
        async with self._engine.begin() as conn:
            await conn.run_sync(
                lambda sync_conn: table.metadata.create_all(
                    sync_conn, tables=[table], checkfirst=True
                )
            )

    async def insert_started(self, entry: ProvisioningAuditEntry) -> None:
        """Insert a row in ``started`` state."""
        now = datetime.now(UTC)
        async with self._session_factory() as session:
            session.add(
                ProvisioningAudit(
                    id=entry.id,
                    org_id=entry.org_id,
                    org_slug=entry.org_slug,
                    mode=entry.mode.value,
                    status=ProvisioningStatus.started.value,
                    user_id=entry.user_id,
                    created_at=entry.created_at or now,
                    updated_at=entry.updated_at or now,
                )
            )
            await session.commit()

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
        """Apply a terminal status; rows already terminal are left untouched."""
        async with self._session_factory() as session:
            result = await session.execute(
                update(ProvisioningAudit)
                .where(
                    ProvisioningAudit.id == audit_id,
                    ProvisioningAudit.status == ProvisioningStatus.started.value,
                )
                .values(
                    status=status.value,
                    duration_ms=duration_ms,
                    summary=summary,
                    error=error,
                    details=details,
                    updated_at=datetime.now(UTC),
                )
            )
            await session.commit()
        return bool(result.rowcount)

    async def latest_for_org(self, org_id: str) -> ProvisioningAuditEntry | None:
        """Most recent attempt for an organization."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(ProvisioningAudit)
                .where(ProvisioningAudit.org_id == org_id)
                .order_by(ProvisioningAudit.created_at.desc())
                .limit(1)
            )
            row = result.scalar_one_or_none()

        if row is None:
            return None

        return ProvisioningAuditEntry(
            id=row.id,
            org_id=row.org_id,
            org_slug=row.org_slug,
            mode=ProvisioningMode(row.mode),
            status=ProvisioningStatus(row.status),
            summary=row.summary,
            error=row.error,
            details=row.details,
            duration_ms=row.duration_ms,
            user_id=row.user_id,
            created_at=row.created_at,
            updated_at=row.updated_at,
        )


class SqlTenantSchemaStore:
    """TenantSchemaStore over information_schema / pg_indexes.

    Every statement goes through the QueryExecutor on the target schema's own
    pool; the schema name is passed as a bound value for catalog lookups and
    as a validated identifier for DDL.
    """

    def __init__(self, executor: QueryExecutor) -> None:
        self._executor = executor

    async def schema_exists(self, schema: SchemaIdentifier) -> bool:
        rows = await self._executor.query(
            schema,
            "SELECT 1 FROM information_schema.schemata WHERE schema_name = :schema",
            {"schema": schema.value},
        )
        return bool(rows)

    async def existing_tables(self, schema: SchemaIdentifier) -> set[str]:
        rows = await self._executor.query(
            schema,
            "SELECT table_name FROM information_schema.tables "
            "WHERE table_schema = :schema AND table_type = 'BASE TABLE'",
            {"schema": schema.value},
        )
        return {row["table_name"] for row in rows}

    async def count_base_tables(self, schema: SchemaIdentifier) -> int:
        rows = await self._executor.query(
            schema,
            "SELECT COUNT(*) AS count FROM information_schema.tables "
            "WHERE table_schema = :schema AND table_type = 'BASE TABLE'",
            {"schema": schema.value},
        )
        return int(rows[0]["count"]) if rows else 0

    async def inspect(self, schema: SchemaIdentifier) -> SchemaState:
        tables = await self.existing_tables(schema)

        column_rows = await self._executor.query(
            schema,
            "SELECT table_name, column_name FROM information_schema.columns "
            "WHERE table_schema = :schema",
            {"schema": schema.value},
        )
        columns: dict[str, set[str]] = {}
        for row in column_rows:
            columns.setdefault(row["table_name"], set()).add(row["column_name"])

        index_rows = await self._executor.query(
            schema,
            "SELECT indexname FROM pg_indexes WHERE schemaname = :schema",
            {"schema": schema.value},
        )
        return SchemaState(
            tables=tables,
            columns=columns,
            indexes={row["indexname"] for row in index_rows},
        )

    async def bootstrap(
        self, schema: SchemaIdentifier, catalog: SchemaCatalog, org_id: str
    ) -> list[str]:
        """Create the schema and full catalog atomically.

        The advisory lock serializes concurrent bootstraps of one schema; it
        is released when the transaction ends. Tables that already exist get
        their missing columns before any index is built on them.
        """
        seeded: list[str] = []
        async with self._executor.transaction(schema) as tx:
            await tx.query("SELECT pg_advisory_xact_lock(hashtext(:schema))", {"schema": schema.value})
            await tx.query(f"CREATE SCHEMA IF NOT EXISTS {schema.quoted}")
            column_rows = await tx.query(
                "SELECT table_name, column_name FROM information_schema.columns "
                "WHERE table_schema = :schema",
                {"schema": schema.value},
            )
            existing: dict[str, set[str]] = {}
            for row in column_rows:
                existing.setdefault(row["table_name"], set()).add(row["column_name"])

            for table in catalog.tables:
                present = existing.get(table.name)
                if present is None:
                    await tx.query(table.create_sql(schema))
                    continue
                for column in table.columns:
                    if column.name not in present:
                        await tx.query(table.add_column_sql(schema, column))
            for index in catalog.indexes:
                await tx.query(index.create_sql(schema))
            for seed in catalog.seeds:
                rows = await tx.query(seed.insert_sql(schema), seed.params(seed.new_id(), org_id))
                if rows:
                    seeded.append(seed.table)
        return seeded

    async def create_table(self, schema: SchemaIdentifier, table: TableSpec) -> None:
        await self._executor.query(schema, table.create_sql(schema))

    async def add_column(self, schema: SchemaIdentifier, table: TableSpec, column: ColumnSpec) -> None:
        await self._executor.query(schema, table.add_column_sql(schema, column))

    async def create_index(self, schema: SchemaIdentifier, index: IndexSpec) -> None:
        await self._executor.query(schema, index.create_sql(schema))

    async def seed_exists(self, schema: SchemaIdentifier, seed: SeedSpec, org_id: str) -> bool:
        rows = await self._executor.query(schema, seed.exists_sql(schema), {"organization_id": org_id})
        return bool(rows)

    async def seed_missing(self, schema: SchemaIdentifier, seed: SeedSpec, org_id: str) -> bool:
        rows = await self._executor.query(
            schema, seed.insert_sql(schema), seed.params(seed.new_id(), org_id)
        )
        return bool(rows)
