"""Unit tests for schema provisioning against the in-memory and SQL schema stores."""

from typing import Any

import pytest

from tenantflow.db.executor import QueryExecutor
from tenantflow.db.inmemory import InMemoryTenantSchemaStore
from tenantflow.db.registry import ConnectionPoolRegistry
from tenantflow.db.sql_repositories import SqlTenantSchemaStore
from tenantflow.provisioning.catalog import (
    EXPECTED_CATALOG,
    ColumnSpec,
    IndexSpec,
    SchemaCatalog,
    SeedSpec,
    TableSpec,
)
from tenantflow.provisioning.provisioner import ProvisionOptions, SchemaProvisioner
from tenantflow.tenancy.errors import InvalidSlugError
from tenantflow.tenancy.schema_names import resolve_schema_name

ACME = resolve_schema_name("acme-corp")


@pytest.fixture
def store() -> InMemoryTenantSchemaStore:
    return InMemoryTenantSchemaStore()


@pytest.fixture
def provisioner(store: InMemoryTenantSchemaStore) -> SchemaProvisioner:
    return SchemaProvisioner(store, table_threshold=40)


def test_catalog_shape() -> None:
    assert len(EXPECTED_CATALOG) == 46
    for name in ("Campaign", "Invoice", "workflow_settings", "WorkflowTrigger", "BillingSettings"):
        assert name in EXPECTED_CATALOG.table_names
    assert "type" in EXPECTED_CATALOG.table("Invoice").column_names
    assert {s.table for s in EXPECTED_CATALOG.seeds} == {"workflow_settings", "BillingSettings"}


def test_catalog_ddl_is_additive_and_quoted() -> None:
    invoice = EXPECTED_CATALOG.table("Invoice")
    create = invoice.create_sql(ACME)
    assert create.startswith('CREATE TABLE IF NOT EXISTS "org_acme_corp"."Invoice"')
    assert 'CONSTRAINT "Invoice_pkey" PRIMARY KEY ("id")' in create

    alter = invoice.add_column_sql(ACME, ColumnSpec("type", "TEXT NOT NULL DEFAULT 'incoming'"))
    assert alter == (
        'ALTER TABLE "org_acme_corp"."Invoice" '
        "ADD COLUMN IF NOT EXISTS \"type\" TEXT NOT NULL DEFAULT 'incoming'"
    )

    index = IndexSpec("idx_campaign_status_date", "Campaign", ("status", "startDate"))
    assert index.create_sql(ACME) == (
        'CREATE INDEX IF NOT EXISTS "idx_campaign_status_date" '
        'ON "org_acme_corp"."Campaign" ("status", "startDate")'
    )

    seed = SeedSpec("BillingSettings", id_prefix="bs", values=(("invoicePrefix", "INV"),))
    assert "WHERE NOT EXISTS" in seed.insert_sql(ACME)
    assert seed.params("bs-1", "org-1") == {"id": "bs-1", "organization_id": "org-1", "v0": "INV"}
    assert seed.new_id().startswith("bs-")


def test_catalog_rejects_inconsistent_definitions() -> None:
    table = TableSpec("A", (ColumnSpec("id", "TEXT NOT NULL"),))
    with pytest.raises(ValueError):
        SchemaCatalog(version="x", tables=(table, table))
    with pytest.raises(ValueError):
        SchemaCatalog(version="x", tables=(table,), indexes=(IndexSpec("i", "B", ("id",)),))


@pytest.mark.asyncio
async def test_new_tenant_bootstrap(
    provisioner: SchemaProvisioner, store: InMemoryTenantSchemaStore
) -> None:
    result = await provisioner.provision("acme-corp", "org-id-1")

    assert result.success is True
    assert result.schema_name == "org_acme_corp"
    assert result.errors == []
    assert result.summary["strategy"] == "bootstrap"
    assert result.summary["existing_tables"] == 0
    assert result.summary["tables_created"] == len(EXPECTED_CATALOG) == 46
    assert result.summary["indexes_created"] == len(EXPECTED_CATALOG.indexes)
    assert result.summary["seed_rows_created"] == 2
    assert "Created WorkflowTrigger table" in result.changes
    assert store.bootstrap_calls == 1
    assert await store.count_base_tables(ACME) == 46


@pytest.mark.asyncio
async def test_second_run_is_a_no_op(
    provisioner: SchemaProvisioner, store: InMemoryTenantSchemaStore
) -> None:
    await provisioner.provision("acme-corp", "org-id-1")
    store.ddl_log.clear()

    again = await provisioner.provision("acme-corp", "org-id-1")

    assert again.success is True
    assert again.changes == []
    assert again.errors == []
    assert again.summary["strategy"] == "converge"
    assert store.ddl_log == []


@pytest.mark.asyncio
async def test_incremental_convergence_adds_only_missing_table(
    provisioner: SchemaProvisioner, store: InMemoryTenantSchemaStore
) -> None:
    store.apply_catalog(ACME, EXPECTED_CATALOG, skip={"WorkflowTrigger"}, org_id="org-id-1")
    assert await store.count_base_tables(ACME) == 45

    result = await provisioner.provision("acme-corp", "org-id-1")

    assert result.success is True
    assert result.changes == ["Created WorkflowTrigger table"]
    assert result.summary["tables_created"] == 1
    assert result.summary["strategy"] == "converge"
    assert store.bootstrap_calls == 0


@pytest.mark.asyncio
async def test_convergence_adds_missing_columns_and_indexes(
    provisioner: SchemaProvisioner, store: InMemoryTenantSchemaStore
) -> None:
    store.apply_catalog(
        ACME,
        EXPECTED_CATALOG,
        skip={"Invoice.type", "Advertiser.sellerId", "Invoice_type_idx"},
        org_id="org-id-1",
    )

    result = await provisioner.provision("acme-corp", "org-id-1")

    assert result.success is True
    assert result.changes == [
        "Added column Advertiser.sellerId",
        "Added column Invoice.type",
        "Created index Invoice_type_idx",
    ]
    assert result.summary["columns_added"] == 2
    assert result.summary["indexes_created"] == 1


@pytest.mark.asyncio
async def test_convergence_seeds_missing_defaults(
    provisioner: SchemaProvisioner, store: InMemoryTenantSchemaStore
) -> None:
    store.apply_catalog(ACME, EXPECTED_CATALOG)

    result = await provisioner.provision("acme-corp", "org-id-1")

    assert result.changes == ["Seeded default workflow_settings", "Seeded default BillingSettings"]
    assert result.summary["seed_rows_created"] == 2


@pytest.mark.asyncio
async def test_partial_failure_does_not_block_other_steps(
    provisioner: SchemaProvisioner, store: InMemoryTenantSchemaStore
) -> None:
    store.apply_catalog(
        ACME, EXPECTED_CATALOG, skip={"WorkflowTrigger", "Notification"}, org_id="org-id-1"
    )
    store.fail_on = {"WorkflowTrigger"}

    result = await provisioner.provision("acme-corp", "org-id-1")

    assert result.success is False
    assert len(result.errors) == 1
    assert "WorkflowTrigger" in result.errors[0]
    assert result.changes == ["Created Notification table", "Created index Notification_userId_idx"]

    # Retrying after the cause is fixed converges the rest
    store.fail_on = set()
    retry = await provisioner.provision("acme-corp", "org-id-1")
    assert retry.success is True
    assert retry.changes == ["Created WorkflowTrigger table"]


@pytest.mark.asyncio
async def test_below_threshold_uses_bootstrap(
    provisioner: SchemaProvisioner, store: InMemoryTenantSchemaStore
) -> None:
    missing = set(EXPECTED_CATALOG.table_names[:7])
    store.apply_catalog(ACME, EXPECTED_CATALOG, skip=missing, org_id="org-id-1")
    assert await store.count_base_tables(ACME) == 39

    result = await provisioner.provision("acme-corp", "org-id-1")

    assert result.success is True
    assert result.summary["strategy"] == "bootstrap"
    assert result.summary["tables_created"] == 7
    assert store.bootstrap_calls == 1


@pytest.mark.asyncio
async def test_bootstrap_failure_is_all_or_nothing(
    provisioner: SchemaProvisioner, store: InMemoryTenantSchemaStore
) -> None:
    store.fail_on = {"Campaign"}

    result = await provisioner.provision("acme-corp", "org-id-1")

    assert result.success is False
    assert result.changes == []
    assert len(result.errors) == 1
    assert result.errors[0].startswith("Bootstrap failed")
    assert await store.count_base_tables(ACME) == 0


@pytest.mark.asyncio
async def test_dry_run_reports_without_applying(
    provisioner: SchemaProvisioner, store: InMemoryTenantSchemaStore
) -> None:
    result = await provisioner.provision("acme-corp", "org-id-1", ProvisionOptions(dry_run=True))

    assert result.success is True
    assert result.summary["dry_run"] is True
    assert result.summary["tables_created"] == 46
    assert all(change.startswith("Would ") for change in result.changes)
    assert "Would create WorkflowTrigger table" in result.changes
    assert "Would seed default BillingSettings" in result.changes
    assert store.bootstrap_calls == 0
    assert await store.count_base_tables(ACME) == 0


@pytest.mark.asyncio
async def test_dry_run_convergence(
    provisioner: SchemaProvisioner, store: InMemoryTenantSchemaStore
) -> None:
    store.apply_catalog(ACME, EXPECTED_CATALOG, skip={"Agency.sellerId"}, org_id="org-id-1")

    result = await provisioner.provision("acme-corp", "org-id-1", ProvisionOptions(dry_run=True))

    assert result.changes == ["Would add column Agency.sellerId"]
    assert store.ddl_log == []


@pytest.mark.asyncio
async def test_invalid_slug_rejected_before_any_sql(
    provisioner: SchemaProvisioner, store: InMemoryTenantSchemaStore
) -> None:
    with pytest.raises(InvalidSlugError):
        await provisioner.provision("acme; DROP SCHEMA public", "org-id-1")

    assert store.schemas == {}


@pytest.mark.asyncio
async def test_bootstrap_adds_missing_columns_to_existing_tables(
    provisioner: SchemaProvisioner, store: InMemoryTenantSchemaStore
) -> None:
    others = {name for name in EXPECTED_CATALOG.table_names if name != "Invoice"}
    store.apply_catalog(
        ACME, EXPECTED_CATALOG, skip=others | {"Invoice.type", "Invoice_type_idx"}, org_id="org-id-1"
    )

    result = await provisioner.provision("acme-corp", "org-id-1")

    assert result.success is True
    assert result.summary["strategy"] == "bootstrap"
    assert "Added column Invoice.type" in result.changes
    assert "Created index Invoice_type_idx" in result.changes
    assert "add column Invoice.type" in store.ddl_log
    assert "type" in (await store.inspect(ACME)).columns["Invoice"]


@pytest.mark.asyncio
async def test_bootstrap_column_failure_leaves_schema_untouched(
    provisioner: SchemaProvisioner, store: InMemoryTenantSchemaStore
) -> None:
    others = {name for name in EXPECTED_CATALOG.table_names if name != "Invoice"}
    store.apply_catalog(ACME, EXPECTED_CATALOG, skip=others | {"Invoice.type", "Invoice_type_idx"})
    store.fail_on = {"Invoice.type"}

    result = await provisioner.provision("acme-corp", "org-id-1")

    assert result.success is False
    assert result.changes == []
    assert await store.count_base_tables(ACME) == 1


@pytest.mark.asyncio
async def test_sql_bootstrap_alters_existing_table_before_indexing(engine_factory: Any) -> None:
    invoice = EXPECTED_CATALOG.table("Invoice")
    type_column = next(c for c in invoice.columns if c.name == "type")

    # One pre-existing Invoice table created before the "type" column existed
    def handler(sql: str, params: dict[str, Any]) -> list[dict[str, Any]] | None:
        if "COUNT(*)" in sql:
            return [{"count": 1}]
        if "information_schema.tables" in sql:
            return [{"table_name": "Invoice"}]
        if "information_schema.columns" in sql:
            return [
                {"table_name": "Invoice", "column_name": c.name}
                for c in invoice.columns
                if c.name != "type"
            ]
        if "pg_indexes" in sql:
            return []
        if "RETURNING" in sql:
            return [{"id": params["id"]}]
        return None

    engine_factory.handler = handler
    store = SqlTenantSchemaStore(QueryExecutor(ConnectionPoolRegistry(engine_factory)))

    result = await SchemaProvisioner(store, table_threshold=40).provision("acme-corp", "org-id-1")

    assert result.success is True, result.errors
    assert result.summary["strategy"] == "bootstrap"
    assert "Added column Invoice.type" in result.changes

    statements = [sql for sql, _ in engine_factory.created[0].executed]
    alters = [s for s in statements if s.startswith("ALTER TABLE")]
    assert alters == [invoice.add_column_sql(ACME, type_column)]
    type_index = next(i for i in EXPECTED_CATALOG.indexes if i.name == "Invoice_type_idx")
    assert statements.index(alters[0]) < statements.index(type_index.create_sql(ACME))
    assert invoice.create_sql(ACME) not in statements
    assert EXPECTED_CATALOG.table("Campaign").create_sql(ACME) in statements
