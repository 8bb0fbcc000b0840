"""Idempotent tenant schema provisioning.

A schema with fewer base tables than the bootstrap threshold is treated as a
new tenant and created in one transaction. Anything at or above the threshold
is converged step by step: each missing table, column, index and seed row is
created on its own, so one failing step does not block the others.

All DDL is additive and guarded by ``IF NOT EXISTS``. Nothing is dropped or
altered, and running ``provision`` on a converged schema changes nothing.
"""

import logging
import time
from dataclasses import asdict, dataclass, field
from typing import Any

from tenantflow.db.repositories import ProvisioningMode, SchemaState, TenantSchemaStore
from tenantflow.provisioning.catalog import (
    EXPECTED_CATALOG,
    ColumnSpec,
    IndexSpec,
    SchemaCatalog,
    TableSpec,
)
from tenantflow.tenancy.schema_names import SchemaIdentifier, resolve_schema_name
from tenantflow.utils.metrics import TenancyMetrics

logger = logging.getLogger(__name__)

STRATEGY_BOOTSTRAP = "bootstrap"
STRATEGY_CONVERGE = "converge"


@dataclass
class ProvisionOptions:
    """Caller options for one provisioning run."""

    dry_run: bool = False
    mode: ProvisioningMode = ProvisioningMode.sync
    user_id: str | None = None


@dataclass
class ProvisionResult:
    """Outcome of one provisioning run; ``success`` iff ``errors`` is empty."""

    success: bool
    schema_name: str
    changes: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    summary: dict[str, Any] = field(default_factory=dict)
    duration_ms: int = 0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class _Plan:
    tables: list[TableSpec] = field(default_factory=list)
    columns: list[tuple[TableSpec, ColumnSpec]] = field(default_factory=list)
    indexes: list[IndexSpec] = field(default_factory=list)


def plan_changes(catalog: SchemaCatalog, state: SchemaState) -> _Plan:
    """Diff a schema snapshot against the catalog.

    Columns are only listed for tables that already exist; a missing table is
    created with all of its columns.
    """
    plan = _Plan()
    for table in catalog.tables:
        if table.name not in state.tables:
            plan.tables.append(table)
            continue
        present = state.columns.get(table.name, set())
        plan.columns.extend((table, col) for col in table.columns if col.name not in present)
    plan.indexes = [i for i in catalog.indexes if i.name not in state.indexes]
    return plan


class _Run:
    """Mutable accumulator for one provisioning run."""

    def __init__(self, schema: SchemaIdentifier, strategy: str, existing: int, dry_run: bool) -> None:
        self.schema = schema
        self.dry_run = dry_run
        self.changes: list[str] = []
        self.errors: list[str] = []
        self.counts = {
            "tables_created": 0,
            "columns_added": 0,
            "indexes_created": 0,
            "seed_rows_created": 0,
        }
        self.strategy = strategy
        self.existing = existing

    def change(self, counter: str, done: str, planned: str) -> None:
        self.counts[counter] += 1
        self.changes.append(planned if self.dry_run else done)


class SchemaProvisioner:
    """Makes tenant schemas converge toward a ``SchemaCatalog``."""

    def __init__(
        self,
        store: TenantSchemaStore,
        *,
        catalog: SchemaCatalog = EXPECTED_CATALOG,
        table_threshold: int = 40,
        metrics: TenancyMetrics | None = None,
    ) -> None:
        self._store = store
        self._catalog = catalog
        self._threshold = table_threshold
        self._metrics = metrics or TenancyMetrics()

    @property
    def catalog(self) -> SchemaCatalog:
        return self._catalog

    async def provision(
        self, org_slug: str, org_id: str, options: ProvisionOptions | None = None
    ) -> ProvisionResult:
        """Create or upgrade an organization's schema.

        Args:
            org_slug: Organization slug (mapped through ``resolve_schema_name``)
            org_id: Organization id used for seed rows
            options: Dry-run flag, mode and acting user

        Returns:
            ProvisionResult; step failures are reported in ``errors``

        Raises:
            InvalidSlugError: If the slug cannot become a schema name
        """
        options = options or ProvisionOptions()
        schema = resolve_schema_name(org_slug)
        start = time.perf_counter()

        try:
            existing = await self._store.count_base_tables(schema)
        except Exception as e:
            logger.error(f"Failed to inspect {schema}: {e}")
            run = _Run(schema, "unknown", 0, options.dry_run)
            run.errors.append(f"Failed to inspect schema {schema}: {e}")
            return self._finish(run, start)

        strategy = STRATEGY_BOOTSTRAP if existing < self._threshold else STRATEGY_CONVERGE
        run = _Run(schema, strategy, existing, options.dry_run)
        logger.info(
            f"Provisioning {schema} ({strategy}, {existing} existing tables)",
            extra={
                "structured": {
                    "schema": schema.value,
                    "org_id": org_id,
                    "strategy": strategy,
                    "existing_tables": existing,
                    "dry_run": options.dry_run,
                }
            },
        )

        if strategy == STRATEGY_BOOTSTRAP:
            await self._bootstrap(run, org_id)
        else:
            await self._converge(run, org_id)

        return self._finish(run, start)

    async def _bootstrap(self, run: _Run, org_id: str) -> None:
        """All-or-nothing creation of the full catalog."""
        try:
            before = await self._store.inspect(run.schema)
        except Exception as e:
            run.errors.append(f"Failed to inspect schema {run.schema}: {e}")
            return

        plan = plan_changes(self._catalog, before)

        if run.dry_run:
            self._record_plan(run, plan)
            for seed in self._catalog.seeds:
                missing = seed.table not in before.tables
                if not missing:
                    try:
                        missing = not await self._store.seed_exists(run.schema, seed, org_id)
                    except Exception as e:
                        run.errors.append(f"Failed to check {seed.table} defaults: {e}")
                        continue
                if missing:
                    run.change(
                        "seed_rows_created",
                        f"Seeded default {seed.table}",
                        f"Would seed default {seed.table}",
                    )
            return

        try:
            seeded = await self._store.bootstrap(run.schema, self._catalog, org_id)
        except Exception as e:
            logger.error(f"Bootstrap of {run.schema} failed: {e}")
            run.errors.append(f"Bootstrap failed for {run.schema}: {e}")
            return

        self._record_plan(run, plan)
        for table in seeded:
            run.change("seed_rows_created", f"Seeded default {table}", f"Would seed default {table}")

    async def _converge(self, run: _Run, org_id: str) -> None:
        """Independent additive steps for everything missing."""
        try:
            state = await self._store.inspect(run.schema)
        except Exception as e:
            run.errors.append(f"Failed to inspect schema {run.schema}: {e}")
            return

        plan = plan_changes(self._catalog, state)
        tables_present = set(state.tables)

        for table in plan.tables:
            try:
                if not run.dry_run:
                    await self._store.create_table(run.schema, table)
                tables_present.add(table.name)
                run.change(
                    "tables_created",
                    f"Created {table.name} table",
                    f"Would create {table.name} table",
                )
            except Exception as e:
                run.errors.append(f"Failed to create {table.name} table: {e}")

        for table, column in plan.columns:
            try:
                if not run.dry_run:
                    await self._store.add_column(run.schema, table, column)
                run.change(
                    "columns_added",
                    f"Added column {table.name}.{column.name}",
                    f"Would add column {table.name}.{column.name}",
                )
            except Exception as e:
                run.errors.append(f"Failed to add column {table.name}.{column.name}: {e}")

        for index in plan.indexes:
            if index.table not in tables_present:
                run.errors.append(f"Skipped index {index.name}: table {index.table} is missing")
                continue
            try:
                if not run.dry_run:
                    await self._store.create_index(run.schema, index)
                run.change(
                    "indexes_created",
                    f"Created index {index.name}",
                    f"Would create index {index.name}",
                )
            except Exception as e:
                run.errors.append(f"Failed to create index {index.name}: {e}")

        for seed in self._catalog.seeds:
            if seed.table not in tables_present:
                continue
            try:
                if run.dry_run:
                    missing = seed.table not in state.tables or not await self._store.seed_exists(
                        run.schema, seed, org_id
                    )
                else:
                    missing = await self._store.seed_missing(run.schema, seed, org_id)
                if missing:
                    run.change(
                        "seed_rows_created",
                        f"Seeded default {seed.table}",
                        f"Would seed default {seed.table}",
                    )
            except Exception as e:
                run.errors.append(f"Failed to seed {seed.table} defaults: {e}")

    @staticmethod
    def _record_plan(run: _Run, plan: _Plan) -> None:
        for table in plan.tables:
            run.change(
                "tables_created", f"Created {table.name} table", f"Would create {table.name} table"
            )
        for table, column in plan.columns:
            run.change(
                "columns_added",
                f"Added column {table.name}.{column.name}",
                f"Would add column {table.name}.{column.name}",
            )
        for index in plan.indexes:
            run.change(
                "indexes_created", f"Created index {index.name}", f"Would create index {index.name}"
            )

    def _finish(self, run: _Run, start: float) -> ProvisionResult:
        duration_ms = int((time.perf_counter() - start) * 1000)
        success = not run.errors
        summary: dict[str, Any] = {
            **run.counts,
            "strategy": run.strategy,
            "existing_tables": run.existing,
            "catalog_version": self._catalog.version,
            "dry_run": run.dry_run,
        }

        self._metrics.inc_provisioning(run.strategy, "success" if success else "failed")
        log = logger.info if success else logger.warning
        log(
            f"Provisioned {run.schema}: {len(run.changes)} changes, {len(run.errors)} errors",
            extra={
                "structured": {
                    "schema": run.schema.value,
                    "duration_ms": duration_ms,
                    **summary,
                }
            },
        )

        return ProvisionResult(
            success=success,
            schema_name=run.schema.value,
            changes=run.changes,
            errors=run.errors,
            summary=summary,
            duration_ms=duration_ms,
        )
