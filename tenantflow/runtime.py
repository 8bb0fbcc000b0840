"""Process-wide wiring of the tenancy components.

Built once at application startup and closed at shutdown; components receive
their collaborators explicitly instead of reaching for module globals.
"""

import logging
from dataclasses import dataclass
from functools import partial

from sqlalchemy.ext.asyncio import AsyncEngine

from tenantflow.config import Settings, get_settings
from tenantflow.db.engine import create_schema_engine, create_session_factory, create_shared_engine
from tenantflow.db.executor import QueryExecutor
from tenantflow.db.fanout import TenantFanout
from tenantflow.db.models import Base
from tenantflow.db.registry import ConnectionPoolRegistry
from tenantflow.db.repositories import (
    AccessAuditStore,
    IdentityService,
    OrganizationDirectory,
    TenantSchemaStore,
)
from tenantflow.db.sql_repositories import (
    SqlAccessAuditStore,
    SqlOrganizationDirectory,
    SqlProvisioningAuditStore,
    SqlSessionIdentityService,
    SqlTenantSchemaStore,
)
from tenantflow.monitoring.pool_monitor import PoolMonitor
from tenantflow.provisioning.audit import ProvisioningAuditLog
from tenantflow.provisioning.provisioner import SchemaProvisioner
from tenantflow.provisioning.service import TenantProvisioningService
from tenantflow.tenancy.access import AccessValidator
from tenantflow.tenancy.resolver import TenantContextResolver
from tenantflow.utils.logging import QueryLogger
from tenantflow.utils.metrics import PrometheusTenancyMetrics

logger = logging.getLogger(__name__)


@dataclass
class TenancyRuntime:
    """Everything a request or admin operation needs."""

    settings: Settings
    shared_engine: AsyncEngine
    registry: ConnectionPoolRegistry
    executor: QueryExecutor
    directory: OrganizationDirectory
    identity: IdentityService
    access_store: AccessAuditStore
    schema_store: TenantSchemaStore
    validator: AccessValidator
    resolver: TenantContextResolver
    provisioning_audit: ProvisioningAuditLog
    provisioner: SchemaProvisioner
    provisioning: TenantProvisioningService
    monitor: PoolMonitor
    fanout: TenantFanout

    async def ensure_shared_tables(self) -> None:
        """Create shared tables that do not exist yet (dev/test convenience)."""
        async with self.shared_engine.begin() as conn:
            await conn.run_sync(lambda sync_conn: Base.metadata.create_all(sync_conn, checkfirst=True))

    async def aclose(self) -> None:
        """Finish background provisioning, then release every pool."""
        await self.provisioning.wait_pending()
        await self.registry.close_all()
        await self.shared_engine.dispose()
        logger.info("Tenancy runtime closed")


def build_runtime(settings: Settings | None = None) -> TenancyRuntime:
    """Wire the default SQL-backed runtime from settings."""
    settings = settings or get_settings()
    metrics = PrometheusTenancyMetrics()

    shared_engine = create_shared_engine(settings)
    session_factory = create_session_factory(shared_engine)

    registry = ConnectionPoolRegistry(
        partial(create_schema_engine, settings),
        max_connections=settings.schema_pool_max_connections,
        metrics=metrics,
    )
    executor = QueryExecutor(
        registry,
        slow_query_threshold_ms=settings.slow_query_threshold_ms,
        query_logger=QueryLogger(max_chars=settings.query_log_max_chars, debug=settings.debug_sql),
        metrics=metrics,
    )

    directory = SqlOrganizationDirectory(session_factory)
    identity = SqlSessionIdentityService(session_factory)
    access_store = SqlAccessAuditStore(session_factory)
    schema_store = SqlTenantSchemaStore(executor)

    validator = AccessValidator(access_store, directory, metrics=metrics)
    resolver = TenantContextResolver(
        identity,
        directory,
        master_role=settings.master_role,
        cookie_name=settings.auth_cookie_name,
    )
    provisioning_audit = ProvisioningAuditLog(SqlProvisioningAuditStore(shared_engine))
    provisioner = SchemaProvisioner(
        schema_store,
        table_threshold=settings.provisioning_table_threshold,
        metrics=metrics,
    )

    return TenancyRuntime(
        settings=settings,
        shared_engine=shared_engine,
        registry=registry,
        executor=executor,
        directory=directory,
        identity=identity,
        access_store=access_store,
        schema_store=schema_store,
        validator=validator,
        resolver=resolver,
        provisioning_audit=provisioning_audit,
        provisioner=provisioner,
        provisioning=TenantProvisioningService(provisioner, provisioning_audit),
        monitor=PoolMonitor(
            registry,
            total_threshold=settings.pool_leak_total_threshold,
            waiting_threshold=settings.pool_waiting_threshold,
            probe_timeout_seconds=settings.pool_health_timeout_seconds,
        ),
        fanout=TenantFanout(directory, validator),
    )
