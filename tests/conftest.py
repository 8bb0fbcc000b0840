"""Shared pytest fixtures for all test suites."""

import os
from collections.abc import AsyncGenerator, AsyncIterator, Callable
from contextlib import asynccontextmanager
from typing import Any

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool, StaticPool

from tenantflow.config import Settings
from tenantflow.db.executor import QueryExecutor
from tenantflow.db.fanout import TenantFanout
from tenantflow.db.inmemory import (
    InMemoryAccessAuditStore,
    InMemoryIdentityService,
    InMemoryOrganizationDirectory,
    InMemoryProvisioningAuditStore,
    InMemoryTenantSchemaStore,
)
from tenantflow.db.models import Base
from tenantflow.db.registry import ConnectionPoolRegistry
from tenantflow.db.repositories import IdentityRecord, OrganizationRecord
from tenantflow.monitoring.pool_monitor import PoolMonitor
from tenantflow.provisioning.audit import ProvisioningAuditLog
from tenantflow.provisioning.provisioner import SchemaProvisioner
from tenantflow.provisioning.service import TenantProvisioningService
from tenantflow.runtime import TenancyRuntime
from tenantflow.tenancy.access import AccessValidator
from tenantflow.tenancy.resolver import TenantContextResolver
from tenantflow.tenancy.schema_names import SchemaIdentifier

Handler = Callable[[str, dict[str, Any]], list[dict[str, Any]] | None]


class FakeResult:
    """Just enough of SQLAlchemy's CursorResult for the executor."""

    def __init__(self, rows: list[dict[str, Any]] | None) -> None:
        self._rows = rows or []
        self.returns_rows = rows is not None

    def mappings(self) -> "FakeResult":
        return self

    def all(self) -> list[dict[str, Any]]:
        return list(self._rows)


class FakeConnection:
    def __init__(self, engine: "FakeEngine") -> None:
        self._engine = engine
        self.committed = False

    async def execute(self, statement: Any, params: dict[str, Any] | None = None) -> FakeResult:
        sql = str(statement)
        params = dict(params or {})
        self._engine.executed.append((sql, params))
        rows = self._engine.handler(sql, params) if self._engine.handler else None
        return FakeResult(rows)

    async def commit(self) -> None:
        self.committed = True


class FakeQueuePool:
    def __init__(self) -> None:
        self.idle = 0
        self.in_use = 0

    def checkedin(self) -> int:
        return self.idle

    def checkedout(self) -> int:
        return self.in_use


class FakeEngine:
    """AsyncEngine stand-in: counts connections, records SQL, delegates to a handler."""

    def __init__(self, schema: SchemaIdentifier | None = None, handler: Handler | None = None) -> None:
        self.schema = schema
        self.handler = handler
        self.pool = FakeQueuePool()
        self.executed: list[tuple[str, dict[str, Any]]] = []
        self.connect_error: Exception | None = None
        self.disposed = False

    @asynccontextmanager
    async def _checkout(self) -> AsyncIterator[FakeConnection]:
        if self.connect_error is not None:
            raise self.connect_error
        if self.pool.idle:
            self.pool.idle -= 1
        self.pool.in_use += 1
        try:
            yield FakeConnection(self)
        finally:
            self.pool.in_use -= 1
            self.pool.idle += 1

    def connect(self) -> Any:
        return self._checkout()

    def begin(self) -> Any:
        return self._checkout()

    async def dispose(self) -> None:
        self.disposed = True


class FakeEngineFactory:
    """Engine factory for ConnectionPoolRegistry; keeps every engine it built."""

    def __init__(self, handler: Handler | None = None) -> None:
        self.handler = handler
        self.created: list[FakeEngine] = []

    def __call__(self, schema: SchemaIdentifier) -> FakeEngine:
        engine = FakeEngine(schema, self.handler)
        self.created.append(engine)
        return engine

    def for_schema(self, schema: SchemaIdentifier) -> list[FakeEngine]:
        return [e for e in self.created if e.schema == schema]


@pytest.fixture
def engine_factory() -> FakeEngineFactory:
    return FakeEngineFactory()


@pytest_asyncio.fixture
async def sqlite_engine() -> AsyncGenerator[AsyncEngine, None]:
    """In-memory sqlite engine with the shared tables created."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def sqlite_sessions(sqlite_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=sqlite_engine, expire_on_commit=False)


def postgres_url() -> str:
    """DATABASE_URL as an asyncpg URL, or skip the test."""
    database_url = os.getenv("DATABASE_URL")
    if not database_url:
        pytest.skip("DATABASE_URL not set - skipping postgres test")

    # Ensure it's a postgres URL
    if not database_url.startswith(("postgresql://", "postgresql+asyncpg://")):
        pytest.skip(f"DATABASE_URL is not PostgreSQL: {database_url}")

    if database_url.startswith("postgresql://"):
        database_url = database_url.replace("postgresql://", "postgresql+asyncpg://", 1)
    return database_url


@pytest_asyncio.fixture
async def postgres_engine() -> AsyncGenerator[AsyncEngine, None]:
    """Async engine for PostgreSQL integration tests.

    Requires DATABASE_URL to be set to a real PostgreSQL connection string.
    Tests using this fixture should be marked with @pytest.mark.postgres.
    """
    engine = create_async_engine(postgres_url(), poolclass=NullPool, echo=False)

    # Create tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    # Cleanup: drop all tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


def build_memory_runtime(engine_factory: FakeEngineFactory) -> TenancyRuntime:
    """TenancyRuntime over in-memory stores, fake schema engines and sqlite."""
    database_url = "sqlite+aiosqlite:///:memory:"
    settings = Settings(database_url=database_url)
    shared_engine = create_async_engine(
        database_url,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    registry = ConnectionPoolRegistry(engine_factory, max_connections=5)
    executor = QueryExecutor(registry)

    directory = InMemoryOrganizationDirectory(
        [
            OrganizationRecord(id="org-acme", slug="acme-corp", name="Acme Corp"),
            OrganizationRecord(id="org-tech", slug="tech-solutions", name="Tech Solutions"),
            OrganizationRecord(id="org-platform", slug="platform", name="Platform"),
        ]
    )
    identity = InMemoryIdentityService(
        {
            "acme-token": IdentityRecord("user-acme", "org-acme", "acme-corp", "admin"),
            "tech-token": IdentityRecord("user-tech", "org-tech", "tech-solutions", "admin"),
            "master-token": IdentityRecord("user-master", "org-platform", "platform", "master"),
        }
    )
    access_store = InMemoryAccessAuditStore()
    schema_store = InMemoryTenantSchemaStore()
    validator = AccessValidator(access_store, directory)
    provisioning_audit = ProvisioningAuditLog(InMemoryProvisioningAuditStore())
    provisioner = SchemaProvisioner(schema_store)

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
        resolver=TenantContextResolver(identity, directory),
        provisioning_audit=provisioning_audit,
        provisioner=provisioner,
        provisioning=TenantProvisioningService(provisioner, provisioning_audit),
        monitor=PoolMonitor(registry),
        fanout=TenantFanout(directory, validator),
    )


@pytest.fixture
def memory_runtime(engine_factory: FakeEngineFactory) -> TenancyRuntime:
    return build_memory_runtime(engine_factory)


@pytest.fixture
def postgres_settings() -> Settings:
    """Settings pointing at the PostgreSQL DATABASE_URL, or skip the test."""
    return Settings(database_url=postgres_url())
