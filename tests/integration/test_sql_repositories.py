"""Integration tests for the SQL repositories on aiosqlite."""

from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from tenantflow.db.models import Organization, User, UserSession
from tenantflow.db.repositories import (
    AccessAuditEntry,
    ProvisioningAuditEntry,
    ProvisioningMode,
    ProvisioningStatus,
)
from tenantflow.db.sql_repositories import (
    SqlAccessAuditStore,
    SqlOrganizationDirectory,
    SqlProvisioningAuditStore,
    SqlSessionIdentityService,
)
from tenantflow.provisioning.audit import ProvisioningAuditLog
from tenantflow.tenancy.access import AccessValidator
from tenantflow.tenancy.resolver import TenantContextResolver


async def seed_directory(sessions: async_sessionmaker[AsyncSession]) -> None:
    now = datetime.now(UTC)
    async with sessions() as session:
        session.add_all(
            [
                Organization(id="org-acme", slug="acme-corp", name="Acme Corp"),
                Organization(id="org-tech", slug="tech-solutions", name="Tech Solutions"),
                Organization(id="org-old", slug="old-co", name="Old Co", is_active=False),
            ]
        )
        await session.flush()
        session.add_all(
            [
                User(id="u-acme", email="a@acme.test", role="admin", organization_id="org-acme"),
                User(id="u-master", email="m@tech.test", role="master", organization_id="org-tech"),
            ]
        )
        await session.flush()
        session.add_all(
            [
                UserSession(token="live", user_id="u-acme", expires_at=now + timedelta(hours=1)),
                UserSession(token="expired", user_id="u-acme", expires_at=now - timedelta(hours=1)),
                UserSession(token="master", user_id="u-master", expires_at=now + timedelta(hours=1)),
            ]
        )
        await session.commit()


@pytest.mark.asyncio
async def test_organization_directory(sqlite_sessions: async_sessionmaker[AsyncSession]) -> None:
    await seed_directory(sqlite_sessions)
    directory = SqlOrganizationDirectory(sqlite_sessions)

    org = await directory.get_organization("org-acme")
    assert org is not None
    assert org.slug == "acme-corp"
    assert org.is_active is True

    assert (await directory.get_by_slug("tech-solutions")) is not None
    assert await directory.get_organization("org-missing") is None
    assert [o.slug for o in await directory.list_active()] == ["acme-corp", "tech-solutions"]


@pytest.mark.asyncio
async def test_session_identity_service(sqlite_sessions: async_sessionmaker[AsyncSession]) -> None:
    await seed_directory(sqlite_sessions)
    identity = SqlSessionIdentityService(sqlite_sessions)

    record = await identity.resolve_token("live")
    assert record is not None
    assert record.user_id == "u-acme"
    assert record.organization_id == "org-acme"
    assert record.organization_slug == "acme-corp"
    assert record.role == "admin"

    assert await identity.resolve_token("expired") is None
    assert await identity.resolve_token("unknown") is None


@pytest.mark.asyncio
async def test_resolver_over_sql_stores(sqlite_sessions: async_sessionmaker[AsyncSession]) -> None:
    await seed_directory(sqlite_sessions)
    resolver = TenantContextResolver(
        SqlSessionIdentityService(sqlite_sessions), SqlOrganizationDirectory(sqlite_sessions)
    )

    context = await resolver.resolve_token("master")

    assert context is not None
    assert context.is_master is True
    assert context.schema_name.value == "org_tech_solutions"


@pytest.mark.asyncio
async def test_access_audit_store(sqlite_sessions: async_sessionmaker[AsyncSession]) -> None:
    store = SqlAccessAuditStore(sqlite_sessions)
    base = datetime(2026, 1, 1, tzinfo=UTC)

    for minute, allowed in ((0, False), (1, True)):
        await store.record(
            AccessAuditEntry(
                user_id="u-1",
                user_role="admin",
                home_org_id="org-acme",
                accessed_org_id="org-tech",
                accessed_schema="org_tech_solutions",
                allowed=allowed,
                method="GET",
                path="/organizations/org-tech/campaigns",
                reason=None if allowed else "Unauthorized cross-tenant access",
                timestamp=base + timedelta(minutes=minute),
            )
        )

    entries = await store.list_for_org("org-tech")

    assert [e.allowed for e in entries] == [True, False]
    assert entries[1].reason == "Unauthorized cross-tenant access"
    assert entries[0].id is not None
    assert await store.list_for_org("org-acme") == []


@pytest.mark.asyncio
async def test_access_validator_writes_audit_rows(
    sqlite_sessions: async_sessionmaker[AsyncSession],
) -> None:
    await seed_directory(sqlite_sessions)
    store = SqlAccessAuditStore(sqlite_sessions)
    directory = SqlOrganizationDirectory(sqlite_sessions)
    resolver = TenantContextResolver(SqlSessionIdentityService(sqlite_sessions), directory)
    acme = await resolver.resolve_token("live")
    assert acme is not None

    decision = await AccessValidator(store, directory).validate(acme, "org-tech", method="GET")

    assert decision.allowed is False
    [entry] = await store.list_for_org("org-tech")
    assert entry.accessed_schema == "org_tech_solutions"
    assert entry.allowed is False


@pytest.mark.asyncio
async def test_provisioning_audit_store_lifecycle(sqlite_engine: AsyncEngine) -> None:
    store = SqlProvisioningAuditStore(sqlite_engine)
    await store.ensure_table()
    await store.ensure_table()

    first_at = datetime(2026, 1, 1, tzinfo=UTC)
    await store.insert_started(
        ProvisioningAuditEntry(
            id="a-1",
            org_id="org-acme",
            org_slug="acme-corp",
            mode=ProvisioningMode.sync,
            status=ProvisioningStatus.started,
            created_at=first_at,
            updated_at=first_at,
        )
    )
    assert await store.finish(
        "a-1",
        status=ProvisioningStatus.failed,
        duration_ms=30,
        error="boom",
        details={"errors": ["boom"]},
    )
    # Already terminal
    assert not await store.finish("a-1", status=ProvisioningStatus.success, duration_ms=1)

    second_at = first_at + timedelta(minutes=5)
    await store.insert_started(
        ProvisioningAuditEntry(
            id="a-2",
            org_id="org-acme",
            org_slug="acme-corp",
            mode=ProvisioningMode.async_,
            status=ProvisioningStatus.started,
            user_id="u-master",
            created_at=second_at,
            updated_at=second_at,
        )
    )
    assert await store.finish(
        "a-2", status=ProvisioningStatus.success, duration_ms=1200, summary={"tables_created": 1}
    )

    latest = await store.latest_for_org("org-acme")
    assert latest is not None
    assert latest.id == "a-2"
    assert latest.mode is ProvisioningMode.async_
    assert latest.status is ProvisioningStatus.success
    assert latest.summary == {"tables_created": 1}
    assert latest.user_id == "u-master"
    assert await store.latest_for_org("org-none") is None


@pytest.mark.asyncio
async def test_provisioning_audit_log_over_sql(sqlite_engine: AsyncEngine) -> None:
    audit = ProvisioningAuditLog(SqlProvisioningAuditStore(sqlite_engine))

    audit_id = await audit.record_start("org-acme", "acme-corp")
    await audit.record_success(audit_id, {"tables_created": 46}, 900)

    status = await audit.get_status("org-acme")
    assert status is not None
    assert status.id == audit_id
    assert status.status is ProvisioningStatus.success
    assert status.duration_ms == 900
