"""Integration tests for the admin and campaign routes over the in-memory runtime."""

from collections.abc import Iterator
from datetime import datetime
from typing import Any

import pytest
from fastapi.testclient import TestClient

from tenantflow.main import create_app
from tenantflow.provisioning.catalog import EXPECTED_CATALOG
from tenantflow.tenancy.schema_names import resolve_schema_name

MASTER = {"Authorization": "Bearer master-token"}
ACME_ADMIN = {"Authorization": "Bearer acme-token"}


def campaign_row(schema: str, name: str) -> dict[str, Any]:
    return {
        "id": f"{schema}-c1",
        "organizationId": schema,
        "name": name,
        "advertiserId": "adv-1",
        "startDate": datetime(2026, 1, 1),
        "endDate": datetime(2026, 2, 1),
        "status": "active",
    }


@pytest.fixture
def client(memory_runtime: Any, engine_factory: Any) -> Iterator[TestClient]:
    # Only org_acme_corp holds a campaign; statements are schema-qualified
    def handler(sql: str, params: dict[str, Any]) -> list[dict[str, Any]] | None:
        if '"Campaign"' not in sql:
            return None
        if '"org_acme_corp"."Campaign"' in sql:
            return [campaign_row("org-acme", "Tenant1Campaign")]
        return []

    engine_factory.handler = handler

    with TestClient(create_app(memory_runtime)) as test_client:
        yield test_client


class TestAuthentication:
    def test_unauthenticated_is_401(self, client: TestClient) -> None:
        assert client.get("/campaigns").status_code == 401
        assert client.get("/admin/pools").status_code == 401

    def test_admin_routes_require_master(self, client: TestClient) -> None:
        response = client.get("/admin/pools", headers=ACME_ADMIN)

        assert response.status_code == 403

    def test_cookie_authentication(self, client: TestClient) -> None:
        client.cookies.set("auth-token", "acme-token")
        try:
            response = client.get("/campaigns")
        finally:
            client.cookies.clear()

        assert response.status_code == 200


class TestCampaignRoutes:
    def test_own_schema_campaigns(self, client: TestClient) -> None:
        response = client.get("/campaigns", headers=ACME_ADMIN)

        assert response.status_code == 200
        data = response.json()
        assert [c["name"] for c in data] == ["Tenant1Campaign"]

    def test_other_tenant_sees_nothing(self, client: TestClient) -> None:
        response = client.get("/campaigns", headers={"Authorization": "Bearer tech-token"})

        assert response.status_code == 200
        assert response.json() == []

    def test_cross_tenant_read_denied_and_audited(
        self, client: TestClient, memory_runtime: Any
    ) -> None:
        response = client.get("/organizations/org-tech/campaigns", headers=ACME_ADMIN)

        assert response.status_code == 403
        assert response.json()["detail"] == "Unauthorized cross-tenant access"
        entry = memory_runtime.access_store.entries[-1]
        assert entry.allowed is False
        assert entry.accessed_schema == "org_tech_solutions"
        assert entry.path == "/organizations/org-tech/campaigns"

    def test_master_cross_tenant_read_allowed_and_audited(
        self, client: TestClient, memory_runtime: Any
    ) -> None:
        response = client.get("/organizations/org-acme/campaigns", headers=MASTER)

        assert response.status_code == 200
        assert [c["name"] for c in response.json()] == ["Tenant1Campaign"]
        assert len(memory_runtime.access_store.entries) == 1
        assert memory_runtime.access_store.entries[0].allowed is True

    def test_unknown_organization_is_404(self, client: TestClient) -> None:
        response = client.get("/organizations/org-nope/campaigns", headers=MASTER)

        assert response.status_code == 404


class TestAdminRoutes:
    def test_pool_stats_and_health(self, client: TestClient) -> None:
        client.get("/campaigns", headers=ACME_ADMIN)

        pools = client.get("/admin/pools", headers=MASTER).json()
        assert [p["schema_name"] for p in pools] == ["org_acme_corp"]
        assert pools[0]["max_connections"] == 5

        health = client.get("/admin/pools/health", headers=MASTER).json()
        assert health == {"healthy": True, "issues": [], "checked": 1}

    def test_fanout_campaigns(self, client: TestClient) -> None:
        response = client.get("/admin/campaigns", headers=MASTER)

        assert response.status_code == 200
        data = response.json()
        assert [(r["name"], r["_org_slug"]) for r in data] == [("Tenant1Campaign", "acme-corp")]

    def test_sync_provisioning(self, client: TestClient, memory_runtime: Any) -> None:
        response = client.post("/admin/organizations/org-acme/provision", headers=MASTER)

        assert response.status_code == 200
        body = response.json()
        assert body["mode"] == "sync"
        assert body["audit_id"]
        assert body["result"]["success"] is True
        assert body["result"]["schema_name"] == "org_acme_corp"
        assert body["result"]["summary"]["tables_created"] == len(EXPECTED_CATALOG)

        status = client.get(
            "/admin/organizations/org-acme/provisioning-status", headers=MASTER
        ).json()
        assert status["id"] == body["audit_id"]
        assert status["status"] == "success"
        assert status["user_id"] == "user-master"

    def test_async_provisioning(self, client: TestClient) -> None:
        response = client.post(
            "/admin/organizations/org-tech/provision", params={"mode": "async"}, headers=MASTER
        )

        assert response.status_code == 200
        body = response.json()
        assert body["mode"] == "async"
        assert body["result"] is None
        assert body["audit_id"]

    def test_dry_run_changes_nothing(self, client: TestClient, memory_runtime: Any) -> None:
        response = client.post(
            "/admin/organizations/org-acme/provision",
            params={"dry_run": "true"},
            headers=MASTER,
        )

        body = response.json()
        assert body["audit_id"] is None
        assert all(c.startswith("Would ") for c in body["result"]["changes"])
        assert memory_runtime.schema_store.bootstrap_calls == 0
        assert resolve_schema_name("acme-corp") not in memory_runtime.schema_store.schemas

    def test_provision_unknown_org_is_404(self, client: TestClient) -> None:
        response = client.post("/admin/organizations/org-nope/provision", headers=MASTER)

        assert response.status_code == 404

    def test_status_without_attempts_is_404(self, client: TestClient) -> None:
        response = client.get("/admin/organizations/org-tech/provisioning-status", headers=MASTER)

        assert response.status_code == 404
