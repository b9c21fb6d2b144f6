"""
Tests for the tenant management endpoints under /admin.
"""
import asyncio

import pytest
from fastapi.testclient import TestClient

from doubles import DictCache, DummyCompletionService
from fleet_assistant.main import app
from fleet_assistant.services.ai.orchestration import PlanningCoordinator, get_planning_coordinator
from fleet_assistant.services.auth.authentication import ApiKeyAuthenticator, get_authenticator
from fleet_assistant.services.auth.gate import AuthorizationGate, get_authorization_gate
from fleet_assistant.services.auth.quota import InMemoryQuotaStore
from fleet_assistant.services.auth.tenants import (
    Tenant,
    TenantDirectory,
    TenantStatus,
    TenantTier,
    get_tenant_directory,
)
from fleet_assistant.services.plugins.stores import CachedConfigStore, InMemoryConfigStore, get_config_store


@pytest.fixture
def services():
    authenticator = ApiKeyAuthenticator()
    directory = TenantDirectory()
    directory.upsert(Tenant(tenant_id="acme", name="Acme", tier=TenantTier.FREE))
    directory.upsert(Tenant(tenant_id="globex", tier=TenantTier.PREMIUM))
    gate = AuthorizationGate(directory, InMemoryQuotaStore())
    config_store = CachedConfigStore(InMemoryConfigStore(), cache=DictCache(), ttl_seconds=60)
    coordinator = PlanningCoordinator(agents={}, completion_service=DummyCompletionService())

    app.dependency_overrides[get_authenticator] = lambda: authenticator
    app.dependency_overrides[get_authorization_gate] = lambda: gate
    app.dependency_overrides[get_tenant_directory] = lambda: directory
    app.dependency_overrides[get_config_store] = lambda: config_store
    app.dependency_overrides[get_planning_coordinator] = lambda: coordinator
    yield {"authenticator": authenticator, "directory": directory, "config_store": config_store}
    app.dependency_overrides.clear()


@pytest.fixture
def client(services):
    return TestClient(app)


def bearer(services, tenant_id="ops", scopes=("role:system_admin",)):
    raw_key, _ = services["authenticator"].generate_api_key(tenant_id, "test", list(scopes))
    return {"Authorization": f"Bearer {raw_key}"}


def test_list_tenants_requires_manage_permission(client, services):
    tenant_admin = bearer(services, tenant_id="acme", scopes=("role:tenant_admin",))

    denied = client.get("/admin/tenants", headers=tenant_admin)
    allowed = client.get("/admin/tenants", headers=bearer(services))

    assert denied.status_code == 403
    assert denied.json()["detail"]["reason"] == "forbidden"
    assert allowed.status_code == 200
    assert [t["tenant_id"] for t in allowed.json()["tenants"]] == ["acme", "globex"]


def test_list_tenants_filters_by_status(client, services):
    client.post("/admin/tenant/globex/suspend", json={"reason": "unpaid"}, headers=bearer(services))

    response = client.get("/admin/tenants", params={"status": "suspended"}, headers=bearer(services))

    assert response.json()["count"] == 1
    assert response.json()["tenants"][0]["tenant_id"] == "globex"


def test_tenant_admin_views_only_own_tenant(client, services):
    headers = bearer(services, tenant_id="acme", scopes=("role:tenant_admin",))

    own = client.get("/admin/tenant/acme", headers=headers)
    other = client.get("/admin/tenant/globex", headers=headers)

    assert own.status_code == 200
    body = own.json()
    assert body["tier"] == "free"
    assert body["limits"]["max_integrations"] == 1
    assert body["usage"]["tenantId"] == "acme"
    assert other.status_code == 403


def test_unknown_tenant_is_not_found(client, services):
    assert client.get("/admin/tenant/nobody", headers=bearer(services)).status_code == 404
    assert client.post("/admin/tenant/nobody/reactivate", headers=bearer(services)).status_code == 404


def test_create_tenant(client, services):
    headers = bearer(services)

    created = client.post("/admin/tenant", json={"tenant_id": "initech", "tier": "basic"}, headers=headers)
    duplicate = client.post("/admin/tenant", json={"tenant_id": "initech"}, headers=headers)

    assert created.status_code == 201
    assert created.json()["limits"]["requests_per_minute"] == 50
    assert duplicate.status_code == 409


def test_update_tenant_keeps_unset_fields(client, services):
    response = client.put(
        "/admin/tenant/acme",
        json={"tier": "enterprise", "requests_per_minute": 0},
        headers=bearer(services),
    )

    assert response.status_code == 200
    body = response.json()
    assert body["name"] == "Acme"
    assert body["tier"] == "enterprise"
    assert body["limits"]["requests_per_minute"] == 0
    assert body["limits"]["requests_per_day"] == 100000


def test_suspend_and_reactivate_gate_queries(client, services):
    admin = bearer(services)
    caller = bearer(services, tenant_id="acme", scopes=("role:fleet_user",))
    payload = {"message": "How is the fleet doing?"}

    suspended = client.post("/admin/tenant/acme/suspend", json={"reason": "unpaid invoice"}, headers=admin)
    blocked = client.post("/fleet/query", json=payload, headers=caller)
    reactivated = client.post("/admin/tenant/acme/reactivate", headers=admin)
    allowed = client.post("/fleet/query", json=payload, headers=caller)

    assert suspended.json()["status"] == "suspended"
    assert suspended.json()["suspension_reason"] == "unpaid invoice"
    assert blocked.status_code == 403
    assert reactivated.json()["status"] == "active"
    assert allowed.status_code == 200


def test_suspend_requires_reason(client, services):
    response = client.post("/admin/tenant/acme/suspend", json={"reason": ""}, headers=bearer(services))

    assert response.status_code == 422
    assert client.get("/admin/tenant/acme", headers=bearer(services)).json()["status"] == TenantStatus.ACTIVE.value


def test_integrations_capped_at_tier_limit(client, services):
    response = client.put(
        "/admin/tenant/acme/integrations",
        json={"integrations": ["geotab", "fleetio"]},
        headers=bearer(services),
    )

    assert response.status_code == 200
    assert response.json()["integrations"] == ["geotab"]
    assert response.json()["dropped"] == ["fleetio"]
    assert asyncio.run(services["config_store"].get_enabled_integrations("acme")) == ["geotab"]


def test_issue_list_and_revoke_api_key(client, services):
    admin = bearer(services)

    issued = client.post("/admin/tenant/acme/keys", json={"name": "ci", "environment": "development"}, headers=admin)
    assert issued.status_code == 201
    body = issued.json()
    assert body["api_key"].startswith("fa_deve_")
    assert body["tenant_id"] == "acme"
    assert "key_hash" not in body

    new_key = {"X-API-Key": body["api_key"]}
    assert client.get("/fleet/usage", headers=new_key).status_code == 200

    listed = client.get("/admin/tenant/acme/keys", headers=admin).json()["keys"]
    assert [k["key_id"] for k in listed] == [body["key_id"]]

    assert client.delete(f"/admin/tenant/globex/keys/{body['key_id']}", headers=admin).status_code == 404
    revoked = client.delete(f"/admin/tenant/acme/keys/{body['key_id']}", headers=admin)
    assert revoked.status_code == 200
    assert client.get("/fleet/usage", headers=new_key).status_code == 401


def test_key_management_requires_manage_permission(client, services):
    headers = bearer(services, tenant_id="acme", scopes=("role:tenant_admin",))

    response = client.post("/admin/tenant/acme/keys", json={"name": "x"}, headers=headers)

    assert response.status_code == 403
