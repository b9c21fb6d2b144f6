"""
Integration tests for the /fleet endpoints.

Authentication, the gate and the coordinator use in-memory state injected
through FastAPI dependency overrides; no network calls are made.
"""
import pytest
from fastapi.testclient import TestClient

from doubles import DummyCompletionService, StaticResolver
from fleet_assistant.main import app
from fleet_assistant.services.ai.agents import build_default_agents
from fleet_assistant.services.ai.orchestration import PlanningCoordinator, get_planning_coordinator
from fleet_assistant.services.auth.authentication import ApiKeyAuthenticator, get_authenticator
from fleet_assistant.services.auth.gate import AuthorizationGate, get_authorization_gate
from fleet_assistant.services.auth.quota import InMemoryQuotaStore
from fleet_assistant.services.auth.tenants import Tenant, TenantDirectory, TenantStatus, TenantTier

FUEL_PAYLOAD = {
    "message": "What's the fuel efficiency of vehicle ABC123?",
    "context": {"vehicleId": "ABC123"},
}


@pytest.fixture
def completion():
    return DummyCompletionService({
        "planning": "Fuel efficiency question",
        "fuel": "ABC123 averages 27.5 mpg",
        "synthesis": "Vehicle ABC123 averages 27.5 mpg.",
    })


@pytest.fixture
def services(completion):
    authenticator = ApiKeyAuthenticator()
    directory = TenantDirectory()
    directory.upsert(Tenant(tenant_id="acme", tier=TenantTier.FREE))
    directory.upsert(Tenant(tenant_id="frozen", status=TenantStatus.SUSPENDED))
    gate = AuthorizationGate(directory, InMemoryQuotaStore())
    coordinator = PlanningCoordinator(
        agents=build_default_agents(completion_service=completion, plugin_resolver=StaticResolver()),
        completion_service=completion,
    )

    app.dependency_overrides[get_authenticator] = lambda: authenticator
    app.dependency_overrides[get_authorization_gate] = lambda: gate
    app.dependency_overrides[get_planning_coordinator] = lambda: coordinator
    yield {"authenticator": authenticator, "gate": gate}
    app.dependency_overrides.clear()


@pytest.fixture
def client(services):
    return TestClient(app)


def api_key(services, tenant_id="acme", scopes=("role:fleet_user",)) -> str:
    raw_key, _ = services["authenticator"].generate_api_key(tenant_id, "test", list(scopes))
    return raw_key


def test_missing_key_is_unauthorized(client):
    response = client.post("/fleet/query", json=FUEL_PAYLOAD)

    assert response.status_code == 401
    assert response.headers["WWW-Authenticate"] == "Bearer"
    assert response.json()["detail"] == "API key required"
    assert "X-Trace-ID" in response.headers


def test_invalid_key_is_unauthorized(client):
    response = client.post("/fleet/query", json=FUEL_PAYLOAD, headers={"Authorization": "Bearer fa_prod_nope"})

    assert response.status_code == 401


def test_fuel_query_succeeds(client, services):
    key = api_key(services)

    response = client.post("/fleet/query", json=FUEL_PAYLOAD, headers={"Authorization": f"Bearer {key}"})

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["response"] == "Vehicle ABC123 averages 27.5 mpg."
    assert body["agentsUsed"] == ["planning", "fuel"]
    assert "fuel" in body["agentData"]
    assert "No integrations available for the fuel specialist" in body["warnings"]
    assert isinstance(body["processingTimeMs"], (int, float))
    assert response.headers["X-RateLimit-Limit"] == "10"
    assert response.headers["X-RateLimit-Remaining"] == "9"
    assert "X-RateLimit-Reset" in response.headers


def test_x_api_key_header_accepted(client, services):
    key = api_key(services)

    response = client.post("/fleet/query", json=FUEL_PAYLOAD, headers={"X-API-Key": key})

    assert response.status_code == 200


def test_missing_scope_is_forbidden(client, services):
    key = api_key(services, scopes=("data:realtime",))

    response = client.post("/fleet/query", json=FUEL_PAYLOAD, headers={"Authorization": f"Bearer {key}"})

    assert response.status_code == 403
    assert response.json()["detail"]["reason"] == "forbidden"
    assert "X-RateLimit-Limit" in response.headers


def test_suspended_tenant_is_forbidden(client, services):
    key = api_key(services, tenant_id="frozen")

    response = client.post("/fleet/query", json=FUEL_PAYLOAD, headers={"Authorization": f"Bearer {key}"})

    assert response.status_code == 403


def test_rate_limited_after_quota(client, services):
    key = api_key(services)
    headers = {"Authorization": f"Bearer {key}"}

    statuses = [client.post("/fleet/query", json=FUEL_PAYLOAD, headers=headers).status_code for _ in range(10)]
    limited = client.post("/fleet/query", json=FUEL_PAYLOAD, headers=headers)

    assert statuses == [200] * 10
    assert limited.status_code == 429
    assert limited.json()["detail"]["reason"] == "rate limited"
    assert limited.headers["X-RateLimit-Remaining"] == "0"
    assert int(limited.headers["Retry-After"]) >= 1


def test_planning_failure_still_returns_payload(client, services, completion):
    completion.replies["planning"] = RuntimeError("LLM unavailable")
    key = api_key(services)

    response = client.post("/fleet/query", json=FUEL_PAYLOAD, headers={"Authorization": f"Bearer {key}"})

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is False
    assert body["agentsUsed"] == ["planning"]


def test_blank_message_rejected(client, services):
    key = api_key(services)

    response = client.post("/fleet/query", json={"message": "   "}, headers={"Authorization": f"Bearer {key}"})

    assert response.status_code == 422


def test_usage_reports_recorded_requests(client, services):
    key = api_key(services)
    headers = {"Authorization": f"Bearer {key}"}
    client.post("/fleet/query", json=FUEL_PAYLOAD, headers=headers)

    response = client.get("/fleet/usage", headers=headers)

    assert response.status_code == 200
    body = response.json()
    assert body["tenantId"] == "acme"
    assert body["tier"] == "free"
    assert body["requestsThisMinute"] == 1
    assert body["totalRequests"] == 1
    assert body["requestsPerMinuteLimit"] == 10


def test_usage_requires_query_scope(client, services):
    key = api_key(services, scopes=("data:realtime",))

    response = client.get("/fleet/usage", headers={"Authorization": f"Bearer {key}"})

    assert response.status_code == 403
    assert response.json()["detail"]["reason"] == "forbidden"
