"""
Shared fixtures for the fleet assistant tests.
"""
import pytest

from fleet_assistant.models.identity import CallerIdentity
from fleet_assistant.models.query import QueryRequest
from fleet_assistant.services.auth.permissions import resolve_scopes


@pytest.fixture
def identity() -> CallerIdentity:
    return CallerIdentity(
        tenant_id="tenant-1",
        key_id="key-1",
        scopes=resolve_scopes(["role:fleet_user"]),
    )


@pytest.fixture
def fuel_request() -> QueryRequest:
    return QueryRequest(
        message="What's the fuel efficiency of vehicle ABC123?",
        context={"vehicleId": "ABC123"},
    )
