"""
Tests for the query request/response wire models.
"""
from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from fleet_assistant.models.query import QueryRequest, QueryResponse


def test_request_accepts_camel_case_payload():
    payload = {
        "message": "Fuel report",
        "conversationHistory": [
            {"role": "User", "content": "hi", "timestamp": "2024-03-01T12:00:00Z"},
            {"role": "assistant", "content": "hello"},
        ],
        "context": {"vehicleId": "ABC123"},
    }

    request = QueryRequest.model_validate(payload)

    assert request.conversation_history[0].role == "user"
    assert request.conversation_history[0].timestamp == datetime(2024, 3, 1, 12, tzinfo=timezone.utc)
    assert request.context == {"vehicleId": "ABC123"}


def test_request_defaults():
    request = QueryRequest(message="hi")

    assert request.conversation_history == []
    assert request.context == {}


@pytest.mark.parametrize("message", ["", "   ", "x" * 4001])
def test_request_rejects_bad_messages(message):
    with pytest.raises(ValidationError):
        QueryRequest(message=message)


def test_response_round_trip_preserves_fields():
    response = QueryResponse(
        response="Vehicle ABC123 averages 27.5 mpg.",
        agent_data={"planning": {"analysis": "fuel"}, "fuel": {"agentType": "FuelAgent", "vehicleId": "ABC123"}},
        agents_used=["planning", "fuel"],
        warnings=["No specialist is registered for the 'insurance' domain"],
        processing_time_ms=412,
        timestamp=datetime(2024, 3, 1, 12, tzinfo=timezone.utc),
    )

    wire = response.model_dump(by_alias=True, mode="json")
    assert set(wire) == {"response", "agentData", "agentsUsed", "warnings", "processingTimeMs", "timestamp", "success"}

    assert QueryResponse.model_validate(wire) == response
