"""
Unit tests for the domain specialist agents.

Completion service and plugin resolver are in-memory doubles.
"""
import asyncio

import pytest

from doubles import DummyCompletionService, StaticResolver, make_bundle, tool_call_result
from fleet_assistant.core.errors import UpstreamTimeoutError
from fleet_assistant.models.query import QueryRequest
from fleet_assistant.services.ai.agents import (
    FuelAgent,
    MaintenanceAgent,
    SafetyAgent,
    build_default_agents,
)
from fleet_assistant.services.ai.prompts import FUEL_PROMPT
from fleet_assistant.services.ai.schema import ToolInvocation
from fleet_assistant.services.plugins.models import PluginResolution


def invocation(name: str, call_id: str = "call_1", arguments=None, raw="{}", valid=True) -> ToolInvocation:
    return ToolInvocation(id=call_id, name=name, arguments=arguments or {}, raw_arguments=raw, arguments_valid=valid)


@pytest.mark.asyncio
async def test_zero_integrations_still_answers(identity, fuel_request):
    """No tools: empty manifest, best-effort answer, warning."""
    completion = DummyCompletionService({"fuel": "General fuel guidance"})
    agent = FuelAgent(completion_service=completion, plugin_resolver=StaticResolver())

    result = await agent.run(fuel_request, identity)

    assert result.success
    assert result.response == "General fuel guidance"
    assert result.warnings == ["No integrations available for the fuel specialist"]
    call = completion.calls_for("fuel")[0]
    assert call["tool_manifest"] == []
    assert call["system_prompt"] == FUEL_PROMPT
    assert "Additional context: vehicleId: ABC123" in call["user_message"]
    assert result.data["availableIntegrations"] == []


@pytest.mark.asyncio
async def test_fuel_agent_data_bag(identity, fuel_request):
    resolver = StaticResolver(PluginResolution(bundles=[make_bundle("geotab"), make_bundle("fleetio")]))
    agent = FuelAgent(completion_service=DummyCompletionService({"fuel": "28 mpg"}), plugin_resolver=resolver)

    result = await agent.run(fuel_request, identity)

    assert result.data["agentType"] == "FuelAgent"
    assert result.data["availableIntegrations"] == ["geotab", "fleetio"]
    assert result.data["vehicleId"] == "ABC123"
    assert result.data["queryContext"] == {
        "originalMessage": fuel_request.message,
        "hasContext": True,
        "tenantId": "tenant-1",
    }
    assert resolver.requests == [("tenant-1", frozenset({"fuel", "vehicle-data"}))]


@pytest.mark.asyncio
async def test_tool_call_round_trip(identity, fuel_request):
    """Requested tools run and their output goes back to the model."""
    resolution = PluginResolution(bundles=[make_bundle("geotab", "get_fuel_data", output={"mpg": 27.5})])
    completion = DummyCompletionService({
        "fuel": [
            tool_call_result(invocation("geotab__get_fuel_data", arguments={"vehicle_id": "ABC123"})),
            "Vehicle ABC123 averages 27.5 mpg",
        ]
    })
    agent = FuelAgent(completion_service=completion, plugin_resolver=StaticResolver(resolution))

    result = await agent.run(fuel_request, identity)

    assert result.success
    assert result.response == "Vehicle ABC123 averages 27.5 mpg"
    assert result.warnings == []
    assert result.data["toolCalls"] == [{"tool": "geotab__get_fuel_data", "success": True}]
    second_call = completion.calls_for("fuel")[1]
    tool_message = second_call["extra_messages"][-1]
    assert tool_message["role"] == "tool"
    assert tool_message["tool_call_id"] == "call_1"
    assert "27.5" in tool_message["content"]


@pytest.mark.asyncio
async def test_tool_rounds_are_bounded(identity, fuel_request):
    resolution = PluginResolution(bundles=[make_bundle("geotab", "get_fuel_data")])
    completion = DummyCompletionService({
        "fuel": [
            tool_call_result(invocation("geotab__get_fuel_data", "c1")),
            tool_call_result(invocation("geotab__get_fuel_data", "c2")),
            tool_call_result(invocation("geotab__get_fuel_data", "c3")),
            "Summary from collected data",
        ]
    })
    agent = FuelAgent(completion_service=completion, plugin_resolver=StaticResolver(resolution))

    result = await agent.run(fuel_request, identity)

    calls = completion.calls_for("fuel")
    assert len(calls) == agent.max_tool_rounds + 1
    assert calls[-1]["tool_choice"] == "none"
    assert result.response == "Summary from collected data"
    assert any("tool call limit" in w for w in result.warnings)


@pytest.mark.asyncio
async def test_failing_tool_reported_to_model(identity, fuel_request):
    async def broken(arguments):
        raise ConnectionError("geotab down")

    resolution = PluginResolution(bundles=[make_bundle("geotab", "get_fuel_data", handler=broken)])
    completion = DummyCompletionService({
        "fuel": [
            tool_call_result(invocation("geotab__get_fuel_data"), invocation("geotab__unknown", "call_2")),
            "Partial answer",
        ]
    })
    agent = FuelAgent(completion_service=completion, plugin_resolver=StaticResolver(resolution))

    result = await agent.run(fuel_request, identity)

    assert result.success
    assert "Integration call geotab__get_fuel_data failed" in result.warnings
    assert "Requested tool geotab__unknown is not available" in result.warnings
    tool_messages = [m for m in completion.calls_for("fuel")[1]["extra_messages"] if m["role"] == "tool"]
    assert len(tool_messages) == 2
    assert all("error" in m["content"] for m in tool_messages)


@pytest.mark.asyncio
async def test_completion_failure_becomes_failed_result(identity, fuel_request):
    completion = DummyCompletionService({"maintenance": RuntimeError("503 from upstream")})
    agent = MaintenanceAgent(completion_service=completion, plugin_resolver=StaticResolver())

    result = await agent.run(fuel_request, identity)

    assert not result.success
    assert result.data == {}
    assert "The maintenance specialist could not complete its analysis" in result.warnings
    assert "No integrations available for the maintenance specialist" in result.warnings


@pytest.mark.asyncio
async def test_empty_answer_becomes_failed_result(identity, fuel_request):
    completion = DummyCompletionService({"fuel": "   "})
    agent = FuelAgent(completion_service=completion, plugin_resolver=StaticResolver())

    result = await agent.run(fuel_request, identity)

    assert not result.success
    assert "The fuel specialist could not complete its analysis" in result.warnings


@pytest.mark.asyncio
async def test_completion_timeout_becomes_failed_result(identity, fuel_request):
    completion = DummyCompletionService({"safety": UpstreamTimeoutError("completion", 20)})
    agent = SafetyAgent(completion_service=completion, plugin_resolver=StaticResolver())

    result = await agent.run(fuel_request, identity)

    assert not result.success
    assert "The safety specialist timed out" in result.warnings


@pytest.mark.asyncio
async def test_resolver_failure_becomes_failed_result(identity, fuel_request):
    agent = SafetyAgent(
        completion_service=DummyCompletionService(),
        plugin_resolver=StaticResolver(error=RuntimeError("registry broken")),
    )

    result = await agent.run(fuel_request, identity)

    assert not result.success
    assert result.warnings == ["The safety specialist could not complete its analysis"]


@pytest.mark.asyncio
async def test_safety_agent_context(identity):
    request = QueryRequest(message="Driver safety report", context={"driver_id": "D-9"})
    agent = SafetyAgent(completion_service=DummyCompletionService(), plugin_resolver=StaticResolver())

    result = await agent.run(request, identity)

    assert result.data["driverId"] == "D-9"
    assert "vehicleId" not in result.data


@pytest.mark.asyncio
async def test_agents_are_independent_per_call(identity, fuel_request):
    """Concurrent runs share no mutable state."""
    resolution = PluginResolution(bundles=[make_bundle("geotab", "get_fuel_data")])
    completion = DummyCompletionService({"fuel": "answer"})
    agent = FuelAgent(completion_service=completion, plugin_resolver=StaticResolver(resolution))

    first, second = await asyncio.gather(agent.run(fuel_request, identity), agent.run(fuel_request, identity))

    assert first.data == second.data
    assert first.warnings == [] and second.warnings == []


def test_build_default_agents():
    agents = build_default_agents(completion_service=DummyCompletionService(), plugin_resolver=StaticResolver())

    assert sorted(agents) == ["fuel", "maintenance", "safety"]
    assert agents["safety"].permission == "agent:safety"
    assert "compliance" in agents["safety"].capabilities
