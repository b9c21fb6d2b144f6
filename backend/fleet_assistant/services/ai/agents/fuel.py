"""Fuel efficiency specialist."""
from typing import Any, Dict

from fleet_assistant.models.query import QueryRequest
from fleet_assistant.services.ai.agents.base import DomainAgent, first_context_value
from fleet_assistant.services.ai.prompts import FUEL_PROMPT


class FuelAgent(DomainAgent):
    name = "fuel"
    agent_type = "FuelAgent"
    capabilities = frozenset({"fuel", "vehicle-data"})
    analysis_capabilities = (
        "fuel_consumption",
        "mpg_analysis",
        "fuel_cost_tracking",
        "efficiency_benchmarking",
    )
    system_prompt = FUEL_PROMPT

    def domain_context(self, request: QueryRequest) -> Dict[str, Any]:
        vehicle_id = first_context_value(request, "vehicleId", "vehicle_id")
        return {"vehicleId": vehicle_id} if vehicle_id is not None else {}
