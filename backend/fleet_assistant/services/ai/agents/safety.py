"""Driver safety and compliance specialist."""
from typing import Any, Dict

from fleet_assistant.models.query import QueryRequest
from fleet_assistant.services.ai.agents.base import DomainAgent, first_context_value
from fleet_assistant.services.ai.prompts import SAFETY_PROMPT


class SafetyAgent(DomainAgent):
    name = "safety"
    agent_type = "SafetyAgent"
    capabilities = frozenset({"safety", "driver-behavior", "compliance", "location"})
    analysis_capabilities = (
        "driver_scoring",
        "safety_event_analysis",
        "hours_of_service_compliance",
        "route_risk_review",
    )
    system_prompt = SAFETY_PROMPT

    def domain_context(self, request: QueryRequest) -> Dict[str, Any]:
        data: Dict[str, Any] = {}
        driver_id = first_context_value(request, "driverId", "driver_id")
        if driver_id is not None:
            data["driverId"] = driver_id
        vehicle_id = first_context_value(request, "vehicleId", "vehicle_id")
        if vehicle_id is not None:
            data["vehicleId"] = vehicle_id
        return data
