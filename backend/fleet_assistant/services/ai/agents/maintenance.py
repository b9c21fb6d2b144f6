"""Maintenance and work order specialist."""
from typing import Any, Dict

from fleet_assistant.models.query import QueryRequest
from fleet_assistant.services.ai.agents.base import DomainAgent, first_context_value
from fleet_assistant.services.ai.prompts import MAINTENANCE_PROMPT


class MaintenanceAgent(DomainAgent):
    name = "maintenance"
    agent_type = "MaintenanceAgent"
    capabilities = frozenset({"maintenance", "work-orders", "vehicle-data"})
    analysis_capabilities = (
        "service_history",
        "work_order_tracking",
        "fault_code_analysis",
        "preventive_maintenance_planning",
    )
    system_prompt = MAINTENANCE_PROMPT

    def domain_context(self, request: QueryRequest) -> Dict[str, Any]:
        vehicle_id = first_context_value(request, "vehicleId", "vehicle_id")
        return {"vehicleId": vehicle_id} if vehicle_id is not None else {}
