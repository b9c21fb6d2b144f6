"""Domain specialist agents."""
from typing import Dict

from fleet_assistant.services.ai.agents.base import DomainAgent
from fleet_assistant.services.ai.agents.fuel import FuelAgent
from fleet_assistant.services.ai.agents.maintenance import MaintenanceAgent
from fleet_assistant.services.ai.agents.safety import SafetyAgent

AGENT_CLASSES = (FuelAgent, MaintenanceAgent, SafetyAgent)


def build_default_agents(completion_service=None, plugin_resolver=None) -> Dict[str, DomainAgent]:
    """One instance of every built-in agent, keyed by domain name."""
    return {
        cls.name: cls(completion_service=completion_service, plugin_resolver=plugin_resolver)
        for cls in AGENT_CLASSES
    }


__all__ = ["DomainAgent", "FuelAgent", "MaintenanceAgent", "SafetyAgent", "build_default_agents"]
