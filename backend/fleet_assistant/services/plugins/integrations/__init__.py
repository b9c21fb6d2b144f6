"""Built-in integration plugins, registered in this order."""
from typing import List

from fleet_assistant.services.plugins.integrations import fleetio, geotab, samsara
from fleet_assistant.services.plugins.models import PluginDescriptor
from fleet_assistant.services.plugins.registry import PluginRegistry

BUILTIN_DESCRIPTORS: List[PluginDescriptor] = [
    geotab.DESCRIPTOR,
    fleetio.DESCRIPTOR,
    samsara.DESCRIPTOR,
]


def register_builtin_plugins(registry: PluginRegistry) -> PluginRegistry:
    for descriptor in BUILTIN_DESCRIPTORS:
        registry.register(descriptor)
    return registry
