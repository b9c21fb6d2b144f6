"""
Capability registry: integration key -> descriptor, capability -> descriptors.

Built once at startup. Lookups return descriptors in registration order.
"""
from typing import Dict, Iterable, List, Optional

from fleet_assistant.core.logging import get_logger
from fleet_assistant.services.plugins.models import PluginDescriptor, normalize_capabilities

logger = get_logger(__name__)


class PluginRegistry:
    def __init__(self) -> None:
        self._descriptors: List[PluginDescriptor] = []
        self._by_key: Dict[str, PluginDescriptor] = {}
        self._by_capability: Dict[str, List[PluginDescriptor]] = {}

    def register(self, descriptor: PluginDescriptor) -> None:
        """
        Add a descriptor.

        Raises:
            ValueError: if a descriptor with the same key is already registered
        """
        if descriptor.key in self._by_key:
            raise ValueError(f"Plugin '{descriptor.key}' is already registered")

        self._descriptors.append(descriptor)
        self._by_key[descriptor.key] = descriptor
        for capability in sorted(descriptor.capabilities):
            self._by_capability.setdefault(capability, []).append(descriptor)

        logger.info(
            "plugin_registered",
            plugin=descriptor.key,
            capabilities=sorted(descriptor.capabilities),
        )

    def get(self, key: str) -> Optional[PluginDescriptor]:
        return self._by_key.get(key.strip().lower())

    def descriptors(self) -> List[PluginDescriptor]:
        return list(self._descriptors)

    def for_capability(self, capability: str) -> List[PluginDescriptor]:
        return list(self._by_capability.get(capability.strip().lower(), []))

    def find(self, capabilities: Iterable[str]) -> List[PluginDescriptor]:
        """Descriptors offering at least one of `capabilities`, in registration order."""
        requested = normalize_capabilities(capabilities)
        matched = set()
        for capability in requested:
            matched.update(d.key for d in self._by_capability.get(capability, []))
        return [d for d in self._descriptors if d.key in matched]

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None

    def __len__(self) -> int:
        return len(self._descriptors)


_plugin_registry: Optional[PluginRegistry] = None


def get_plugin_registry() -> PluginRegistry:
    """Global registry with the built-in integrations registered."""
    global _plugin_registry
    if _plugin_registry is None:
        from fleet_assistant.services.plugins.integrations import register_builtin_plugins

        registry = PluginRegistry()
        register_builtin_plugins(registry)
        _plugin_registry = registry
    return _plugin_registry
