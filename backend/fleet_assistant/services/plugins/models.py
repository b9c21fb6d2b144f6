"""
Plugin descriptors and the per-tenant tool bundles they build.

A PluginDescriptor is created once per backend at process start. Its factory
is called per request with the tenant's credentials and returns a ToolBundle:
the callable tools an agent may expose to the completion service.
"""
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, FrozenSet, Iterable, List, Optional, Tuple

ToolHandler = Callable[[Dict[str, Any]], Awaitable[Any]]

TOOL_NAME_SEPARATOR = "__"


def normalize_capabilities(capabilities: Iterable[str]) -> FrozenSet[str]:
    """Capabilities are opaque tags compared case-insensitively."""
    return frozenset(c.strip().lower() for c in capabilities if c and c.strip())


def empty_parameters() -> Dict[str, Any]:
    return {"type": "object", "properties": {}}


@dataclass(frozen=True)
class Tool:
    name: str
    description: str
    handler: ToolHandler
    parameters: Dict[str, Any] = field(default_factory=empty_parameters)


@dataclass(frozen=True)
class ToolBundle:
    """Tools one plugin exposes for one tenant."""

    plugin_key: str
    tools: Tuple[Tool, ...] = ()

    def qualified_name(self, tool: Tool) -> str:
        return f"{self.plugin_key}{TOOL_NAME_SEPARATOR}{tool.name}"

    def manifest(self) -> List[Dict[str, Any]]:
        """Function specs in the OpenAI `tools` format."""
        return [
            {
                "type": "function",
                "function": {
                    "name": self.qualified_name(tool),
                    "description": tool.description,
                    "parameters": tool.parameters,
                },
            }
            for tool in self.tools
        ]

    def find(self, qualified_name: str) -> Optional[Tool]:
        for tool in self.tools:
            if self.qualified_name(tool) == qualified_name:
                return tool
        return None


PluginFactory = Callable[[str, Dict[str, Any]], Awaitable[ToolBundle]]


@dataclass(frozen=True)
class PluginDescriptor:
    """
    A registered integration backend.

    Attributes:
        key: Stable integration key, e.g. "geotab"
        capabilities: Capability tags the backend offers
        factory: async (tenant_id, credentials) -> ToolBundle; raises on failure
        description: Human-readable summary
    """

    key: str
    capabilities: FrozenSet[str]
    factory: PluginFactory
    description: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "key", self.key.strip().lower())
        object.__setattr__(self, "capabilities", normalize_capabilities(self.capabilities))

    def overlap(self, requested: Iterable[str]) -> FrozenSet[str]:
        return self.capabilities & normalize_capabilities(requested)

    async def build(self, tenant_id: str, credentials: Dict[str, Any]) -> ToolBundle:
        return await self.factory(tenant_id, credentials)


@dataclass
class PluginResolution:
    """Bundles resolved for one agent call, plus warnings for plugins that were skipped."""

    bundles: List[ToolBundle] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def plugin_keys(self) -> List[str]:
        return [bundle.plugin_key for bundle in self.bundles]

    def tool_manifest(self) -> List[Dict[str, Any]]:
        manifest: List[Dict[str, Any]] = []
        for bundle in self.bundles:
            manifest.extend(bundle.manifest())
        return manifest

    def find_tool(self, qualified_name: str) -> Optional[Tool]:
        for bundle in self.bundles:
            tool = bundle.find(qualified_name)
            if tool is not None:
                return tool
        return None
