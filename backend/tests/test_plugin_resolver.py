"""
Unit tests for per-request plugin resolution.
"""
import asyncio

import pytest

from doubles import DictCache
from fleet_assistant.services.auth.tenants import Tenant, TenantDirectory, TenantTier
from fleet_assistant.services.plugins.models import PluginDescriptor, Tool, ToolBundle
from fleet_assistant.services.plugins.registry import PluginRegistry
from fleet_assistant.services.plugins.resolver import PluginResolver
from fleet_assistant.services.plugins.stores import (
    CachedConfigStore,
    InMemoryConfigStore,
    InMemoryCredentialStore,
)

FUEL = frozenset({"fuel"})


def bundle_factory(key: str):
    async def factory(tenant_id, credentials):
        async def handler(arguments):
            return {"plugin": key, "tenant": tenant_id}

        return ToolBundle(plugin_key=key, tools=(Tool("get_data", f"{key} data", handler),))

    return factory


async def failing_factory(tenant_id, credentials):
    raise ConnectionError("bad credentials")


async def hanging_factory(tenant_id, credentials):
    await asyncio.sleep(3600)


def make_resolver(descriptors, enabled, credentials=None, timeout=1.0) -> PluginResolver:
    registry = PluginRegistry()
    for descriptor in descriptors:
        registry.register(descriptor)
    config = InMemoryConfigStore({"t1": enabled})
    creds = InMemoryCredentialStore({"t1": credentials if credentials is not None else {k: {"token": "x"} for k in enabled}})
    return PluginResolver(registry, config, creds, build_timeout_seconds=timeout)


def fleet_descriptors():
    return [
        PluginDescriptor("geotab", frozenset({"fuel", "maintenance", "location"}), bundle_factory("geotab")),
        PluginDescriptor("fleetio", frozenset({"fuel", "maintenance"}), bundle_factory("fleetio")),
        PluginDescriptor("samsara", frozenset({"safety", "location"}), bundle_factory("samsara")),
    ]


@pytest.mark.asyncio
async def test_capability_matching_fuel_and_safety():
    resolver = make_resolver(fleet_descriptors(), ["geotab", "fleetio", "samsara"])

    fuel = await resolver.resolve("t1", FUEL)
    safety = await resolver.resolve("t1", {"safety"})

    assert fuel.plugin_keys == ["geotab", "fleetio"]
    assert safety.plugin_keys == ["samsara"]
    assert fuel.warnings == [] and safety.warnings == []


@pytest.mark.asyncio
async def test_only_enabled_integrations_resolve():
    resolver = make_resolver(fleet_descriptors(), ["fleetio"])

    resolution = await resolver.resolve("t1", {"fuel", "location"})

    assert resolution.plugin_keys == ["fleetio"]
    assert [entry["function"]["name"] for entry in resolution.tool_manifest()] == ["fleetio__get_data"]


@pytest.mark.asyncio
async def test_zero_integrations_is_not_an_error():
    resolver = make_resolver(fleet_descriptors(), [])

    resolution = await resolver.resolve("t1", FUEL)

    assert resolution.bundles == []
    assert resolution.tool_manifest() == []
    assert resolution.warnings == []


@pytest.mark.asyncio
async def test_factory_failure_skipped_with_warning():
    descriptors = [
        PluginDescriptor("geotab", FUEL, failing_factory),
        PluginDescriptor("fleetio", FUEL, bundle_factory("fleetio")),
    ]
    resolver = make_resolver(descriptors, ["geotab", "fleetio"])

    resolution = await resolver.resolve("t1", FUEL)

    assert resolution.plugin_keys == ["fleetio"]
    assert resolution.warnings == ["geotab integration is unavailable and was skipped"]


@pytest.mark.asyncio
async def test_factory_timeout_skipped_with_warning():
    descriptors = [
        PluginDescriptor("geotab", FUEL, hanging_factory),
        PluginDescriptor("fleetio", FUEL, bundle_factory("fleetio")),
    ]
    resolver = make_resolver(descriptors, ["geotab", "fleetio"], timeout=0.05)

    resolution = await resolver.resolve("t1", FUEL)

    assert resolution.plugin_keys == ["fleetio"]
    assert resolution.warnings == ["geotab integration timed out and was skipped"]


@pytest.mark.asyncio
async def test_missing_credentials_skipped_with_warning():
    resolver = make_resolver(
        fleet_descriptors(),
        ["geotab", "fleetio"],
        credentials={"fleetio": {"token": "x"}},
    )

    resolution = await resolver.resolve("t1", FUEL)

    assert resolution.plugin_keys == ["fleetio"]
    assert len(resolution.warnings) == 1
    assert resolution.warnings[0].startswith("geotab")


@pytest.mark.asyncio
async def test_config_lookup_failure_yields_empty_resolution():
    class BrokenConfigStore:
        async def get_enabled_integrations(self, tenant_id):
            raise RuntimeError("database unavailable")

    registry = PluginRegistry()
    for descriptor in fleet_descriptors():
        registry.register(descriptor)
    resolver = PluginResolver(registry, BrokenConfigStore(), InMemoryCredentialStore())

    resolution = await resolver.resolve("t1", FUEL)

    assert resolution.bundles == []
    assert resolution.warnings == ["Integration configuration is unavailable for this tenant"]


@pytest.mark.asyncio
async def test_resolved_tools_are_tenant_scoped():
    resolver = make_resolver(fleet_descriptors(), ["samsara"])

    resolution = await resolver.resolve("t1", {"safety"})
    tool = resolution.find_tool("samsara__get_data")

    assert await tool.handler({}) == {"plugin": "samsara", "tenant": "t1"}
    assert resolution.find_tool("geotab__get_data") is None


@pytest.mark.asyncio
async def test_cached_config_store_reads_through():
    inner = InMemoryConfigStore({"t1": ["geotab"]})
    store = CachedConfigStore(inner, cache=DictCache(), ttl_seconds=60)

    assert await store.get_enabled_integrations("t1") == ["geotab"]

    inner.set_integrations("t1", ["geotab", "samsara"])
    assert await store.get_enabled_integrations("t1") == ["geotab"]

    await store.invalidate("t1")
    assert await store.get_enabled_integrations("t1") == ["geotab", "samsara"]


def tiered_resolver(tier: TenantTier, enabled, **overrides) -> PluginResolver:
    directory = TenantDirectory()
    directory.upsert(Tenant(tenant_id="t1", tier=tier, **overrides))
    resolver = make_resolver(fleet_descriptors(), enabled)
    resolver.tenant_directory = directory
    return resolver


@pytest.mark.asyncio
async def test_free_tier_integration_limit_enforced():
    resolver = tiered_resolver(TenantTier.FREE, ["geotab", "fleetio"])

    resolution = await resolver.resolve("t1", FUEL)

    assert resolution.plugin_keys == ["geotab"]
    assert resolution.warnings == ["Integration limit of 1 reached for this tenant; skipped: fleetio"]


@pytest.mark.asyncio
async def test_integration_limit_counts_every_enabled_key():
    """The cap is tenant-wide, so a skipped key stays skipped for other capabilities."""
    resolver = tiered_resolver(TenantTier.FREE, ["samsara", "geotab"])

    fuel = await resolver.resolve("t1", FUEL)
    safety = await resolver.resolve("t1", {"safety"})

    assert fuel.plugin_keys == []
    assert fuel.warnings == ["Integration limit of 1 reached for this tenant; skipped: geotab"]
    assert safety.plugin_keys == ["samsara"]


@pytest.mark.asyncio
async def test_integration_limit_within_tier_and_override():
    basic = tiered_resolver(TenantTier.BASIC, ["geotab", "fleetio"])
    blocked = tiered_resolver(TenantTier.ENTERPRISE, ["geotab"], max_integrations=0)

    assert (await basic.resolve("t1", FUEL)).plugin_keys == ["geotab", "fleetio"]
    assert (await blocked.resolve("t1", FUEL)).plugin_keys == []


@pytest.mark.asyncio
async def test_in_memory_config_store_caps_enabled_integrations():
    store = InMemoryConfigStore()

    enabled = store.set_integrations("t1", ["Geotab", "fleetio", "geotab"], max_integrations=1)

    assert enabled == ["geotab"]
    assert await store.get_enabled_integrations("t1") == ["geotab"]
