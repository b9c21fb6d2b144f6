"""
Per-request plugin resolution.

Given a tenant and the capabilities an agent needs, the resolver:
1. Reads the tenant's enabled integration keys from the ConfigStore
2. Keeps registered descriptors that are enabled and overlap the request
3. Builds each one with the tenant's credentials, under a time budget

A tenant never uses more integrations than its tier allows: enabled keys past
the limit (in configuration order) are skipped with a warning. A plugin that
cannot be built (missing credentials, factory error, timeout) is skipped with
a warning; the rest still resolve. Bundles come back in descriptor
registration order.
"""
import asyncio
import os
from typing import Iterable, List, Optional, Sequence, Tuple

from fleet_assistant.core.errors import PluginResolutionError
from fleet_assistant.core.logging import get_logger
from fleet_assistant.core.metrics import record_plugin_resolution
from fleet_assistant.core.tracing import get_tracer
from fleet_assistant.services.auth.tenants import TenantDirectory, get_tenant_directory
from fleet_assistant.services.plugins.models import (
    PluginDescriptor,
    PluginResolution,
    ToolBundle,
    normalize_capabilities,
)
from fleet_assistant.services.plugins.registry import PluginRegistry, get_plugin_registry
from fleet_assistant.services.plugins.stores import (
    ConfigStore,
    CredentialStore,
    get_config_store,
    get_credential_store,
)

logger = get_logger(__name__)

DEFAULT_BUILD_TIMEOUT_SECONDS = 10.0


class PluginResolver:
    def __init__(
        self,
        registry: PluginRegistry,
        config_store: ConfigStore,
        credential_store: CredentialStore,
        build_timeout_seconds: float = DEFAULT_BUILD_TIMEOUT_SECONDS,
        tenant_directory: Optional[TenantDirectory] = None,
    ):
        self.registry = registry
        self.config_store = config_store
        self.credential_store = credential_store
        self.build_timeout_seconds = build_timeout_seconds
        self.tenant_directory = tenant_directory

    async def resolve(self, tenant_id: str, capabilities: Iterable[str]) -> PluginResolution:
        """Return the tool bundles this tenant may use for `capabilities`. Never raises."""
        requested = normalize_capabilities(capabilities)

        with get_tracer().start_as_current_span("plugins.resolve") as span:
            span.set_attribute("tenant.id", tenant_id)
            span.set_attribute("plugins.capabilities", sorted(requested))

            try:
                enabled_keys = await self.config_store.get_enabled_integrations(tenant_id)
                limit = await self._integration_limit(tenant_id)
            except Exception as e:
                logger.warning(
                    "plugin_config_lookup_failed",
                    tenant_id=tenant_id,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                return PluginResolution(warnings=["Integration configuration is unavailable for this tenant"])

            resolution = PluginResolution()
            enabled = self._within_limit(tenant_id, enabled_keys, limit, resolution.warnings)

            candidates = [d for d in self.registry.find(requested) if d.key in enabled]
            if not candidates:
                return resolution

            outcomes = await asyncio.gather(
                *(self._build(descriptor, tenant_id) for descriptor in candidates)
            )

            for bundle, warning in outcomes:
                if bundle is not None:
                    resolution.bundles.append(bundle)
                if warning:
                    resolution.warnings.append(warning)

            span.set_attribute("plugins.resolved", resolution.plugin_keys)
            logger.info(
                "plugins_resolved",
                tenant_id=tenant_id,
                capabilities=sorted(requested),
                plugins=resolution.plugin_keys,
                skipped=len(candidates) - len(resolution.bundles),
            )
            return resolution

    async def _integration_limit(self, tenant_id: str) -> Optional[int]:
        if self.tenant_directory is None:
            return None
        tenant = await self.tenant_directory.get_tenant(tenant_id)
        return tenant.limits.max_integrations if tenant is not None else None

    def _within_limit(
        self,
        tenant_id: str,
        enabled_keys: Sequence[str],
        limit: Optional[int],
        warnings: List[str],
    ) -> List[str]:
        """Registered enabled keys in configuration order, cut at the tenant's integration limit."""
        keys: List[str] = []
        unknown: List[str] = []
        for key in enabled_keys:
            key = key.strip().lower()
            if key in keys:
                continue
            if key not in self.registry:
                unknown.append(key)
                continue
            keys.append(key)
        if unknown:
            logger.debug("plugin_keys_unregistered", tenant_id=tenant_id, plugins=sorted(unknown))

        if limit is None or len(keys) <= limit:
            return keys
        skipped = keys[limit:]
        logger.warning(
            "plugin_integration_limit_exceeded",
            tenant_id=tenant_id,
            limit=limit,
            skipped=skipped,
        )
        warnings.append(
            f"Integration limit of {limit} reached for this tenant; skipped: {', '.join(skipped)}"
        )
        return keys[:limit]

    async def _build(
        self,
        descriptor: PluginDescriptor,
        tenant_id: str,
    ) -> Tuple[Optional[ToolBundle], Optional[str]]:
        """Build one bundle; failures come back as (None, warning)."""
        try:
            credentials = await self.credential_store.get_credentials(tenant_id, descriptor.key)
            if credentials is None:
                raise PluginResolutionError(descriptor.key, "no credentials configured")
            bundle = await asyncio.wait_for(
                descriptor.build(tenant_id, credentials),
                timeout=self.build_timeout_seconds,
            )
        except asyncio.TimeoutError:
            record_plugin_resolution(descriptor.key, "timeout")
            logger.warning(
                "plugin_build_timeout",
                plugin=descriptor.key,
                tenant_id=tenant_id,
                timeout_seconds=self.build_timeout_seconds,
            )
            return None, f"{descriptor.key} integration timed out and was skipped"
        except Exception as e:
            record_plugin_resolution(descriptor.key, "failed")
            logger.warning(
                "plugin_build_failed",
                plugin=descriptor.key,
                tenant_id=tenant_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            return None, f"{descriptor.key} integration is unavailable and was skipped"

        record_plugin_resolution(descriptor.key, "built")
        return bundle, None


_plugin_resolver: Optional[PluginResolver] = None


def get_plugin_resolver() -> PluginResolver:
    global _plugin_resolver
    if _plugin_resolver is None:
        timeout = float(
            os.getenv("FLEET_PLUGIN_BUILD_TIMEOUT_SECONDS", str(DEFAULT_BUILD_TIMEOUT_SECONDS))
        )
        _plugin_resolver = PluginResolver(
            registry=get_plugin_registry(),
            config_store=get_config_store(),
            credential_store=get_credential_store(),
            build_timeout_seconds=timeout,
            tenant_directory=get_tenant_directory(),
        )
    return _plugin_resolver