"""
Tenant integration configuration and credential stores.

ConfigStore answers "which integrations has this tenant enabled?" and
CredentialStore "what credentials does this tenant use for integration X?".
Both are read-mostly. The enabled-integration list is cached in Redis for
FLEET_CONFIG_CACHE_TTL_SECONDS (default 30 minutes), so configuration changes
become visible within one TTL.
"""
import asyncio
import os
from typing import Any, Dict, Iterable, List, Optional, Protocol

from fleet_assistant.core.cache import CacheClient, get_cache_client
from fleet_assistant.core.database import get_supabase_client
from fleet_assistant.core.logging import get_logger

logger = get_logger(__name__)

DEFAULT_CONFIG_CACHE_TTL_SECONDS = 1800


class ConfigStore(Protocol):
    async def get_enabled_integrations(self, tenant_id: str) -> List[str]:
        ...


class CredentialStore(Protocol):
    async def get_credentials(self, tenant_id: str, integration_key: str) -> Optional[Dict[str, Any]]:
        ...


class InMemoryConfigStore:
    """Enabled integrations per tenant, held in process memory."""

    def __init__(self, integrations: Optional[Dict[str, Iterable[str]]] = None):
        self._integrations: Dict[str, List[str]] = {}
        for tenant_id, keys in (integrations or {}).items():
            self.set_integrations(tenant_id, keys)

    def set_integrations(
        self,
        tenant_id: str,
        keys: Iterable[str],
        max_integrations: Optional[int] = None,
    ) -> List[str]:
        """
        Replace the tenant's enabled integrations.

        Keys past `max_integrations` are dropped with a warning log. Returns the
        keys actually enabled.
        """
        enabled: List[str] = []
        for key in keys:
            key = key.strip().lower()
            if key and key not in enabled:
                enabled.append(key)
        if max_integrations is not None and len(enabled) > max_integrations:
            logger.warning(
                "tenant_integrations_capped",
                tenant_id=tenant_id,
                limit=max_integrations,
                dropped=enabled[max_integrations:],
            )
            enabled = enabled[:max_integrations]
        self._integrations[tenant_id] = enabled
        return list(enabled)

    async def get_enabled_integrations(self, tenant_id: str) -> List[str]:
        return list(self._integrations.get(tenant_id, []))


class InMemoryCredentialStore:
    def __init__(self, credentials: Optional[Dict[str, Dict[str, Dict[str, Any]]]] = None):
        self._credentials: Dict[str, Dict[str, Dict[str, Any]]] = {}
        for tenant_id, by_key in (credentials or {}).items():
            for key, values in by_key.items():
                self.set_credentials(tenant_id, key, values)

    def set_credentials(self, tenant_id: str, integration_key: str, values: Dict[str, Any]) -> None:
        self._credentials.setdefault(tenant_id, {})[integration_key.strip().lower()] = dict(values)

    async def get_credentials(self, tenant_id: str, integration_key: str) -> Optional[Dict[str, Any]]:
        values = self._credentials.get(tenant_id, {}).get(integration_key.strip().lower())
        return dict(values) if values is not None else None


class SupabaseConfigStore:
    """Reads the `tenant_integrations` table (tenant_id, integration_key, enabled)."""

    table = "tenant_integrations"

    def __init__(self, client):
        self.client = client

    def _fetch(self, tenant_id: str) -> List[str]:
        result = (
            self.client.table(self.table)
            .select("integration_key")
            .eq("tenant_id", tenant_id)
            .eq("enabled", True)
            .execute()
        )
        return [row["integration_key"].lower() for row in (result.data or [])]

    async def get_enabled_integrations(self, tenant_id: str) -> List[str]:
        return await asyncio.to_thread(self._fetch, tenant_id)


class SupabaseCredentialStore:
    """Reads the `integration_credentials` table (tenant_id, integration_key, credentials JSON)."""

    table = "integration_credentials"

    def __init__(self, client):
        self.client = client

    def _fetch(self, tenant_id: str, integration_key: str) -> Optional[Dict[str, Any]]:
        result = (
            self.client.table(self.table)
            .select("credentials")
            .eq("tenant_id", tenant_id)
            .eq("integration_key", integration_key)
            .limit(1)
            .execute()
        )
        rows = result.data or []
        if not rows:
            return None
        return dict(rows[0].get("credentials") or {})

    async def get_credentials(self, tenant_id: str, integration_key: str) -> Optional[Dict[str, Any]]:
        return await asyncio.to_thread(self._fetch, tenant_id, integration_key.strip().lower())


class CachedConfigStore:
    """Read-through Redis cache in front of another ConfigStore."""

    def __init__(
        self,
        inner: ConfigStore,
        cache: Optional[CacheClient] = None,
        ttl_seconds: int = DEFAULT_CONFIG_CACHE_TTL_SECONDS,
    ):
        self.inner = inner
        self.cache = cache or get_cache_client("tenant_config")
        self.ttl_seconds = ttl_seconds

    @staticmethod
    def cache_key(tenant_id: str) -> str:
        return f"fleet:integrations:{tenant_id}"

    async def get_enabled_integrations(self, tenant_id: str) -> List[str]:
        key = self.cache_key(tenant_id)
        cached = await self.cache.get(key)
        if isinstance(cached, list):
            return [str(k) for k in cached]

        integrations = await self.inner.get_enabled_integrations(tenant_id)
        await self.cache.set(key, integrations, self.ttl_seconds)
        return integrations

    async def invalidate(self, tenant_id: str) -> None:
        await self.cache.delete(self.cache_key(tenant_id))
        logger.info("tenant_config_cache_invalidated", tenant_id=tenant_id)


def get_config_cache_ttl_seconds() -> int:
    return int(os.getenv("FLEET_CONFIG_CACHE_TTL_SECONDS", str(DEFAULT_CONFIG_CACHE_TTL_SECONDS)))


_config_store: Optional[CachedConfigStore] = None
_credential_store: Optional[CredentialStore] = None


def get_config_store() -> CachedConfigStore:
    """Global config store: Supabase when configured, process memory otherwise, behind the cache."""
    global _config_store
    if _config_store is None:
        client = get_supabase_client()
        inner: ConfigStore = SupabaseConfigStore(client) if client else InMemoryConfigStore()
        _config_store = CachedConfigStore(inner, ttl_seconds=get_config_cache_ttl_seconds())
        logger.info("config_store_initialized", backend=type(inner).__name__)
    return _config_store


def get_credential_store() -> CredentialStore:
    global _credential_store
    if _credential_store is None:
        client = get_supabase_client()
        _credential_store = SupabaseCredentialStore(client) if client else InMemoryCredentialStore()
        logger.info("credential_store_initialized", backend=type(_credential_store).__name__)
    return _credential_store
