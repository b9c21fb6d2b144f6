"""
Startup seeding of the in-memory tenant, API key and integration stores.

FLEET_TENANTS_FILE points to a JSON document:

    {
      "tenants": [
        {"tenant_id": "acme", "name": "Acme Logistics", "tier": "premium",
         "api_keys": [{"key": "fa_dev_...", "key_id": "acme-dev", "scopes": ["role:fleet_user"]}],
         "integrations": {
           "geotab": {"username": "...", "password": "...", "database": "acme"},
           "fleetio": {"api_token": "...", "account_id": "..."}
         }}
      ]
    }

Integration entries enable the integration for the tenant and store its
credentials. When Supabase-backed stores are in use only tenants and keys are
seeded.
"""
import json
import os
from pathlib import Path
from typing import Any, Dict, Optional

from fleet_assistant.core.logging import get_logger
from fleet_assistant.services.auth.authentication import ApiKeyAuthenticator, get_authenticator
from fleet_assistant.services.auth.tenants import Tenant, TenantDirectory, get_tenant_directory
from fleet_assistant.services.plugins.stores import (
    InMemoryConfigStore,
    InMemoryCredentialStore,
    get_config_store,
    get_credential_store,
)

logger = get_logger(__name__)


def apply_seed(
    document: Dict[str, Any],
    tenant_directory: Optional[TenantDirectory] = None,
    authenticator: Optional[ApiKeyAuthenticator] = None,
    config_store: Any = None,
    credential_store: Any = None,
) -> int:
    """Load tenants from a seed document; returns the number of tenants seeded."""
    tenant_directory = tenant_directory or get_tenant_directory()
    authenticator = authenticator or get_authenticator()
    config_store = config_store or getattr(get_config_store(), "inner", None)
    credential_store = credential_store or get_credential_store()

    seeded = 0
    for entry in document.get("tenants", []):
        entry = dict(entry)
        api_keys = entry.pop("api_keys", [])
        integrations: Dict[str, Dict[str, Any]] = entry.pop("integrations", {})
        tenant = Tenant.model_validate(entry)
        tenant_directory.upsert(tenant)

        for key in api_keys:
            authenticator.register_raw_key(
                key["key"],
                tenant_id=tenant.tenant_id,
                scopes=key.get("scopes", ["role:fleet_user"]),
                key_id=key.get("key_id"),
                name=key.get("name", ""),
                environment=key.get("environment", "production"),
            )

        if isinstance(config_store, InMemoryConfigStore):
            config_store.set_integrations(
                tenant.tenant_id,
                integrations.keys(),
                max_integrations=tenant.limits.max_integrations,
            )
        if isinstance(credential_store, InMemoryCredentialStore):
            for integration_key, credentials in integrations.items():
                credential_store.set_credentials(tenant.tenant_id, integration_key, credentials)
        seeded += 1

    return seeded


def load_seed_file(path: Optional[str] = None) -> int:
    """Seed stores from FLEET_TENANTS_FILE (or `path`); missing config is not an error."""
    path = path or os.getenv("FLEET_TENANTS_FILE")
    if not path:
        logger.info("tenant_seed_skipped", reason="FLEET_TENANTS_FILE not set")
        return 0

    seed_path = Path(path)
    if not seed_path.exists():
        logger.warning("tenant_seed_file_missing", path=str(seed_path))
        return 0

    try:
        document = json.loads(seed_path.read_text(encoding="utf-8"))
        count = apply_seed(document)
    except Exception as e:
        logger.error(
            "tenant_seed_failed",
            path=str(seed_path),
            error=str(e),
            error_type=type(e).__name__,
            exc_info=True,
        )
        return 0

    logger.info("tenant_seed_loaded", path=str(seed_path), tenants=count)
    return count
