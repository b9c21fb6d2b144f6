"""
Admin endpoints for tenant management.

GET    /admin/tenants                            List tenants (optional ?status=)
GET    /admin/tenant/{tenant_id}                 Tenant configuration, limits, usage
POST   /admin/tenant                             Create a tenant
PUT    /admin/tenant/{tenant_id}                 Update tier, status or ceilings
POST   /admin/tenant/{tenant_id}/suspend         Suspend a tenant
POST   /admin/tenant/{tenant_id}/reactivate      Reactivate a tenant
PUT    /admin/tenant/{tenant_id}/integrations    Replace enabled integrations
GET    /admin/tenant/{tenant_id}/keys            List API keys (no secrets)
POST   /admin/tenant/{tenant_id}/keys            Issue an API key
DELETE /admin/tenant/{tenant_id}/keys/{key_id}   Revoke an API key

Everything requires tenant:manage, except that a key with tenant:read may view
its own tenant.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from fleet_assistant.core.errors import AuthorizationError
from fleet_assistant.core.logging import get_logger
from fleet_assistant.models.identity import CallerIdentity
from fleet_assistant.routes.fleet import get_caller_identity
from fleet_assistant.services.auth.authentication import (
    ApiKeyAuthenticator,
    ApiKeyRecord,
    get_authenticator,
)
from fleet_assistant.services.auth.gate import REASON_FORBIDDEN, AuthorizationGate, get_authorization_gate
from fleet_assistant.services.auth.permissions import TENANT_MANAGE, TENANT_READ
from fleet_assistant.services.auth.tenants import (
    Tenant,
    TenantDirectory,
    TenantStatus,
    TenantTier,
    get_tenant_directory,
)
from fleet_assistant.services.plugins.stores import (
    CachedConfigStore,
    InMemoryConfigStore,
    get_config_store,
)

logger = get_logger(__name__)

router = APIRouter()


class TenantUpdateRequest(BaseModel):
    """Fields left out of the body keep their current value."""
    name: Optional[str] = None
    tier: Optional[TenantTier] = None
    status: Optional[TenantStatus] = None
    subscription_expires_at: Optional[datetime] = None
    requests_per_minute: Optional[int] = Field(default=None, ge=0)
    requests_per_day: Optional[int] = Field(default=None, ge=0)
    max_concurrent_requests: Optional[int] = Field(default=None, ge=0)
    max_integrations: Optional[int] = Field(default=None, ge=0)


class SuspendRequest(BaseModel):
    reason: str = Field(..., min_length=1)


class IntegrationsRequest(BaseModel):
    integrations: List[str]


class ApiKeyRequest(BaseModel):
    name: str = ""
    scopes: List[str] = Field(default_factory=lambda: ["role:fleet_user"])
    environment: str = "production"
    expires_at: Optional[datetime] = None


def _require(gate: AuthorizationGate, identity: CallerIdentity, permission_id: str) -> None:
    try:
        gate.require_scope(identity, permission_id)
    except AuthorizationError as e:
        raise HTTPException(
            status_code=403,
            detail={"reason": e.reason, "message": f"Missing permission '{permission_id}'"},
        )


async def _get_tenant_or_404(directory: TenantDirectory, tenant_id: str) -> Tenant:
    tenant = await directory.get_tenant(tenant_id)
    if tenant is None:
        raise HTTPException(status_code=404, detail=f"Unknown tenant '{tenant_id}'")
    return tenant


def _tenant_view(tenant: Tenant) -> Dict[str, Any]:
    limits = tenant.limits
    view = tenant.model_dump(mode="json")
    view["limits"] = {
        "requests_per_minute": limits.requests_per_minute,
        "requests_per_day": limits.requests_per_day,
        "max_concurrent_requests": limits.max_concurrent_requests,
        "max_integrations": limits.max_integrations,
    }
    view["subscription_active"] = tenant.subscription_active()
    return view


def _key_view(record: ApiKeyRecord) -> Dict[str, Any]:
    return record.model_dump(mode="json", exclude={"key_hash"})


@router.get("/tenants")
async def list_tenants(
    status: Optional[TenantStatus] = None,
    identity: CallerIdentity = Depends(get_caller_identity),
    gate: AuthorizationGate = Depends(get_authorization_gate),
    directory: TenantDirectory = Depends(get_tenant_directory),
):
    _require(gate, identity, TENANT_MANAGE)
    tenants = await directory.list_tenants(status)
    return {"tenants": [_tenant_view(t) for t in tenants], "count": len(tenants)}


@router.get("/tenant/{tenant_id}")
async def get_tenant(
    tenant_id: str,
    identity: CallerIdentity = Depends(get_caller_identity),
    gate: AuthorizationGate = Depends(get_authorization_gate),
    directory: TenantDirectory = Depends(get_tenant_directory),
):
    """
    Tenant configuration with effective limits and current usage.

    Tenant admins may only view their own tenant.
    """
    if not identity.has_scope(TENANT_MANAGE):
        _require(gate, identity, TENANT_READ)
        if tenant_id != identity.tenant_id:
            raise HTTPException(
                status_code=403,
                detail={"reason": REASON_FORBIDDEN, "message": "Cannot view another tenant"},
            )

    tenant = await _get_tenant_or_404(directory, tenant_id)
    view = _tenant_view(tenant)
    usage = await gate.tenant_usage(tenant_id)
    view["usage"] = usage.model_dump(mode="json", by_alias=True) if usage is not None else None
    return view


@router.post("/tenant", status_code=201)
async def create_tenant(
    body: Tenant,
    identity: CallerIdentity = Depends(get_caller_identity),
    gate: AuthorizationGate = Depends(get_authorization_gate),
    directory: TenantDirectory = Depends(get_tenant_directory),
):
    _require(gate, identity, TENANT_MANAGE)
    if await directory.get_tenant(body.tenant_id) is not None:
        raise HTTPException(status_code=409, detail=f"Tenant '{body.tenant_id}' already exists")

    directory.upsert(body)
    logger.info("admin_tenant_created", tenant_id=body.tenant_id, admin_tenant_id=identity.tenant_id)
    return _tenant_view(body)


@router.put("/tenant/{tenant_id}")
async def update_tenant(
    tenant_id: str,
    body: TenantUpdateRequest,
    identity: CallerIdentity = Depends(get_caller_identity),
    gate: AuthorizationGate = Depends(get_authorization_gate),
    directory: TenantDirectory = Depends(get_tenant_directory),
):
    _require(gate, identity, TENANT_MANAGE)
    tenant = await _get_tenant_or_404(directory, tenant_id)

    changes = body.model_dump(exclude_unset=True)
    updated = Tenant.model_validate({**tenant.model_dump(), **changes})
    directory.upsert(updated)
    logger.info(
        "admin_tenant_updated",
        tenant_id=tenant_id,
        admin_tenant_id=identity.tenant_id,
        fields=sorted(changes),
    )
    return _tenant_view(updated)


@router.post("/tenant/{tenant_id}/suspend")
async def suspend_tenant(
    tenant_id: str,
    body: SuspendRequest,
    identity: CallerIdentity = Depends(get_caller_identity),
    gate: AuthorizationGate = Depends(get_authorization_gate),
    directory: TenantDirectory = Depends(get_tenant_directory),
):
    _require(gate, identity, TENANT_MANAGE)
    await _get_tenant_or_404(directory, tenant_id)

    tenant = await directory.set_status(tenant_id, TenantStatus.SUSPENDED, reason=body.reason)
    logger.warning(
        "admin_tenant_suspended",
        tenant_id=tenant_id,
        admin_tenant_id=identity.tenant_id,
        reason=body.reason,
    )
    return _tenant_view(tenant)


@router.post("/tenant/{tenant_id}/reactivate")
async def reactivate_tenant(
    tenant_id: str,
    identity: CallerIdentity = Depends(get_caller_identity),
    gate: AuthorizationGate = Depends(get_authorization_gate),
    directory: TenantDirectory = Depends(get_tenant_directory),
):
    _require(gate, identity, TENANT_MANAGE)
    await _get_tenant_or_404(directory, tenant_id)

    tenant = await directory.set_status(tenant_id, TenantStatus.ACTIVE)
    logger.info("admin_tenant_reactivated", tenant_id=tenant_id, admin_tenant_id=identity.tenant_id)
    return _tenant_view(tenant)


@router.put("/tenant/{tenant_id}/integrations")
async def set_tenant_integrations(
    tenant_id: str,
    body: IntegrationsRequest,
    identity: CallerIdentity = Depends(get_caller_identity),
    gate: AuthorizationGate = Depends(get_authorization_gate),
    directory: TenantDirectory = Depends(get_tenant_directory),
    config_store: CachedConfigStore = Depends(get_config_store),
):
    """
    Replace the enabled integrations, capped at the tenant's integration limit.

    Only the in-process store is writable here; Supabase-backed configuration
    is edited in the `tenant_integrations` table.
    """
    _require(gate, identity, TENANT_MANAGE)
    tenant = await _get_tenant_or_404(directory, tenant_id)

    if not isinstance(config_store.inner, InMemoryConfigStore):
        raise HTTPException(status_code=501, detail="Integration configuration is managed in the database")

    limit = tenant.limits.max_integrations
    enabled = config_store.inner.set_integrations(tenant_id, body.integrations, max_integrations=limit)
    await config_store.invalidate(tenant_id)
    dropped = [k for k in body.integrations if k.strip().lower() not in enabled]
    logger.info(
        "admin_tenant_integrations_set",
        tenant_id=tenant_id,
        admin_tenant_id=identity.tenant_id,
        integrations=enabled,
    )
    return {"tenant_id": tenant_id, "integrations": enabled, "dropped": dropped, "max_integrations": limit}


@router.get("/tenant/{tenant_id}/keys")
async def list_api_keys(
    tenant_id: str,
    identity: CallerIdentity = Depends(get_caller_identity),
    gate: AuthorizationGate = Depends(get_authorization_gate),
    directory: TenantDirectory = Depends(get_tenant_directory),
    authenticator: ApiKeyAuthenticator = Depends(get_authenticator),
):
    _require(gate, identity, TENANT_MANAGE)
    await _get_tenant_or_404(directory, tenant_id)
    return {"keys": [_key_view(record) for record in authenticator.list_keys(tenant_id)]}


@router.post("/tenant/{tenant_id}/keys", status_code=201)
async def issue_api_key(
    tenant_id: str,
    body: ApiKeyRequest,
    identity: CallerIdentity = Depends(get_caller_identity),
    gate: AuthorizationGate = Depends(get_authorization_gate),
    directory: TenantDirectory = Depends(get_tenant_directory),
    authenticator: ApiKeyAuthenticator = Depends(get_authenticator),
):
    """The plaintext key appears only in this response."""
    _require(gate, identity, TENANT_MANAGE)
    await _get_tenant_or_404(directory, tenant_id)

    raw_key, record = authenticator.generate_api_key(
        tenant_id,
        body.name,
        body.scopes,
        environment=body.environment,
        expires_at=body.expires_at,
    )
    return {"api_key": raw_key, **_key_view(record)}


@router.delete("/tenant/{tenant_id}/keys/{key_id}")
async def revoke_api_key(
    tenant_id: str,
    key_id: str,
    identity: CallerIdentity = Depends(get_caller_identity),
    gate: AuthorizationGate = Depends(get_authorization_gate),
    authenticator: ApiKeyAuthenticator = Depends(get_authenticator),
):
    _require(gate, identity, TENANT_MANAGE)
    if not authenticator.revoke(key_id, tenant_id=tenant_id):
        raise HTTPException(status_code=404, detail=f"Unknown API key '{key_id}'")
    logger.info("admin_api_key_revoked", tenant_id=tenant_id, key_id=key_id, admin_tenant_id=identity.tenant_id)
    return {"status": "revoked", "key_id": key_id}
