"""
Tenant directory: subscription tier, status and quota ceilings.

Tier ceilings (per minute / per day / concurrent):
- free:       10 / 100 / 1
- basic:      50 / 1,000 / 3
- premium:    200 / 10,000 / 10
- enterprise: 1,000 / 100,000 / 25

A tenant may override any ceiling individually, including the number of
integrations it may enable (free 1, basic 2, premium 5, enterprise 10).
"""
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from fleet_assistant.core.logging import get_logger

logger = get_logger(__name__)

SUBSCRIPTION_GRACE_PERIOD = timedelta(days=7)


class TenantTier(str, Enum):
    FREE = "free"
    BASIC = "basic"
    PREMIUM = "premium"
    ENTERPRISE = "enterprise"


class TenantStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    SUSPENDED = "suspended"
    DISABLED = "disabled"


@dataclass(frozen=True)
class TierLimits:
    requests_per_minute: int
    requests_per_day: int
    max_concurrent_requests: int
    max_integrations: int


TIER_LIMITS: Dict[TenantTier, TierLimits] = {
    TenantTier.FREE: TierLimits(10, 100, 1, 1),
    TenantTier.BASIC: TierLimits(50, 1000, 3, 2),
    TenantTier.PREMIUM: TierLimits(200, 10000, 10, 5),
    TenantTier.ENTERPRISE: TierLimits(1000, 100000, 25, 10),
}


def _override(value: Optional[int], default: int) -> int:
    return default if value is None else value


class Tenant(BaseModel):
    tenant_id: str
    name: str = ""
    tier: TenantTier = TenantTier.FREE
    status: TenantStatus = TenantStatus.ACTIVE
    subscription_expires_at: Optional[datetime] = None
    requests_per_minute: Optional[int] = Field(default=None, ge=0)
    requests_per_day: Optional[int] = Field(default=None, ge=0)
    max_concurrent_requests: Optional[int] = Field(default=None, ge=0)
    max_integrations: Optional[int] = Field(default=None, ge=0)
    suspension_reason: Optional[str] = None

    @property
    def limits(self) -> TierLimits:
        base = TIER_LIMITS[self.tier]
        return TierLimits(
            requests_per_minute=_override(self.requests_per_minute, base.requests_per_minute),
            requests_per_day=_override(self.requests_per_day, base.requests_per_day),
            max_concurrent_requests=_override(self.max_concurrent_requests, base.max_concurrent_requests),
            max_integrations=_override(self.max_integrations, base.max_integrations),
        )

    def subscription_active(self, now: Optional[datetime] = None) -> bool:
        """True until the expiry date plus the grace period has passed."""
        if self.subscription_expires_at is None:
            return True
        now = now or datetime.now(timezone.utc)
        expires_at = self.subscription_expires_at
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        return now <= expires_at + SUBSCRIPTION_GRACE_PERIOD


class TenantDirectory:
    """In-memory tenant registry, seeded at startup."""

    def __init__(self) -> None:
        self._tenants: Dict[str, Tenant] = {}

    def upsert(self, tenant: Tenant) -> None:
        self._tenants[tenant.tenant_id] = tenant
        logger.info(
            "tenant_upserted",
            tenant_id=tenant.tenant_id,
            tier=tenant.tier.value,
            status=tenant.status.value,
        )

    async def get_tenant(self, tenant_id: str) -> Optional[Tenant]:
        return self._tenants.get(tenant_id)

    async def list_tenants(self, status: Optional[TenantStatus] = None) -> List[Tenant]:
        tenants = sorted(self._tenants.values(), key=lambda t: t.tenant_id)
        if status is not None:
            tenants = [t for t in tenants if t.status == status]
        return tenants

    async def set_status(
        self,
        tenant_id: str,
        status: TenantStatus,
        reason: Optional[str] = None,
    ) -> Optional[Tenant]:
        """Move a tenant to `status`; returns the updated tenant, or None if unknown."""
        tenant = self._tenants.get(tenant_id)
        if tenant is None:
            return None
        updated = tenant.model_copy(update={"status": status, "suspension_reason": reason})
        self._tenants[tenant_id] = updated
        logger.info(
            "tenant_status_changed",
            tenant_id=tenant_id,
            previous_status=tenant.status.value,
            status=status.value,
            reason=reason,
        )
        return updated


_tenant_directory: Optional[TenantDirectory] = None


def get_tenant_directory() -> TenantDirectory:
    global _tenant_directory
    if _tenant_directory is None:
        _tenant_directory = TenantDirectory()
    return _tenant_directory
