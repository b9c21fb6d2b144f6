"""
Authorization gate in front of the planning coordinator.

Checks, in order:
1. Permission scope: a missing scope is "forbidden" and quota is not touched
2. Tenant exists, is active and its subscription is current ("forbidden")
3. Quota: concurrent, per-minute and per-day ceilings ("rate limited")

Every decision carries rate-limit info so the HTTP layer can emit
X-RateLimit-* headers without redoing quota math. An allowed decision holds
an in-flight reservation that the caller must hand back through
`record_usage` once the request finishes.
"""
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Dict, Optional

from fleet_assistant.core.errors import AuthorizationError
from fleet_assistant.core.logging import get_logger
from fleet_assistant.core.metrics import record_authorization_decision, record_tenant_request
from fleet_assistant.models.identity import CallerIdentity
from fleet_assistant.models.query import UsageResponse
from fleet_assistant.services.auth.quota import (
    QuotaStore,
    RateLimitInfo,
    get_quota_store,
    rate_limit_info,
)
from fleet_assistant.services.auth.tenants import Tenant, TenantDirectory, TenantStatus, get_tenant_directory

logger = get_logger(__name__)

REASON_FORBIDDEN = "forbidden"
REASON_RATE_LIMITED = "rate limited"


@dataclass(frozen=True)
class AuthorizationDecision:
    allowed: bool
    reason: Optional[str] = None
    detail: str = ""
    retry_after: Optional[int] = None
    rate_limit: Optional[RateLimitInfo] = None

    def headers(self) -> Dict[str, str]:
        headers: Dict[str, str] = {}
        if self.rate_limit is not None:
            headers["X-RateLimit-Limit"] = str(self.rate_limit.limit)
            headers["X-RateLimit-Remaining"] = str(self.rate_limit.remaining)
            headers["X-RateLimit-Reset"] = str(self.rate_limit.reset_at)
        if self.retry_after is not None:
            headers["Retry-After"] = str(self.retry_after)
        return headers


class AuthorizationGate:
    def __init__(
        self,
        tenant_directory: TenantDirectory,
        quota_store: QuotaStore,
        clock: Callable[[], float] = time.time,
    ):
        self.tenant_directory = tenant_directory
        self.quota_store = quota_store
        self.clock = clock

    async def _peek(self, tenant: Optional[Tenant], now: float) -> Optional[RateLimitInfo]:
        """Read-only quota view for denials that happen before the quota check."""
        if tenant is None:
            return None
        try:
            snapshot = await self.quota_store.snapshot(tenant.tenant_id, now=now)
        except Exception as e:
            logger.warning(
                "quota_snapshot_failed",
                tenant_id=tenant.tenant_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            return None
        return rate_limit_info(snapshot, tenant.limits, now)

    def _deny_forbidden(self, identity: CallerIdentity, detail: str, rate_limit: Optional[RateLimitInfo]) -> AuthorizationDecision:
        record_authorization_decision(False, REASON_FORBIDDEN)
        logger.warning(
            "authorization_denied",
            tenant_id=identity.tenant_id,
            key_id=identity.key_id,
            reason=REASON_FORBIDDEN,
            detail=detail,
        )
        return AuthorizationDecision(allowed=False, reason=REASON_FORBIDDEN, detail=detail, rate_limit=rate_limit)

    def require_scope(self, identity: CallerIdentity, permission_id: str) -> None:
        """
        Scope-only check for endpoints that do not consume quota.

        Raises:
            AuthorizationError: reason "forbidden" when the scope is missing
        """
        if not identity.has_scope(permission_id):
            record_authorization_decision(False, REASON_FORBIDDEN)
            raise AuthorizationError(REASON_FORBIDDEN)

    async def authorize(self, identity: CallerIdentity, permission_id: str) -> AuthorizationDecision:
        now = self.clock()
        tenant = await self.tenant_directory.get_tenant(identity.tenant_id)

        if not identity.has_scope(permission_id):
            return self._deny_forbidden(
                identity,
                f"Missing permission '{permission_id}'",
                await self._peek(tenant, now),
            )

        if tenant is None:
            return self._deny_forbidden(identity, "Unknown tenant", None)
        if tenant.status != TenantStatus.ACTIVE:
            return self._deny_forbidden(identity, f"Tenant is {tenant.status.value}", await self._peek(tenant, now))
        if not tenant.subscription_active(datetime.fromtimestamp(now, tz=timezone.utc)):
            return self._deny_forbidden(identity, "Subscription has expired", await self._peek(tenant, now))

        quota = await self.quota_store.try_acquire(tenant.tenant_id, tenant.limits, now=now)
        if not quota.allowed:
            record_authorization_decision(False, REASON_RATE_LIMITED)
            logger.warning(
                "authorization_denied",
                tenant_id=identity.tenant_id,
                key_id=identity.key_id,
                reason=REASON_RATE_LIMITED,
                window=quota.exceeded_window,
                retry_after=quota.retry_after,
            )
            return AuthorizationDecision(
                allowed=False,
                reason=REASON_RATE_LIMITED,
                detail=f"Rate limit exceeded ({quota.exceeded_window})",
                retry_after=quota.retry_after,
                rate_limit=quota.rate_limit,
            )

        record_authorization_decision(True)
        return AuthorizationDecision(allowed=True, rate_limit=quota.rate_limit)

    async def record_usage(self, identity: CallerIdentity, elapsed_ms: float, success: bool) -> None:
        """Release the request's reservation and count it against quota."""
        await self.quota_store.release(identity.tenant_id, elapsed_ms, success, now=self.clock())
        record_tenant_request(success)
        logger.info(
            "tenant_usage_recorded",
            tenant_id=identity.tenant_id,
            elapsed_ms=round(elapsed_ms, 1),
            success=success,
        )

    async def usage(self, identity: CallerIdentity) -> Optional[UsageResponse]:
        return await self.tenant_usage(identity.tenant_id)

    async def tenant_usage(self, tenant_id: str) -> Optional[UsageResponse]:
        tenant = await self.tenant_directory.get_tenant(tenant_id)
        if tenant is None:
            return None
        snapshot = await self.quota_store.snapshot(tenant.tenant_id, now=self.clock())
        limits = tenant.limits
        return UsageResponse(
            tenant_id=tenant.tenant_id,
            tier=tenant.tier.value,
            requests_this_minute=snapshot.minute_count,
            requests_today=snapshot.day_count,
            in_flight=snapshot.in_flight,
            requests_per_minute_limit=limits.requests_per_minute,
            requests_per_day_limit=limits.requests_per_day,
            max_concurrent_requests=limits.max_concurrent_requests,
            total_requests=snapshot.stats.total_requests,
            total_errors=snapshot.stats.total_errors,
            error_rate=snapshot.stats.error_rate,
            average_response_time_ms=snapshot.stats.average_response_time_ms,
        )


_authorization_gate: Optional[AuthorizationGate] = None


def get_authorization_gate() -> AuthorizationGate:
    global _authorization_gate
    if _authorization_gate is None:
        _authorization_gate = AuthorizationGate(get_tenant_directory(), get_quota_store())
    return _authorization_gate
