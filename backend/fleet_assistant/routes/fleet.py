"""
Fleet query endpoints.

POST /fleet/query   Ask a natural-language fleet question
GET  /fleet/usage   Quota and usage for the calling tenant

Both require an API key (Authorization: Bearer, ApiKey, or X-API-Key) whose
scopes include fleet:query. Every response from an authorized call carries
X-RateLimit-Limit / X-RateLimit-Remaining / X-RateLimit-Reset.
"""
import time

from fastapi import APIRouter, Depends, HTTPException, Request, Response

from fleet_assistant.core.errors import AuthenticationError, AuthorizationError
from fleet_assistant.core.logging import get_logger, set_tenant_id
from fleet_assistant.models.identity import CallerIdentity
from fleet_assistant.models.query import QueryRequest, QueryResponse, UsageResponse
from fleet_assistant.services.ai.orchestration import PlanningCoordinator, get_planning_coordinator
from fleet_assistant.services.auth.authentication import (
    ApiKeyAuthenticator,
    extract_api_key,
    get_authenticator,
)
from fleet_assistant.services.auth.gate import (
    REASON_RATE_LIMITED,
    AuthorizationDecision,
    AuthorizationGate,
    get_authorization_gate,
)
from fleet_assistant.services.auth.permissions import FLEET_QUERY

logger = get_logger(__name__)

router = APIRouter()


async def get_caller_identity(
    request: Request,
    authenticator: ApiKeyAuthenticator = Depends(get_authenticator),
) -> CallerIdentity:
    """Authenticate the presented API key; 401 on any failure."""
    try:
        identity = await authenticator.authenticate(extract_api_key(request.headers))
    except AuthenticationError as e:
        raise HTTPException(
            status_code=401,
            detail=str(e),
            headers={"WWW-Authenticate": "Bearer"},
        )
    set_tenant_id(identity.tenant_id)
    return identity


def _raise_denied(decision: AuthorizationDecision) -> None:
    status_code = 429 if decision.reason == REASON_RATE_LIMITED else 403
    raise HTTPException(
        status_code=status_code,
        detail={"reason": decision.reason, "message": decision.detail, "retryAfter": decision.retry_after},
        headers=decision.headers(),
    )


@router.post("/query", response_model=QueryResponse)
async def fleet_query(
    body: QueryRequest,
    response: Response,
    identity: CallerIdentity = Depends(get_caller_identity),
    gate: AuthorizationGate = Depends(get_authorization_gate),
    coordinator: PlanningCoordinator = Depends(get_planning_coordinator),
):
    """
    Route a fleet question through planning, the domain specialists, and synthesis.

    Degraded answers still return 200; problems are listed in `warnings`.
    """
    decision = await gate.authorize(identity, FLEET_QUERY)
    if not decision.allowed:
        _raise_denied(decision)

    start_time = time.time()
    success = False
    try:
        result = await coordinator.handle(body, identity)
        success = result.success
    finally:
        elapsed_ms = (time.time() - start_time) * 1000
        await gate.record_usage(identity, elapsed_ms, success)

    response.headers.update(decision.headers())
    logger.info(
        "fleet_query_completed",
        tenant_id=identity.tenant_id,
        agents_used=result.agents_used,
        warnings_count=len(result.warnings),
        success=result.success,
        latency_ms=int(elapsed_ms),
    )
    return result


@router.get("/usage", response_model=UsageResponse)
async def fleet_usage(
    identity: CallerIdentity = Depends(get_caller_identity),
    gate: AuthorizationGate = Depends(get_authorization_gate),
):
    """Current quota counters and lifetime usage for the caller's tenant."""
    try:
        gate.require_scope(identity, FLEET_QUERY)
    except AuthorizationError as e:
        raise HTTPException(
            status_code=403,
            detail={"reason": e.reason, "message": f"Missing permission '{FLEET_QUERY}'"},
        )
    usage = await gate.usage(identity)
    if usage is None:
        raise HTTPException(status_code=404, detail="Unknown tenant")
    return usage
