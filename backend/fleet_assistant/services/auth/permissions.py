"""
Static permission catalog and role bundles.

Permissions are plain string ids ("fleet:query"); API keys carry a set of
them as scopes. A scope of the form "role:<name>" expands to that role's
permissions when the key is loaded.
"""
from dataclasses import dataclass
from typing import Dict, FrozenSet, Iterable

from fleet_assistant.core.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class Permission:
    id: str
    name: str
    description: str
    category: str
    requires_elevation: bool = False


FLEET_QUERY = "fleet:query"
FLEET_QUERY_ADVANCED = "fleet:query:advanced"
TENANT_READ = "tenant:read"
TENANT_MANAGE = "tenant:manage"

_CATALOG = [
    Permission(FLEET_QUERY, "Query Fleet Data", "Ask natural-language questions about the fleet", "fleet"),
    Permission(FLEET_QUERY_ADVANCED, "Advanced Fleet Queries", "Multi-domain analysis and extended context", "fleet", True),
    Permission("agent:fuel", "Fuel Agent", "Use the fuel efficiency specialist", "agent"),
    Permission("agent:maintenance", "Maintenance Agent", "Use the maintenance specialist", "agent"),
    Permission("agent:safety", "Safety Agent", "Use the driver safety specialist", "agent"),
    Permission("agent:location", "Location Agent", "Use the location and routing specialist", "agent"),
    Permission("agent:compliance", "Compliance Agent", "Use the compliance specialist", "agent"),
    Permission("agent:financial", "Financial Agent", "Use the cost and tax specialist", "agent"),
    Permission("integration:geotab", "Geotab Integration", "Read data through Geotab", "integration"),
    Permission("integration:fleetio", "Fleetio Integration", "Read data through Fleetio", "integration"),
    Permission("integration:samsara", "Samsara Integration", "Read data through Samsara", "integration"),
    Permission("data:realtime", "Real-time Data", "Access live vehicle data", "data"),
    Permission("data:historical", "Historical Data", "Access up to 90 days of history", "data"),
    Permission("data:historical:extended", "Extended History", "Access history beyond 90 days", "data", True),
    Permission("data:export", "Data Export", "Export query results", "data", True),
    Permission(TENANT_READ, "View Tenant", "View the caller's own tenant configuration", "admin"),
    Permission(TENANT_MANAGE, "Manage Tenants", "Create, update, suspend and reactivate any tenant and issue API keys", "admin", True),
]

PERMISSIONS: Dict[str, Permission] = {p.id: p for p in _CATALOG}

ROLE_PERMISSIONS: Dict[str, FrozenSet[str]] = {
    "viewer": frozenset({FLEET_QUERY, "data:realtime"}),
    "fleet_user": frozenset({
        FLEET_QUERY,
        "agent:fuel",
        "agent:maintenance",
        "agent:safety",
        "data:realtime",
        "data:historical",
    }),
    "fleet_analyst": frozenset({
        FLEET_QUERY,
        FLEET_QUERY_ADVANCED,
        "agent:fuel",
        "agent:maintenance",
        "agent:safety",
        "agent:location",
        "agent:compliance",
        "agent:financial",
        "data:realtime",
        "data:historical",
        "data:historical:extended",
        "data:export",
    }),
    "tenant_admin": frozenset(PERMISSIONS) - {TENANT_MANAGE},
    "system_admin": frozenset(PERMISSIONS),
}

ROLE_PREFIX = "role:"


def agent_permission(agent_name: str) -> str:
    return f"agent:{agent_name}"


def resolve_scopes(scopes: Iterable[str]) -> FrozenSet[str]:
    """Expand role scopes and drop ids that are not in the catalog."""
    resolved = set()
    for scope in scopes:
        scope = scope.strip()
        if scope.startswith(ROLE_PREFIX):
            role = scope[len(ROLE_PREFIX):]
            if role not in ROLE_PERMISSIONS:
                logger.warning("scope_unknown_role", role=role)
                continue
            resolved.update(ROLE_PERMISSIONS[role])
        elif scope in PERMISSIONS:
            resolved.add(scope)
        else:
            logger.warning("scope_unknown_permission", permission=scope)
    return frozenset(resolved)
