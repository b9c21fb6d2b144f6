"""
Shared async HTTP helper for integration tool handlers.

Each call opens a short-lived httpx.AsyncClient, forwards the W3C trace
context and raises on non-2xx responses so tool failures surface to the agent.
"""
import os
from typing import Any, Dict, Optional

import httpx

from fleet_assistant.core.errors import PluginResolutionError
from fleet_assistant.core.logging import get_logger
from fleet_assistant.core.tracing import inject_trace_context

logger = get_logger(__name__)

DEFAULT_TIMEOUT_SECONDS = 15.0


def get_integration_timeout() -> float:
    return float(os.getenv("FLEET_INTEGRATION_TIMEOUT_SECONDS", str(DEFAULT_TIMEOUT_SECONDS)))


class IntegrationHttpClient:
    def __init__(
        self,
        integration: str,
        base_url: str,
        headers: Optional[Dict[str, str]] = None,
        timeout_seconds: Optional[float] = None,
    ):
        self.integration = integration
        self.base_url = base_url.rstrip("/")
        self.headers = dict(headers or {})
        self.timeout_seconds = timeout_seconds or get_integration_timeout()

    async def request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        json_payload: Optional[Dict[str, Any]] = None,
    ) -> Any:
        headers = {"Accept": "application/json", **self.headers}
        inject_trace_context(headers)
        url = f"{self.base_url}{path}"

        async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
            response = await client.request(method, url, headers=headers, params=params, json=json_payload)

        if response.status_code >= 400:
            logger.warning(
                "integration_request_failed",
                integration=self.integration,
                path=path,
                status_code=response.status_code,
            )
        response.raise_for_status()
        return response.json()

    async def get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        return await self.request("GET", path, params=params)

    async def post(self, path: str, json_payload: Dict[str, Any]) -> Any:
        return await self.request("POST", path, json_payload=json_payload)


def require_credentials(integration: str, credentials: Dict[str, Any], *names: str) -> Dict[str, str]:
    """
    Return the named credential values.

    Raises:
        PluginResolutionError: if any of them is missing or empty
    """
    missing = [name for name in names if not credentials.get(name)]
    if missing:
        raise PluginResolutionError(integration, f"missing credentials: {', '.join(missing)}")
    return {name: str(credentials[name]) for name in names}


def vehicle_parameters(extra: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """JSON schema for tools taking an optional vehicle id and date range."""
    properties: Dict[str, Any] = {
        "vehicle_id": {"type": "string", "description": "Vehicle identifier"},
        "from_date": {"type": "string", "description": "ISO 8601 start date"},
        "to_date": {"type": "string", "description": "ISO 8601 end date"},
    }
    properties.update(extra or {})
    return {"type": "object", "properties": properties}
