"""
Geotab telematics integration (MyGeotab JSON-RPC API).

Credentials: username, password, database; optional server (default my.geotab.com).
"""
from typing import Any, Dict, Optional

from fleet_assistant.services.plugins.integrations.http import (
    IntegrationHttpClient,
    require_credentials,
    vehicle_parameters,
)
from fleet_assistant.services.plugins.models import PluginDescriptor, Tool, ToolBundle

KEY = "geotab"
CAPABILITIES = frozenset({"fuel", "maintenance", "location", "vehicle-data"})
DEFAULT_SERVER = "my.geotab.com"


class GeotabApi:
    def __init__(self, http: IntegrationHttpClient, credentials: Dict[str, str]):
        self.http = http
        self.credentials = {
            "userName": credentials["username"],
            "password": credentials["password"],
            "database": credentials["database"],
        }

    async def get(self, type_name: str, search: Optional[Dict[str, Any]] = None, limit: int = 100) -> Any:
        payload = {
            "method": "Get",
            "params": {
                "typeName": type_name,
                "search": search or {},
                "resultsLimit": limit,
                "credentials": self.credentials,
            },
        }
        body = await self.http.post("/apiv1", payload)
        if isinstance(body, dict) and body.get("error"):
            raise RuntimeError(body["error"].get("message", "Geotab API error"))
        return body.get("result", []) if isinstance(body, dict) else body


def _search(arguments: Dict[str, Any]) -> Dict[str, Any]:
    search: Dict[str, Any] = {}
    if arguments.get("vehicle_id"):
        search["deviceSearch"] = {"id": arguments["vehicle_id"]}
    if arguments.get("from_date"):
        search["fromDate"] = arguments["from_date"]
    if arguments.get("to_date"):
        search["toDate"] = arguments["to_date"]
    return search


async def build_bundle(tenant_id: str, credentials: Dict[str, Any]) -> ToolBundle:
    values = require_credentials(KEY, credentials, "username", "password", "database")
    server = str(credentials.get("server") or DEFAULT_SERVER)
    api = GeotabApi(IntegrationHttpClient(KEY, f"https://{server}"), values)

    async def get_fuel_data(arguments: Dict[str, Any]) -> Any:
        return await api.get("FillUp", _search(arguments))

    async def get_maintenance_data(arguments: Dict[str, Any]) -> Any:
        return await api.get("FaultData", _search(arguments))

    async def get_location_data(arguments: Dict[str, Any]) -> Any:
        return await api.get("LogRecord", _search(arguments))

    async def get_vehicle_data(arguments: Dict[str, Any]) -> Any:
        search = {"id": arguments["vehicle_id"]} if arguments.get("vehicle_id") else {}
        return await api.get("Device", search)

    return ToolBundle(
        plugin_key=KEY,
        tools=(
            Tool("get_fuel_data", "Fuel fill-ups recorded by Geotab devices", get_fuel_data, vehicle_parameters()),
            Tool("get_maintenance_data", "Engine fault codes and diagnostics", get_maintenance_data, vehicle_parameters()),
            Tool("get_location_data", "GPS log records for vehicles", get_location_data, vehicle_parameters()),
            Tool("get_vehicle_data", "Vehicle (device) details", get_vehicle_data, vehicle_parameters()),
        ),
    )


DESCRIPTOR = PluginDescriptor(
    key=KEY,
    capabilities=CAPABILITIES,
    factory=build_bundle,
    description="Geotab telematics: fuel, diagnostics, GPS and vehicle data",
)
