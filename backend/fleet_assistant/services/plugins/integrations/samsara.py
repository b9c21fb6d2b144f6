"""
Samsara connected operations integration (REST API).

Credentials: api_token; optional org_id.
"""
from typing import Any, Dict

from fleet_assistant.services.plugins.integrations.http import (
    IntegrationHttpClient,
    require_credentials,
    vehicle_parameters,
)
from fleet_assistant.services.plugins.models import PluginDescriptor, Tool, ToolBundle

KEY = "samsara"
CAPABILITIES = frozenset({"location", "safety", "driver-behavior", "vehicle-data", "compliance"})
BASE_URL = "https://api.samsara.com"


def _time_range(arguments: Dict[str, Any]) -> Dict[str, Any]:
    params: Dict[str, Any] = {}
    if arguments.get("vehicle_id"):
        params["vehicleIds"] = arguments["vehicle_id"]
    if arguments.get("from_date"):
        params["startTime"] = arguments["from_date"]
    if arguments.get("to_date"):
        params["endTime"] = arguments["to_date"]
    return params


async def build_bundle(tenant_id: str, credentials: Dict[str, Any]) -> ToolBundle:
    values = require_credentials(KEY, credentials, "api_token")
    http = IntegrationHttpClient(
        KEY,
        str(credentials.get("base_url") or BASE_URL),
        headers={"Authorization": f"Bearer {values['api_token']}"},
    )

    async def get_vehicle_location(arguments: Dict[str, Any]) -> Any:
        return await http.get("/fleet/vehicles/locations", _time_range(arguments))

    async def get_safety_events(arguments: Dict[str, Any]) -> Any:
        return await http.get("/fleet/safety-events", _time_range(arguments))

    async def get_compliance_data(arguments: Dict[str, Any]) -> Any:
        params: Dict[str, Any] = {}
        if arguments.get("driver_id"):
            params["driverIds"] = arguments["driver_id"]
        return await http.get("/fleet/hos/clocks", params)

    async def get_vehicle_stats(arguments: Dict[str, Any]) -> Any:
        params = _time_range(arguments)
        params["types"] = arguments.get("types") or "engineStates,fuelPercents,obdOdometerMeters"
        return await http.get("/fleet/vehicles/stats", params)

    return ToolBundle(
        plugin_key=KEY,
        tools=(
            Tool("get_vehicle_location", "Latest GPS locations of vehicles", get_vehicle_location, vehicle_parameters()),
            Tool("get_safety_events", "Harsh driving and safety events", get_safety_events, vehicle_parameters()),
            Tool(
                "get_compliance_data",
                "Hours-of-service clocks per driver",
                get_compliance_data,
                {"type": "object", "properties": {"driver_id": {"type": "string", "description": "Driver identifier"}}},
            ),
            Tool("get_vehicle_stats", "Engine, fuel level and odometer statistics", get_vehicle_stats, vehicle_parameters()),
        ),
    )


DESCRIPTOR = PluginDescriptor(
    key=KEY,
    capabilities=CAPABILITIES,
    factory=build_bundle,
    description="Samsara: locations, safety events, HOS compliance and vehicle stats",
)
