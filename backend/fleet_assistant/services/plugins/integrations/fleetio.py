"""
Fleetio fleet maintenance integration (REST API v1).

Credentials: api_token, account_id.
"""
from typing import Any, Dict

from fleet_assistant.services.plugins.integrations.http import (
    IntegrationHttpClient,
    require_credentials,
    vehicle_parameters,
)
from fleet_assistant.services.plugins.models import PluginDescriptor, Tool, ToolBundle

KEY = "fleetio"
CAPABILITIES = frozenset({"maintenance", "fuel", "vehicle-data", "work-orders"})
BASE_URL = "https://secure.fleetio.com/api/v1"


def _filters(arguments: Dict[str, Any]) -> Dict[str, Any]:
    params: Dict[str, Any] = {}
    if arguments.get("vehicle_id"):
        params["q[vehicle_id_eq]"] = arguments["vehicle_id"]
    if arguments.get("from_date"):
        params["q[date_gteq]"] = arguments["from_date"]
    if arguments.get("to_date"):
        params["q[date_lteq]"] = arguments["to_date"]
    return params


async def build_bundle(tenant_id: str, credentials: Dict[str, Any]) -> ToolBundle:
    values = require_credentials(KEY, credentials, "api_token", "account_id")
    http = IntegrationHttpClient(
        KEY,
        str(credentials.get("base_url") or BASE_URL),
        headers={
            "Authorization": f"Token token={values['api_token']}",
            "Account-Token": values["account_id"],
        },
    )

    async def get_work_orders(arguments: Dict[str, Any]) -> Any:
        params = _filters(arguments)
        if arguments.get("status"):
            params["q[work_order_status_name_eq]"] = arguments["status"]
        return await http.get("/work_orders", params)

    async def get_fuel_transactions(arguments: Dict[str, Any]) -> Any:
        return await http.get("/fuel_entries", _filters(arguments))

    async def get_vehicle_asset(arguments: Dict[str, Any]) -> Any:
        if arguments.get("vehicle_id"):
            return await http.get(f"/vehicles/{arguments['vehicle_id']}")
        return await http.get("/vehicles")

    return ToolBundle(
        plugin_key=KEY,
        tools=(
            Tool(
                "get_work_orders",
                "Maintenance work orders, optionally filtered by status",
                get_work_orders,
                vehicle_parameters({"status": {"type": "string", "description": "Work order status"}}),
            ),
            Tool("get_fuel_transactions", "Fuel purchase entries", get_fuel_transactions, vehicle_parameters()),
            Tool("get_vehicle_asset", "Vehicle asset records", get_vehicle_asset, vehicle_parameters()),
        ),
    )


DESCRIPTOR = PluginDescriptor(
    key=KEY,
    capabilities=CAPABILITIES,
    factory=build_bundle,
    description="Fleetio: work orders, fuel entries and vehicle assets",
)
