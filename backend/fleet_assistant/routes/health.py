"""
Health check endpoints.
"""
from fastapi import APIRouter

from fleet_assistant.core.cache import get_redis_client
from fleet_assistant.core.logging import get_logger
from fleet_assistant.services.plugins.registry import get_plugin_registry

logger = get_logger(__name__)
router = APIRouter()


@router.get("/")
async def health_check():
    """
    Basic health check endpoint.
    """
    return {
        "status": "ok",
        "message": "API is running"
    }


@router.get("/ready")
async def readiness_check():
    """
    Readiness of the optional backing services.

    Redis is optional: without it quota and config caching run in memory,
    so the service reports "degraded" rather than failing.
    """
    redis_client = get_redis_client()
    redis_status = "unavailable"
    if redis_client is not None:
        try:
            await redis_client.ping()
            redis_status = "ok"
        except Exception as e:
            logger.warning("readiness_redis_ping_failed", error=str(e), error_type=type(e).__name__)
            redis_status = "error"

    registry = get_plugin_registry()
    return {
        "status": "ok" if redis_status == "ok" else "degraded",
        "redis": redis_status,
        "plugins_registered": len(registry),
        "plugins": [descriptor.key for descriptor in registry.descriptors()],
    }
