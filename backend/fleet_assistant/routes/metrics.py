"""
Prometheus scrape endpoint.

GET /metrics
Fleet orchestration, authorization, plugin and LLM metrics in Prometheus
text format. Unauthenticated, like any scrape target.
"""
from fastapi import APIRouter, Response
from fastapi.responses import PlainTextResponse

from fleet_assistant.core.logging import get_logger
from fleet_assistant.core.metrics import get_metrics, get_metrics_content_type

logger = get_logger(__name__)
router = APIRouter()


@router.get("", response_class=PlainTextResponse)
async def metrics():
    try:
        payload = get_metrics()
    except Exception as e:
        logger.error(
            "metrics_endpoint_error",
            error=str(e),
            error_type=type(e).__name__,
            exc_info=True,
        )
        payload = b"# Error collecting metrics\n"
    return Response(content=payload, media_type=get_metrics_content_type())
