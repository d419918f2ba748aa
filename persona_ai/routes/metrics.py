"""
Metrics endpoints.

GET /metrics
Returns Prometheus-formatted metrics for scraping.

GET /metrics/ai
Returns the orchestrator's own counters as JSON.
"""
from fastapi import APIRouter, Request, Response
from fastapi.responses import PlainTextResponse

from persona_ai.core.logging import get_logger
from persona_ai.core.metrics import get_metrics, get_metrics_content_type

logger = get_logger(__name__)
router = APIRouter()


@router.get("", response_class=PlainTextResponse)
async def metrics():
    """
    Prometheus metrics endpoint.

    Returns metrics in Prometheus text format for scraping.
    No authentication required (standard Prometheus practice).
    """
    try:
        metrics_data = get_metrics()
        return Response(
            content=metrics_data,
            media_type=get_metrics_content_type(),
        )
    except Exception as e:
        logger.error(
            "metrics_endpoint_error",
            error=str(e),
            error_type=type(e).__name__,
            exc_info=True,
        )
        return Response(
            content=b"# Error collecting metrics\n",
            media_type=get_metrics_content_type(),
        )


@router.get("/ai")
async def ai_metrics(request: Request):
    """Per-provider request, latency, token and cost counters plus cache statistics."""
    orchestrator = request.app.state.orchestrator
    return {
        "orchestrator": orchestrator.get_metrics().model_dump(mode="json"),
        "cache": orchestrator.get_cache_stats(),
        "circuit_breakers": orchestrator.circuit_breaker.get_all_metrics(),
    }
