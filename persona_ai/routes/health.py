"""
Health check endpoints.
"""
from fastapi import APIRouter, Request

from persona_ai.core.logging import get_logger
from persona_ai.services.ai.orchestration import AIOrchestrator

logger = get_logger(__name__)
router = APIRouter()


def _orchestrator(request: Request) -> AIOrchestrator:
    return request.app.state.orchestrator


@router.get("/")
async def health_check():
    """
    Basic health check endpoint.
    """
    return {
        "status": "ok",
        "message": "API is running"
    }


@router.get("/providers")
async def providers_health(request: Request, refresh: bool = False):
    """
    Health of every AI provider.

    Returns:
        - status: "healthy", "degraded" or "unhealthy"
        - summary: one-line description
        - providers: per-provider report (health, circuit state, capabilities),
          ordered by priority

    Pass refresh=true to probe every provider before reporting.
    """
    orchestrator = _orchestrator(request)
    if refresh:
        await orchestrator.perform_health_check()

    system = orchestrator.get_system_health()
    reports = orchestrator.get_provider_health_reports()

    if system.status != "healthy":
        logger.info("providers_health_not_healthy", status=system.status, summary=system.summary)

    return {
        "status": system.status,
        "summary": system.summary,
        "details": system.details,
        "providers": [report.model_dump(mode="json") for report in reports],
    }
