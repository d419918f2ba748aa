import os
from typing import Optional

from fastapi import FastAPI, Request, HTTPException
from fastapi.responses import JSONResponse

from .core.config import load_config_from_env, load_env_file
from .core.logging import configure_logging, get_logger, get_request_id
from .core.middleware import RequestIDMiddleware
from .routes import health, metrics
from .services.ai.orchestration import AIOrchestrator, create_orchestrator

# Configure structured logging
# Use JSON output in production (containerized), console output in development
log_level = os.getenv("LOG_LEVEL", "INFO")
json_output = os.getenv("LOG_JSON", "true").lower() == "true"
configure_logging(log_level=log_level, json_output=json_output)

logger = get_logger(__name__)

load_env_file()


def create_app(orchestrator: Optional[AIOrchestrator] = None) -> FastAPI:
    """
    Build the observability API around an orchestrator.

    When no orchestrator is given, one is created from the environment at
    startup.
    """
    app = FastAPI(
        title="Persona AI Orchestration API",
        description="Provider health and metrics for the persona AI orchestration core",
        version="1.0.0",
    )
    app.state.orchestrator = orchestrator

    app.add_middleware(RequestIDMiddleware)

    @app.on_event("startup")
    async def startup_event():
        """Initialize the orchestrator on application startup."""
        logger.info("app_startup_started")

        if app.state.orchestrator is None:
            app.state.orchestrator = create_orchestrator()

        if load_config_from_env().health_monitoring_enabled:
            app.state.orchestrator.start_health_monitoring()
        else:
            logger.info("app_startup_health_monitoring_disabled")

        logger.info(
            "app_startup_completed",
            providers=[p.name for p in app.state.orchestrator.providers],
        )

    @app.on_event("shutdown")
    async def shutdown_event():
        """Cleanup resources on application shutdown."""
        logger.info("app_shutdown_started")
        if app.state.orchestrator is not None:
            await app.state.orchestrator.shutdown()
        logger.info("app_shutdown_completed")

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        """Handle HTTP exceptions."""
        logger.warning(
            "http_exception",
            status_code=exc.status_code,
            detail=exc.detail,
            path=request.url.path,
            method=request.method,
        )
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "detail": exc.detail,
                "status_code": exc.status_code,
                "request_id": get_request_id(),
            },
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        """Handle general exceptions."""
        logger.error(
            "unhandled_exception",
            error=str(exc),
            error_type=type(exc).__name__,
            path=request.url.path,
            method=request.method,
            exc_info=True,
        )
        return JSONResponse(
            status_code=500,
            content={
                "detail": "Internal server error",
                "status_code": 500,
                "request_id": get_request_id(),
            },
        )

    # Include routers
    app.include_router(health.router, prefix="/health", tags=["Health"])
    app.include_router(metrics.router, prefix="/metrics", tags=["Metrics"])

    return app


app = create_app()
