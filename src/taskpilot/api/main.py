"""
TaskPilot Automations API

Operator surface for automation rules: CRUD, execution history, previews
and synthetic dispatch.
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import make_asgi_app

from taskpilot.platform.config import settings
from taskpilot.platform.logging import configure_logging, get_logger
from taskpilot.api.routers import automations, variables
from taskpilot.api.dependencies import (
    init_resources,
    close_resources,
    get_postgres_adapter,
)
from taskpilot.errors import ConfigurationError, LedgerUnavailableError

# Configure logging on import
configure_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan handler for startup/shutdown."""
    logger.info("Starting TaskPilot Automations API...")
    try:
        await init_resources()
        logger.info("Resources initialized successfully.")
    except Exception as e:
        logger.error(f"Failed to initialize resources: {e}")
        raise

    yield

    logger.info("Shutting down TaskPilot Automations API...")
    await close_resources()
    logger.info("Resources closed.")


# Create FastAPI application
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.VERSION,
    description="Project automation rules: triggers, templated actions and execution history",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS.split(",") if settings.CORS_ORIGINS else ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# =============================================================================
# ERRORS
# =============================================================================


@app.exception_handler(ConfigurationError)
async def configuration_error_handler(request: Request, exc: ConfigurationError) -> JSONResponse:
    return JSONResponse(
        status_code=422,
        content={"detail": str(exc), "errors": exc.errors},
    )


@app.exception_handler(LedgerUnavailableError)
async def ledger_unavailable_handler(request: Request, exc: LedgerUnavailableError) -> JSONResponse:
    logger.error("Execution ledger unavailable", error=str(exc))
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"detail": "Execution ledger unavailable"},
    )

# =============================================================================
# OBSERVABILITY
# =============================================================================

if settings.METRICS_ENABLED:
    metrics_app = make_asgi_app()
    app.mount("/metrics", metrics_app)


# =============================================================================
# HEALTH ENDPOINTS
# =============================================================================


@app.get("/health/live", tags=["Health"])
async def liveness() -> dict:
    """Liveness check - is the service running?"""
    return {"status": "alive"}


@app.get("/health/ready", tags=["Health"])
async def readiness() -> dict:
    """
    Readiness check - can rules and executions be read?
    """
    postgres_healthy = False
    try:
        adapter = get_postgres_adapter()
        postgres_healthy = adapter.health_check()
    except Exception:
        logger.exception("Readiness check failed")

    return {
        "status": "ready" if postgres_healthy else "not_ready",
        "version": settings.VERSION,
        "automations_enabled": settings.AUTOMATIONS_ENABLED,
        "checks": {
            "postgres": "healthy" if postgres_healthy else "unhealthy",
        },
    }


# =============================================================================
# API ROUTERS
# =============================================================================

app.include_router(
    automations.router,
    prefix="/api/v1/projects/{project_id}/automations",
    tags=["Automations"],
)
app.include_router(variables.router, prefix="/api/v1/automations", tags=["Automations"])


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "taskpilot.api.main:app",
        host=settings.API_HOST,
        port=settings.API_PORT,
        reload=settings.DEBUG,
    )
