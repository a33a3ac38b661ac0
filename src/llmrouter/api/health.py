from datetime import UTC, datetime

import structlog
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from opentelemetry import trace

from llmrouter.config import settings
from llmrouter.registry import ProviderRegistry

router = APIRouter(prefix="/health", tags=["health"])
log = structlog.get_logger()
tracer = trace.get_tracer(__name__)


@router.get("")
async def health() -> JSONResponse:
    return JSONResponse(
        content={
            "status": "healthy",
            "timestamp": datetime.now(UTC).isoformat(),
            "version": settings.app_version,
        }
    )


@router.get("/live")
async def liveness() -> JSONResponse:
    """Liveness probe; 200 whenever the process is running."""
    return JSONResponse(content={"status": "alive"})


@router.get("/ready")
async def readiness(request: Request) -> JSONResponse:
    """Readiness probe; ready once at least one enabled provider is registered.

    No provider is contacted here: a local server that is still starting
    must not take the whole gateway out of rotation.
    """
    with tracer.start_as_current_span("health.readiness"):
        registry: ProviderRegistry | None = getattr(request.app.state, "registry", None)
        names = registry.list_providers() if registry is not None else []
        checks = {
            name: "enabled" if registry.is_enabled(name) else "disabled" for name in names
        }

    if "enabled" not in checks.values():
        log.warning("Readiness check failed", providers=checks)
        return JSONResponse(
            status_code=503,
            content={
                "status": "unavailable",
                "checks": checks,
                "errors": {"providers": "no enabled provider registered"},
            },
        )

    return JSONResponse(content={"status": "ready", "checks": checks})
