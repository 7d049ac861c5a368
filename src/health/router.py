"""Health check endpoints."""

from fastapi import APIRouter, Request, status
from fastapi.responses import ORJSONResponse

from src.config import get_settings


router = APIRouter(prefix="/health", tags=["health"])


@router.get("/live")
async def liveness() -> dict[str, str]:
    """Liveness check: the application is running."""
    return {"status": "alive"}


@router.get("/ready")
async def readiness(request: Request) -> ORJSONResponse:
    """Readiness check: ready once the database-backed services are up."""
    settings = get_settings()
    database_ready = getattr(request.app.state, "reading_service", None) is not None
    return ORJSONResponse(
        status_code=status.HTTP_200_OK
        if database_ready
        else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={
            "status": "ready" if database_ready else "degraded",
            "database": database_ready,
            "environment": settings.environment,
        },
    )


@router.get("")
async def health() -> dict[str, str]:
    """General health check endpoint."""
    settings = get_settings()
    return {
        "status": "healthy",
        "app_name": settings.app_name,
        "version": settings.app_version,
        "environment": settings.environment,
    }
