"""Health check endpoints."""

from fastapi import APIRouter, Request, Response, status

from src.config import get_settings
from src.core.database import AsyncCassandraConnection


router = APIRouter(prefix="/health", tags=["health"])


@router.get("/live")
async def liveness() -> dict[str, str]:
    """Liveness probe - checks if the application is running."""
    return {"status": "alive"}


@router.get("/ready")
async def readiness(request: Request, response: Response) -> dict[str, str | bool]:
    """Readiness probe - ready once the progress store is connected."""
    settings = get_settings()
    cassandra_ready = AsyncCassandraConnection.is_connected()
    service_ready = getattr(request.app.state, "progress_service", None) is not None
    redis_ready = getattr(request.app.state, "redis", None) is not None

    ready = cassandra_ready and service_ready
    if not ready:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    return {
        "status": "ready" if ready else "not_ready",
        "cassandra": cassandra_ready,
        "progress_service": service_ready,
        "redis": redis_ready,
        "environment": settings.environment,
    }


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
