"""Health check endpoints."""

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse, PlainTextResponse

from outlook_gateway.cache.event_cache import EventCache
from outlook_gateway.config import Settings
from outlook_gateway.dependencies import get_app_settings, get_event_cache
from outlook_gateway.utils.logging import get_logger

logger = get_logger("health")

router = APIRouter(tags=["health"])


@router.get("/", response_class=PlainTextResponse)
async def root() -> str:
    return "Microsoft Outlook gateway is running"


@router.get("/health", status_code=status.HTTP_200_OK)
async def health_check(settings: Settings = Depends(get_app_settings)):
    """
    Health check endpoint.

    Does not touch external dependencies; healthy whenever the process serves.
    """
    logger.debug("Health check requested")
    return {
        "status": "healthy",
        "service": settings.service_name,
        "environment": settings.environment.value,
    }


@router.get("/ready")
async def readiness_check(
    settings: Settings = Depends(get_app_settings),
    cache: EventCache = Depends(get_event_cache),
):
    """
    Readiness check endpoint.

    Returns 503 when the event cache cannot be reached. Webhooks still work
    in that state but deduplication is off.
    """
    checks = {
        "event_cache": await cache.ping(),
        "microsoft_oauth": settings.microsoft.is_configured,
    }
    ready = checks["event_cache"]
    if not ready:
        logger.warning("Readiness check failed: event cache unavailable")
    return JSONResponse(
        status_code=status.HTTP_200_OK if ready else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={
            "status": "ready" if ready else "not_ready",
            "service": settings.service_name,
            "checks": checks,
        },
    )
