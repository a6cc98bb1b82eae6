"""FastAPI application entry point.

This module creates and configures the FastAPI application instance with:
- Middleware (CORS, RequestID, Timing, ErrorLogging)
- Exception handlers (GatewayError, HTTPException, validation, general)
- Routers (health, OAuth proxy, webhooks, tools)
- Startup/shutdown of the event cache, event sink and shared HTTP client
"""

from contextlib import asynccontextmanager
from typing import Optional

import httpx
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from outlook_gateway.api import health, oauth, tools, webhooks
from outlook_gateway.auth.registry import ClientRegistry
from outlook_gateway.cache.event_cache import EventCache, build_event_cache
from outlook_gateway.config import Settings, get_settings
from outlook_gateway.middleware import setup_middleware
from outlook_gateway.services.event_sink import EventSink, build_event_sink
from outlook_gateway.services.reconciliation import NotificationReconciler
from outlook_gateway.services.webhook_processing import NotificationProcessor
from outlook_gateway.services.webhook_validator import WebhookValidator
from outlook_gateway.session import SessionRegistry
from outlook_gateway.utils.errors import GatewayError
from outlook_gateway.utils.logging import get_logger, log_error, setup_logging

logger = get_logger("main")

INVALID_TOKEN_DESCRIPTION = "The access token is invalid or expired"


def create_app(
    settings: Optional[Settings] = None,
    http_client: Optional[httpx.AsyncClient] = None,
    event_cache: Optional[EventCache] = None,
    event_sink: Optional[EventSink] = None,
) -> FastAPI:
    """Build the application.

    Components not passed in are created from settings at startup.
    """
    settings = settings or get_settings()
    setup_logging(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(f"Starting {settings.service_name} (environment: {settings.environment.value})")
        if not settings.microsoft.is_configured:
            logger.warning("MICROSOFT_CLIENT_ID is not set - OAuth proxy and token refresh will fail")

        client = http_client or httpx.AsyncClient(timeout=settings.http_timeout_seconds)
        cache = event_cache or build_event_cache(settings)
        sink = event_sink or build_event_sink(settings)

        app.state.settings = settings
        app.state.http_client = client
        app.state.event_cache = cache
        app.state.event_sink = sink
        app.state.webhook_validator = WebhookValidator(
            settings.microsoft.webhook_secret, policy=settings.webhook_mismatch_policy
        )
        app.state.notification_processor = NotificationProcessor(NotificationReconciler(cache))
        app.state.client_registry = ClientRegistry()
        app.state.session_registry = SessionRegistry(settings, client)

        try:
            yield
        finally:
            logger.info(f"Shutting down {settings.service_name}")
            try:
                await sink.close()
                await cache.close()
                if http_client is None:
                    await client.aclose()
            except Exception as e:
                logger.error(f"Error during shutdown: {e}", exc_info=True)

    app = FastAPI(
        title="Outlook Gateway",
        description="Microsoft Graph gateway for Outlook mail, calendar and change notifications",
        version="0.1.0",
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        openapi_url="/openapi.json" if settings.debug else None,
        debug=settings.debug,
        lifespan=lifespan,
    )

    setup_middleware(app, settings)

    app.include_router(health.router)
    app.include_router(oauth.router)
    app.include_router(webhooks.router)
    app.include_router(tools.router)

    register_exception_handlers(app)
    return app


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(GatewayError)
    async def gateway_exception_handler(request: Request, exc: GatewayError) -> JSONResponse:
        """401s use the OAuth bearer error format; everything else the JSON envelope."""
        if exc.status_code == status.HTTP_401_UNAUTHORIZED:
            logger.warning(f"401 {request.method} {request.url.path}: {exc.message}")
            description = exc.message or INVALID_TOKEN_DESCRIPTION
            return JSONResponse(
                status_code=status.HTTP_401_UNAUTHORIZED,
                content={"error": "invalid_token", "error_description": description},
                headers={
                    "WWW-Authenticate": (
                        f'Bearer error="invalid_token", error_description="{description}"'
                    ),
                    "Cache-Control": "no-store",
                    "Pragma": "no-cache",
                },
            )

        log_error(
            exc,
            context={
                "method": request.method,
                "path": request.url.path,
                "status_code": exc.status_code,
                "code": exc.code,
            },
        )
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        """Handle HTTP exceptions (404, etc.)."""
        if exc.status_code >= 500:
            log_error(exc, context={"method": request.method, "path": request.url.path})
        else:
            logger.warning(f"{exc.status_code} {request.method} {request.url.path}: {exc.detail}")
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "error": {
                    "message": exc.detail,
                    "code": "HTTP_ERROR",
                    "status_code": exc.status_code,
                    "details": {},
                }
            },
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        """Handle request validation errors."""
        errors = [
            {
                "field": ".".join(str(loc) for loc in error.get("loc", [])),
                "message": error.get("msg"),
                "type": error.get("type"),
            }
            for error in exc.errors()
        ]
        logger.warning(f"Validation error: {request.method} {request.url.path}")
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={
                "error": {
                    "message": "Validation failed",
                    "code": "VALIDATION_ERROR",
                    "status_code": 422,
                    "details": {"errors": errors},
                }
            },
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Handle unexpected exceptions."""
        log_error(exc, context={"method": request.method, "path": request.url.path})
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "error": {
                    "message": "Internal server error",
                    "code": "INTERNAL_ERROR",
                    "status_code": 500,
                    "details": {},
                }
            },
        )


def run() -> None:
    """Console entry point: serve the app with uvicorn."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "outlook_gateway.main:create_app",
        factory=True,
        host="0.0.0.0",
        port=8000,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    run()
