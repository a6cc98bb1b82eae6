"""HTTP middleware: request ids, access logging and unhandled-error logging."""

import time
import uuid
from typing import Callable, Optional

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware

from outlook_gateway.config import Settings
from outlook_gateway.utils.logging import get_logger, log_error, log_request, set_request_id

logger = get_logger("middleware")

# Graph sends client-request-id on notification deliveries
REQUEST_ID_HEADERS = ("X-Request-ID", "client-request-id")


def incoming_request_id(request: Request) -> Optional[str]:
    for header in REQUEST_ID_HEADERS:
        value = request.headers.get(header)
        if value:
            return value
    return None


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Binds a request id to the logging context and echoes it back."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = incoming_request_id(request) or str(uuid.uuid4())
        set_request_id(request_id)

        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response


class TimingMiddleware(BaseHTTPMiddleware):
    """Access log with duration, tagged with the account the call is for."""

    def __init__(self, app, account_header: str = "x-mcp-name"):
        super().__init__(app)
        self.account_header = account_header

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        start = time.perf_counter()
        response = await call_next(request)
        duration_ms = (time.perf_counter() - start) * 1000

        log_request(
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            duration_ms=duration_ms,
            account=request.headers.get(self.account_header) or request.query_params.get("name"),
            client_ip=request.client.host if request.client else None,
        )
        response.headers["X-Process-Time"] = f"{duration_ms:.2f}ms"
        return response


class ErrorLoggingMiddleware(BaseHTTPMiddleware):
    """Logs exceptions that escaped every handler, then re-raises."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        try:
            return await call_next(request)
        except Exception as e:
            log_error(e, context={"method": request.method, "path": request.url.path})
            raise


def setup_middleware(app: FastAPI, settings: Settings) -> None:
    """Register middleware. The last one added runs first."""
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=False,
        allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "Mcp-Session-Id"],
    )
    app.add_middleware(RequestIDMiddleware)
    app.add_middleware(TimingMiddleware, account_header=settings.account_header)
    app.add_middleware(ErrorLoggingMiddleware)
