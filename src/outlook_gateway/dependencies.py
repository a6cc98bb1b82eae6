"""FastAPI dependencies resolving shared components from app state."""

from typing import AsyncIterator, Optional

import httpx
from fastapi import Depends, Header, Request

from outlook_gateway.auth.bearer import BearerCredentials, require_bearer_token
from outlook_gateway.auth.microsoft import MicrosoftOAuthClient
from outlook_gateway.auth.registry import ClientRegistry
from outlook_gateway.cache.event_cache import EventCache
from outlook_gateway.config import Settings
from outlook_gateway.services.event_sink import EventSink
from outlook_gateway.services.webhook_processing import NotificationProcessor
from outlook_gateway.services.webhook_validator import WebhookValidator
from outlook_gateway.session import GraphSession, SessionRegistry
from outlook_gateway.utils.errors import ConfigurationError
from outlook_gateway.utils.logging import get_logger

logger = get_logger("dependencies")


def _state(request: Request, name: str):
    value = getattr(request.app.state, name, None)
    if value is None:
        logger.error(f"{name} not available in app state")
        raise ConfigurationError(f"{name} is not initialized")
    return value


def get_app_settings(request: Request) -> Settings:
    return _state(request, "settings")


def get_event_cache(request: Request) -> EventCache:
    return _state(request, "event_cache")


def get_event_sink(request: Request) -> EventSink:
    return _state(request, "event_sink")


def get_webhook_validator(request: Request) -> WebhookValidator:
    return _state(request, "webhook_validator")


def get_notification_processor(request: Request) -> NotificationProcessor:
    return _state(request, "notification_processor")


def get_client_registry(request: Request) -> ClientRegistry:
    return _state(request, "client_registry")


def get_http_client(request: Request) -> httpx.AsyncClient:
    return _state(request, "http_client")


def get_oauth_client(request: Request) -> MicrosoftOAuthClient:
    settings = get_app_settings(request)
    return MicrosoftOAuthClient(settings.microsoft, get_http_client(request))


def get_account_name(request: Request) -> Optional[str]:
    """Account name from the configured header, falling back to ``?name=``."""
    settings = get_app_settings(request)
    return request.headers.get(settings.account_header) or request.query_params.get("name")


async def get_graph_session(
    request: Request,
    credentials: BearerCredentials = Depends(require_bearer_token),
    x_refresh_token: Optional[str] = Header(None, alias="X-Refresh-Token"),
    mcp_session_id: Optional[str] = Header(None, alias="Mcp-Session-Id"),
) -> AsyncIterator[GraphSession]:
    """Resolve the caller's Graph session.

    Without ``X-Refresh-Token`` the session can still make calls but a 401
    from Graph ends in ``AUTH_EXPIRED``. A session whose credentials failed
    during the call is discarded afterwards.
    """
    registry: SessionRegistry = _state(request, "session_registry")
    account_name = get_account_name(request) or "default"
    session = await registry.get_or_create(
        account_name,
        credentials.access_token,
        x_refresh_token or "",
        session_id=mcp_session_id,
    )
    yield session
    if session.token_manager.failed:
        registry.discard(session)
