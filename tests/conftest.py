"""Pytest configuration and fixtures for outlook-gateway tests."""

import time
from typing import Any, Callable, Dict, Optional

import httpx
import pytest
from fastapi.testclient import TestClient
from jose import jwt

from outlook_gateway import config
from outlook_gateway.cache.event_cache import InMemoryEventCache
from outlook_gateway.config import Environment, MicrosoftSettings, Settings
from outlook_gateway.main import create_app
from outlook_gateway.services.event_sink import LoggingEventSink

WEBHOOK_SECRET = "s3cret-client-state"
USER_OID = "00000000-0000-0000-0000-0000000000aa"
GRAPH = "https://graph.microsoft.com/v1.0"
TOKEN_URL = "https://login.microsoftonline.com/common/oauth2/v2.0/token"


class FakeClock:
    """Controllable monotonic clock for cache expiry."""

    def __init__(self, start: float = 0.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_jwt(expires_in: int = 3600, **claims: Any) -> str:
    """Unsigned-for-our-purposes JWT; the gateway only reads claims."""
    payload: Dict[str, Any] = {"oid": USER_OID, "exp": int(time.time()) + expires_in}
    payload.update(claims)
    return jwt.encode(payload, "test-signing-key", algorithm="HS256")


def mock_http_client(handler: Callable[[httpx.Request], httpx.Response]) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.fixture
def settings() -> Settings:
    return Settings(
        environment=Environment.TEST,
        cache_backend="memory",
        microsoft=MicrosoftSettings(
            client_id="gateway-client-id",
            client_secret="gateway-client-secret",
            tenant_id="common",
            webhook_secret=WEBHOOK_SECRET,
            webhook_url="https://gw.example.com",
        ),
    )


@pytest.fixture(autouse=True)
def settings_singleton(settings):
    """Make get_settings() return the test settings."""
    previous = config._settings
    config._settings = settings
    yield settings
    config._settings = previous


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def memory_cache(clock) -> InMemoryEventCache:
    return InMemoryEventCache(default_ttl=120, clock=clock)


@pytest.fixture
def event_sink() -> LoggingEventSink:
    return LoggingEventSink()


@pytest.fixture
def make_client(settings, memory_cache, event_sink):
    """Factory for a TestClient around a fully wired app.

    ``handler`` fakes every outbound HTTP call (Graph and token endpoint).
    """
    clients = []

    def _make(
        handler: Optional[Callable[[httpx.Request], httpx.Response]] = None,
        app_settings: Optional[Settings] = None,
    ) -> TestClient:
        handler = handler or (lambda request: httpx.Response(404))
        app = create_app(
            settings=app_settings or settings,
            http_client=mock_http_client(handler),
            event_cache=memory_cache,
            event_sink=event_sink,
        )
        client = TestClient(app)
        client.__enter__()
        clients.append(client)
        return client

    yield _make

    for client in clients:
        client.__exit__(None, None, None)


def notification(
    resource_id: Optional[str] = "evt-1",
    change_type: Optional[str] = "created",
    client_state: Optional[str] = WEBHOOK_SECRET,
    subscription_id: str = "sub-1",
) -> Dict[str, Any]:
    item: Dict[str, Any] = {
        "subscriptionId": subscription_id,
        "changeType": change_type,
        "clientState": client_state,
        "resource": f"Users/{USER_OID}/Events/{resource_id}",
        "tenantId": "tenant-1",
    }
    if resource_id is not None:
        item["resourceData"] = {"id": resource_id, "@odata.type": "#Microsoft.Graph.Event"}
    return item


def lifecycle(
    event: Optional[str] = "subscriptionRemoved",
    client_state: Optional[str] = WEBHOOK_SECRET,
    subscription_id: str = "sub-1",
) -> Dict[str, Any]:
    return {
        "subscriptionId": subscription_id,
        "lifecycleEvent": event,
        "clientState": client_state,
        "subscriptionExpirationDateTime": "2026-10-25T00:00:00Z",
    }
