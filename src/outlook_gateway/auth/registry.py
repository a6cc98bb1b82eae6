"""Dynamic client registration store."""

import time
import uuid
from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class ClientRegistrationRequest(BaseModel):
    client_name: Optional[str] = None
    redirect_uris: List[str] = Field(default_factory=list)
    grant_types: Optional[List[str]] = None
    response_types: Optional[List[str]] = None
    scope: Optional[str] = None


class RegisteredClient(BaseModel):
    """A public OAuth client registered through ``POST /register``."""

    client_id: str
    client_name: str = "MCP Client"
    redirect_uris: List[str] = Field(default_factory=list)
    grant_types: List[str] = Field(default_factory=lambda: ["authorization_code", "refresh_token"])
    response_types: List[str] = Field(default_factory=lambda: ["code"])
    scope: Optional[str] = None
    token_endpoint_auth_method: str = "none"
    created_at: int = Field(default_factory=lambda: int(time.time() * 1000))


class ClientRegistry:
    """In-process registry of registered clients. Entries never expire."""

    def __init__(self) -> None:
        self._clients: Dict[str, RegisteredClient] = {}

    def __len__(self) -> int:
        return len(self._clients)

    def register(self, request: ClientRegistrationRequest) -> RegisteredClient:
        client = RegisteredClient(
            client_id=str(uuid.uuid4()),
            client_name=request.client_name or "MCP Client",
            redirect_uris=request.redirect_uris,
            grant_types=request.grant_types or ["authorization_code", "refresh_token"],
            response_types=request.response_types or ["code"],
            scope=request.scope,
        )
        self._clients[client.client_id] = client
        return client

    def get(self, client_id: str) -> Optional[RegisteredClient]:
        return self._clients.get(client_id)
