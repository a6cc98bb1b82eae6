"""Authentication utilities."""

from outlook_gateway.auth.bearer import BearerCredentials, require_bearer_token
from outlook_gateway.auth.microsoft import DEFAULT_SCOPES, MicrosoftOAuthClient, TokenResponse
from outlook_gateway.auth.registry import ClientRegistry, RegisteredClient

__all__ = [
    "BearerCredentials",
    "ClientRegistry",
    "DEFAULT_SCOPES",
    "MicrosoftOAuthClient",
    "RegisteredClient",
    "TokenResponse",
    "require_bearer_token",
]
