"""Microsoft identity platform (v2.0) OAuth client.

Used both by the ``/token`` proxy endpoint and by ``TokenManager`` for the
refresh-token exchange. Requests are form-encoded and parameters with empty
values are left out. This posts to the token endpoint with httpx rather than
going through msal, so PKCE parameters reach Microsoft unchanged.
"""

from typing import Dict, List, Optional
from urllib.parse import urlencode

import httpx
from pydantic import BaseModel, ConfigDict, ValidationError

from outlook_gateway.config import MicrosoftSettings
from outlook_gateway.utils.errors import TokenExchangeError
from outlook_gateway.utils.logging import get_logger

logger = get_logger("auth.microsoft")

DEFAULT_SCOPES: List[str] = [
    "openid",
    "profile",
    "offline_access",
    "Calendars.ReadWrite",
    "Mail.ReadWrite",
    "Mail.Send",
    "User.Read",
    "People.Read",
    "Contacts.ReadWrite",
    "MailboxSettings.Read",
]


class TokenResponse(BaseModel):
    """Successful token endpoint response."""

    model_config = ConfigDict(extra="allow")

    access_token: str
    token_type: str = "Bearer"
    expires_in: int = 3600
    scope: Optional[str] = None
    refresh_token: Optional[str] = None
    id_token: Optional[str] = None


def _form(params: Dict[str, Optional[str]]) -> Dict[str, str]:
    return {key: value for key, value in params.items() if value}


class MicrosoftOAuthClient:
    """Authorization-code and refresh-token grants against the v2.0 endpoint."""

    def __init__(self, settings: MicrosoftSettings, http_client: httpx.AsyncClient):
        self.settings = settings
        self.http_client = http_client

    @property
    def token_endpoint(self) -> str:
        return self.settings.endpoint("token")

    def authorize_url(self, params: Dict[str, str]) -> str:
        """Build the Microsoft authorize URL, substituting our client_id."""
        query = {key: value for key, value in params.items() if key != "client_id"}
        query["client_id"] = self.settings.client_id
        return f"{self.settings.endpoint('authorize')}?{urlencode(query)}"

    async def _post(self, form: Dict[str, str]) -> TokenResponse:
        try:
            response = await self.http_client.post(
                self.token_endpoint,
                data=form,
                headers={"Content-Type": "application/x-www-form-urlencoded"},
            )
        except httpx.HTTPError as e:
            logger.error(f"Token endpoint request failed: {e}")
            raise TokenExchangeError(502, {"error": "temporarily_unavailable"}) from e

        if not response.is_success:
            try:
                body = response.json()
            except ValueError:
                body = {"error": "invalid_request", "error_description": response.text[:200]}
            if not isinstance(body, dict):
                body = {"error": "invalid_request"}
            logger.warning(
                f"Token endpoint returned {response.status_code}: {body.get('error')}"
            )
            raise TokenExchangeError(response.status_code, body)

        try:
            return TokenResponse.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            logger.error(f"Token endpoint returned {response.status_code} without a usable token: {e}")
            raise TokenExchangeError(
                502, {"error": "invalid_response", "error_description": "Malformed token endpoint response"}
            ) from e

    async def exchange_code(
        self,
        code: str,
        redirect_uri: str,
        code_verifier: Optional[str] = None,
        scope: Optional[str] = None,
    ) -> TokenResponse:
        """Exchange an authorization code (PKCE verifier passed through)."""
        return await self._post(
            _form(
                {
                    "client_id": self.settings.client_id,
                    "client_secret": self.settings.client_secret,
                    "grant_type": "authorization_code",
                    "code": code,
                    "redirect_uri": redirect_uri,
                    "scope": scope,
                    "code_verifier": code_verifier,
                }
            )
        )

    async def refresh(
        self, refresh_token: str, scopes: Optional[List[str]] = None
    ) -> TokenResponse:
        """Exchange a refresh token for a new access token."""
        return await self._post(
            _form(
                {
                    "client_id": self.settings.client_id,
                    "client_secret": self.settings.client_secret,
                    "grant_type": "refresh_token",
                    "refresh_token": refresh_token,
                    "scope": " ".join(scopes or DEFAULT_SCOPES),
                }
            )
        )
