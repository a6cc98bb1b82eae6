"""Token lifecycle for one session: detect 401, refresh once, replay once.

States::

    VALID --401--> REFRESHING --ok--> VALID (original request replayed)
                        |
                        +--token endpoint error--> FAILED
    replay still 401 ------------------------------> FAILED

FAILED is terminal for the manager; re-authorization happens outside the
gateway and the session registry then builds a fresh session.
"""

import asyncio
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Awaitable, Callable, Optional

import httpx

from outlook_gateway.auth.microsoft import MicrosoftOAuthClient
from outlook_gateway.utils.errors import ErrorKind, TokenExchangeError
from outlook_gateway.utils.logging import get_logger

logger = get_logger("token_manager")

SendFn = Callable[[str], Awaitable[httpx.Response]]


class TokenStatus(str, Enum):
    VALID = "valid"
    REFRESHING = "refreshing"
    FAILED = "failed"


@dataclass(frozen=True)
class TokenState:
    """Credentials owned by one session."""

    access_token: str
    refresh_token: str
    token_type: str = "Bearer"
    expires_at: Optional[datetime] = None


@dataclass
class TokenOutcome:
    """Result of sending a request through the manager.

    ``response`` is the last upstream response (``None`` when nothing was
    sent). ``error`` is ``AUTH_EXPIRED`` when the session can no longer
    authenticate.
    """

    response: Optional[httpx.Response]
    tokens: TokenState
    error: Optional[ErrorKind] = None
    refreshed: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None


class TokenManager:
    """Owns a session's TokenState and serializes refreshes."""

    def __init__(self, tokens: TokenState, oauth_client: MicrosoftOAuthClient):
        self._tokens = tokens
        self._oauth = oauth_client
        self._lock = asyncio.Lock()
        self.status = TokenStatus.VALID
        self.refresh_count = 0

    @property
    def tokens(self) -> TokenState:
        return self._tokens

    @property
    def failed(self) -> bool:
        return self.status == TokenStatus.FAILED

    def _fail(self) -> TokenOutcome:
        self.status = TokenStatus.FAILED
        return TokenOutcome(response=None, tokens=self._tokens, error=ErrorKind.AUTH_EXPIRED)

    async def _refresh(self) -> bool:
        if not self._tokens.refresh_token:
            logger.warning("Access token rejected and no refresh token is held; session needs re-authorization")
            self.status = TokenStatus.FAILED
            return False
        self.status = TokenStatus.REFRESHING
        self.refresh_count += 1
        try:
            result = await self._oauth.refresh(self._tokens.refresh_token)
        except TokenExchangeError as e:
            logger.warning(f"Refresh token exchange failed ({e.upstream_status}); session needs re-authorization")
            self.status = TokenStatus.FAILED
            return False
        except BaseException:
            # Never leave the session stuck in REFRESHING
            self.status = TokenStatus.FAILED
            raise

        self._tokens = replace(
            self._tokens,
            access_token=result.access_token,
            token_type=result.token_type,
            expires_at=datetime.now(timezone.utc) + timedelta(seconds=result.expires_in),
            refresh_token=result.refresh_token or self._tokens.refresh_token,
        )
        if result.refresh_token:
            logger.info("Access token refreshed; refresh token rotated")
        else:
            logger.info("Access token refreshed")
        self.status = TokenStatus.VALID
        return True

    async def send(self, send_fn: SendFn) -> TokenOutcome:
        """Send a request, refreshing and replaying it once on 401."""
        if self.status == TokenStatus.FAILED:
            return self._fail()

        used_token = self._tokens.access_token
        response = await send_fn(used_token)
        if response.status_code != 401:
            return TokenOutcome(response=response, tokens=self._tokens)

        async with self._lock:
            if self.status == TokenStatus.FAILED:
                return self._fail()
            refreshed = False
            if self._tokens.access_token == used_token:
                logger.info("Upstream returned 401, refreshing access token")
                if not await self._refresh():
                    return TokenOutcome(
                        response=response, tokens=self._tokens, error=ErrorKind.AUTH_EXPIRED
                    )
                refreshed = True

        replay = await send_fn(self._tokens.access_token)
        if replay.status_code == 401:
            logger.warning("Replay after token refresh was still unauthorized")
            self.status = TokenStatus.FAILED
            return TokenOutcome(
                response=replay,
                tokens=self._tokens,
                error=ErrorKind.AUTH_EXPIRED,
                refreshed=refreshed,
            )
        return TokenOutcome(response=replay, tokens=self._tokens, refreshed=refreshed)
