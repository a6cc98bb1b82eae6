"""Per-user Graph sessions built from validated credentials."""

import asyncio
import hashlib
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional, Set

import httpx

from outlook_gateway.auth.bearer import decode_unverified_claims
from outlook_gateway.auth.microsoft import MicrosoftOAuthClient
from outlook_gateway.config import Settings
from outlook_gateway.services.graph_client import GraphClient
from outlook_gateway.services.outlook_service import OutlookService
from outlook_gateway.services.token_manager import TokenManager, TokenState
from outlook_gateway.utils.errors import ValidationFailed
from outlook_gateway.utils.logging import get_logger

logger = get_logger("session")


@dataclass
class SessionState:
    account_name: str
    user_id: str
    tokens: TokenState


@dataclass
class GraphSession:
    """Everything a tool call needs for one user."""

    state: SessionState
    token_manager: TokenManager
    graph: GraphClient
    outlook: OutlookService
    last_used: float = field(default_factory=time.monotonic)
    held_refresh_tokens: Set[str] = field(default_factory=set)

    def holds_refresh_token(self, refresh_token: str) -> bool:
        """True if ``refresh_token`` is, or was before rotation, this session's."""
        self.held_refresh_tokens.add(self.token_manager.tokens.refresh_token)
        return refresh_token in self.held_refresh_tokens


def user_id_from_claims(claims: Dict[str, Any]) -> str:
    user_id = claims.get("oid") or claims.get("sub")
    if not user_id:
        raise ValidationFailed("Access token has no user id claim")
    return str(user_id)


def create_session(
    account_name: str,
    access_token: str,
    refresh_token: str,
    settings: Settings,
    http_client: httpx.AsyncClient,
) -> GraphSession:
    """Build a session from a caller's tokens.

    The user id comes from the access token's ``oid`` claim.

    Raises:
        ValidationFailed: if the token is undecodable or has no user id
    """
    claims = decode_unverified_claims(access_token)
    user_id = user_id_from_claims(claims)

    exp = claims.get("exp")
    tokens = TokenState(
        access_token=access_token,
        refresh_token=refresh_token,
        expires_at=datetime.fromtimestamp(int(exp), tz=timezone.utc) if exp is not None else None,
    )
    state = SessionState(account_name=account_name, user_id=user_id, tokens=tokens)

    oauth = MicrosoftOAuthClient(settings.microsoft, http_client)
    token_manager = TokenManager(tokens, oauth)
    graph = GraphClient(http_client, token_manager, base_url=settings.microsoft.graph_api_url)
    outlook = OutlookService(graph, user_id, settings.microsoft)
    return GraphSession(
        state=state,
        token_manager=token_manager,
        graph=graph,
        outlook=outlook,
        held_refresh_tokens={refresh_token} if refresh_token else set(),
    )


def session_key(session_id: Optional[str], refresh_token: str, access_token: str) -> str:
    """Key by client session id, else a digest of the refresh (or access) token."""
    if session_id:
        return f"session:{session_id}"
    secret = refresh_token or access_token
    return "token:" + hashlib.sha256(secret.encode("utf-8")).hexdigest()




class SessionRegistry:
    """Live sessions, so concurrent calls share one TokenManager.

    Sessions idle for longer than ``session_idle_ttl_seconds`` are evicted
    on the next lookup.
    """

    def __init__(
        self,
        settings: Settings,
        http_client: httpx.AsyncClient,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.settings = settings
        self.http_client = http_client
        self.idle_ttl = settings.session_idle_ttl_seconds
        self._clock = clock
        self._sessions: Dict[str, GraphSession] = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._sessions)

    def _prune(self, now: float) -> None:
        stale = [key for key, session in self._sessions.items() if now - session.last_used > self.idle_ttl]
        for key in stale:
            del self._sessions[key]
        if stale:
            logger.debug(f"Evicted {len(stale)} idle Graph session(s)")

    @staticmethod
    def _replacement_reason(
        session: GraphSession, caller: str, access_token: str, refresh_token: str
    ) -> Optional[str]:
        if session.state.user_id != caller:
            return "session key reused by a different user"
        if refresh_token and not session.holds_refresh_token(refresh_token):
            return "caller presented a new refresh token"
        if session.token_manager.failed and access_token != session.state.tokens.access_token:
            return "caller re-authorized after the session failed"
        return None

    async def get_or_create(
        self,
        account_name: str,
        access_token: str,
        refresh_token: str,
        session_id: Optional[str] = None,
    ) -> GraphSession:
        """Return the caller's live session, creating it on first use.

        The session under the key is replaced when it belongs to another
        user, or when the caller brings credentials it has never held
        (re-authorization after a failed refresh).
        """
        key = session_key(session_id, refresh_token, access_token)
        caller = user_id_from_claims(decode_unverified_claims(access_token))
        async with self._lock:
            now = self._clock()
            self._prune(now)
            session = self._sessions.get(key)
            if session is not None:
                reason = self._replacement_reason(session, caller, access_token, refresh_token)
                if reason:
                    logger.info(f"Replacing Graph session for {account_name}: {reason}")
                    session = None
            if session is None:
                session = create_session(
                    account_name, access_token, refresh_token, self.settings, self.http_client
                )
                self._sessions[key] = session
                logger.info(f"Created Graph session for {account_name}")
            session.last_used = now
            return session

    def discard(self, session: GraphSession) -> None:
        """Drop ``session`` if it is still the one registered under its key."""
        for key, live in list(self._sessions.items()):
            if live is session:
                del self._sessions[key]
                logger.info(f"Discarded Graph session for {session.state.account_name}")
