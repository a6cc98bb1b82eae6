"""FastAPI dependency for caller bearer tokens.

The gateway does not verify Microsoft token signatures; Graph does that on
every call. It only rejects requests that are obviously unusable: no bearer
token, an undecodable JWT, or one that expires within the leeway window.
"""

import time
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from fastapi import Depends, Header, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from outlook_gateway.utils.errors import ValidationFailed
from outlook_gateway.utils.logging import get_logger

logger = get_logger("auth.bearer")

security = HTTPBearer(auto_error=False)


@dataclass
class BearerCredentials:
    """A caller's access token and its unverified claims."""

    access_token: str
    claims: Dict[str, Any] = field(default_factory=dict)

    @property
    def user_id(self) -> Optional[str]:
        return self.claims.get("oid") or self.claims.get("sub")

    @property
    def expires_at(self) -> Optional[int]:
        exp = self.claims.get("exp")
        return int(exp) if exp is not None else None


def decode_unverified_claims(token: str) -> Dict[str, Any]:
    """Read JWT claims without verifying the signature.

    Raises:
        ValidationFailed: if the token is not a decodable JWT
    """
    try:
        return jwt.get_unverified_claims(token)
    except JWTError as e:
        raise ValidationFailed("Missing or invalid access token") from e


async def require_bearer_token(
    request: Request,
    authorization: Optional[str] = Header(None),
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> BearerCredentials:
    """Require ``Authorization: Bearer <jwt>`` that is not about to expire."""
    if not authorization or not authorization.startswith("Bearer ") or credentials is None:
        logger.warning(f"Missing bearer token: {request.method} {request.url.path}")
        raise ValidationFailed("Missing or invalid access token")

    token = credentials.credentials
    claims = decode_unverified_claims(token)

    leeway = request.app.state.settings.token_expiry_leeway_seconds
    exp = claims.get("exp")
    if exp is not None and float(exp) < time.time() + leeway:
        raise ValidationFailed("Access token expired")

    return BearerCredentials(access_token=token, claims=claims)
