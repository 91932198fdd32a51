"""
Token issuing and the cookie-based authorization gate.

``TokenService`` signs arbitrary claims into an HS256 JWT with a fixed
lifetime. ``require_identity`` is the FastAPI dependency protected routes
declare; it turns the ``token`` cookie into an ``Identity`` or fails with 401.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import jwt
from fastapi import Cookie, HTTPException, Request, status
from pydantic import BaseModel

from settings import Settings

logger = logging.getLogger(__name__)

COOKIE_NAME = "token"
JWT_ALGO = "HS256"
REGISTERED_CLAIMS = ("iss", "sub", "aud", "exp", "nbf", "iat", "jti")


class InvalidToken(Exception):
    pass


class Identity(BaseModel):
    email: Optional[str] = None
    claims: Dict[str, Any] = {}


class TokenService:
    def __init__(self, secret: str, expires_minutes: int = 60 * 24):
        self.secret = secret
        self.expires = timedelta(minutes=expires_minutes)

    def issue(self, claims: Dict[str, Any]) -> str:
        # registered claims are validated on decode; only exp is ours to set
        payload = {k: v for k, v in claims.items() if k not in REGISTERED_CLAIMS}
        payload["exp"] = datetime.now(timezone.utc) + self.expires
        return jwt.encode(payload, self.secret, algorithm=JWT_ALGO)

    def verify(self, token: str) -> Dict[str, Any]:
        try:
            return jwt.decode(token, self.secret, algorithms=[JWT_ALGO])
        except jwt.InvalidTokenError as e:
            raise InvalidToken(str(e)) from e


def cookie_options(settings: Settings) -> Dict[str, Any]:
    """Cookie attributes for the session token; cross-site only in production."""
    if settings.is_production:
        return {"httponly": True, "secure": True, "samesite": "none"}
    return {"httponly": True, "secure": False, "samesite": "strict"}


def require_identity(request: Request, token: Optional[str] = Cookie(None)) -> Identity:
    if not token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized Access")
    tokens: TokenService = request.app.state.tokens
    try:
        claims = tokens.verify(token)
    except InvalidToken as e:
        logger.info("Rejected token: %s", e)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized Access")
    email = claims.get("email")
    return Identity(email=email if isinstance(email, str) else None, claims=claims)


def ensure_owner(identity: Identity, email: Optional[str]) -> None:
    """403 unless the caller's token email matches the claimed owner email."""
    if not identity.email or identity.email != email:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden Access")
