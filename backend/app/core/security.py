"""
Bearer credential handling.

WHAT: Issue and verify HS256 access tokens, resolve the current user
WHY: REST endpoints and socket connections share one notion of identity
HOW: PyJWT encode/decode; FastAPI dependency reading the Authorization header
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from jwt.exceptions import InvalidTokenError, ExpiredSignatureError
from fastapi import Header

from .config import settings
from ..utils.exceptions import AuthenticationException
from ..utils.logger import get_logger

logger = get_logger(__name__)


def create_access_token(user_id: str, expires_in_minutes: Optional[int] = None) -> str:
    """
    Issue a signed access token for user_id.

    The marketplace auth service issues tokens in production; this is used
    by local tooling and tests.
    """
    now = datetime.now(timezone.utc)
    minutes = expires_in_minutes if expires_in_minutes is not None else settings.ACCESS_TOKEN_EXPIRE_MINUTES
    payload = {
        "sub": user_id,
        "iat": now,
        "exp": now + timedelta(minutes=minutes),
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def decode_access_token(token: str) -> str:
    """
    Verify signature and expiry and return the subject id.

    Args:
        token: Raw JWT string

    Returns:
        The user id carried in `sub` (or `userId` for older tokens)

    Raises:
        AuthenticationException: Missing, invalid or expired token
    """
    if not token:
        raise AuthenticationException("No authentication token provided")

    try:
        decoded = jwt.decode(
            token,
            settings.JWT_SECRET,
            algorithms=[settings.JWT_ALGORITHM],
            options={"verify_signature": True, "verify_exp": True, "require": ["exp"]}
        )
    except ExpiredSignatureError:
        logger.info("Rejected expired access token")
        raise AuthenticationException("Token has expired")
    except InvalidTokenError as e:
        logger.info(f"Rejected invalid access token: {e}")
        raise AuthenticationException("Invalid token")

    subject = decoded.get("sub") or decoded.get("userId")
    if not subject:
        raise AuthenticationException("Token has no subject")
    return str(subject)


def extract_bearer(authorization: Optional[str]) -> Optional[str]:
    """Return the token part of an `Authorization: Bearer ...` value."""
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


async def get_current_user_id(authorization: Optional[str] = Header(default=None)) -> str:
    """FastAPI dependency: authenticated user id or 401."""
    token = extract_bearer(authorization)
    if token is None:
        raise AuthenticationException("No authentication token provided")
    return decode_access_token(token)
