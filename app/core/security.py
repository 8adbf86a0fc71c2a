from datetime import datetime, timedelta, timezone
from typing import Optional, Any, Dict
import logging
import uuid

from jose import JWTError, jwt

from app.config import settings

logger = logging.getLogger(__name__)

TOKEN_TYPE = "access"


def create_access_token(
    user_id: uuid.UUID,
    role: str,
    expires_delta: Optional[timedelta] = None,
) -> str:
    """
    Issue a bearer token for a marketplace user.

    The role travels in the token so a role change (e.g. a customer who
    becomes a delivery partner) invalidates tokens issued before it.
    """
    issued_at = datetime.now(timezone.utc)
    expire = issued_at + (expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES))

    claims = {
        "sub": str(user_id),
        "role": role,
        "exp": expire,
        "iat": issued_at,
        "jti": str(uuid.uuid4()),
        "type": TOKEN_TYPE,
    }
    return jwt.encode(claims, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_access_token(token: str) -> Optional[Dict[str, Any]]:
    """
    Decode a bearer token.

    Returns:
        Claims with ``sub`` parsed to a UUID, or None if the token is
        malformed, expired, signed with another key or not an access token.
    """
    try:
        claims = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError as e:
        logger.debug(f"Rejected token: {e}")
        return None

    if claims.get("type") != TOKEN_TYPE:
        return None

    try:
        claims["sub"] = uuid.UUID(claims.get("sub", ""))
    except ValueError:
        logger.warning(f"Token with malformed subject: {claims.get('sub')!r}")
        return None
    return claims
