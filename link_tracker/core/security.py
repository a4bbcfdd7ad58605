"""Security utilities: access tokens for dashboard users."""

from datetime import datetime, timedelta, timezone
from uuid import UUID
import logging

import jwt
from pydantic import BaseModel

from .config import get_settings

settings = get_settings()
logger = logging.getLogger(__name__)

ALGORITHM = "HS256"


# JWT Token handling
class TokenPayload(BaseModel):
    """JWT token payload."""

    sub: str  # Profile ID
    role: str | None = None  # Role at issue time; the profile row is authoritative
    exp: datetime
    iat: datetime
    type: str = "access"


def create_access_token(
    profile_id: UUID,
    role: str | None = None,
    expires_delta: timedelta | None = None,
) -> str:
    """Create a JWT access token."""
    now = datetime.now(timezone.utc)
    expire = now + (
        expires_delta or timedelta(minutes=settings.access_token_expire_minutes)
    )

    payload = {
        "sub": str(profile_id),
        "role": role,
        "exp": expire,
        "iat": now,
        "type": "access",
    }

    return jwt.encode(payload, settings.secret_key, algorithm=ALGORITHM)


def decode_token(token: str) -> TokenPayload | None:
    """Decode and validate a JWT token."""
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[ALGORITHM])
        return TokenPayload(**payload)
    except jwt.ExpiredSignatureError:
        logger.info("Access token expired")
        return None
    except jwt.PyJWTError as e:
        logger.warning(f"Invalid access token: {e}")
        return None
