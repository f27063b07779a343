from datetime import datetime, timedelta, timezone
from typing import Any

import jwt

from storefront.core.config import settings

ALGORITHM = "HS256"


def create_access_token(subject: str | Any, expires_delta: timedelta) -> str:
    """Issue a bearer token whose ``sub`` is the user id."""
    expire = datetime.now(timezone.utc) + expires_delta
    to_encode = {"exp": expire, "sub": str(subject)}
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=ALGORITHM)


def decode_access_token(token: str) -> dict[str, Any]:
    """
    Decode and validate a bearer token

    Raises:
        jwt.InvalidTokenError: bad signature, expired or malformed token
    """
    return jwt.decode(token, settings.SECRET_KEY, algorithms=[ALGORITHM])
