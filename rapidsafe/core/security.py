"""
Caller authentication — bearer JWT verification.

The dependency here only *resolves* the caller; it never rejects a request.
Rejecting an anonymous caller is the first validation step of each alert
operation, so the classified error comes out of the service layer in the
documented order.
"""

from __future__ import annotations

import datetime as dt
import logging
import uuid
from dataclasses import dataclass
from typing import Optional

from fastapi import Header
from jose import JWTError, jwt

from rapidsafe.core.config import settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuthenticatedUser:
    """Verified caller identity. ``uid`` is the token subject."""
    uid: str


def issue_access_token(
    user_id: str,
    *,
    secret: Optional[str] = None,
    algorithm: Optional[str] = None,
    expires_minutes: Optional[int] = None,
) -> str:
    now = dt.datetime.now(dt.timezone.utc)
    minutes = expires_minutes if expires_minutes is not None else settings.ACCESS_TOKEN_EXPIRE_MINUTES
    claims = {
        "sub": user_id,
        "iat": int(now.timestamp()),
        "exp": int((now + dt.timedelta(minutes=minutes)).timestamp()),
        "jti": uuid.uuid4().hex,
    }
    return jwt.encode(
        claims,
        secret or settings.JWT_SECRET_KEY,
        algorithm=algorithm or settings.JWT_ALGORITHM,
    )


def verify_access_token(token: str) -> Optional[AuthenticatedUser]:
    """Return the caller for a valid token, None for anything else."""
    try:
        claims = jwt.decode(
            token,
            settings.JWT_SECRET_KEY,
            algorithms=[settings.JWT_ALGORITHM],
        )
    except JWTError as exc:
        logger.warning("Rejected bearer token: %s", exc)
        return None

    subject = claims.get("sub")
    if not subject:
        logger.warning("Bearer token without subject")
        return None
    return AuthenticatedUser(uid=str(subject))


async def get_optional_caller(
    authorization: Optional[str] = Header(default=None),
) -> Optional[AuthenticatedUser]:
    """FastAPI dependency: the verified caller, or None."""
    if not authorization or not authorization.lower().startswith("bearer "):
        return None
    return verify_access_token(authorization.split(" ", 1)[1].strip())
