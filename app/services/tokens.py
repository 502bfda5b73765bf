import datetime as dt
import uuid

import jwt

from app.core.config import settings

ALGORITHM = "HS256"
ACCESS_DAYS = settings.access_token_days


def issue_access(user_id: str, email: str) -> str:
    now = dt.datetime.now(dt.timezone.utc)
    payload = {
        "sub": user_id,
        "email": email,
        "jti": str(uuid.uuid4()),
        "iat": now,
        "exp": now + dt.timedelta(days=ACCESS_DAYS),
        "iss": settings.jwt_iss,
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=ALGORITHM)


def decode_access(token: str) -> dict:
    """Raises ``jwt.InvalidTokenError`` for bad, expired or foreign tokens."""
    return jwt.decode(
        token,
        settings.jwt_secret,
        algorithms=[ALGORITHM],
        issuer=settings.jwt_iss,
        options={"require": ["sub", "exp", "iss"]},
    )
