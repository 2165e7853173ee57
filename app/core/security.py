import time

import jwt

from app.core.config import get_settings

settings = get_settings()


def create_access_token(subject: str, role: str, expires_minutes: int | None = None) -> str:
    now = int(time.time())
    ttl = settings.access_token_expire_minutes if expires_minutes is None else expires_minutes
    payload = {
        "sub": str(subject),
        "role": role,
        "type": "access",
        "iat": now,
        "exp": now + int(ttl) * 60,
    }
    return jwt.encode(payload, settings.secret_key, algorithm=settings.jwt_algorithm)


def decode_token(token: str) -> dict:
    return jwt.decode(
        token,
        settings.secret_key,
        algorithms=[settings.jwt_algorithm],
        options={"require": ["exp", "iat", "sub"]},
    )
