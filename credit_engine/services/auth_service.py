# FILE: credit_engine/services/auth_service.py
"""Password hashing and the bearer tokens handed out by /api/auth."""

import bcrypt
import jwt
from datetime import datetime, timezone, timedelta

from credit_engine.core.config import JWT_SECRET, JWT_ALGORITHM, JWT_EXPIRATION_HOURS


class TokenError(Exception):
    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, hashed: str) -> bool:
    # imported or hand-edited rows may hold something that is not a bcrypt hash
    try:
        return bcrypt.checkpw(password.encode("utf-8"), (hashed or "").encode("utf-8"))
    except ValueError:
        return False


def create_token(
        user_id: str,
        email: str,
        secret: str = JWT_SECRET,
        is_admin: bool = False,
        expires_hours: int = JWT_EXPIRATION_HOURS,
) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "sub": user_id,
        "user_id": user_id,
        "email": email,
        "admin": bool(is_admin),
        "iat": now,
        "exp": now + timedelta(hours=expires_hours),
    }
    return jwt.encode(payload, secret, algorithm=JWT_ALGORITHM)


def decode_token(token: str, secret: str = JWT_SECRET) -> str:
    """Returns the user id a token was issued for; raises TokenError otherwise."""
    try:
        payload = jwt.decode(token.strip(), secret, algorithms=[JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise TokenError("Token expired")
    except jwt.InvalidTokenError:
        raise TokenError("Invalid token")

    user_id = payload.get("sub") or payload.get("user_id")
    if not user_id or not isinstance(user_id, str):
        raise TokenError("Invalid token payload")
    return user_id
