"""Password hashing and organization-scoped JWT access tokens."""

from datetime import UTC, datetime, timedelta
from typing import Any

import bcrypt
import jwt

from app.core.config import settings

BCRYPT_ROUNDS = 12
# bcrypt only looks at the first 72 bytes of a password.
BCRYPT_MAX_BYTES = 72

USERNAME_MIN_LEN = 1
USERNAME_MAX_LEN = 255
PASSWORD_MIN_LEN = 8
PASSWORD_MAX_LEN = 128

# Claims every access token must carry.
REQUIRED_CLAIMS = ["sub", "org", "exp", "iat"]


def _password_bytes(plain_password: str) -> bytes:
    return plain_password.encode("utf-8")[:BCRYPT_MAX_BYTES]


def hash_password(plain_password: str) -> str:
    return bcrypt.hashpw(
        _password_bytes(plain_password), bcrypt.gensalt(rounds=BCRYPT_ROUNDS)
    ).decode("utf-8")


def verify_password(plain_password: str, hashed: str) -> bool:
    """False for a wrong password or a malformed stored hash."""
    try:
        return bcrypt.checkpw(_password_bytes(plain_password), hashed.encode("utf-8"))
    except (ValueError, TypeError):
        return False


def access_token_ttl() -> timedelta:
    return timedelta(minutes=settings.JWT_EXPIRE_MINUTES)


def create_access_token(sub: str | int, role: str, organization_id: str) -> str:
    """
    Signed token for one user. The organization is embedded so a token stops working if the
    user is moved to another organization.
    """
    now = datetime.now(UTC)
    payload: dict[str, Any] = {
        "sub": str(sub),
        "role": role,
        "org": organization_id,
        "iat": now,
        "exp": now + access_token_ttl(),
    }
    return jwt.encode(
        payload,
        settings.JWT_SECRET.get_secret_value(),
        algorithm=settings.JWT_ALGORITHM,
    )


def decode_access_token(token: str) -> dict[str, Any]:
    """
    Verify signature, expiry and required claims; return the payload.
    Raises jwt.PyJWTError on any failure.
    """
    return jwt.decode(
        token,
        settings.JWT_SECRET.get_secret_value(),
        algorithms=[settings.JWT_ALGORITHM],
        options={"require": REQUIRED_CLAIMS},
    )
