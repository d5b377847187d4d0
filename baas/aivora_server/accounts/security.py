"""
Password hashing and access tokens.

Passwords are hashed with Argon2 through passlib. Access tokens are
HS256 JWTs whose payload identifies the account and its tenant:

    {"user": {"id": "<record id>", "tenant_id": "<tenant id>"}, "exp": ...}
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from jose import JWTError, jwt
from passlib.context import CryptContext

from ..errors import AuthenticationError

ALGORITHM = "HS256"
DEFAULT_TOKEN_TTL = timedelta(days=7)

pwd_context = CryptContext(schemes=["argon2"], deprecated="auto")


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: Optional[str]) -> bool:
    """Check a password against a stored hash.

    A missing or unrecognized hash never matches.
    """
    if not hashed_password:
        return False
    try:
        return pwd_context.verify(plain_password, hashed_password)
    except ValueError:
        return False


def create_access_token(
    user_id: str,
    tenant_id: Optional[str],
    secret: str,
    expires_delta: Optional[timedelta] = None,
) -> str:
    expire = datetime.now(timezone.utc) + (expires_delta or DEFAULT_TOKEN_TTL)
    to_encode = {"user": {"id": user_id, "tenant_id": tenant_id}, "exp": expire}
    return jwt.encode(to_encode, secret, algorithm=ALGORITHM)


def decode_access_token(token: str, secret: str) -> Dict[str, Any]:
    """Decode a token and return its "user" claim.

    Raises:
        AuthenticationError: If the token is invalid, expired or has no user claim
    """
    try:
        payload = jwt.decode(token, secret, algorithms=[ALGORITHM])
    except JWTError:
        raise AuthenticationError("Token is not valid")

    user = payload.get("user")
    if not isinstance(user, dict) or not user.get("id"):
        raise AuthenticationError("Token is not valid")
    return user
