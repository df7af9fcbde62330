"""
Bearer tokens and PIN hashing.
"""
from passlib.context import CryptContext
from datetime import datetime, timedelta, timezone
from typing import Optional
import jwt
from backoffice.core.config import settings

TOKEN_TYPE = "access"

# Bcrypt cost is configurable; the test suite lowers it to keep lockout tests fast
pin_context = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=settings.PIN_BCRYPT_ROUNDS)


def hash_pin(pin: str) -> str:
    return pin_context.hash(pin)


def verify_pin(pin: str, pin_hash: Optional[str]) -> bool:
    """Constant-time check of a PIN against its stored hash; False when no hash is stored."""
    if not pin_hash:
        return False
    return pin_context.verify(pin, pin_hash)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """
    Sign a bearer token. `sub` must carry the user id.
    Tokens expire after ACCESS_TOKEN_EXPIRE_MINUTES unless expires_delta is given.
    """
    to_encode = data.copy()
    issued_at = datetime.now(timezone.utc)
    expire = issued_at + (expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"iat": issued_at, "exp": expire, "type": TOKEN_TYPE})
    return jwt.encode(to_encode, settings.APP_SECRET_STRING, algorithm=settings.ALGORITHM)


def verify_token(token: str) -> dict:
    """Decode a bearer token; raises jwt.PyJWTError when invalid, expired or not an access token."""
    payload = jwt.decode(token, settings.APP_SECRET_STRING, algorithms=[settings.ALGORITHM])
    if payload.get("type") != TOKEN_TYPE:
        raise jwt.InvalidTokenError("Not an access token")
    return payload
