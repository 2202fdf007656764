"""
Security utilities: JWT bearer tokens.

Tokens are issued by the identity provider in front of the service; this
module only signs tokens for tooling and tests and validates incoming ones.
"""
from datetime import datetime, timedelta, timezone
from typing import Optional, Union
from jose import jwt, JWTError
from fastapi import HTTPException, status
from fastapi.security import HTTPBearer
import enum

from app.core.config import settings

security = HTTPBearer()


def get_role_value(role: Union[str, enum.Enum]) -> str:
    """String value of a role given either as str or Enum."""
    if isinstance(role, str):
        return role
    if hasattr(role, 'value'):
        return role.value
    return str(role)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """Create JWT access token."""
    to_encode = data.copy()
    if "role" in to_encode:
        to_encode["role"] = get_role_value(to_encode["role"])
    now = datetime.now(timezone.utc)
    if expires_delta:
        expire = now + expires_delta
    else:
        expire = now + timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    to_encode.update({"exp": expire, "iat": now})
    encoded_jwt = jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.JWT_ALGORITHM)
    return encoded_jwt


def decode_token(token: str) -> dict:
    """Decode and validate JWT token."""
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
        return payload
    except JWTError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )

