"""
JWT token utilities for authentication.

This module provides functions for encoding and decoding the session
tokens handed out after a successful login.
"""

import uuid
from datetime import timedelta
from typing import Optional, Dict, Any
from jose import JWTError, jwt
from fintrack.app.core.clock import utcnow, to_timestamp
from fintrack.app.core.config import settings


def create_access_token(data: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
    """
    Create a JWT access token.

    Args:
        data: Data payload to encode in the token (should include: sub, user_id, role)
        expires_delta: Optional custom expiration time

    Returns:
        Encoded JWT token string

    Example payload:
        {
            "sub": "username",
            "user_id": 123,
            "uuid": "0b6f...",
            "role": "USER",
            "jti": "4f1c...",
            "exp": 1234567890
        }
    """
    to_encode = data.copy()
    issued_at = utcnow()

    if expires_delta:
        expire = issued_at + expires_delta
    else:
        expire = issued_at + timedelta(minutes=settings.access_token_expire_minutes)

    to_encode.update({
        "exp": expire,
        "iat": to_timestamp(issued_at),
        "jti": uuid.uuid4().hex,
    })
    encoded_jwt = jwt.encode(to_encode, settings.secret_key, algorithm=settings.algorithm)

    return encoded_jwt


def create_session_token(user) -> str:
    """Create the access token for an authenticated account."""
    return create_access_token(data={
        "sub": user.username,
        "user_id": user.id,
        "uuid": user.uuid,
        "role": user.role.value,
    })


def decode_access_token(token: str) -> Optional[Dict[str, Any]]:
    """
    Decode and validate a JWT access token.

    Args:
        token: JWT token string to decode

    Returns:
        Decoded token payload if valid (includes: sub, user_id, role, exp), None otherwise
    """
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
        return payload
    except JWTError:
        return None
