"""
JWT helpers for identifying the acting user.

Login and token issuance belong to the authentication service; this API
only needs to verify a bearer token and read its subject. Tokens are
signed with SECRET_KEY using HS256 and carry:
  - "sub": the user id (as a string), the standard JWT subject claim
  - "exp": expiry timestamp, after which the token is rejected

create_access_token is kept for operational tooling and the test suite,
which mint tokens for seeded users.
"""

from datetime import datetime, timedelta, timezone

from jose import jwt

from campus_points.config import settings


def create_access_token(data: dict, expires_delta: timedelta | None = None) -> str:
    """
    Create a signed JWT access token.

    Args:
        data: Dictionary of claims to encode (must include "sub").
        expires_delta: Optional custom expiration time. Defaults to
                       ACCESS_TOKEN_EXPIRE_MINUTES from settings.

    Returns:
        An encoded JWT string.
    """
    to_encode = data.copy()

    if expires_delta:
        expire = datetime.now(timezone.utc) + expires_delta
    else:
        expire = datetime.now(timezone.utc) + timedelta(
            minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES
        )

    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_access_token(token: str) -> dict:
    """
    Decode and verify a JWT access token.

    Raises:
        JWTError: If the token is expired, tampered with, or invalid.
    """
    return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
