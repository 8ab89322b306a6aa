"""
Bearer token utilities.

Tokens are HS256 JWTs carrying the user id (`sub`) and role. Credential
checks happen outside this service; tokens are minted by the bootstrap
script or by an administrator.
"""
from datetime import datetime, timedelta, timezone
import jwt
from fastapi import HTTPException, status

from app.core import config
from app.features.users.models import User


def create_access_token(user: User, expires_in: timedelta | None = None) -> str:
    """Issue a signed access token for the user."""
    now = datetime.now(timezone.utc)
    payload = {
        "sub": user.id,
        "role": user.role.value,
        "iat": now,
        "exp": now + (expires_in or timedelta(hours=config.JWT_EXPIRE_HOURS)),
    }
    return jwt.encode(payload, config.JWT_SECRET, algorithm=config.JWT_ALGORITHM)


def verify_jwt_token(token: str) -> dict:
    """
    Verify a JWT token and return payload.

    Args:
        token: JWT token from Authorization header

    Returns:
        Decoded JWT payload containing user information

    Raises:
        HTTPException: If token is invalid or expired
    """
    try:
        return jwt.decode(
            token,
            config.JWT_SECRET,
            algorithms=[config.JWT_ALGORITHM],
            options={"require": ["sub", "exp"]},
        )
    except jwt.ExpiredSignatureError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has expired",
            headers={"WWW-Authenticate": "Bearer"},
        )
    except jwt.InvalidTokenError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Invalid token: {str(e)}",
            headers={"WWW-Authenticate": "Bearer"},
        )
