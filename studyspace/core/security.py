"""Security utilities.

Users authenticate against the hosted auth service; this API only verifies the
bearer tokens it issued. The ``sub`` claim is the user id.
"""

from datetime import UTC, datetime, timedelta
from typing import Any
from uuid import UUID

from fastapi import HTTPException
from jose import JWTError, jwt

from studyspace.core.config import settings
from studyspace.core.logging import get_logger, log_security_event

logger = get_logger(__name__)


def create_access_token(
    subject: str | Any,
    expires_delta: timedelta | None = None,
    secret: str | None = None,
) -> str:
    """Create a JWT access token in the auth service's format."""
    expire = datetime.now(UTC) + (expires_delta or timedelta(hours=1))
    to_encode = {
        "exp": expire,
        "sub": str(subject),
        "aud": settings.jwt_audience,
        "role": "authenticated",
    }
    encoded_jwt: str = jwt.encode(
        to_encode,
        secret or settings.supabase_jwt_secret,
        algorithm=settings.jwt_algorithm,
    )
    return encoded_jwt


def extract_bearer_token(authorization: str | None) -> str:
    """Return the token part of an ``Authorization: Bearer ...`` header."""
    if not authorization:
        raise HTTPException(
            status_code=401,
            detail="Missing bearer token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise HTTPException(
            status_code=401,
            detail="Malformed authorization header",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return token.strip()


def decode_access_token(token: str) -> dict[str, Any]:
    """Verify signature, expiry and audience; return the claims.

    Raises:
        HTTPException: 403 if the token is invalid
    """
    if not settings.supabase_jwt_secret:
        log_security_event(logger, "Token rejected: JWT secret not configured", level="ERROR")
        raise HTTPException(status_code=403, detail="Invalid token")

    try:
        claims: dict[str, Any] = jwt.decode(
            token,
            settings.supabase_jwt_secret,
            algorithms=[settings.jwt_algorithm],
            audience=settings.jwt_audience,
        )
    except JWTError as e:
        log_security_event(
            logger,
            "Token verification failed",
            details={"reason": type(e).__name__},
        )
        raise HTTPException(status_code=403, detail="Invalid token") from e

    if not claims.get("sub"):
        log_security_event(logger, "Token without subject", details={"reason": "missing_sub"})
        raise HTTPException(status_code=403, detail="Invalid token")
    return claims


def is_valid_uuid_format(value: str) -> bool:
    """
    Check if a string is in valid UUID format.

    Args:
        value: String to check

    Returns:
        True if valid UUID format, False otherwise
    """
    try:
        UUID(value)
        return True
    except (ValueError, AttributeError, TypeError):
        return False
