"""Bearer token authentication middleware.

Every API request must carry ``Authorization: Bearer <jwt>`` issued by the
hosted auth service. Verified claims are stored on ``request.state`` and the
raw header is kept so it can be forwarded to the persistence service.
"""

from typing import Any

from fastapi import HTTPException, Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from studyspace.core.logging import get_logger, log_security_event
from studyspace.core.security import decode_access_token, extract_bearer_token

logger = get_logger(__name__)

# Paths that don't require authentication
EXEMPT_PATHS = {
    "/",
    "/health",
    "/docs",
    "/openapi.json",
    "/redoc",
}


def is_path_exempt(path: str) -> bool:
    """Check if a path is exempt from authentication."""
    return path in EXEMPT_PATHS


def authenticate_header(authorization: str | None) -> dict[str, Any]:
    """Verify an Authorization header value and return the token claims."""
    return decode_access_token(extract_bearer_token(authorization))


class AuthMiddleware(BaseHTTPMiddleware):
    """Middleware to validate bearer tokens on all requests."""

    async def dispatch(self, request: Request, call_next: Any) -> Response:
        # Skip auth for OPTIONS requests (CORS preflight)
        if request.method == "OPTIONS" or is_path_exempt(request.url.path):
            return await call_next(request)

        authorization = request.headers.get("Authorization")
        try:
            claims = authenticate_header(authorization)
        except HTTPException as e:
            log_security_event(
                logger,
                "API authentication failed",
                details={
                    "path": request.url.path,
                    "method": request.method,
                    "client_ip": request.client.host if request.client else "unknown",
                    "has_token": authorization is not None,
                },
            )
            return JSONResponse(
                status_code=e.status_code,
                content={"detail": e.detail},
                headers=e.headers,
            )

        request.state.user_claims = claims
        request.state.authorization = authorization
        return await call_next(request)
