"""Request logging middleware with request ID tracking."""

import time
import uuid
from collections.abc import Awaitable, Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from studyspace.core.logging import (
    clear_request_id,
    get_logger,
    log_error,
    set_request_id,
)

logger = get_logger(__name__)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Middleware for logging HTTP requests with request ID tracking."""

    async def dispatch(
        self,
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        """Process request and log details with request ID."""
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        set_request_id(request_id)

        client_host = request.client.host if request.client else "unknown"
        method = request.method
        path = request.url.path
        start_time = time.time()

        logger.info(
            f"Request started: {method} {path}",
            extra={
                "event_type": "request_started",
                "method": method,
                "path": path,
                "client_ip": client_host,
            },
        )

        try:
            response = await call_next(request)
            duration = time.time() - start_time

            claims = getattr(request.state, "user_claims", None) or {}
            logger.info(
                f"Request completed: {method} {path} - {response.status_code}",
                extra={
                    "event_type": "request_completed",
                    "method": method,
                    "path": path,
                    "status_code": response.status_code,
                    "duration_ms": round(duration * 1000, 2),
                    "user_id": claims.get("sub", "-"),
                },
            )

            response.headers["X-Request-ID"] = request_id
            return response

        except Exception as e:
            duration = time.time() - start_time
            log_error(
                logger,
                f"Request failed: {method} {path}",
                error=e,
                extra={
                    "event_type": "request_failed",
                    "method": method,
                    "path": path,
                    "duration_ms": round(duration * 1000, 2),
                    "client_ip": client_host,
                },
            )
            # Re-raise to let FastAPI handle it
            raise

        finally:
            clear_request_id()
