"""API middleware."""

from studyspace.api.middleware.auth import AuthMiddleware, authenticate_header
from studyspace.api.middleware.request_logging import RequestLoggingMiddleware

__all__ = [
    "AuthMiddleware",
    "authenticate_header",
    "RequestLoggingMiddleware",
]
