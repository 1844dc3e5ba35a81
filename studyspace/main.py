"""StudySpace API Server - Main Entry Point"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from studyspace.api.middleware import AuthMiddleware, RequestLoggingMiddleware
from studyspace.api.routes import health, records, study_sessions
from studyspace.core.config import settings
from studyspace.core.exceptions import StudySpaceError, ValidationError
from studyspace.core.logging import get_logger, log_error, setup_logging
from studyspace.services.session_store import get_session_store

# Configure structured logging
setup_logging(
    level="DEBUG" if settings.debug else "INFO",
    json_logs=settings.environment == "production",
)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler."""
    logger.info(
        "Starting StudySpace API Server",
        extra={
            "event_type": "startup",
            "environment": settings.environment,
            "session_store_backend": settings.session_store_backend,
        },
    )

    store = get_session_store()
    if await store.ping():
        logger.info("Session store reachable")
    else:
        logger.warning("Session store not reachable at startup, session endpoints will fail until it is")

    yield

    logger.info("Shutting down StudySpace API Server", extra={"event_type": "shutdown"})


app = FastAPI(
    title="StudySpace API",
    description="Study session tracking",
    version="0.1.0",
    lifespan=lifespan,
)

# Middleware are processed in REVERSE order of addition
app.add_middleware(AuthMiddleware)
app.add_middleware(RequestLoggingMiddleware)

# CORS middleware - MUST be last to add so it processes FIRST
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(health.router, tags=["Health"])
app.include_router(study_sessions.router, prefix="/study-sessions", tags=["Study Sessions"])
app.include_router(records.router, tags=["Records"])


@app.exception_handler(StudySpaceError)
async def study_space_error_handler(request: Request, exc: StudySpaceError) -> JSONResponse:
    """Render domain errors with their code and status."""
    if exc.status_code >= 500:
        log_error(logger, "Domain error", error=exc, extra={"path": request.url.path})
    else:
        logger.info(
            f"{exc.code}: {exc.message}",
            extra={"event_type": "domain_error", "path": request.url.path},
        )
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def request_validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Render malformed request bodies and parameters like other validation errors."""
    error = ValidationError(
        "Invalid request",
        errors=[
            {"loc": list(item["loc"]), "msg": item["msg"], "type": item["type"]}
            for item in exc.errors()
        ],
    )
    return await study_space_error_handler(request, error)


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """HTTP exception handler."""
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail},
        headers=exc.headers,
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Global exception handler with full error logging."""
    log_error(
        logger,
        "Unhandled exception",
        error=exc,
        extra={
            "path": request.url.path,
            "method": request.method,
            "client_ip": request.client.host if request.client else "unknown",
        },
    )
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"},
    )


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint for basic connectivity check."""
    return {"status": "ok", "service": "studyspace-api"}
