"""Application configuration."""

import logging
from functools import lru_cache

from pydantic import model_validator
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Redis (session store)
    redis_url: str = "redis://localhost:6379"
    session_store_backend: str = "redis"
    session_key_prefix: str = "sessions"
    session_write_retries: int = 5

    # Hosted Postgres (PostgREST interface)
    supabase_url: str = "http://localhost:54321"
    supabase_anon_key: str = ""
    persistence_timeout: float = 10.0

    # Auth - tokens are issued by the hosted auth service
    supabase_jwt_secret: str = ""
    jwt_algorithm: str = "HS256"
    jwt_audience: str = "authenticated"

    # CORS - stored as comma-separated string, parsed via property
    allowed_origins_str: str = "http://localhost:5173,http://localhost:3000"

    @property
    def allowed_origins(self) -> list[str]:
        """Parse allowed_origins from comma-separated string."""
        return [origin.strip() for origin in self.allowed_origins_str.split(",") if origin.strip()]

    @property
    def rest_url(self) -> str:
        """Base URL of the PostgREST endpoint."""
        return self.supabase_url.rstrip("/") + "/rest/v1"

    # App settings
    debug: bool = False
    environment: str = "development"

    @model_validator(mode="after")
    def validate_jwt_secret(self) -> "Settings":
        """Validate SUPABASE_JWT_SECRET based on environment."""
        if not self.supabase_jwt_secret:
            if self.environment.lower() in ("production", "prod"):
                raise ValueError(
                    "SUPABASE_JWT_SECRET must be set via environment variable in production."
                )
            logger.warning(
                "SUPABASE_JWT_SECRET not set - every bearer token will be rejected. "
                "Set SUPABASE_JWT_SECRET to the project's JWT secret."
            )

        if self.session_store_backend not in ("redis", "memory"):
            raise ValueError(
                f"SESSION_STORE_BACKEND must be 'redis' or 'memory', got {self.session_store_backend!r}"
            )

        return self

    class Config:
        env_file = ".env"
        case_sensitive = False


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
