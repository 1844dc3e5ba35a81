"""API routes."""

from studyspace.api.routes import health, records, study_sessions

__all__ = [
    "health",
    "records",
    "study_sessions",
]
