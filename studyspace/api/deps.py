"""API dependencies."""

from dataclasses import dataclass

from fastapi import Depends, Request

from studyspace.api.middleware.auth import authenticate_header
from studyspace.db.postgrest import PostgrestClient, get_postgrest_client
from studyspace.services.materializer import RecordMaterializer
from studyspace.services.session_store import SessionStore, get_session_store
from studyspace.services.study_session import StudySessionService


@dataclass
class CurrentUser:
    """Authenticated caller."""

    user_id: str
    credential: str


async def get_current_user(request: Request) -> CurrentUser:
    """Caller identity set by AuthMiddleware, verified here if the middleware was skipped."""
    claims = getattr(request.state, "user_claims", None)
    authorization = getattr(request.state, "authorization", None)
    if claims is None:
        authorization = request.headers.get("Authorization")
        claims = authenticate_header(authorization)
    return CurrentUser(user_id=str(claims["sub"]), credential=authorization or "")


def get_store() -> SessionStore:
    """Get session store dependency."""
    return get_session_store()


def get_db_client() -> PostgrestClient:
    """Get persistence client dependency."""
    return get_postgrest_client()


def get_session_service(store: SessionStore = Depends(get_store)) -> StudySessionService:
    """Get study session service dependency."""
    return StudySessionService(store)


def get_materializer(
    db: PostgrestClient = Depends(get_db_client),
    store: SessionStore = Depends(get_store),
) -> RecordMaterializer:
    """Get record materializer dependency."""
    return RecordMaterializer(db, store)
