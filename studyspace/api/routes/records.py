"""Read endpoints for saved study records, visited spaces and space feedback."""

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query

from studyspace.api.deps import CurrentUser, get_current_user, get_db_client
from studyspace.db.postgrest import PostgrestClient
from studyspace.services.materializer import FEEDBACK_TABLE, RECORD_TABLE

# View over study_record with the latest visit per space; row-level security
# limits it to the caller named by the forwarded credential.
VISITED_SPACES_VIEW = "visited_spaces"

router = APIRouter()

RECORD_COLUMNS = (
    "*,"
    "record_emotions(emotion_id,emotions(id,name)),"
    "record_mood_tags(mood_id,mood_tags(id,name)),"
    "feedback(*)"
)


@router.get("/records")
async def list_records(
    limit: int = Query(default=50, ge=1, le=500, description="Maximum number of records"),
    offset: int = Query(default=0, ge=0, description="Offset for pagination"),
    user: CurrentUser = Depends(get_current_user),
    db: PostgrestClient = Depends(get_db_client),
) -> dict[str, Any]:
    """The caller's study records, newest first."""
    rows = await db.select(
        RECORD_TABLE,
        columns=RECORD_COLUMNS,
        filters={"user_id": user.user_id},
        order="start_time.desc",
        limit=limit,
        offset=offset,
        credential=user.credential,
    )
    return {"success": True, "count": len(rows), "records": rows}


@router.get("/records/{record_id}")
async def get_record(
    record_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: PostgrestClient = Depends(get_db_client),
) -> dict[str, Any]:
    """One study record with its emotion, mood and feedback relations."""
    rows = await db.select(
        RECORD_TABLE,
        columns=RECORD_COLUMNS,
        filters={"id": record_id, "user_id": user.user_id},
        limit=1,
        credential=user.credential,
    )
    if not rows:
        raise HTTPException(status_code=404, detail="Record not found")
    return {"success": True, "record": rows[0]}


@router.get("/feedback")
async def list_feedback(
    space_id: str | None = Query(default=None, max_length=255, description="Filter by space"),
    user: CurrentUser = Depends(get_current_user),
    db: PostgrestClient = Depends(get_db_client),
) -> dict[str, Any]:
    """Feedback for a space, or every feedback row visible to the caller."""
    filters = {"space_id": space_id} if space_id else None
    rows = await db.select(FEEDBACK_TABLE, filters=filters, credential=user.credential)
    return {"success": True, "data": rows}


@router.get("/spaces/visited")
async def list_visited_spaces(
    from_: str | None = Query(default=None, alias="from", max_length=64, description="Earliest visit"),
    to: str | None = Query(default=None, max_length=64, description="Latest visit"),
    user: CurrentUser = Depends(get_current_user),
    db: PostgrestClient = Depends(get_db_client),
) -> dict[str, Any]:
    """Ids of spaces the caller studied in, optionally within a visit window."""
    rows = await db.select(
        VISITED_SPACES_VIEW,
        columns="space_id",
        ranges={"recent_visit": (from_, to)},
        credential=user.credential,
    )
    return {"success": True, "visited_spaces": [row["space_id"] for row in rows]}
