"""Study session endpoints."""

from typing import Any

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field, StrictBool, StrictInt

from studyspace.api.deps import (
    CurrentUser,
    get_current_user,
    get_materializer,
    get_session_service,
)
from studyspace.core.exceptions import NoSession
from studyspace.services.materializer import FeedbackFields, RecordMaterializer
from studyspace.services.study_session import StudySessionService

router = APIRouter()


class StartSessionRequest(BaseModel):
    """Start session request schema."""

    goals: list[str | dict[str, Any]] | None = None
    mood_ids: list[str] | None = None
    mood_id: str | None = Field(default=None, description="Single mood id (older clients)")
    title: str | None = None
    space_id: str | None = None


class AddGoalRequest(BaseModel):
    """Add goal request schema."""

    text: str | None = None
    done: StrictBool = False


class ToggleGoalRequest(BaseModel):
    """Toggle goal request schema."""

    done: StrictBool


class SetMoodRequest(BaseModel):
    """Set mood request schema."""

    mood_ids: list[str] = Field(default_factory=list)


class SessionToRecordRequest(BaseModel):
    """Save-session-as-record request schema."""

    title: str | None = None
    emotion_tag_ids: list[str] = Field(default_factory=list, description="Emotion labels or ids")
    mood_ids: list[str] | None = Field(default=None, description="Overrides the session's mood selection")
    wifi_score: StrictInt | None = None
    noise_level: StrictInt | None = None
    crowdness: StrictInt | None = None
    power: StrictBool | None = None
    space_id: str | None = None


@router.post("/start")
async def start_session(
    body: StartSessionRequest,
    user: CurrentUser = Depends(get_current_user),
    service: StudySessionService = Depends(get_session_service),
) -> dict[str, Any]:
    """Start a study session for the caller."""
    mood_ids = body.mood_ids if body.mood_ids is not None else body.mood_id
    session = await service.start(
        user.user_id,
        goals=body.goals,
        mood_ids=mood_ids,
        title=body.title,
        space_id=body.space_id,
    )
    return {
        "success": True,
        "start_time": session.start_time.isoformat(),
        "session": {
            "goals": [goal.to_dict() for goal in session.goals],
            "mood_ids": session.mood_ids,
            "title": session.title,
            "space_id": session.space_id,
            "record_id": session.record_id,
        },
    }


@router.get("/pause")
async def pause_session(
    user: CurrentUser = Depends(get_current_user),
    service: StudySessionService = Depends(get_session_service),
) -> dict[str, Any]:
    """Pause the running session."""
    result = await service.pause(user.user_id)
    return {
        "success": True,
        "last_paused_at": result.last_paused_at.isoformat(),
        "accumulated_pause_seconds": result.accumulated_pause_seconds,
        "duration": result.duration,
    }


@router.get("/resume")
async def resume_session(
    user: CurrentUser = Depends(get_current_user),
    service: StudySessionService = Depends(get_session_service),
) -> dict[str, Any]:
    """Resume a paused session."""
    result = await service.resume(user.user_id)
    return {
        "success": True,
        "resume_at": result.resume_at.isoformat(),
        "accumulated_pause_seconds": result.accumulated_pause_seconds,
        "duration": result.duration,
    }


@router.get("/finish")
async def finish_session(
    user: CurrentUser = Depends(get_current_user),
    service: StudySessionService = Depends(get_session_service),
) -> dict[str, Any]:
    """Stop the timer. The session stays in the store until it is saved."""
    result = await service.finish(user.user_id)
    return {
        "success": True,
        "end_time": result.end_time.isoformat(),
        "duration": result.duration,
        "accumulated_pause_seconds": result.accumulated_pause_seconds,
        "record_id": result.record_id,
    }


@router.post("/goals", status_code=status.HTTP_201_CREATED)
async def add_goal(
    body: AddGoalRequest,
    user: CurrentUser = Depends(get_current_user),
    service: StudySessionService = Depends(get_session_service),
) -> dict[str, Any]:
    """Append a goal to the session checklist."""
    goals, goal, index = await service.add_goal(user.user_id, body.text, body.done)
    return {
        "success": True,
        "goals": [g.to_dict() for g in goals],
        "added_goal": goal.to_dict(),
        "index": index,
    }


@router.patch("/goals/{index}")
async def toggle_goal(
    index: int,
    body: ToggleGoalRequest,
    user: CurrentUser = Depends(get_current_user),
    service: StudySessionService = Depends(get_session_service),
) -> dict[str, Any]:
    """Mark a goal done or not done."""
    goals, goal = await service.toggle_goal(user.user_id, index, body.done)
    return {
        "success": True,
        "goals": [g.to_dict() for g in goals],
        "updated_goal": {"index": index, **goal.to_dict()},
    }


@router.delete("/goals/{index}")
async def remove_goal(
    index: int,
    user: CurrentUser = Depends(get_current_user),
    service: StudySessionService = Depends(get_session_service),
) -> dict[str, Any]:
    """Remove a goal from the checklist."""
    goals, removed = await service.remove_goal(user.user_id, index)
    return {
        "success": True,
        "goals": [g.to_dict() for g in goals],
        "removed_goal": {"index": index, **removed.to_dict()},
    }


@router.put("/mood")
async def set_mood(
    body: SetMoodRequest,
    user: CurrentUser = Depends(get_current_user),
    service: StudySessionService = Depends(get_session_service),
) -> dict[str, Any]:
    """Replace the session's mood selection."""
    mood_ids = await service.set_mood(user.user_id, body.mood_ids)
    return {"success": True, "mood_ids": mood_ids}


@router.get("/user-session")
async def get_user_session(
    user: CurrentUser = Depends(get_current_user),
    service: StudySessionService = Depends(get_session_service),
) -> dict[str, Any]:
    """Current session snapshot; ``data`` is null when there is none."""
    session = await service.get(user.user_id)
    return {"success": True, "data": session.to_dict() if session else None}


@router.get("/quit")
async def quit_session(
    user: CurrentUser = Depends(get_current_user),
    service: StudySessionService = Depends(get_session_service),
) -> dict[str, Any]:
    """Discard the session without saving it."""
    await service.abandon(user.user_id)
    return {"success": True}


@router.post("/session-to-record")
async def session_to_record(
    body: SessionToRecordRequest,
    user: CurrentUser = Depends(get_current_user),
    service: StudySessionService = Depends(get_session_service),
    materializer: RecordMaterializer = Depends(get_materializer),
) -> dict[str, Any]:
    """Save the finished session as a study record and clear it."""
    feedback = FeedbackFields(
        wifi_score=body.wifi_score,
        power=body.power,
        noise_level=body.noise_level,
        crowdness=body.crowdness,
    )
    session = await service.get(user.user_id)
    if session is None:
        raise NoSession("No study session to save", user_id=user.user_id)

    result = await materializer.materialize(
        user.user_id,
        session,
        feedback=feedback,
        emotion_labels=body.emotion_tag_ids,
        mood_labels=body.mood_ids if body.mood_ids is not None else session.mood_ids,
        space_id=body.space_id,
        title=body.title,
        credential=user.credential,
    )
    return {"success": True, "data": result.to_dict()}
