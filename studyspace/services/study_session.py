"""Study session state machine.

States: active -> paused -> active ... and {active, paused} -> finished.
Finished is terminal for status and goal changes. Every guard runs against a
fresh read inside a store transaction, so a rejected operation never writes.
"""

import uuid
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from studyspace.core.datetime_utils import utc_now
from studyspace.core.exceptions import (
    AlreadyFinished,
    CapacityExceeded,
    IndexOutOfRange,
    InvalidTransition,
    NoSession,
    SessionAlreadyExists,
    ValidationError,
)
from studyspace.core.logging import get_logger
from studyspace.services.duration import calculate_duration
from studyspace.services.session_store import SessionStore
from studyspace.services.study_session_model import (
    MAX_GOALS,
    Goal,
    SessionStatus,
    StudySession,
)

logger = get_logger(__name__)


@dataclass
class PauseResult:
    last_paused_at: datetime
    accumulated_pause_seconds: float
    duration: float


@dataclass
class ResumeResult:
    resume_at: datetime
    accumulated_pause_seconds: float
    duration: float


@dataclass
class FinishResult:
    end_time: datetime
    duration: float
    record_id: str
    accumulated_pause_seconds: float


def normalize_goals(raw_goals: Any) -> list[Goal]:
    """Normalize client-supplied goals.

    Accepts plain strings or ``{"text", "done"}`` objects. The list is capped
    at ``MAX_GOALS`` entries, text is trimmed, and blank goals are dropped.
    """
    if raw_goals is None:
        return []
    if not isinstance(raw_goals, list):
        raise ValidationError("goals must be a list")

    goals: list[Goal] = []
    for item in raw_goals[:MAX_GOALS]:
        if isinstance(item, str):
            goals.append(Goal(text=item.strip()))
        elif isinstance(item, dict):
            text = item.get("text")
            done = item.get("done", False)
            goals.append(
                Goal(
                    text=text.strip() if isinstance(text, str) else "",
                    done=done if isinstance(done, bool) else False,
                )
            )
        else:
            raise ValidationError("each goal must be a string or an object with 'text'")
    return [goal for goal in goals if goal.text]


def normalize_mood_ids(raw_mood_ids: Any) -> list[str]:
    """Accept a list of mood ids (or a single id) and drop blanks and duplicates."""
    if raw_mood_ids is None:
        return []
    if isinstance(raw_mood_ids, str):
        raw_mood_ids = [raw_mood_ids]
    if not isinstance(raw_mood_ids, list) or not all(isinstance(m, str) for m in raw_mood_ids):
        raise ValidationError("mood_ids must be a list of strings")

    seen: list[str] = []
    for mood_id in raw_mood_ids:
        mood_id = mood_id.strip()
        if mood_id and mood_id not in seen:
            seen.append(mood_id)
    return seen


def _optional_text(value: Any, field_name: str) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{field_name} must be a non-empty string")
    return value.strip()


def _require_session(session: StudySession | None, user_id: str) -> StudySession:
    if session is None:
        raise NoSession("No study session in progress", user_id=user_id)
    return session


def _require_unfinished(session: StudySession, action: str) -> None:
    if session.is_finished:
        raise InvalidTransition(f"Cannot {action} on a finished session", status=session.status.value)


def _check_index(goals: list[Goal], index: Any) -> int:
    if isinstance(index, bool) or not isinstance(index, int) or not 0 <= index < len(goals):
        raise IndexOutOfRange(f"Invalid goal index: {index}", goal_count=len(goals))
    return index


class StudySessionService:
    """Drive the study session lifecycle for each user."""

    def __init__(
        self,
        store: SessionStore,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.store = store
        self.clock = clock

    async def start(
        self,
        user_id: str,
        goals: Any = None,
        mood_ids: Any = None,
        title: Any = None,
        space_id: Any = None,
    ) -> StudySession:
        """Create a new active session for ``user_id``."""
        normalized_goals = normalize_goals(goals)
        normalized_moods = normalize_mood_ids(mood_ids)
        clean_title = _optional_text(title, "title")
        clean_space_id = _optional_text(space_id, "space_id")

        def apply(current: StudySession | None) -> tuple[StudySession, StudySession]:
            if current is not None:
                raise SessionAlreadyExists("A study session already exists", status=current.status.value)
            session = StudySession(
                user_id=user_id,
                status=SessionStatus.ACTIVE,
                start_time=self.clock(),
                record_id=str(uuid.uuid4()),
                goals=normalized_goals,
                mood_ids=normalized_moods,
                title=clean_title,
                space_id=clean_space_id,
            )
            return session, session

        session = await self.store.transact(user_id, apply)
        logger.info(
            "Study session started",
            extra={
                "event_type": "session_started",
                "user_id": user_id,
                "record_id": session.record_id,
                "goal_count": len(session.goals),
            },
        )
        return session

    async def pause(self, user_id: str) -> PauseResult:
        """Move an active session to paused and cache its duration."""

        def apply(current: StudySession | None) -> tuple[StudySession, PauseResult]:
            session = _require_session(current, user_id)
            if session.status is not SessionStatus.ACTIVE:
                raise InvalidTransition(f"Session is {session.status.value}", status=session.status.value)

            now = self.clock()
            session.last_paused_at = now
            session.status = SessionStatus.PAUSED
            session.duration = calculate_duration(
                session.start_time, now, session.accumulated_pause_seconds
            )
            return session, PauseResult(now, session.accumulated_pause_seconds, session.duration)

        result = await self.store.transact(user_id, apply)
        logger.info("Study session paused", extra={"event_type": "session_paused", "user_id": user_id})
        return result

    async def resume(self, user_id: str) -> ResumeResult:
        """Move a paused session back to active, folding in the pause."""

        def apply(current: StudySession | None) -> tuple[StudySession, ResumeResult]:
            session = _require_session(current, user_id)
            if session.status is not SessionStatus.PAUSED:
                raise InvalidTransition(f"Session is {session.status.value}", status=session.status.value)

            now = self.clock()
            self._fold_pause(session, now)
            session.status = SessionStatus.ACTIVE
            session.duration = calculate_duration(
                session.start_time, now, session.accumulated_pause_seconds
            )
            return session, ResumeResult(now, session.accumulated_pause_seconds, session.duration)

        result = await self.store.transact(user_id, apply)
        logger.info(
            "Study session resumed",
            extra={
                "event_type": "session_resumed",
                "user_id": user_id,
                "accumulated_pause_seconds": result.accumulated_pause_seconds,
            },
        )
        return result

    async def finish(self, user_id: str) -> FinishResult:
        """Finish an active or paused session."""

        def apply(current: StudySession | None) -> tuple[StudySession, FinishResult]:
            session = _require_session(current, user_id)
            if session.is_finished:
                raise AlreadyFinished("Study session already finished")

            now = self.clock()
            if not session.record_id:
                # Hashes written before record ids were allocated at start.
                session.record_id = str(uuid.uuid4())
            if session.status is SessionStatus.PAUSED:
                self._fold_pause(session, now)
            session.end_time = now
            session.status = SessionStatus.FINISHED
            session.duration = calculate_duration(
                session.start_time, now, session.accumulated_pause_seconds
            )
            return session, FinishResult(
                end_time=now,
                duration=session.duration,
                record_id=session.record_id,
                accumulated_pause_seconds=session.accumulated_pause_seconds,
            )

        result = await self.store.transact(user_id, apply)
        logger.info(
            "Study session finished",
            extra={
                "event_type": "session_finished",
                "user_id": user_id,
                "record_id": result.record_id,
                "duration": result.duration,
            },
        )
        return result

    async def add_goal(self, user_id: str, text: Any, done: Any = False) -> tuple[list[Goal], Goal, int]:
        """Append a goal; returns the goals, the new goal and its index."""
        if not isinstance(text, str) or not text.strip():
            raise ValidationError("text is required and must be a non-empty string")
        if not isinstance(done, bool):
            raise ValidationError("done must be a boolean")
        goal = Goal(text=text.strip(), done=done)

        def apply(current: StudySession | None) -> tuple[StudySession, tuple[list[Goal], Goal, int]]:
            session = _require_session(current, user_id)
            _require_unfinished(session, "add goals")
            if len(session.goals) >= MAX_GOALS:
                raise CapacityExceeded(f"A session holds at most {MAX_GOALS} goals")
            session.goals.append(goal)
            return session, (list(session.goals), goal, len(session.goals) - 1)

        return await self.store.transact(user_id, apply)

    async def remove_goal(self, user_id: str, index: Any) -> tuple[list[Goal], Goal]:
        """Remove the goal at ``index``; returns the goals and the removed goal."""

        def apply(current: StudySession | None) -> tuple[StudySession, tuple[list[Goal], Goal]]:
            session = _require_session(current, user_id)
            _require_unfinished(session, "remove goals")
            removed = session.goals.pop(_check_index(session.goals, index))
            return session, (list(session.goals), removed)

        return await self.store.transact(user_id, apply)

    async def toggle_goal(self, user_id: str, index: Any, done: Any) -> tuple[list[Goal], Goal]:
        """Set the ``done`` flag of one goal."""
        if not isinstance(done, bool):
            raise ValidationError("done must be a boolean")

        def apply(current: StudySession | None) -> tuple[StudySession, tuple[list[Goal], Goal]]:
            session = _require_session(current, user_id)
            _require_unfinished(session, "update goals")
            goal = session.goals[_check_index(session.goals, index)]
            goal.done = done
            return session, (list(session.goals), goal)

        goals, goal = await self.store.transact(user_id, apply)
        logger.info(f"Goal {index} set to done={done}", extra={"event_type": "goal_toggled", "user_id": user_id})
        return goals, goal

    async def set_mood(self, user_id: str, mood_ids: Any) -> list[str]:
        """Replace the session's mood selection."""
        normalized = normalize_mood_ids(mood_ids)

        def apply(current: StudySession | None) -> tuple[StudySession, list[str]]:
            session = _require_session(current, user_id)
            _require_unfinished(session, "change mood")
            session.mood_ids = normalized
            return session, list(normalized)

        return await self.store.transact(user_id, apply)

    async def get(self, user_id: str) -> StudySession | None:
        """Current snapshot, or None when the user has no session."""
        return await self.store.load(user_id)

    async def abandon(self, user_id: str) -> None:
        """Drop the session whatever its state."""
        await self.store.delete(user_id)
        logger.info("Study session abandoned", extra={"event_type": "session_abandoned", "user_id": user_id})

    @staticmethod
    def _fold_pause(session: StudySession, now: datetime) -> None:
        # A negative interval (clock skew) must not shrink the accumulator.
        if session.last_paused_at is None:
            return
        paused_for = (now - session.last_paused_at).total_seconds()
        session.accumulated_pause_seconds += max(0.0, paused_for)
        session.last_paused_at = None
