"""Turn a finished study session into persistent records.

The persistence service has no cross-table transaction we can use, so the
steps run as a saga: each write that succeeds pushes an undo action, and a
failure after the record exists replays those undo actions in reverse order.
The session is deleted from the store only after every write succeeded, so
until then the operation can simply be retried (the record id is stable).
The delete is conditional on the record id, so a session started while the
writes were in flight survives.
"""

import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from studyspace.core.exceptions import (
    CompensationFailure,
    InvalidTransition,
    NoSession,
    PartialMaterializationFailure,
    PersistenceFailure,
    ValidationError,
)
from studyspace.core.logging import get_logger, log_error
from studyspace.db.postgrest import PostgrestClient, Row
from studyspace.services.label_resolver import LabelResolver
from studyspace.services.session_store import SessionStore
from studyspace.services.study_session_model import StudySession

logger = get_logger(__name__)

SPACES_TABLE = "spaces"
RECORD_TABLE = "study_record"
FEEDBACK_TABLE = "feedback"
EMOTIONS_TABLE = "emotions"
RECORD_EMOTIONS_TABLE = "record_emotions"
MOOD_TAGS_TABLE = "mood_tags"
RECORD_MOODS_TABLE = "record_mood_tags"

SCORE_FIELDS = ("wifi_score", "noise_level", "crowdness")


@dataclass
class FeedbackFields:
    """Environment ratings for a space. Scores are 1-5, power is yes/no."""

    wifi_score: int | None = None
    power: bool | None = None
    noise_level: int | None = None
    crowdness: int | None = None

    def __post_init__(self) -> None:
        for name in SCORE_FIELDS:
            value = getattr(self, name)
            if value is None:
                continue
            if isinstance(value, bool) or not isinstance(value, int) or not 1 <= value <= 5:
                raise ValidationError(f"{name} must be an integer between 1 and 5")
        if self.power is not None and not isinstance(self.power, bool):
            raise ValidationError("power must be a boolean")

    def is_empty(self) -> bool:
        return all(getattr(self, name) is None for name in (*SCORE_FIELDS, "power"))

    def to_row(self) -> Row:
        return {
            "wifi_score": self.wifi_score,
            "power": self.power,
            "noise_level": self.noise_level,
            "crowdness": self.crowdness,
        }


@dataclass
class MaterializedRecord:
    """Summary of what was written for a session."""

    record: Row
    feedback_id: str | None = None
    emotion_ids: list[str] = field(default_factory=list)
    mood_ids: list[str] = field(default_factory=list)
    unresolved_emotions: list[str] = field(default_factory=list)
    unresolved_moods: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            **self.record,
            "feedback_id": self.feedback_id,
            "emotion_ids": self.emotion_ids,
            "mood_ids": self.mood_ids,
            "unresolved_emotions": self.unresolved_emotions,
            "unresolved_moods": self.unresolved_moods,
        }


UndoAction = tuple[str, Callable[[], Awaitable[Any]]]


class RecordMaterializer:
    """Persist finished sessions as study records with their relations."""

    def __init__(
        self,
        db: PostgrestClient,
        store: SessionStore,
        emotion_resolver: LabelResolver | None = None,
        mood_resolver: LabelResolver | None = None,
    ) -> None:
        self.db = db
        self.store = store
        self.emotion_resolver = emotion_resolver or LabelResolver(db, EMOTIONS_TABLE)
        self.mood_resolver = mood_resolver or LabelResolver(db, MOOD_TAGS_TABLE)

    async def materialize(
        self,
        user_id: str,
        session: StudySession,
        *,
        feedback: FeedbackFields | None = None,
        emotion_labels: list[str] | None = None,
        mood_labels: list[str] | None = None,
        space_id: str | None = None,
        title: str | None = None,
        credential: str | None = None,
    ) -> MaterializedRecord:
        """Write the record, feedback and tag relations, then drop the session.

        Raises:
            InvalidTransition: session is not finished
            ValidationError: no space id from the caller or the session
            PersistenceFailure: a write failed before the record existed
            PartialMaterializationFailure: a later write failed, rows rolled back
            CompensationFailure: the rollback itself failed
        """
        if not session.is_finished:
            raise InvalidTransition("Session must be finished before saving", status=session.status.value)
        space_id = (space_id or session.space_id or "").strip()
        if not space_id:
            raise ValidationError("space_id is required to save a study record")
        feedback = feedback or FeedbackFields()
        if not session.record_id:
            session = await self._claim_record_id(user_id, session)

        await self.db.upsert(
            SPACES_TABLE,
            {"id": space_id},
            on_conflict="id",
            ignore_duplicates=True,
            credential=credential,
        )

        record_row = self._record_row(user_id, session, space_id, title)
        stored = await self.db.upsert(RECORD_TABLE, record_row, on_conflict="id", credential=credential)
        record_id = session.record_id

        undo: list[UndoAction] = [
            (
                "delete study record",
                lambda: self.db.delete(RECORD_TABLE, filters={"id": record_id}, credential=credential),
            )
        ]
        try:
            result = MaterializedRecord(record=stored[0] if stored else record_row)

            if not feedback.is_empty():
                result.feedback_id = await self._resolve_feedback(user_id, space_id, feedback, credential, undo)

            emotions = await self.emotion_resolver.resolve(emotion_labels, credential)
            result.emotion_ids = emotions.ids
            result.unresolved_emotions = emotions.not_found
            if emotions.ids:
                await self._link(
                    RECORD_EMOTIONS_TABLE, "emotion_id", record_id, emotions.ids, credential, undo
                )

            moods = await self.mood_resolver.resolve(mood_labels, credential)
            result.mood_ids = moods.ids
            result.unresolved_moods = moods.not_found
            if moods.ids:
                await self._link(RECORD_MOODS_TABLE, "mood_id", record_id, moods.ids, credential, undo)

            if result.feedback_id:
                await self.db.update(
                    RECORD_TABLE,
                    {"feedback_id": result.feedback_id},
                    filters={"id": record_id},
                    credential=credential,
                )
                result.record = {**result.record, "feedback_id": result.feedback_id}
        except Exception as e:
            await self._compensate(record_id, undo, e)
            raise PartialMaterializationFailure(
                f"Saving study record failed and was rolled back: {e}",
                record_id=record_id,
            ) from e

        if not await self.store.delete_if(user_id, record_id):
            logger.warning(
                "Session replaced while saving, leaving the new one in place",
                extra={"event_type": "session_replaced", "user_id": user_id, "record_id": record_id},
            )
        logger.info(
            "Study session saved as record",
            extra={
                "event_type": "session_materialized",
                "user_id": user_id,
                "record_id": record_id,
                "emotion_count": len(result.emotion_ids),
                "mood_count": len(result.mood_ids),
            },
        )
        return result

    async def _claim_record_id(self, user_id: str, session: StudySession) -> StudySession:
        """Give a session stored without a record id one, persisted before any write."""

        def apply(current: StudySession | None) -> tuple[StudySession, StudySession]:
            if current is None or current.start_time != session.start_time:
                raise NoSession("Study session no longer exists", user_id=user_id)
            if not current.record_id:
                current.record_id = str(uuid.uuid4())
            return current, current

        claimed = await self.store.transact(user_id, apply)
        logger.info(
            "Assigned record id to stored session",
            extra={"event_type": "record_id_assigned", "user_id": user_id, "record_id": claimed.record_id},
        )
        return claimed

    @staticmethod
    def _record_row(user_id: str, session: StudySession, space_id: str, title: str | None) -> Row:
        return {
            "id": session.record_id,
            "user_id": user_id,
            "space_id": space_id,
            "title": title if title is not None else session.title,
            "duration": session.duration,
            "start_time": session.start_time.isoformat(),
            "end_time": session.end_time.isoformat() if session.end_time else None,
            "goals": [goal.to_dict() for goal in session.goals],
        }

    async def _resolve_feedback(
        self,
        user_id: str,
        space_id: str,
        feedback: FeedbackFields,
        credential: str | None,
        undo: list[UndoAction],
    ) -> str:
        """Update the user's feedback for the space, or insert it."""
        existing = await self.db.select(
            FEEDBACK_TABLE,
            filters={"user_id": user_id, "space_id": space_id},
            limit=1,
            credential=credential,
        )
        values = feedback.to_row()

        if existing:
            previous = existing[0]
            feedback_id = str(previous["id"])
            await self.db.update(FEEDBACK_TABLE, values, filters={"id": feedback_id}, credential=credential)
            restore = {name: previous.get(name) for name in values}
            undo.append(
                (
                    "restore feedback",
                    lambda: self.db.update(
                        FEEDBACK_TABLE, restore, filters={"id": feedback_id}, credential=credential
                    ),
                )
            )
            return feedback_id

        rows = await self.db.insert(
            FEEDBACK_TABLE,
            {"user_id": user_id, "space_id": space_id, **values},
            credential=credential,
        )
        if not rows:
            raise PersistenceFailure("feedback insert returned no row", table=FEEDBACK_TABLE)
        new_id = str(rows[0]["id"])
        undo.append(
            (
                "delete feedback",
                lambda: self.db.delete(FEEDBACK_TABLE, filters={"id": new_id}, credential=credential),
            )
        )
        return new_id

    async def _link(
        self,
        table: str,
        column: str,
        record_id: str,
        ids: list[str],
        credential: str | None,
        undo: list[UndoAction],
    ) -> None:
        # Registered first: a failed bulk insert may still have written some rows.
        undo.append(
            (
                f"delete {table} rows",
                lambda: self.db.delete(table, filters={"record_id": record_id}, credential=credential),
            )
        )
        await self.db.upsert(
            table,
            [{"record_id": record_id, column: value} for value in ids],
            on_conflict=f"record_id,{column}",
            ignore_duplicates=True,
            credential=credential,
        )

    async def _compensate(self, record_id: str, undo: list[UndoAction], cause: Exception) -> None:
        log_error(
            logger,
            "Study record materialization failed, rolling back",
            error=cause,
            extra={"record_id": record_id, "undo_steps": len(undo)},
        )
        failed: list[str] = []
        for description, action in reversed(undo):
            try:
                await action()
            except Exception as e:
                log_error(
                    logger,
                    f"Rollback step failed: {description}",
                    error=e,
                    extra={"record_id": record_id},
                )
                failed.append(description)

        if failed:
            raise CompensationFailure(
                "Rollback incomplete, persistent rows may be left behind",
                record_id=record_id,
                failed_steps=failed,
            ) from cause
        logger.warning(
            "Rolled back partial study record",
            extra={"event_type": "materialization_rolled_back", "record_id": record_id},
        )
