"""Typed study session and its Redis hash encoding.

The session lives in Redis as a flat hash of strings. Nested values (goals,
mood ids) are JSON text inside single fields. Everything above the store works
with the dataclasses below; encoding happens only in ``to_hash``/``from_hash``.
"""

import json
import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from studyspace.core.datetime_utils import ensure_utc

logger = logging.getLogger(__name__)

MAX_GOALS = 10


class SessionStatus(str, Enum):
    """Lifecycle states of a study session."""

    ACTIVE = "active"
    PAUSED = "paused"
    FINISHED = "finished"


@dataclass
class Goal:
    """One entry of the session checklist."""

    text: str
    done: bool = False

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return asdict(self)


@dataclass
class StudySession:
    """In-progress study timer for a single user."""

    user_id: str
    status: SessionStatus
    start_time: datetime
    record_id: str
    goals: list[Goal] = field(default_factory=list)
    mood_ids: list[str] = field(default_factory=list)
    title: str | None = None
    space_id: str | None = None
    last_paused_at: datetime | None = None
    accumulated_pause_seconds: float = 0.0
    duration: float = 0.0
    end_time: datetime | None = None
    version: int = 0

    @property
    def is_finished(self) -> bool:
        return self.status is SessionStatus.FINISHED

    def to_hash(self) -> dict[str, str]:
        """Encode every field as a string for HSET."""
        return {
            "user_id": self.user_id,
            "status": self.status.value,
            "start_time": self.start_time.isoformat(),
            "record_id": self.record_id,
            "goals": json.dumps([goal.to_dict() for goal in self.goals], ensure_ascii=False),
            "mood_ids": json.dumps(self.mood_ids, ensure_ascii=False),
            "title": self.title or "",
            "space_id": self.space_id or "",
            "last_paused_at": self.last_paused_at.isoformat() if self.last_paused_at else "",
            "accumulated_pause_seconds": repr(float(self.accumulated_pause_seconds)),
            "duration": repr(float(self.duration)),
            "end_time": self.end_time.isoformat() if self.end_time else "",
            "version": str(self.version),
        }

    @classmethod
    def from_hash(cls, raw: dict[str, str]) -> "StudySession":
        """Decode a hash read with HGETALL.

        Older hashes wrote ``accumulatedPauseSeconds`` and a single ``mood_id``
        string; both are still understood. They also lack ``record_id``, which
        is left empty here and allocated by ``finish`` or when the session is
        saved.
        """
        accumulated = raw.get("accumulated_pause_seconds") or raw.get("accumulatedPauseSeconds") or "0"

        if "mood_ids" in raw:
            mood_ids = _decode_json_list(raw["mood_ids"], "mood_ids")
        else:
            legacy_mood = (raw.get("mood_id") or "").strip()
            mood_ids = [legacy_mood] if legacy_mood else []

        return cls(
            user_id=raw["user_id"],
            status=SessionStatus(raw.get("status") or SessionStatus.ACTIVE.value),
            start_time=_parse_time(raw["start_time"]),  # type: ignore[arg-type]
            record_id=raw.get("record_id", ""),
            goals=[
                Goal(text=str(item.get("text", "")), done=bool(item.get("done", False)))
                for item in _decode_json_list(raw.get("goals", "[]"), "goals")
                if isinstance(item, dict)
            ],
            mood_ids=[str(mood_id) for mood_id in mood_ids],
            title=raw.get("title") or None,
            space_id=raw.get("space_id") or None,
            last_paused_at=_parse_time(raw.get("last_paused_at")),
            accumulated_pause_seconds=float(accumulated),
            duration=float(raw.get("duration") or 0),
            end_time=_parse_time(raw.get("end_time")),
            version=int(raw.get("version") or 0),
        )

    def to_dict(self) -> dict[str, Any]:
        """Snapshot for API responses."""
        return {
            "user_id": self.user_id,
            "status": self.status.value,
            "start_time": self.start_time.isoformat(),
            "record_id": self.record_id,
            "goals": [goal.to_dict() for goal in self.goals],
            "mood_ids": list(self.mood_ids),
            "title": self.title,
            "space_id": self.space_id,
            "last_paused_at": self.last_paused_at.isoformat() if self.last_paused_at else None,
            "accumulated_pause_seconds": self.accumulated_pause_seconds,
            "duration": self.duration,
            "end_time": self.end_time.isoformat() if self.end_time else None,
        }


def _parse_time(value: str | None) -> datetime | None:
    if not value:
        return None
    return ensure_utc(datetime.fromisoformat(value))


def _decode_json_list(value: str, field_name: str) -> list[Any]:
    try:
        decoded = json.loads(value or "[]")
    except json.JSONDecodeError:
        logger.warning(f"Corrupted {field_name} field in session hash, treating as empty")
        return []
    return decoded if isinstance(decoded, list) else []
