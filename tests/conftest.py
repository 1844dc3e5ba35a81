"""Pytest configuration."""

import os

# Settings are read once at import time, so the environment must be in place
# before anything from studyspace is imported.
os.environ.setdefault("SESSION_STORE_BACKEND", "memory")
os.environ.setdefault("SUPABASE_JWT_SECRET", "test-jwt-secret")
os.environ.setdefault("SUPABASE_URL", "http://postgrest.test")

import uuid  # noqa: E402
from datetime import UTC, datetime, timedelta  # noqa: E402
from typing import Any  # noqa: E402

import pytest  # noqa: E402

from studyspace.core.exceptions import PersistenceFailure  # noqa: E402
from studyspace.services.session_store import InMemorySessionStore  # noqa: E402
from studyspace.services.study_session import StudySessionService  # noqa: E402


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 3, 2, 9, 0, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


# Unique keys used to resolve upsert conflicts when no on_conflict is given
PRIMARY_KEYS = {
    "record_emotions": ("record_id", "emotion_id"),
    "record_mood_tags": ("record_id", "mood_id"),
}


class InMemoryPostgrest:
    """Table store with the same call surface as PostgrestClient.

    ``fail_on`` holds ``(operation, table)`` pairs that raise
    PersistenceFailure, to exercise rollback paths.
    """

    def __init__(self) -> None:
        self.tables: dict[str, list[dict[str, Any]]] = {}
        self.fail_on: set[tuple[str, str]] = set()
        self.calls: list[tuple[str, str]] = []
        self.credentials: list[str | None] = []

    def rows(self, table: str) -> list[dict[str, Any]]:
        return self.tables.setdefault(table, [])

    def seed(self, table: str, *rows: dict[str, Any]) -> None:
        for row in rows:
            self.rows(table).append({"id": str(uuid.uuid4()), **row})

    def _enter(self, operation: str, table: str, credential: str | None) -> None:
        self.calls.append((operation, table))
        self.credentials.append(credential)
        if (operation, table) in self.fail_on:
            raise PersistenceFailure(f"{table} {operation} failed (500)", table=table, status=500)

    @staticmethod
    def _matches(row: dict[str, Any], filters: dict[str, Any] | None) -> bool:
        for column, expected in (filters or {}).items():
            value = row.get(column)
            if isinstance(expected, (list, tuple, set)):
                if str(value) not in {str(e) for e in expected}:
                    return False
            elif expected is None:
                if value is not None:
                    return False
            elif str(value) != str(expected):
                return False
        return True

    @staticmethod
    def _in_ranges(row: dict[str, Any], ranges: dict[str, tuple[Any, Any]] | None) -> bool:
        # Bounds are ISO strings here, so string order is time order.
        for column, (lower, upper) in (ranges or {}).items():
            value = str(row.get(column))
            if lower is not None and value < str(lower):
                return False
            if upper is not None and value > str(upper):
                return False
        return True

    async def select(
        self,
        table: str,
        *,
        filters: dict[str, Any] | None = None,
        ranges: dict[str, tuple[Any, Any]] | None = None,
        columns: str = "*",
        order: str | None = None,
        limit: int | None = None,
        offset: int | None = None,
        credential: str | None = None,
    ) -> list[dict[str, Any]]:
        self._enter("select", table, credential)
        found = [
            dict(row)
            for row in self.rows(table)
            if self._matches(row, filters) and self._in_ranges(row, ranges)
        ]
        found = found[offset or 0:]
        return found[:limit] if limit is not None else found

    async def insert(self, table, rows, *, credential=None):
        self._enter("insert", table, credential)
        inserted = []
        for row in rows if isinstance(rows, list) else [rows]:
            stored = {"id": str(uuid.uuid4()), **row}
            self.rows(table).append(stored)
            inserted.append(dict(stored))
        return inserted

    async def upsert(self, table, rows, *, on_conflict=None, ignore_duplicates=False, credential=None):
        self._enter("upsert", table, credential)
        keys = tuple(on_conflict.split(",")) if on_conflict else PRIMARY_KEYS.get(table, ("id",))
        written = []
        for row in rows if isinstance(rows, list) else [rows]:
            existing = next(
                (r for r in self.rows(table) if all(r.get(k) == row.get(k) for k in keys)),
                None,
            )
            if existing is not None:
                if ignore_duplicates:
                    continue
                existing.update(row)
                written.append(dict(existing))
            else:
                stored = dict(row) if "id" in row or table in PRIMARY_KEYS else {"id": str(uuid.uuid4()), **row}
                self.rows(table).append(stored)
                written.append(dict(stored))
        return written

    async def update(self, table, values, *, filters, credential=None):
        self._enter("update", table, credential)
        updated = []
        for row in self.rows(table):
            if self._matches(row, filters):
                row.update(values)
                updated.append(dict(row))
        return updated

    async def delete(self, table, *, filters, credential=None):
        self._enter("delete", table, credential)
        kept, removed = [], []
        for row in self.rows(table):
            (removed if self._matches(row, filters) else kept).append(row)
        self.tables[table] = kept
        return removed

    async def ping(self) -> bool:
        return True


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> InMemorySessionStore:
    return InMemorySessionStore()


@pytest.fixture
def service(store: InMemorySessionStore, clock: FakeClock) -> StudySessionService:
    return StudySessionService(store, clock=clock)


@pytest.fixture
def fake_db() -> InMemoryPostgrest:
    return InMemoryPostgrest()
