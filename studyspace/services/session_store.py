"""Per-user session storage with Redis backend and in-memory alternative.

Each user owns at most one hash, ``{prefix}:{user_id}``. Writes go through
``transact``, which applies a mutation to a fresh read and commits it only if
nobody else wrote the key in between (optimistic versioning). A mutation that
raises writes nothing.
"""

import asyncio
import logging
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from typing import TypeVar

import redis.asyncio as redis
from redis.exceptions import RedisError, WatchError

from studyspace.core.config import settings
from studyspace.core.exceptions import ConcurrentUpdate, SessionStoreUnavailable
from studyspace.services.study_session_model import StudySession

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Receives the current session (None when absent) and returns the session to
# write together with the value handed back to the caller.
Mutation = Callable[[StudySession | None], tuple[StudySession, T]]


class SessionStore:
    """Keyed store holding one study session per user."""

    def __init__(self, key_prefix: str | None = None) -> None:
        self.key_prefix = key_prefix or settings.session_key_prefix

    def key_for(self, user_id: str) -> str:
        """Redis key holding the user's session hash."""
        return f"{self.key_prefix}:{user_id}"

    async def load(self, user_id: str) -> StudySession | None:
        """Read the user's session, or None when there is none."""
        raise NotImplementedError

    async def transact(self, user_id: str, mutation: Mutation[T]) -> T:
        """Apply ``mutation`` atomically and persist the session it returns."""
        raise NotImplementedError

    async def delete(self, user_id: str) -> None:
        """Remove the user's session. Deleting a missing session is a no-op."""
        raise NotImplementedError

    async def delete_if(self, user_id: str, record_id: str) -> bool:
        """Remove the session only if it is still the one owning ``record_id``.

        Returns False, leaving the key alone, when the session is gone or was
        replaced by a newer one.
        """
        raise NotImplementedError

    async def ping(self) -> bool:
        """Check backend connectivity."""
        return True


class RedisSessionStore(SessionStore):
    """Session store on a Redis hash with WATCH/MULTI/EXEC transactions."""

    def __init__(
        self,
        redis_client: redis.Redis,
        key_prefix: str | None = None,
        max_attempts: int | None = None,
    ) -> None:
        """Initialize Redis session store.

        Args:
            redis_client: Client created with ``decode_responses=True``
            key_prefix: Prefix for session keys (default from settings)
            max_attempts: Optimistic write attempts before giving up
        """
        super().__init__(key_prefix)
        self.redis_client = redis_client
        self.max_attempts = max_attempts or settings.session_write_retries

    async def load(self, user_id: str) -> StudySession | None:
        try:
            raw = await self.redis_client.hgetall(self.key_for(user_id))
        except RedisError as e:
            logger.error(f"Redis read failed for session of {user_id}: {e}")
            raise SessionStoreUnavailable("Session store is unavailable") from e
        return StudySession.from_hash(raw) if raw else None

    async def transact(self, user_id: str, mutation: Mutation[T]) -> T:
        key = self.key_for(user_id)

        for attempt in range(1, self.max_attempts + 1):
            try:
                async with self.redis_client.pipeline(transaction=True) as pipe:
                    await pipe.watch(key)
                    raw = await pipe.hgetall(key)
                    current = StudySession.from_hash(raw) if raw else None

                    updated, result = mutation(current)
                    updated.version = (current.version if current else 0) + 1

                    pipe.multi()
                    pipe.delete(key)
                    pipe.hset(key, mapping=updated.to_hash())
                    await pipe.execute()
                    return result
            except WatchError:
                logger.info(
                    "Session changed during write, retrying",
                    extra={
                        "event_type": "session_write_conflict",
                        "user_id": user_id,
                        "attempt": attempt,
                    },
                )
            except RedisError as e:
                logger.error(f"Redis write failed for session of {user_id}: {e}")
                raise SessionStoreUnavailable("Session store is unavailable") from e

        raise ConcurrentUpdate(
            "Session was modified concurrently, please retry",
            attempts=self.max_attempts,
        )

    async def delete(self, user_id: str) -> None:
        try:
            await self.redis_client.delete(self.key_for(user_id))
        except RedisError as e:
            logger.error(f"Redis delete failed for session of {user_id}: {e}")
            raise SessionStoreUnavailable("Session store is unavailable") from e

    async def delete_if(self, user_id: str, record_id: str) -> bool:
        key = self.key_for(user_id)

        for attempt in range(1, self.max_attempts + 1):
            try:
                async with self.redis_client.pipeline(transaction=True) as pipe:
                    await pipe.watch(key)
                    current = await pipe.hget(key, "record_id")
                    if current != record_id:
                        return False

                    pipe.multi()
                    pipe.delete(key)
                    await pipe.execute()
                    return True
            except WatchError:
                logger.info(
                    "Session changed during delete, retrying",
                    extra={
                        "event_type": "session_write_conflict",
                        "user_id": user_id,
                        "attempt": attempt,
                    },
                )
            except RedisError as e:
                logger.error(f"Redis delete failed for session of {user_id}: {e}")
                raise SessionStoreUnavailable("Session store is unavailable") from e

        raise ConcurrentUpdate(
            "Session was modified concurrently, please retry",
            attempts=self.max_attempts,
        )

    async def ping(self) -> bool:
        try:
            return bool(await self.redis_client.ping())
        except RedisError:
            return False


class InMemorySessionStore(SessionStore):
    """Process-local session store (not shared between workers).

    Hashes are kept in their encoded form so reads and writes go through the
    same codec as Redis. Writes for one user are serialized by a lock that is
    dropped again once no task holds or waits for it.
    """

    def __init__(self, key_prefix: str | None = None) -> None:
        super().__init__(key_prefix)
        self._memory_store: dict[str, dict[str, str]] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}

    @asynccontextmanager
    async def _locked(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._lock_users[key] = self._lock_users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[key] -= 1
            if not self._lock_users[key]:
                del self._lock_users[key]
                del self._locks[key]

    async def load(self, user_id: str) -> StudySession | None:
        raw = self._memory_store.get(self.key_for(user_id))
        return StudySession.from_hash(dict(raw)) if raw else None

    async def transact(self, user_id: str, mutation: Mutation[T]) -> T:
        key = self.key_for(user_id)
        async with self._locked(key):
            raw = self._memory_store.get(key)
            current = StudySession.from_hash(dict(raw)) if raw else None

            updated, result = mutation(current)
            updated.version = (current.version if current else 0) + 1

            self._memory_store[key] = updated.to_hash()
            return result

    async def delete(self, user_id: str) -> None:
        key = self.key_for(user_id)
        async with self._locked(key):
            self._memory_store.pop(key, None)

    async def delete_if(self, user_id: str, record_id: str) -> bool:
        key = self.key_for(user_id)
        async with self._locked(key):
            raw = self._memory_store.get(key)
            if not raw or raw.get("record_id") != record_id:
                return False
            del self._memory_store[key]
            return True


# Global store instance
_session_store: SessionStore | None = None


def create_session_store() -> SessionStore:
    """Build the store selected by ``SESSION_STORE_BACKEND``."""
    if settings.session_store_backend == "memory":
        logger.warning("Session store using in-memory backend (single process only)")
        return InMemorySessionStore()

    redis_client = redis.from_url(  # type: ignore[no-untyped-call]
        settings.redis_url,
        encoding="utf-8",
        decode_responses=True,
        socket_connect_timeout=5,
        socket_timeout=5,
    )
    logger.info("Session store using Redis backend")
    return RedisSessionStore(redis_client)


def get_session_store() -> SessionStore:
    """Get global session store instance.

    Returns:
        SessionStore instance
    """
    global _session_store
    if _session_store is None:
        _session_store = create_session_store()
    return _session_store
