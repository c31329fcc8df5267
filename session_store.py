"""
Session records and bounded message history on top of the cache.

Layout:
    session:{id}          JSON Session record, TTL = session TTL
    session:{id}:history  list of JSON HistoryEntry, newest first, max 50,
                          TTL refreshed on every append

update_activity is a plain read-modify-write. Two concurrent appends for the
same session can both read the same messageCount and the later write wins,
so the counter may under-count under contention. History itself is not
affected because LPUSH is atomic in the backing store.
"""

import time
from datetime import datetime, timezone
from typing import Callable, List, Optional

from pydantic import ValidationError

from cache import CacheStore, CacheUnavailableError
from logger import get_logger, log_async_function_call
from models import HistoryEntry, Session

logger = get_logger(__name__)

SESSION_PREFIX = "session:"
HISTORY_SUFFIX = ":history"
MAX_HISTORY = 50
DEFAULT_SESSION_TTL = 3600


class SessionStoreError(Exception):
    """Session state could not be read or written."""
    pass


def session_key(session_id: str) -> str:
    return f"{SESSION_PREFIX}{session_id}"


def history_key(session_id: str) -> str:
    return f"{SESSION_PREFIX}{session_id}{HISTORY_SUFFIX}"


class SessionStore:
    """Owns Session records and their history lists."""

    def __init__(
        self,
        cache: CacheStore,
        session_ttl: int = DEFAULT_SESSION_TTL,
        max_history: int = MAX_HISTORY,
        clock: Optional[Callable[[], datetime]] = None
    ):
        """
        Args:
            cache: Backing key-value store
            session_ttl: Lifetime of session and history keys, in seconds
            max_history: Number of most recent entries kept per session
            clock: Returns the current aware datetime (injectable for tests)
        """
        self.cache = cache
        self.session_ttl = session_ttl
        self.max_history = max_history
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._last_entry_id = 0

    def _next_entry_id(self) -> str:
        entry_id = max(time.time_ns() // 1_000_000, self._last_entry_id + 1)
        self._last_entry_id = entry_id
        return str(entry_id)

    async def create_session(self, session_id: str) -> Session:
        """Write a fresh session record, overwriting any existing one."""
        now = self._clock()
        session = Session(id=session_id, created_at=now, last_activity=now, message_count=0)
        try:
            await self.cache.set(session_key(session_id), session.to_json(), self.session_ttl)
        except CacheUnavailableError as e:
            logger.error("Error creating session", session_id=session_id, error=str(e))
            raise SessionStoreError(f"Failed to create session {session_id}") from e

        logger.session_event("created", session_id)
        return session

    async def get_session(self, session_id: str) -> Optional[Session]:
        """Return the session record, or None when absent or expired."""
        try:
            raw = await self.cache.get(session_key(session_id))
        except CacheUnavailableError as e:
            logger.error("Error getting session", session_id=session_id, error=str(e))
            raise SessionStoreError(f"Failed to read session {session_id}") from e

        if raw is None:
            return None
        try:
            return Session.model_validate_json(raw)
        except ValidationError as e:
            logger.warning("Discarding corrupt session record", session_id=session_id, error=str(e))
            return None

    async def ensure_session(self, session_id: str) -> Session:
        """Return the existing session or create it. Idempotent."""
        session = await self.get_session(session_id)
        if session is None:
            session = await self.create_session(session_id)
        return session

    async def update_activity(self, session_id: str) -> Session:
        """
        Bump messageCount and lastActivity and refresh the TTL.

        Creates the session when it is missing. Not atomic, see module docs.
        """
        session = await self.get_session(session_id)
        if session is None:
            return await self.create_session(session_id)

        updated = session.model_copy(update={
            "last_activity": self._clock(),
            "message_count": session.message_count + 1,
        })
        try:
            await self.cache.set(session_key(session_id), updated.to_json(), self.session_ttl)
        except CacheUnavailableError as e:
            logger.error("Error updating session activity", session_id=session_id, error=str(e))
            raise SessionStoreError(f"Failed to update session {session_id}") from e
        return updated

    async def add_to_history(
        self,
        session_id: str,
        user: str,
        bot: str,
        timestamp: Optional[datetime] = None
    ) -> HistoryEntry:
        """
        Prepend an exchange to the session history.

        The list is trimmed to max_history and its TTL refreshed before the
        session's activity is updated.
        """
        await self.ensure_session(session_id)

        entry = HistoryEntry(
            id=self._next_entry_id(),
            user=user,
            bot=bot,
            timestamp=timestamp or self._clock(),
        )
        key = history_key(session_id)
        try:
            await self.cache.lpush(key, entry.to_json())
            await self.cache.ltrim(key, 0, self.max_history - 1)
            await self.cache.expire(key, self.session_ttl)
        except CacheUnavailableError as e:
            logger.error("Error adding to history", session_id=session_id, error=str(e))
            raise SessionStoreError(f"Failed to append history for {session_id}") from e

        await self.update_activity(session_id)
        logger.debug("Added message to history", session_id=session_id, entry_id=entry.id)
        return entry

    async def get_session_history(self, session_id: str) -> List[HistoryEntry]:
        """Return the stored entries oldest-first."""
        try:
            items = await self.cache.lrange(history_key(session_id), 0, -1)
        except CacheUnavailableError as e:
            logger.error("Error getting session history", session_id=session_id, error=str(e))
            raise SessionStoreError(f"Failed to read history for {session_id}") from e

        entries = []
        for item in reversed(items):
            try:
                entries.append(HistoryEntry.model_validate_json(item))
            except ValidationError:
                logger.warning("Skipping corrupt history entry", session_id=session_id)
        return entries

    async def clear_session(self, session_id: str) -> None:
        """Delete both the session record and its history."""
        failed = []
        for key in (session_key(session_id), history_key(session_id)):
            try:
                await self.cache.delete(key)
            except CacheUnavailableError as e:
                logger.error("Error deleting session key", key=key, error=str(e))
                failed.append(key)

        if failed:
            raise SessionStoreError(
                f"Partially cleared session {session_id}; failed keys: {', '.join(failed)}"
            )
        logger.session_event("cleared", session_id)

    async def list_active_sessions(self) -> List[Session]:
        """Materialize every live session record (history keys excluded)."""
        try:
            keys = await self.cache.keys(f"{SESSION_PREFIX}*")
        except CacheUnavailableError as e:
            logger.error("Error listing sessions", error=str(e))
            raise SessionStoreError("Failed to list sessions") from e

        sessions = []
        for key in sorted(keys):
            if key.endswith(HISTORY_SUFFIX):
                continue
            session = await self.get_session(key[len(SESSION_PREFIX):])
            if session is not None:
                sessions.append(session)
        return sessions

    @log_async_function_call(logger)
    async def cleanup_expired_sessions(self) -> int:
        """
        Clear sessions idle for longer than the session TTL.

        Runs regardless of the backing store's own expiry, so records whose
        key TTL has not fired yet are still removed.

        Returns:
            Number of sessions cleared
        """
        now = self._clock()
        cleaned = 0
        for session in await self.list_active_sessions():
            if session.age_seconds(now) > self.session_ttl:
                await self.clear_session(session.id)
                cleaned += 1

        if cleaned:
            logger.info(f"Cleaned up {cleaned} expired sessions", count=cleaned)
        return cleaned
