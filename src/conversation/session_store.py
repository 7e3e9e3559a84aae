"""
Keyed session storage with absolute expiry.

SessionStore is the seam a multi-process deployment would implement on an
external key-value store; InMemorySessionStore keeps sessions in a dict
guarded by a lock, for a single process.
"""

import threading
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional

from loguru import logger

from .context import BookingSession
from .states import SessionState


class SessionStore(ABC):
    """
    Storage contract for booking sessions.

    A session read after its expiry is absent. Only mutations (``set``,
    ``update``, ``extend``) move the expiry forward.
    """

    @abstractmethod
    def get(self, user_id: str) -> Optional[BookingSession]:
        """Return a copy of the live session, or None if absent or expired."""

    @abstractmethod
    def set(self, user_id: str, state: SessionState = SessionState.SELECTING_DATE, **fields: Any) -> BookingSession:
        """Create (or replace) the session with a fresh expiry."""

    @abstractmethod
    def update(self, user_id: str, **changes: Any) -> Optional[BookingSession]:
        """Apply changes to a live session and renew its expiry; None if absent."""

    @abstractmethod
    def delete(self, user_id: str) -> bool:
        """Remove the session; True if one was present."""

    @abstractmethod
    def extend(self, user_id: str) -> bool:
        """Renew the expiry of a live session without changing it."""

    @abstractmethod
    def purge_expired(self) -> int:
        """Drop every expired session; returns how many were dropped."""


class InMemorySessionStore(SessionStore):
    """
    Process-local session store.

    Each operation holds the lock for its whole read-modify-write, so the
    map itself never sees torn updates. Callers only ever get copies.
    """

    KEY_PREFIX = "session:"

    def __init__(self, ttl_seconds: int = 1800, clock: Optional[Callable[[], datetime]] = None):
        """
        Args:
            ttl_seconds: Lifetime granted by each mutation
            clock: Returns the current aware datetime (defaults to UTC now)
        """
        self.ttl = timedelta(seconds=ttl_seconds)
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._sessions: Dict[str, BookingSession] = {}
        self._lock = threading.Lock()

    def _key(self, user_id: str) -> str:
        return f"{self.KEY_PREFIX}{user_id}"

    def _live(self, key: str, now: datetime) -> Optional[BookingSession]:
        session = self._sessions.get(key)
        if session is None:
            return None
        if session.is_expired(now):
            del self._sessions[key]
            logger.debug(f"Purged expired session {key}")
            return None
        return session

    def get(self, user_id: str) -> Optional[BookingSession]:
        with self._lock:
            session = self._live(self._key(user_id), self._clock())
            return session.model_copy(deep=True) if session else None

    def set(self, user_id: str, state: SessionState = SessionState.SELECTING_DATE, **fields: Any) -> BookingSession:
        session = BookingSession(
            user_id=user_id,
            state=state,
            expires_at=self._clock() + self.ttl,
            **fields,
        )
        with self._lock:
            self._sessions[self._key(user_id)] = session
        return session.model_copy(deep=True)

    def update(self, user_id: str, **changes: Any) -> Optional[BookingSession]:
        key = self._key(user_id)
        with self._lock:
            now = self._clock()
            current = self._live(key, now)
            if current is None:
                return None

            data = current.model_dump()
            data.update(changes)
            data["user_id"] = user_id
            data["expires_at"] = now + self.ttl
            updated = BookingSession.model_validate(data)

            self._sessions[key] = updated
            return updated.model_copy(deep=True)

    def delete(self, user_id: str) -> bool:
        with self._lock:
            return self._sessions.pop(self._key(user_id), None) is not None

    def extend(self, user_id: str) -> bool:
        key = self._key(user_id)
        with self._lock:
            now = self._clock()
            current = self._live(key, now)
            if current is None:
                return False
            self._sessions[key] = current.model_copy(update={"expires_at": now + self.ttl})
            return True

    def purge_expired(self) -> int:
        with self._lock:
            now = self._clock()
            expired = [key for key, session in self._sessions.items() if session.is_expired(now)]
            for key in expired:
                del self._sessions[key]

        if expired:
            logger.info(f"Session cleanup removed {len(expired)} expired sessions")
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)
