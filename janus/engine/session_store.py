"""In-memory session registry.

All access to the session map goes through ``SessionStore``. Reads
return deep copies taken while the lock is held, so callers can never
observe or mutate internal state.

The lock is a plain threading reader/writer lock rather than an
``asyncio.Lock``: critical sections never await, which keeps the store
usable from the event loop and from worker threads alike.
"""
from __future__ import annotations

import logging
import threading
import uuid
from collections.abc import Callable, Iterable, Iterator
from contextlib import contextmanager
from copy import deepcopy
from datetime import datetime, timezone

from .errors import InternalError, SessionNotFoundError
from .models import ConversationMessage, Session

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ReadWriteLock:
    """Many concurrent readers or one writer, writers preferred."""

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    @contextmanager
    def read(self) -> Iterator[None]:
        with self._cond:
            while self._writer or self._writers_waiting:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write(self) -> Iterator[None]:
        with self._cond:
            self._writers_waiting += 1
            try:
                while self._writer or self._readers:
                    self._cond.wait()
            finally:
                self._writers_waiting -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


class SessionStore:
    """Concurrency-safe CRUD over live sessions."""

    def __init__(
        self,
        clock: Clock | None = None,
        id_factory: Callable[[], str] | None = None,
    ) -> None:
        self._sessions: dict[str, Session] = {}
        self._lock = ReadWriteLock()
        self._clock = clock or _utcnow
        self._id_factory = id_factory or (lambda: str(uuid.uuid4()))

    def create(self) -> Session:
        try:
            session_id = self._id_factory()
        except Exception as exc:
            raise InternalError(f"session id generation failed: {exc}") from exc
        if not session_id:
            raise InternalError("session id generation returned an empty id")

        now = self._clock()
        session = Session(id=session_id, created_at=now, last_activity_at=now)
        with self._lock.write():
            if session_id in self._sessions:
                raise InternalError(f"session id collision: {session_id}")
            self._sessions[session_id] = session
            snapshot = deepcopy(session)
        logger.debug("Created session %s", session_id)
        return snapshot

    def get(self, session_id: str) -> Session:
        with self._lock.read():
            session = self._require(session_id)
            return deepcopy(session)

    def exists(self, session_id: str) -> bool:
        with self._lock.read():
            return session_id in self._sessions

    __contains__ = exists

    def count(self) -> int:
        with self._lock.read():
            return len(self._sessions)

    def update_activity(self, session_id: str) -> None:
        with self._lock.write():
            self._require(session_id).last_activity_at = self._clock()

    def set_agent_handle(self, session_id: str, handle: str) -> None:
        with self._lock.write():
            self._require(session_id).agent_conversation_handle = handle

    def append_log(
        self,
        session_id: str,
        entries: Iterable[ConversationMessage],
    ) -> None:
        # Copy before taking the lock so a failing iterator cannot leave
        # a partial append behind.
        copied = [deepcopy(entry) for entry in entries]
        with self._lock.write():
            self._require(session_id).conversation_log.extend(copied)

    def delete(self, session_id: str) -> Session:
        """Remove a session and return its final snapshot."""
        with self._lock.write():
            session = self._sessions.pop(session_id, None)
        if session is None:
            raise SessionNotFoundError(session_id)
        logger.debug("Deleted session %s", session_id)
        return session

    def list_sessions(self) -> list[Session]:
        with self._lock.read():
            return [deepcopy(s) for s in self._sessions.values()]

    def evict_inactive(self, max_idle_seconds: float) -> int:
        """Remove sessions idle for strictly longer than ``max_idle_seconds``."""
        with self._lock.write():
            now = self._clock()
            stale = [
                session_id
                for session_id, session in self._sessions.items()
                if session.idle_seconds(now) > max_idle_seconds
            ]
            for session_id in stale:
                del self._sessions[session_id]
        for session_id in stale:
            logger.debug("Evicted inactive session %s", session_id)
        return len(stale)

    def _require(self, session_id: str) -> Session:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session
