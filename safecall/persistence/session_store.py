"""
Session Store - In-memory registry of live sessions

Owns session lifecycle and idle eviction. Mutations for one session id are
serialised by a per-id asyncio.Lock (FIFO for waiters), never by a global
lock, so independent sessions proceed in parallel.

The store itself never awaits: every method runs to completion on the event
loop, so the registry dict is never observed half-updated.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import AsyncIterator, Callable, Optional, Union

from safecall.core.exceptions import DuplicateSession, SessionNotFound
from safecall.models.session import Message, Session, SessionKind
from safecall.models.threat import ThreatLevel

logger = logging.getLogger(__name__)


class SessionStore:
    """Single-writer registry. Only the SessionOrchestrator calls the mutators."""

    def __init__(self):
        self._sessions: dict[str, Session] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions

    def ids(self) -> list[str]:
        return list(self._sessions)

    def lock(self, session_id: str) -> asyncio.Lock:
        """The lock serialising mutations of one session id."""
        lock = self._locks.get(session_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[session_id] = lock
        return lock

    @asynccontextmanager
    async def locked(self, session_id: str) -> AsyncIterator[None]:
        """
        Hold the session lock for the duration of the block.

        The lock entry is dropped once the last holder or waiter leaves and
        the session is no longer live, so ended sessions leave nothing behind.
        """
        lock = self.lock(session_id)
        self._lock_users[session_id] = self._lock_users.get(session_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            users = self._lock_users[session_id] - 1
            if users:
                self._lock_users[session_id] = users
            else:
                del self._lock_users[session_id]
                if session_id not in self._sessions and self._locks.get(session_id) is lock:
                    del self._locks[session_id]

    def lock_count(self) -> int:
        return len(self._locks)

    def create(
        self,
        session_id: str,
        owner_user_id: str,
        channel_handle: Optional[str] = None,
        kind: SessionKind = SessionKind.CALL,
        now: Optional[datetime] = None,
    ) -> Session:
        if session_id in self._sessions:
            raise DuplicateSession(session_id)
        now = now or datetime.now(timezone.utc)
        session = Session(
            id=session_id,
            owner_user_id=owner_user_id,
            kind=kind,
            started_at=now,
            last_activity_at=now,
            channel_handle=channel_handle,
        )
        self._sessions[session_id] = session
        logger.debug(f"[SessionStore] Created session {session_id} for user {owner_user_id}")
        return session

    def get(self, session_id: str) -> Optional[Session]:
        return self._sessions.get(session_id)

    def require(self, session_id: str) -> Session:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFound(session_id)
        return session

    def touch(self, session_id: str, now: Optional[datetime] = None) -> None:
        session = self.require(session_id)
        session.last_activity_at = now or datetime.now(timezone.utc)

    def append_message(self, session_id: str, message: Message) -> None:
        session = self.require(session_id)
        if message.session_id != session_id:
            raise ValueError(f"Message {message.id} belongs to session {message.session_id}, not {session_id}")
        session.history.append(message)

    def set_threat_level(self, session_id: str, level: ThreatLevel) -> ThreatLevel:
        """
        Raise the session level to `level` if it is higher.

        Returns:
            The effective level after the update.
        """
        session = self.require(session_id)
        if level > session.current_threat_level:
            logger.info(
                f"[SessionStore] Session {session_id} threat level "
                f"{session.current_threat_level.value} -> {level.value}"
            )
            session.current_threat_level = level
        return session.current_threat_level

    def reset_threat_level(self, session_id: str) -> None:
        """The only way down. The orchestrator never calls this on a live session."""
        session = self.require(session_id)
        session.current_threat_level = ThreatLevel.NONE

    def remove(self, session_id: str) -> Optional[Session]:
        """Remove and return the session. Idempotent."""
        session = self._sessions.pop(session_id, None)
        if not self._lock_users.get(session_id):
            self._locks.pop(session_id, None)
        return session

    def sessions_for_connection(self, connection_id: str) -> list[str]:
        return [
            session_id for session_id, session in self._sessions.items()
            if session.channel_handle == connection_id
        ]

    def evict_idle(
        self,
        now: datetime,
        idle_window: Union[timedelta, float],
        on_evicted: Optional[Callable[[Session], None]] = None,
    ) -> list[str]:
        """
        Remove every session idle for strictly longer than `idle_window`.

        Args:
            now: Reference time.
            idle_window: Inactivity limit as timedelta or seconds.
            on_evicted: Called with each removed record.

        Returns:
            Ids of the evicted sessions.
        """
        if not isinstance(idle_window, timedelta):
            idle_window = timedelta(seconds=idle_window)

        expired = [
            session_id for session_id, session in self._sessions.items()
            if now - session.last_activity_at > idle_window
        ]
        for session_id in expired:
            session = self.remove(session_id)
            logger.info(f"[SessionStore] Evicted idle session {session_id}")
            if on_evicted is not None and session is not None:
                on_evicted(session)
        return expired
