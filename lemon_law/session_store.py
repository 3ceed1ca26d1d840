"""
In-memory session store with per-session locking.

Each session is processed by at most one turn at a time. Turns read a snapshot,
do their slow model calls, and write everything back in one commit.
"""

import asyncio
import logging
import time
from collections import OrderedDict
from contextlib import asynccontextmanager
from dataclasses import dataclass, field, replace
from typing import Any

from lemon_law.conversation_state import ControlState, FactRecord
from lemon_law.tools import Verdict

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Session:
    """Snapshot of one assessment conversation."""

    session_id: str
    messages: tuple[dict[str, str], ...] = ()
    facts: FactRecord = field(default_factory=FactRecord)
    state: ControlState = ControlState.COLLECT
    verdict: Verdict | None = None
    ts: float = field(default_factory=time.time)

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "state": self.state.value,
            "facts": self.facts.to_wire(),
            "verdict": self.verdict.model_dump() if self.verdict else None,
            "messages": [dict(m) for m in self.messages],
        }


class SessionStore:
    """
    Sessions keyed by id.

    Memory safety:
    - sessions idle longer than ttl_seconds are removed
    - the oldest sessions are evicted beyond max_sessions
    - a session with a turn in flight is never evicted
    """

    def __init__(self, max_sessions: int = 1000, ttl_seconds: int = 1800):
        self.max_sessions = max_sessions
        self.ttl_seconds = ttl_seconds

        # OrderedDict so the least recently used session is evicted first
        self._sessions: OrderedDict[str, Session] = OrderedDict()
        self._locks: dict[str, asyncio.Lock] = {}
        # Tasks holding or waiting for each lock
        self._lock_users: dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions

    def _is_busy(self, session_id: str) -> bool:
        return self._lock_users.get(session_id, 0) > 0

    def _discard(self, session_id: str) -> None:
        self._sessions.pop(session_id, None)
        if not self._is_busy(session_id):
            self._locks.pop(session_id, None)

    def prune(self) -> None:
        """Remove expired sessions, then enforce the session cap."""
        now = time.time()

        expired = [
            sid
            for sid, session in self._sessions.items()
            if now - session.ts > self.ttl_seconds and not self._is_busy(sid)
        ]
        for sid in expired:
            self._discard(sid)
        if expired:
            logger.info(f"Pruned {len(expired)} expired sessions")

        idle = [sid for sid in self._sessions if not self._is_busy(sid)]
        while len(self._sessions) > self.max_sessions and idle:
            self._discard(idle.pop(0))

    def get(self, session_id: str) -> Session | None:
        return self._sessions.get(session_id)

    def get_or_create(self, session_id: str) -> Session:
        """Return the session, creating an empty COLLECT session on first use."""
        session = self._sessions.get(session_id)
        if session is None:
            session = Session(session_id=session_id)
            self._sessions[session_id] = session
            logger.info(f"Created session: {session_id}")
        return session

    def lock(self, session_id: str) -> asyncio.Lock:
        if session_id not in self._locks:
            self._locks[session_id] = asyncio.Lock()
        return self._locks[session_id]

    @asynccontextmanager
    async def locked(self, session_id: str):
        """
        Serialize turns for one session; other sessions are unaffected.

        The lock is dropped once nobody holds or awaits it and the session is
        gone (reset or pruned while busy).
        """
        lock = self.lock(session_id)
        self._lock_users[session_id] = self._lock_users.get(session_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[session_id] -= 1
            if not self._lock_users[session_id]:
                del self._lock_users[session_id]
                if session_id not in self._sessions:
                    self._locks.pop(session_id, None)

    def commit(self, session: Session, **changes: Any) -> Session:
        """
        Atomically replace a session with an updated snapshot.

        Must be called without awaiting between reading `session` and this call
        while holding the session lock.
        """
        updated = replace(session, ts=time.time(), **changes)
        self._sessions[session.session_id] = updated
        self._sessions.move_to_end(session.session_id)
        return updated

    def reset(self, session_id: str) -> bool:
        """Drop a session. Returns False if it did not exist."""
        existed = session_id in self._sessions
        self._discard(session_id)
        if existed:
            logger.info(f"Conversation reset for session {session_id}")
        return existed
