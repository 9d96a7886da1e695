"""Session storage and per-call locking."""
import asyncio
from abc import ABC, abstractmethod
from collections import OrderedDict
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, List, Optional

from dialbridge.core.config import settings
from dialbridge.services.call_session.models import CallSession


class SessionStore(ABC):
    """Abstract base class for the active session table.

    Stores hand out copies so callers never mutate the stored record in place.
    """

    @abstractmethod
    async def get(self, call_id: str) -> Optional[CallSession]:
        """Get a session by call id."""
        pass

    @abstractmethod
    async def put(self, session: CallSession) -> None:
        """Insert or replace a session."""
        pass

    @abstractmethod
    async def delete(self, call_id: str) -> None:
        """Remove a session if present."""
        pass

    @abstractmethod
    async def list(self) -> List[CallSession]:
        """Snapshot of all stored sessions."""
        pass

    @abstractmethod
    async def remember_ended(self, session: CallSession) -> None:
        """Keep a terminated session so its call id is never handed out again."""
        pass

    @abstractmethod
    async def get_ended(self, call_id: str) -> Optional[CallSession]:
        """Get a recently terminated session by call id."""
        pass


class InMemorySessionStore(SessionStore):
    """Session store kept in process memory.

    Ended sessions are kept in a bounded LRU; the oldest are forgotten first.
    """

    def __init__(self, max_ended: Optional[int] = None):
        self._sessions: Dict[str, CallSession] = {}
        self._ended: "OrderedDict[str, CallSession]" = OrderedDict()
        self.max_ended = max_ended or settings.ended_call_ids_max

    async def get(self, call_id: str) -> Optional[CallSession]:
        session = self._sessions.get(call_id)
        return session.model_copy() if session else None

    async def put(self, session: CallSession) -> None:
        self._sessions[session.call_id] = session.model_copy()

    async def delete(self, call_id: str) -> None:
        self._sessions.pop(call_id, None)

    async def list(self) -> List[CallSession]:
        return [session.model_copy() for session in list(self._sessions.values())]

    async def remember_ended(self, session: CallSession) -> None:
        self._ended[session.call_id] = session.model_copy()
        self._ended.move_to_end(session.call_id)
        while len(self._ended) > self.max_ended:
            self._ended.popitem(last=False)

    async def get_ended(self, call_id: str) -> Optional[CallSession]:
        session = self._ended.get(call_id)
        return session.model_copy() if session else None

    def __len__(self) -> int:
        return len(self._sessions)


class KeyedLock:
    """One asyncio lock per key, dropped once nobody holds or waits on it."""

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}
        self._waiters: Dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._waiters[key] = self._waiters.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._waiters[key] -= 1
            if self._waiters[key] == 0:
                del self._waiters[key]
                del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)
