"""
Session Repository - In-memory chat sessions backed by the session store.
"""

import asyncio
import logging
import uuid
from typing import Callable, Dict, List, Optional, Tuple

from ..models import ChatSession
from ..storage import SessionStore

logger = logging.getLogger(__name__)


class SessionRepository:
    """
    Ordered collection of chat sessions, newest first.

    All mutations are serialized through one lock and each one persists the
    full snapshot. The list is re-sorted only when a session is inserted, so
    appending messages to an existing session never reorders the history.
    """

    def __init__(self, store: SessionStore):
        self.store = store
        self._sessions: List[ChatSession] = []
        self._index: Dict[uuid.UUID, int] = {}
        self._lock = asyncio.Lock()

    async def load(self) -> None:
        """Populate from the store. Call once at startup."""
        sessions = await self.store.load()
        async with self._lock:
            self._sessions = sessions
            self._reindex()

    def _reindex(self) -> None:
        self._index = {s.id: i for i, s in enumerate(self._sessions)}

    async def _persist(self) -> None:
        await self.store.save(self._sessions)

    def list(self) -> Tuple[ChatSession, ...]:
        """Read-only snapshot of the ordered sessions."""
        return tuple(self._sessions)

    def get(self, session_id: uuid.UUID) -> Optional[ChatSession]:
        index = self._index.get(session_id)
        return self._sessions[index] if index is not None else None

    def __len__(self) -> int:
        return len(self._sessions)

    async def upsert(self, session: ChatSession) -> None:
        """Replace the session in place, or insert it and re-sort."""
        async with self._lock:
            index = self._index.get(session.id)
            if index is not None:
                self._sessions[index] = session
            else:
                self._sessions.append(session)
                self._sessions.sort(key=lambda s: s.timestamp, reverse=True)
                self._reindex()
            await self._persist()

    async def update(
        self,
        session_id: uuid.UUID,
        mutate: Callable[[ChatSession], None]
    ) -> Optional[ChatSession]:
        """
        Apply `mutate` to the stored session and persist.

        Returns:
            The updated session, or None if no session has that id
        """
        async with self._lock:
            index = self._index.get(session_id)
            if index is None:
                return None
            session = self._sessions[index]
            mutate(session)
            await self._persist()
            return session

    async def delete(self, session_id: uuid.UUID) -> None:
        """Remove a session. Unknown ids are ignored."""
        async with self._lock:
            if session_id not in self._index:
                return
            self._sessions = [s for s in self._sessions if s.id != session_id]
            self._reindex()
            await self._persist()
            logger.info(f"Deleted session {session_id}")

    async def clear_all(self) -> None:
        async with self._lock:
            self._sessions = []
            self._index = {}
            await self._persist()
            logger.info("Cleared all chat sessions")
