from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import AsyncIterator, Callable, Literal

logger = logging.getLogger("assistant.sessions")

Role = Literal["user", "assistant"]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Turn:
    role: Role
    content: str
    timestamp: datetime = field(default_factory=_utcnow)


class _LockSlot:
    def __init__(self) -> None:
        self.lock = asyncio.Lock()
        self.users = 0


class SessionStore:
    """In-process conversation state keyed by session id.

    History is capped at ``max_turns`` entries, oldest dropped first. The
    active-ticket binding lives beside the history and is never trimmed.
    Nothing here survives a process restart.
    """

    def __init__(self, max_turns: int = 20, clock: Callable[[], datetime] | None = None):
        if max_turns < 1:
            raise ValueError("max_turns must be positive")
        self.max_turns = max_turns
        self._clock = clock or _utcnow
        self._history: dict[str, list[Turn]] = {}
        self._active_tickets: dict[str, int] = {}
        self._locks: dict[str, _LockSlot] = {}

    def get_history(self, session_id: str) -> list[Turn]:
        return list(self._history.get(session_id, []))

    def append_turn(self, session_id: str, role: Role, content: str) -> None:
        history = self._history.setdefault(session_id, [])
        history.append(Turn(role=role, content=content, timestamp=self._clock()))
        if len(history) > self.max_turns:
            del history[: len(history) - self.max_turns]

    def clear(self, session_id: str) -> None:
        self._history.pop(session_id, None)
        self._active_tickets.pop(session_id, None)
        logger.info("Cleared conversation for session %s", session_id)

    def set_active_ticket(self, session_id: str, ticket_id: int) -> None:
        self._active_tickets[session_id] = ticket_id

    def get_active_ticket(self, session_id: str) -> int | None:
        return self._active_tickets.get(session_id)

    def list_session_ids(self) -> list[str]:
        return list(set(self._history) | set(self._active_tickets))

    def sweep(self, max_age: timedelta) -> int:
        cutoff = self._clock() - max_age
        expired = [
            session_id
            for session_id, history in self._history.items()
            if history and history[-1].timestamp < cutoff
        ]
        for session_id in expired:
            self._history.pop(session_id, None)
            self._active_tickets.pop(session_id, None)
        if expired:
            logger.info("Swept %s idle sessions older than %s", len(expired), max_age)
        return len(expired)

    @asynccontextmanager
    async def serialized(self, session_id: str) -> AsyncIterator[None]:
        """Hold the session's lock for one turn.

        The lock lives only while some turn holds or waits for it, so the map
        never outgrows the number of in-flight turns and clearing a session
        cannot split its queue.
        """
        slot = self._locks.get(session_id)
        if slot is None:
            slot = self._locks[session_id] = _LockSlot()
        slot.users += 1
        try:
            async with slot.lock:
                yield
        finally:
            slot.users -= 1
            if slot.users == 0:
                del self._locks[session_id]

    def in_flight_sessions(self) -> list[str]:
        return list(self._locks)
