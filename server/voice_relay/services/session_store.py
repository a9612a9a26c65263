"""In-memory conversation history keyed by session id."""
from __future__ import annotations

import asyncio
import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Literal

from ..errors import ValidationError

logger = logging.getLogger(__name__)

Role = Literal["user", "assistant"]
ROLES: frozenset[str] = frozenset({"user", "assistant"})
MAX_MESSAGES = 20


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True, slots=True)
class Message:
    """One conversation turn."""

    role: Role
    content: str
    timestamp: datetime = field(default_factory=_utcnow)


@dataclass(slots=True)
class SessionLog:
    """Bounded message log owned by the store."""

    messages: deque[Message]


def _require_session_id(session_id: Any) -> str:
    if not isinstance(session_id, str) or not session_id.strip():
        raise ValidationError("Invalid session ID")
    return session_id


class SessionStore:
    """Owns every session's message log.

    Logs are created lazily on first lookup and only removed by `clear`. Callers
    receive tuple snapshots, never the live log.
    """

    def __init__(self, max_messages: int = MAX_MESSAGES) -> None:
        if max_messages < 1:
            raise ValueError("max_messages must be positive")
        self._max_messages = max_messages
        self._sessions: dict[str, SessionLog] = {}
        # Kept across `clear` so an in-flight turn and the next one share a lock.
        self._locks: dict[str, asyncio.Lock] = {}

    @property
    def max_messages(self) -> int:
        return self._max_messages

    def _log(self, session_id: Any) -> SessionLog:
        key = _require_session_id(session_id)
        log = self._sessions.get(key)
        if log is None:
            log = SessionLog(messages=deque(maxlen=self._max_messages))
            self._sessions[key] = log
        return log

    def get(self, session_id: str) -> tuple[Message, ...]:
        """Return the ordered history for a session, creating it if unseen."""

        return tuple(self._log(session_id).messages)

    def append(self, session_id: str, role: str, content: str) -> bool:
        """Record a message; returns False instead of raising on invalid input.

        History bookkeeping must never break a conversation turn, so validation
        problems are logged and the stored history is left untouched.
        """

        try:
            if not session_id or not role or not content:
                raise ValidationError("Invalid parameters for chat history")
            if role not in ROLES:
                raise ValidationError(f"Unknown message role: {role!r}")
            if not isinstance(content, str) or not content.strip():
                raise ValidationError("Message content must be a non-empty string")
            log = self._log(session_id)
        except ValidationError as exc:
            logger.error("Error adding to chat history: %s", exc.message)
            return False

        # deque(maxlen) evicts from the left, keeping the most recent turns.
        log.messages.append(Message(role=role, content=content))  # type: ignore[arg-type]
        logger.info(
            "Added %s message to session %s. History length: %d",
            role,
            session_id,
            len(log.messages),
        )
        return True

    def clear(self, session_id: str) -> None:
        """Drop a session's history; unknown sessions are ignored."""

        key = _require_session_id(session_id)
        if self._sessions.pop(key, None) is not None:
            logger.info("Cleared chat history for session %s", key)

    def lock(self, session_id: str) -> asyncio.Lock:
        """Return the lock guarding one session's conversation turns."""

        key = _require_session_id(session_id)
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)
