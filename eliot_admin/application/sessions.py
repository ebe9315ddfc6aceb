"""In-memory registry of console sessions."""
from __future__ import annotations

import logging
import uuid
from typing import Callable, Generic, Iterator, TypeVar

from eliot_admin.errors import SessionNotFoundError

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


class SessionStore(Generic[T]):
    """Keeps per-session service objects keyed by an opaque id.

    Sessions live as long as the process; nothing is persisted.
    """

    def __init__(self, kind: str) -> None:
        self._kind = kind
        self._sessions: dict[str, T] = {}

    def create(self, factory: Callable[[], T]) -> tuple[str, T]:
        session_id = uuid.uuid4().hex
        session = factory()
        self._sessions[session_id] = session
        LOGGER.info("%s session created id=%s", self._kind, session_id)
        return session_id, session

    def put(self, session_id: str, session: T) -> None:
        self._sessions[session_id] = session

    def get(self, session_id: str) -> T:
        try:
            return self._sessions[session_id]
        except KeyError:
            raise SessionNotFoundError(f"Unknown {self._kind} session: {session_id}") from None

    def remove(self, session_id: str) -> T:
        session = self.get(session_id)
        del self._sessions[session_id]
        LOGGER.info("%s session removed id=%s", self._kind, session_id)
        return session

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._sessions))

    def __len__(self) -> int:
        return len(self._sessions)

    def clear(self) -> None:
        self._sessions.clear()


__all__ = ["SessionStore"]
