"""
Session registry: which turn currently owns each conversation session.

Starting a turn flips the previous turn's token to cancelled before the new
token is installed. Cancellation is cooperative: a turn notices at its next
check point and stops. Nothing here waits for the old turn to finish, so two
turns of one session can briefly overlap while the old one tears down.
"""

from __future__ import annotations

import asyncio
import threading
from abc import ABC, abstractmethod

from loguru import logger

from conductor.errors import TurnCancelled


class CancellationToken:
    """One turn's stop flag."""

    def __init__(self, session_id: str):
        self.session_id = session_id
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise TurnCancelled(self.session_id)


class SessionRegistry(ABC):
    @abstractmethod
    def start(self, session_id: str) -> CancellationToken:
        """Supersede any running turn of the session and register a new one."""

    @abstractmethod
    def is_cancelled(self, session_id: str) -> bool:
        """True when the session has no running turn or its turn was superseded."""

    @abstractmethod
    def clear(self, session_id: str, token: CancellationToken | None = None) -> None:
        """Drop the session's entry. With ``token``, only if that token still owns it."""

    @abstractmethod
    def cancel(self, session_id: str) -> bool:
        """Interrupt the running turn without starting another. False if none was running."""


class InMemorySessionRegistry(SessionRegistry):
    def __init__(self):
        self._lock = threading.Lock()
        self._active: dict[str, CancellationToken] = {}

    def start(self, session_id: str) -> CancellationToken:
        token = CancellationToken(session_id)
        with self._lock:
            previous = self._active.get(session_id)
            if previous is not None:
                previous.cancel()
            self._active[session_id] = token
        if previous is not None:
            logger.info(f"Session {session_id}: new turn supersedes the running one")
        return token

    def is_cancelled(self, session_id: str) -> bool:
        token = self._active.get(session_id)
        return token is None or token.cancelled

    def clear(self, session_id: str, token: CancellationToken | None = None) -> None:
        with self._lock:
            current = self._active.get(session_id)
            if current is None:
                return
            if token is not None and current is not token:
                return
            del self._active[session_id]

    def cancel(self, session_id: str) -> bool:
        with self._lock:
            token = self._active.get(session_id)
        if token is None or token.cancelled:
            return False
        token.cancel()
        logger.info(f"Session {session_id}: interrupt requested")
        return True

    def active_sessions(self) -> list[str]:
        with self._lock:
            return [sid for sid, token in self._active.items() if not token.cancelled]
