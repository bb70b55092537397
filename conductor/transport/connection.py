"""A single client connection backed by an asyncio queue.

The connection owns its lifecycle flag. Every path that wants to finish the
stream (normal end, error, client disconnect, timeout) goes through
``close`` and only the first compare-and-set from OPEN wins. Later sends
and closes are logged no-ops.
"""

from __future__ import annotations

import asyncio
import secrets
import threading
from enum import Enum
from typing import AsyncIterator, Callable

from loguru import logger

from conductor.transport.events import StreamEvent

TIMEOUT_MESSAGE = "Connection timed out"


class ConnectionState(str, Enum):
    OPEN = "open"
    CLOSING = "closing"
    CLOSED = "closed"


class StreamConnection:
    def __init__(self, connection_id: str | None = None):
        self.id = connection_id or secrets.token_hex(6)
        self._state = ConnectionState.OPEN
        self._state_lock = threading.Lock()
        self._queue: asyncio.Queue[StreamEvent | None] = asyncio.Queue()
        self._timer: asyncio.TimerHandle | None = None
        self._timeout_callbacks: list[Callable[[], None]] = []

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_open(self) -> bool:
        return self._state is ConnectionState.OPEN

    def _compare_and_set(self, expected: ConnectionState, new: ConnectionState) -> bool:
        with self._state_lock:
            if self._state is not expected:
                return False
            self._state = new
            return True

    def push(self, event: StreamEvent) -> bool:
        """Queue a non-terminal event. Returns False if the stream is finished."""
        if self._state is not ConnectionState.OPEN:
            logger.debug(f"Connection {self.id} is {self._state.value}, dropping {event.type.value} event")
            return False
        self._queue.put_nowait(event)
        return True

    def close(self, final: StreamEvent | None = None) -> bool:
        """Finish the stream, optionally with one last (terminal) event.

        Returns True only for the call that actually closed the connection.
        """
        if not self._compare_and_set(ConnectionState.OPEN, ConnectionState.CLOSING):
            logger.debug(f"Connection {self.id} already {self._state.value}, ignoring close")
            return False
        if final is not None:
            self._queue.put_nowait(final)
        self._cancel_timer()
        self._state = ConnectionState.CLOSED
        self._queue.put_nowait(None)
        return True

    def arm_timeout(self, seconds: float) -> None:
        """Close with a timeout error after ``seconds`` unless closed earlier."""
        self._cancel_timer()
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(seconds, self._on_timeout)

    def on_timeout(self, callback: Callable[[], None]) -> None:
        """Run ``callback`` if this connection is closed by its timeout."""
        self._timeout_callbacks.append(callback)

    def _on_timeout(self) -> None:
        self._timer = None
        if not self.close(StreamEvent.error(TIMEOUT_MESSAGE)):
            return
        logger.warning(f"Connection {self.id} timed out")
        for callback in self._timeout_callbacks:
            callback()

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    async def events(self) -> AsyncIterator[StreamEvent]:
        """Yield queued events until the connection closes."""
        while True:
            event = await self._queue.get()
            if event is None:
                return
            yield event

    async def collect(self) -> list[StreamEvent]:
        return [event async for event in self.events()]
