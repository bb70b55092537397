"""Message transport interface and the in-process queue implementation."""

from abc import ABC, abstractmethod

from loguru import logger

from conductor.transport.connection import StreamConnection
from conductor.transport.events import StreamEvent


class MessageTransport(ABC):
    """Delivers stream events to a client connection.

    None of these methods raise on a connection that is already closing or
    closed; they log and return.
    """

    @abstractmethod
    def create_connection(self, timeout: float | None = None) -> StreamConnection:
        """Open a connection, closing it with a timeout error after ``timeout`` seconds."""

    @abstractmethod
    def send(self, connection: StreamConnection, event: StreamEvent) -> None:
        """Send a non-terminal event."""

    @abstractmethod
    def send_final(self, connection: StreamConnection, event: StreamEvent) -> None:
        """Send a terminal event and close the connection."""

    @abstractmethod
    def close(self, connection: StreamConnection) -> None:
        """Close without a further event."""

    def fail(self, connection: StreamConnection, error: str | BaseException) -> None:
        """Send an error event and close."""
        self.send_final(connection, StreamEvent.error(error))


class QueueTransport(MessageTransport):
    def create_connection(self, timeout: float | None = None) -> StreamConnection:
        connection = StreamConnection()
        if timeout:
            connection.arm_timeout(timeout)
        logger.debug(f"Opened connection {connection.id} (timeout={timeout})")
        return connection

    def send(self, connection: StreamConnection, event: StreamEvent) -> None:
        if event.done:
            self.send_final(connection, event)
            return
        connection.push(event)

    def send_final(self, connection: StreamConnection, event: StreamEvent) -> None:
        if connection.close(event):
            logger.debug(f"Connection {connection.id} finished with {event.type.value}")

    def close(self, connection: StreamConnection) -> None:
        if connection.close():
            logger.debug(f"Connection {connection.id} closed")
