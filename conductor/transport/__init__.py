"""Streaming transport to the client."""

from conductor.transport.base import MessageTransport, QueueTransport
from conductor.transport.connection import ConnectionState, StreamConnection
from conductor.transport.events import EventType, StreamEvent

__all__ = [
    "ConnectionState",
    "EventType",
    "MessageTransport",
    "QueueTransport",
    "StreamConnection",
    "StreamEvent",
]
