"""Conversation persistence."""

from conductor.persistence.base import (
    ConversationStore,
    MessageRecord,
    MessageRole,
    MessageType,
    TaskRecord,
    TaskStatus,
)
from conductor.persistence.memory import InMemoryConversationStore

__all__ = [
    "ConversationStore",
    "InMemoryConversationStore",
    "MessageRecord",
    "MessageRole",
    "MessageType",
    "TaskRecord",
    "TaskStatus",
]
