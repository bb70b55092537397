"""Persistence records and the store interface the turn writes through."""

from __future__ import annotations

import secrets
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from conductor.agent.workflow import ConversationContext


class MessageRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


class MessageType(str, Enum):
    """What produced the message."""
    CHAT = "chat"
    TASK_SPLIT = "task_split"
    TOOL_CALL = "tool_call"
    SUMMARY = "summary"


class TaskStatus(str, Enum):
    """Task lifecycle states."""
    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


def new_id(prefix: str) -> str:
    return f"{prefix}_{secrets.token_hex(6)}"


@dataclass
class MessageRecord:
    id: str
    session_id: str
    user_id: str
    role: MessageRole
    content: str
    message_type: MessageType = MessageType.CHAT
    model: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=datetime.now)

    @classmethod
    def create(
        cls,
        ctx: "ConversationContext",
        role: MessageRole,
        content: str,
        message_type: MessageType = MessageType.CHAT,
        **metadata: Any,
    ) -> "MessageRecord":
        return cls(
            id=new_id("msg"),
            session_id=ctx.session_id,
            user_id=ctx.user_id,
            role=role,
            content=content,
            message_type=message_type,
            model=ctx.model if role is not MessageRole.USER else None,
            metadata=metadata,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "session_id": self.session_id,
            "user_id": self.user_id,
            "role": self.role.value,
            "content": self.content,
            "message_type": self.message_type.value,
            "model": self.model,
            "metadata": self.metadata,
            "created_at": self.created_at.isoformat(),
        }


@dataclass
class TaskRecord:
    id: str
    session_id: str
    description: str
    parent_id: str | None = None
    position: int = 0
    status: TaskStatus = TaskStatus.QUEUED
    result: str | None = None
    created_at: datetime = field(default_factory=datetime.now)
    completed_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "session_id": self.session_id,
            "description": self.description,
            "parent_id": self.parent_id,
            "position": self.position,
            "status": self.status.value,
            "result": self.result,
            "created_at": self.created_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }


class ConversationStore(ABC):
    """Where a turn's messages and tasks end up.

    Calls are synchronous; a store backed by a remote database should keep
    them short or hand off internally.
    """

    @abstractmethod
    def save_message(self, message: MessageRecord) -> MessageRecord:
        ...

    def save_messages(self, messages: list[MessageRecord]) -> list[MessageRecord]:
        return [self.save_message(m) for m in messages]

    @abstractmethod
    def update_conversation_context(self, ctx: "ConversationContext") -> None:
        """Persist the conversation's active-message list."""

    @abstractmethod
    def create_parent_task(self, ctx: "ConversationContext") -> TaskRecord:
        ...

    @abstractmethod
    def create_subtask(
        self,
        description: str,
        parent_id: str,
        ctx: "ConversationContext",
        position: int = 0,
    ) -> TaskRecord:
        ...

    @abstractmethod
    def update_task_status(self, task_id: str, status: TaskStatus, result: str | None = None) -> None:
        ...
