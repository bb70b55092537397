"""Per-turn workflow state.

A turn moves forward through CLASSIFY -> (DONE | DECOMPOSE -> EXECUTE ->
POLISH -> DONE). Any state may jump straight to DONE.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from conductor.errors import InvalidTransitionError

if TYPE_CHECKING:
    from conductor.agent.sessions import CancellationToken
    from conductor.persistence.base import MessageRecord, TaskRecord
    from conductor.transport.connection import StreamConnection


class WorkflowState(str, Enum):
    CLASSIFY = "classify"
    DECOMPOSE = "decompose"
    EXECUTE = "execute"
    POLISH = "polish"
    DONE = "done"


ALLOWED_TRANSITIONS: dict[WorkflowState, frozenset[WorkflowState]] = {
    WorkflowState.CLASSIFY: frozenset({WorkflowState.DECOMPOSE, WorkflowState.DONE}),
    WorkflowState.DECOMPOSE: frozenset({WorkflowState.EXECUTE, WorkflowState.DONE}),
    WorkflowState.EXECUTE: frozenset({WorkflowState.POLISH, WorkflowState.DONE}),
    WorkflowState.POLISH: frozenset({WorkflowState.DONE}),
    WorkflowState.DONE: frozenset(),
}


@dataclass
class ConversationContext:
    """What a turn was asked to do and with which model settings.

    Fixed once the turn starts, except ``user_message`` and
    ``active_message_ids``.
    """
    session_id: str
    user_id: str
    user_message: str
    model: str | None = None
    provider: str | None = None
    temperature: float = 0.7
    top_p: float | None = None
    context_size: int = 20
    max_tokens: int = 4096
    tool_names: list[str] | None = None
    active_message_ids: list[str] = field(default_factory=list)


@dataclass
class SubtaskDescriptor:
    description: str
    task_id: str
    parent_id: str
    position: int


@dataclass
class WorkflowContext:
    """Mutable state of one turn. Owned by the turn's background task."""
    conversation: ConversationContext
    connection: "StreamConnection"
    cancel_token: "CancellationToken"
    state: WorkflowState = WorkflowState.CLASSIFY
    results: dict[str, Any] = field(default_factory=dict)
    user_message_record: "MessageRecord | None" = None
    assistant_message_record: "MessageRecord | None" = None
    subtasks: list[SubtaskDescriptor] = field(default_factory=list)
    parent_task: "TaskRecord | None" = None
    transcript: list[dict[str, Any]] = field(default_factory=list)
    should_break: bool = False

    @property
    def session_id(self) -> str:
        return self.conversation.session_id

    @property
    def cancelled(self) -> bool:
        return self.cancel_token.cancelled

    def transition_to(self, target: WorkflowState) -> None:
        if target is not WorkflowState.DONE and target not in ALLOWED_TRANSITIONS[self.state]:
            raise InvalidTransitionError(f"{self.state.value} -> {target.value}")
        self.state = target

    def add_subtask(self, subtask: SubtaskDescriptor) -> None:
        self.subtasks.append(subtask)

    def set_result(self, key: str, value: Any) -> None:
        self.results[key] = value

    def get_result(self, key: str, default: Any = None) -> Any:
        return self.results.get(key, default)
