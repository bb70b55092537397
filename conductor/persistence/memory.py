"""
In-memory conversation store.

Keeps messages, tasks and each session's active-message list in process
memory. When ``history_path`` is set, every saved message and every task
status change is also appended to a JSONL file so a run can be inspected
afterwards.
"""

from __future__ import annotations

import json
import threading
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any

from loguru import logger

from conductor.persistence.base import (
    ConversationStore,
    MessageRecord,
    TaskRecord,
    TaskStatus,
    new_id,
)

if TYPE_CHECKING:
    from conductor.agent.workflow import ConversationContext

_FINAL_STATUSES = (TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.CANCELLED)


class InMemoryConversationStore(ConversationStore):
    def __init__(self, history_path: Path | None = None):
        self._lock = threading.Lock()
        self._messages: list[MessageRecord] = []
        self._tasks: dict[str, TaskRecord] = {}
        self._active_messages: dict[str, list[str]] = {}
        self._history_path = history_path

    def _append_history(self, kind: str, payload: dict[str, Any]) -> None:
        if not self._history_path:
            return
        try:
            path = self._history_path.expanduser()
            path.parent.mkdir(parents=True, exist_ok=True)
            with path.open("a", encoding="utf-8") as f:
                f.write(json.dumps({"kind": kind, **payload}, ensure_ascii=True) + "\n")
        except OSError as e:
            logger.warning(f"Could not append to history file {self._history_path}: {e}")

    def save_message(self, message: MessageRecord) -> MessageRecord:
        with self._lock:
            self._messages.append(message)
        self._append_history("message", message.to_dict())
        return message

    def update_conversation_context(self, ctx: "ConversationContext") -> None:
        with self._lock:
            self._active_messages[ctx.session_id] = list(ctx.active_message_ids)

    def create_parent_task(self, ctx: "ConversationContext") -> TaskRecord:
        task = TaskRecord(
            id=new_id("task"),
            session_id=ctx.session_id,
            description=ctx.user_message,
            status=TaskStatus.RUNNING,
        )
        with self._lock:
            self._tasks[task.id] = task
        self._append_history("task", task.to_dict())
        return task

    def create_subtask(
        self,
        description: str,
        parent_id: str,
        ctx: "ConversationContext",
        position: int = 0,
    ) -> TaskRecord:
        task = TaskRecord(
            id=new_id("task"),
            session_id=ctx.session_id,
            description=description,
            parent_id=parent_id,
            position=position,
        )
        with self._lock:
            self._tasks[task.id] = task
        self._append_history("task", task.to_dict())
        return task

    def update_task_status(self, task_id: str, status: TaskStatus, result: str | None = None) -> None:
        with self._lock:
            task = self._tasks.get(task_id)
            if task is None:
                logger.warning(f"Status update for unknown task {task_id}")
                return
            if task.status in _FINAL_STATUSES:
                return
            task.status = status
            if result is not None:
                task.result = result
            if status in _FINAL_STATUSES:
                task.completed_at = datetime.now()
        self._append_history("task", task.to_dict())

    # Read side, used by the gateway and tests.

    def get_messages(self, session_id: str | None = None) -> list[MessageRecord]:
        with self._lock:
            return [m for m in self._messages if session_id is None or m.session_id == session_id]

    def get_task(self, task_id: str) -> TaskRecord | None:
        return self._tasks.get(task_id)

    def get_subtasks(self, parent_id: str) -> list[TaskRecord]:
        with self._lock:
            children = [t for t in self._tasks.values() if t.parent_id == parent_id]
        return sorted(children, key=lambda t: t.position)

    def get_tasks(self, session_id: str | None = None) -> list[TaskRecord]:
        with self._lock:
            return [t for t in self._tasks.values() if session_id is None or t.session_id == session_id]

    def get_active_messages(self, session_id: str) -> list[str]:
        with self._lock:
            return list(self._active_messages.get(session_id, []))
