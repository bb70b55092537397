from __future__ import annotations

import json
from pathlib import Path

from conductor.persistence.base import MessageRecord, MessageRole, MessageType, TaskStatus
from conductor.persistence.memory import InMemoryConversationStore
from tests.helpers import conversation


def test_messages_are_kept_per_session() -> None:
    store = InMemoryConversationStore()
    a = conversation("hi", session_id="a")
    b = conversation("yo", session_id="b")

    store.save_messages([
        MessageRecord.create(a, MessageRole.USER, "hi"),
        MessageRecord.create(a, MessageRole.ASSISTANT, "hello"),
    ])
    store.save_message(MessageRecord.create(b, MessageRole.USER, "yo"))

    assert [m.content for m in store.get_messages("a")] == ["hi", "hello"]
    assert len(store.get_messages()) == 3
    assert store.get_messages("a")[0].model is None
    assert store.get_messages("a")[1].model == "stub-model"


def test_subtasks_come_back_in_plan_order() -> None:
    store = InMemoryConversationStore()
    ctx = conversation("trip")
    parent = store.create_parent_task(ctx)
    store.create_subtask("second", parent.id, ctx, position=1)
    store.create_subtask("first", parent.id, ctx, position=0)

    assert parent.status is TaskStatus.RUNNING
    assert [t.description for t in store.get_subtasks(parent.id)] == ["first", "second"]
    assert store.get_task(parent.id) is parent


def test_final_task_status_is_sticky() -> None:
    store = InMemoryConversationStore()
    parent = store.create_parent_task(conversation())

    store.update_task_status(parent.id, TaskStatus.CANCELLED)
    store.update_task_status(parent.id, TaskStatus.COMPLETED, result="late")

    task = store.get_task(parent.id)
    assert task.status is TaskStatus.CANCELLED
    assert task.result is None
    assert task.completed_at is not None


def test_unknown_task_update_is_ignored() -> None:
    store = InMemoryConversationStore()
    store.update_task_status("task_missing", TaskStatus.FAILED)
    assert store.get_tasks() == []


def test_active_messages_follow_context() -> None:
    store = InMemoryConversationStore()
    ctx = conversation()
    ctx.active_message_ids.extend(["m1", "m2"])

    store.update_conversation_context(ctx)
    ctx.active_message_ids.append("m3")

    assert store.get_active_messages("s1") == ["m1", "m2"]
    assert store.get_active_messages("other") == []


def test_history_file_records_messages_and_tasks(tmp_path: Path) -> None:
    path = tmp_path / "history" / "turns.jsonl"
    store = InMemoryConversationStore(history_path=path)
    ctx = conversation()

    parent = store.create_parent_task(ctx)
    store.save_message(MessageRecord.create(ctx, MessageRole.ASSISTANT, "plan", MessageType.TASK_SPLIT, task_id=parent.id))
    store.update_task_status(parent.id, TaskStatus.COMPLETED, result="done")

    rows = [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines()]
    assert [r["kind"] for r in rows] == ["task", "message", "task"]
    assert rows[1]["message_type"] == "task_split"
    assert rows[1]["metadata"] == {"task_id": parent.id}
    assert rows[2]["status"] == "completed"
