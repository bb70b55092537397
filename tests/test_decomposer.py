from __future__ import annotations

import asyncio
from typing import Any, AsyncIterator

import pytest

from conductor.agent.decomposer import split_subtasks
from conductor.persistence.base import MessageType, TaskStatus
from tests.helpers import ScriptedProvider, conversation, make_coordinator, types_of, verdict


def test_numbered_lines_become_ordered_subtasks() -> None:
    text = "1. Gather data\n2. Analyse it\n3) Write the report"
    assert split_subtasks(text) == ["Gather data", "Analyse it", "Write the report"]


def test_label_markers_are_recognised() -> None:
    text = "Task 1: book flights\nSubtask 2 - reserve hotel\nStep 3. pack\n子任务4：出发"
    assert split_subtasks(text) == ["book flights", "reserve hotel", "pack", "出发"]


def test_markdown_decorated_markers() -> None:
    text = "## 1. Research\n- **2.** Draft\n**Step 3:** Review"
    assert split_subtasks(text) == ["Research", "Draft", "Review"]


def test_continuation_lines_join_open_subtask() -> None:
    text = "1. Compare providers\n   - price\n   - latency\n\n2. Pick one"
    assert split_subtasks(text) == ["Compare providers\n- price\n- latency", "Pick one"]


def test_preamble_before_first_marker_is_dropped() -> None:
    text = "Here is the plan:\n\n1. First\n2. Second"
    assert split_subtasks(text) == ["First", "Second"]


@pytest.mark.parametrize("text", ["", "Just do it all at once.", "Plan:\n- a\n- b"])
def test_no_markers_means_no_subtasks(text: str) -> None:
    assert split_subtasks(text) == []


@pytest.mark.asyncio
async def test_plan_streams_live_and_creates_linked_subtasks() -> None:
    provider = ScriptedProvider(
        responses=[verdict(False)],
        streams=[["1. Find", " flights\n2. Book", " hotel\n"], ["Done."]],
    )
    coordinator, store = make_coordinator(provider)

    events = await (await coordinator.chat(conversation("plan my trip"))).collect()

    decompose_text = [e.content for e in events if e.stage == "decompose"]
    assert decompose_text == ["1. Find", " flights\n2. Book", " hotel\n"]

    parents = [t for t in store.get_tasks() if t.parent_id is None]
    assert len(parents) == 1
    subtasks = store.get_subtasks(parents[0].id)
    assert [t.description for t in subtasks] == ["Find flights", "Book hotel"]
    assert [t.position for t in subtasks] == [0, 1]

    split = [m for m in store.get_messages() if m.message_type is MessageType.TASK_SPLIT]
    assert len(split) == 1
    assert split[0].content == "1. Find flights\n2. Book hotel\n"
    assert split[0].metadata["task_id"] == parents[0].id


@pytest.mark.asyncio
async def test_zero_subtasks_aborts_turn_without_task_records() -> None:
    provider = ScriptedProvider(
        responses=[verdict(False)],
        streams=[["I will simply handle everything in one go."]],
    )
    coordinator, store = make_coordinator(provider)

    events = await (await coordinator.chat(conversation("do stuff"))).collect()

    assert types_of(events)[-1] == "error"
    assert types_of(events).count("error") == 1
    assert "subtasks" in events[-1].content
    parents = [t for t in store.get_tasks() if t.parent_id is None]
    assert len(parents) == 1
    assert store.get_subtasks(parents[0].id) == []
    assert parents[0].status is TaskStatus.FAILED
    assert store.get_messages() == []
    assert provider.calls[1:] == []


class InterruptDuringPlan(ScriptedProvider):
    """Interrupts the session right after the first plan chunk is delivered."""

    def __init__(self, *args: Any, **kwargs: Any):
        super().__init__(*args, **kwargs)
        self.coordinator = None

    async def stream_chat(self, messages: list[dict[str, Any]], **kwargs: Any) -> AsyncIterator[str]:
        async for chunk in super().stream_chat(messages, **kwargs):
            yield chunk
            self.coordinator.interrupt("s1")
            await asyncio.sleep(0)


@pytest.mark.asyncio
async def test_interrupt_mid_plan_creates_no_subtasks() -> None:
    provider = InterruptDuringPlan(
        responses=[verdict(False)],
        streams=[["1. First\n", "2. Second\n", "3. Third\n"]],
    )
    coordinator, store = make_coordinator(provider)
    provider.coordinator = coordinator

    events = await asyncio.wait_for((await coordinator.chat(conversation())).collect(), timeout=5)

    assert [e.content for e in events if e.stage == "decompose"] == ["1. First\n"]
    assert "end" not in types_of(events)
    assert "error" not in types_of(events)
    parents = [t for t in store.get_tasks() if t.parent_id is None]
    assert len(parents) == 1
    assert store.get_subtasks(parents[0].id) == []
    assert parents[0].status is TaskStatus.CANCELLED
    assert [m for m in store.get_messages() if m.message_type is MessageType.TASK_SPLIT] == []
    assert len(provider.calls) == 1
