"""
Task decomposer.

Streams a numbered plan from the model, forwarding every chunk to the client
while it arrives, then cuts the finished text into subtasks and records each
as a child of the turn's parent task.
"""

import re

from loguru import logger

from conductor.agent.prompts import DECOMPOSITION_PROMPT
from conductor.agent.workflow import SubtaskDescriptor, WorkflowContext, WorkflowState
from conductor.errors import DecompositionError, ProviderError, TurnCancelled
from conductor.persistence.base import ConversationStore, MessageRecord, MessageRole, MessageType
from conductor.providers.base import LLMProvider
from conductor.transport.base import MessageTransport
from conductor.transport.events import StreamEvent

# "1." / "2)" / "Task 3:" / "Subtask 4 -" / "Step 5" / "任务6" / "子任务7",
# optionally behind markdown list or heading markup.
_MARKER = re.compile(
    r"""^\s*(?:[-*#>]+\s*)?(?:\*\*)?
    (?:
        \d+\s*[.)、]
      | (?:sub-?task|task|step)\s*\#?\s*\d+\b\s*[:.)\-]?
      | 子?任务\s*\d+\s*[:：.、]?
    )
    (?:\*\*)?\s*""",
    flags=re.IGNORECASE | re.VERBOSE,
)


def split_subtasks(text: str) -> list[str]:
    """Cut decomposition output into subtasks.

    A marker line opens a new subtask; any other non-blank line continues
    the open one. Lines before the first marker belong to no subtask and
    are dropped.
    """
    subtasks: list[list[str]] = []
    dropped = 0
    for raw in (text or "").splitlines():
        line = raw.strip()
        if not line:
            continue
        match = _MARKER.match(line)
        if match:
            subtasks.append([line[match.end():].strip()])
        elif subtasks:
            subtasks[-1].append(line)
        else:
            dropped += 1
    if dropped:
        logger.debug(f"Dropped {dropped} preamble line(s) before the first subtask")
    result = []
    for parts in subtasks:
        joined = "\n".join(p for p in parts if p).strip()
        if joined:
            result.append(joined)
    return result


class TaskDecomposer:
    def __init__(self, provider: LLMProvider, store: ConversationStore, transport: MessageTransport):
        self.provider = provider
        self.store = store
        self.transport = transport

    async def stream_plan(self, wctx: WorkflowContext) -> str:
        ctx = wctx.conversation
        messages = [
            {"role": "system", "content": DECOMPOSITION_PROMPT},
            {"role": "user", "content": ctx.user_message},
        ]
        buffer: list[str] = []
        try:
            async for chunk in self.provider.stream_chat(
                messages,
                model=ctx.model,
                max_tokens=ctx.max_tokens,
                temperature=ctx.temperature,
                top_p=ctx.top_p,
            ):
                wctx.cancel_token.raise_if_cancelled()
                buffer.append(chunk)
                self.transport.send(wctx.connection, StreamEvent.text(chunk, stage="decompose"))
        except TurnCancelled:
            raise
        except Exception as e:
            raise ProviderError(f"Decomposition stream failed: {e}") from e
        wctx.cancel_token.raise_if_cancelled()
        return "".join(buffer)

    async def handle(self, wctx: WorkflowContext) -> WorkflowState:
        ctx = wctx.conversation
        if wctx.parent_task is None:
            wctx.parent_task = self.store.create_parent_task(ctx)
        parent = wctx.parent_task
        plan = await self.stream_plan(wctx)

        descriptions = split_subtasks(plan)
        if not descriptions:
            raise DecompositionError("The plan contained no numbered subtasks")
        logger.info(f"Session {ctx.session_id}: plan has {len(descriptions)} subtask(s)")

        for position, description in enumerate(descriptions):
            record = self.store.create_subtask(description, parent.id, ctx, position=position)
            wctx.add_subtask(SubtaskDescriptor(
                description=description,
                task_id=record.id,
                parent_id=parent.id,
                position=position,
            ))

        wctx.user_message_record = MessageRecord.create(ctx, MessageRole.USER, ctx.user_message)
        plan_record = MessageRecord.create(
            ctx,
            MessageRole.ASSISTANT,
            plan,
            message_type=MessageType.TASK_SPLIT,
            task_id=parent.id,
        )
        self.store.save_messages([wctx.user_message_record, plan_record])
        ctx.active_message_ids.extend([wctx.user_message_record.id, plan_record.id])
        self.store.update_conversation_context(ctx)
        return WorkflowState.EXECUTE
