"""
Agent loop executor: the iterate/decide cycle behind a task turn.

Each iteration makes one tool-enabled call. Requested tools run through the
tool gateway and their results are appended to the running transcript,
which goes back to the model on the next iteration. The loop ends when the
model stops asking for tools, when the iteration cap is hit, or when the
turn is cancelled. A streaming polish pass then rewrites the transcript into
the answer the user sees.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

from loguru import logger

from conductor.agent.prompts import (
    CONTINUE_PROMPT,
    FIRST_ITERATION_SUFFIX,
    LOOP_SYSTEM_PROMPT,
    PLAN_SECTION,
    POLISH_PROMPT,
    format_subtasks,
)
from conductor.agent.workflow import WorkflowContext, WorkflowState
from conductor.errors import AgentLoopError, ProviderError, TurnCancelled
from conductor.persistence.base import ConversationStore, MessageRecord, MessageRole, MessageType
from conductor.providers.base import LLMProvider
from conductor.tools.gateway import ToolCapability, ToolGateway
from conductor.transport.base import MessageTransport
from conductor.transport.events import StreamEvent

DEFAULT_MAX_ITERATIONS = 30

# Inline markup some models put in front of (or instead of) native tool calls.
TOOL_CALL_MARKERS = (
    "<tool_call>",
    "<function_call>",
    "<|tool_call|>",
    "<|tool_calls_section_begin|>",
    "```tool_call",
)

_TRANSCRIPT_ENTRY_LIMIT = 4000


@dataclass
class LoopOutcome:
    iterations: int = 0
    transcript: list[dict[str, Any]] = field(default_factory=list)
    cap_reached: bool = False
    pending_tool_calls: bool = False
    final_content: str = ""


def split_leading_explanation(content: str | None) -> str:
    """Text the model wrote before its first tool-call marker."""
    text = content or ""
    cut = len(text)
    for marker in TOOL_CALL_MARKERS:
        index = text.find(marker)
        if index != -1:
            cut = min(cut, index)
    return text[:cut].strip()


def _clip(text: str, limit: int = _TRANSCRIPT_ENTRY_LIMIT) -> str:
    return text if len(text) <= limit else text[:limit] + " ...[truncated]"


def render_transcript(transcript: list[dict[str, Any]]) -> str:
    lines: list[str] = []
    for entry in transcript:
        role = entry.get("role")
        if role == "assistant":
            content = split_leading_explanation(entry.get("content"))
            if content:
                lines.append(f"Assistant: {_clip(content)}")
            for call in entry.get("tool_calls") or []:
                fn = call.get("function", {})
                lines.append(f"Tool call: {fn.get('name')}({fn.get('arguments', '')})")
        elif role == "tool":
            lines.append(f"Result of {entry.get('name')}: {_clip(str(entry.get('content', '')))}")
    return "\n".join(lines) if lines else "(no intermediate steps)"


class AgentLoopExecutor:
    def __init__(
        self,
        provider: LLMProvider,
        gateway: ToolGateway,
        store: ConversationStore,
        transport: MessageTransport,
        max_iterations: int = DEFAULT_MAX_ITERATIONS,
    ):
        self.provider = provider
        self.gateway = gateway
        self.store = store
        self.transport = transport
        self.max_iterations = max(1, max_iterations)

    def _build_messages(self, wctx: WorkflowContext, transcript: list[dict[str, Any]]) -> list[dict[str, Any]]:
        system = LOOP_SYSTEM_PROMPT
        if wctx.subtasks:
            plan = format_subtasks([s.description for s in wctx.subtasks])
            system += "\n\n" + PLAN_SECTION.format(subtasks=plan)
        if not transcript:
            system += "\n\n" + FIRST_ITERATION_SUFFIX

        messages: list[dict[str, Any]] = [
            {"role": "system", "content": system},
            {"role": "user", "content": wctx.conversation.user_message},
        ]
        if transcript:
            messages.extend(transcript)
            messages.append({"role": "user", "content": CONTINUE_PROMPT})
        return messages

    async def _call_model(
        self,
        wctx: WorkflowContext,
        messages: list[dict[str, Any]],
        capability: ToolCapability,
        iteration: int,
    ):
        ctx = wctx.conversation
        try:
            response = await self.provider.chat(
                messages,
                tools=capability.definitions or None,
                model=ctx.model,
                max_tokens=ctx.max_tokens,
                temperature=ctx.temperature,
                top_p=ctx.top_p,
            )
        except Exception as e:
            raise AgentLoopError(iteration, ProviderError(str(e))) from e
        if response.finish_reason == "error":
            raise AgentLoopError(iteration, ProviderError(response.content or "model call failed"))
        return response

    async def run(self, wctx: WorkflowContext) -> LoopOutcome:
        ctx = wctx.conversation
        token = wctx.cancel_token
        capability = self.gateway.create_tool_capability(ctx.tool_names)
        outcome = LoopOutcome(transcript=wctx.transcript)

        logger.info(
            f"Session {ctx.session_id}: agent loop starting "
            f"(cap={self.max_iterations}, tools={len(capability.names)})"
        )

        while outcome.iterations < self.max_iterations:
            token.raise_if_cancelled()
            outcome.iterations += 1
            iteration = outcome.iterations
            logger.info(f"Session {ctx.session_id}: iteration {iteration}/{self.max_iterations}")

            messages = self._build_messages(wctx, outcome.transcript)
            response = await self._call_model(wctx, messages, capability, iteration)
            token.raise_if_cancelled()

            if not response.has_tool_calls:
                outcome.final_content = response.content or ""
                if outcome.final_content:
                    outcome.transcript.append({"role": "assistant", "content": outcome.final_content})
                outcome.pending_tool_calls = False
                break

            explanation = split_leading_explanation(response.content)
            if explanation:
                self.transport.send(wctx.connection, StreamEvent.text(explanation, stage="execute"))
            outcome.transcript.append({
                "role": "assistant",
                "content": response.content or "",
                "tool_calls": [call.to_openai() for call in response.tool_calls],
            })

            for call in response.tool_calls:
                token.raise_if_cancelled()
                self.transport.send(wctx.connection, StreamEvent.tool_call(call.name, call.arguments))
                try:
                    result = await self.gateway.execute(call, capability)
                except Exception as e:
                    raise AgentLoopError(iteration, e) from e
                outcome.transcript.append({
                    "role": "tool",
                    "tool_call_id": call.id,
                    "name": call.name,
                    "content": result,
                })
                self.store.save_message(MessageRecord.create(
                    ctx,
                    MessageRole.TOOL,
                    result,
                    message_type=MessageType.TOOL_CALL,
                    tool=call.name,
                    arguments=json.dumps(call.arguments, ensure_ascii=False),
                    tool_call_id=call.id,
                ))
                token.raise_if_cancelled()
            outcome.pending_tool_calls = True
        else:
            outcome.cap_reached = True

        if outcome.cap_reached and outcome.pending_tool_calls:
            logger.warning(f"Session {ctx.session_id}: hit the iteration cap ({self.max_iterations})")
            self.transport.send(
                wctx.connection,
                StreamEvent.warning(
                    f"Reached the limit of {self.max_iterations} steps; summarising what was done so far."
                ),
            )

        logger.info(f"Session {ctx.session_id}: agent loop finished after {outcome.iterations} iteration(s)")
        return outcome

    async def polish(self, wctx: WorkflowContext, outcome: LoopOutcome) -> str:
        """Stream the final answer. Persisted only if the stream finishes uncancelled."""
        ctx = wctx.conversation
        prompt = POLISH_PROMPT.format(
            request=ctx.user_message,
            transcript=render_transcript(outcome.transcript),
        )
        messages = [
            {"role": "system", "content": prompt},
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
                if wctx.cancelled:
                    logger.info(f"Session {ctx.session_id}: polish interrupted after {len(buffer)} chunk(s)")
                    raise TurnCancelled(ctx.session_id)
                buffer.append(chunk)
                self.transport.send(wctx.connection, StreamEvent.text(chunk, stage="polish"))
        except TurnCancelled:
            raise
        except Exception as e:
            raise ProviderError(f"Polish stream failed: {e}") from e
        wctx.cancel_token.raise_if_cancelled()

        answer = "".join(buffer)
        record = MessageRecord.create(
            ctx,
            MessageRole.ASSISTANT,
            answer,
            message_type=MessageType.SUMMARY,
            task_id=wctx.parent_task.id if wctx.parent_task else None,
        )
        self.store.save_message(record)
        wctx.assistant_message_record = record
        ctx.active_message_ids.append(record.id)
        self.store.update_conversation_context(ctx)
        self.transport.send_final(wctx.connection, StreamEvent.end(stage="polish"))
        return answer

    async def handle_execute(self, wctx: WorkflowContext) -> WorkflowState:
        outcome = await self.run(wctx)
        wctx.set_result("loop", outcome)
        return WorkflowState.POLISH

    async def handle_polish(self, wctx: WorkflowContext) -> WorkflowState:
        outcome = wctx.get_result("loop") or LoopOutcome(transcript=wctx.transcript)
        answer = await self.polish(wctx, outcome)
        wctx.set_result("answer", answer)
        return WorkflowState.DONE
