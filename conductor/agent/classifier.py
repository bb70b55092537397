"""
Message classifier: is the user's message a question or a task?

One non-streaming model call returns ``{"isQuestion": bool, "reply": str}``.
Models wrap JSON in fences, escape it, or quote the whole document, so
extraction tries several readings of the output before giving up. A verdict
is never guessed: unreadable output is a ``ClassificationError``.
"""

import json
import re
from typing import Any

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from conductor.agent.prompts import CLASSIFIER_PROMPT
from conductor.agent.workflow import ConversationContext, WorkflowContext, WorkflowState
from conductor.errors import ClassificationError, ProviderError
from conductor.persistence.base import ConversationStore, MessageRecord, MessageRole
from conductor.providers.base import LLMProvider
from conductor.transport.base import MessageTransport
from conductor.transport.events import StreamEvent

_FENCE = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```", flags=re.IGNORECASE)


class ClassifierVerdict(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    is_question: bool = Field(alias="isQuestion")
    reply: str = ""


def _candidates(text: str) -> list[str]:
    found: list[str] = []

    def add(value: str) -> None:
        value = value.strip()
        if value and value not in found:
            found.append(value)

    add(text)
    fence = _FENCE.search(text)
    if fence:
        add(fence.group(1))
    for base in list(found):
        start, end = base.find("{"), base.rfind("}")
        if start != -1 and end > start:
            sliced = base[start:end + 1]
            add(sliced)
            add(sliced.replace('\\"', '"').replace("\\n", "\n"))
    return found


def extract_json_object(text: str) -> dict[str, Any] | None:
    """Best-effort read of one JSON object out of model output."""
    for candidate in _candidates(text or ""):
        try:
            payload = json.loads(candidate, strict=False)
        except json.JSONDecodeError:
            continue
        if isinstance(payload, str):
            # The whole document came back as a JSON string
            nested = extract_json_object(payload)
            if nested is not None:
                return nested
            continue
        if isinstance(payload, dict):
            return payload
    return None


def parse_verdict(content: str | None) -> ClassifierVerdict:
    payload = extract_json_object(content or "")
    if payload is None:
        raise ClassificationError(f"No JSON verdict in classifier output: {(content or '')[:200]!r}")
    try:
        verdict = ClassifierVerdict.model_validate(payload)
    except ValidationError as e:
        raise ClassificationError(f"Malformed classifier verdict: {e}") from e
    if verdict.is_question and not verdict.reply.strip():
        raise ClassificationError("Classifier marked the message as a question but gave no reply")
    return verdict


class MessageClassifier:
    def __init__(self, provider: LLMProvider, store: ConversationStore, transport: MessageTransport):
        self.provider = provider
        self.store = store
        self.transport = transport

    async def classify(self, ctx: ConversationContext) -> ClassifierVerdict:
        messages = [
            {"role": "system", "content": CLASSIFIER_PROMPT},
            {"role": "user", "content": ctx.user_message},
        ]
        try:
            response = await self.provider.chat(
                messages,
                model=ctx.model,
                max_tokens=ctx.max_tokens,
                temperature=ctx.temperature,
                top_p=ctx.top_p,
            )
        except Exception as e:
            raise ProviderError(f"Classifier call failed: {e}") from e
        if response.finish_reason == "error":
            raise ProviderError(response.content or "Classifier call failed")
        return parse_verdict(response.content)

    async def handle(self, wctx: WorkflowContext) -> WorkflowState:
        ctx = wctx.conversation
        verdict = await self.classify(ctx)
        wctx.cancel_token.raise_if_cancelled()
        wctx.set_result("verdict", verdict)
        logger.info(f"Session {ctx.session_id}: classified as {'question' if verdict.is_question else 'task'}")

        if not verdict.is_question:
            return WorkflowState.DECOMPOSE

        self.transport.send_final(wctx.connection, StreamEvent.end(verdict.reply, stage="answer"))
        wctx.user_message_record = MessageRecord.create(ctx, MessageRole.USER, ctx.user_message)
        wctx.assistant_message_record = MessageRecord.create(ctx, MessageRole.ASSISTANT, verdict.reply)
        self.store.save_messages([wctx.user_message_record, wctx.assistant_message_record])
        ctx.active_message_ids.extend([wctx.user_message_record.id, wctx.assistant_message_record.id])
        self.store.update_conversation_context(ctx)
        wctx.should_break = True
        return WorkflowState.DONE
