from __future__ import annotations

import asyncio
import json
from typing import Any, AsyncIterator

from conductor.agent.coordinator import TurnCoordinator
from conductor.agent.workflow import ConversationContext
from conductor.persistence.memory import InMemoryConversationStore
from conductor.providers.base import LLMProvider, LLMResponse, ToolCallRequest
from conductor.tools.base import Tool
from conductor.tools.gateway import ToolGateway
from conductor.tools.registry import ToolRegistry
from conductor.transport.events import StreamEvent


class ScriptedProvider(LLMProvider):
    """
    Provider stub replaying fixed responses.

    ``responses`` feed ``chat`` (classifier and loop iterations) and
    ``streams`` feed ``stream_chat`` (decomposition and polish), each in
    call order.
    """

    def __init__(
        self,
        responses: list[LLMResponse] | None = None,
        streams: list[list[str]] | None = None,
    ):
        super().__init__(api_key=None, api_base=None)
        self._responses = list(responses or [])
        self._streams = list(streams or [])
        self.calls: list[dict[str, Any]] = []
        self.stream_calls: list[dict[str, Any]] = []

    async def chat(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
        model: str | None = None,
        max_tokens: int = 4096,
        temperature: float = 0.7,
        top_p: float | None = None,
    ) -> LLMResponse:
        self.calls.append({"messages": messages, "tools": tools, "model": model, "top_p": top_p})
        if not self._responses:
            return LLMResponse(content="(no more stubbed responses)")
        return self._responses.pop(0)

    async def stream_chat(
        self,
        messages: list[dict[str, Any]],
        model: str | None = None,
        max_tokens: int = 4096,
        temperature: float = 0.7,
        top_p: float | None = None,
    ) -> AsyncIterator[str]:
        self.stream_calls.append({"messages": messages, "model": model})
        chunks = self._streams.pop(0) if self._streams else []
        for chunk in chunks:
            await asyncio.sleep(0)
            yield chunk

    def get_default_model(self) -> str:
        return "stub-model"


class EchoTool(Tool):
    def __init__(self, name: str = "echo"):
        self._name = name
        self.calls: list[dict[str, Any]] = []

    @property
    def name(self) -> str:
        return self._name

    @property
    def description(self) -> str:
        return "Echo the text back."

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {"text": {"type": "string"}},
            "required": ["text"],
        }

    async def execute(self, text: str, **kwargs: Any) -> str:
        self.calls.append({"text": text})
        return f"echo:{text}"


def verdict(is_question: bool, reply: str = "") -> LLMResponse:
    return LLMResponse(content=json.dumps({"isQuestion": is_question, "reply": reply}))


def tool_call(name: str, call_id: str = "call_1", content: str | None = None, **arguments: Any) -> LLMResponse:
    return LLMResponse(
        content=content,
        tool_calls=[ToolCallRequest(id=call_id, name=name, arguments=arguments)],
        finish_reason="tool_calls",
    )


def conversation(message: str = "hello", session_id: str = "s1") -> ConversationContext:
    return ConversationContext(
        session_id=session_id,
        user_id="u1",
        user_message=message,
        model="stub-model",
    )


def make_coordinator(
    provider: LLMProvider,
    tools: list[Tool] | None = None,
    max_iterations: int = 30,
    store: InMemoryConversationStore | None = None,
    connection_timeout: float | None = None,
) -> tuple[TurnCoordinator, InMemoryConversationStore]:
    registry = ToolRegistry()
    for tool in tools or []:
        registry.register(tool)
    store = store or InMemoryConversationStore()
    coordinator = TurnCoordinator(
        provider=provider,
        gateway=ToolGateway(registry, timeout_seconds=5),
        store=store,
        max_iterations=max_iterations,
        connection_timeout=connection_timeout,
    )
    return coordinator, store


def types_of(events: list[StreamEvent]) -> list[str]:
    return [e.type.value for e in events]
