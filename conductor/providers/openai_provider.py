"""Provider adapter for OpenAI-compatible chat completion endpoints.

Used for custom providers (local servers, hosted gateways) where LiteLLM's
model-prefix routing gets in the way. Errors are raised to the caller.
"""

import json
import os
import re
from typing import Any, AsyncIterator

from loguru import logger
from openai import AsyncOpenAI

from conductor.providers.base import LLMProvider, LLMResponse, ToolCallRequest

# provider -> (base url, default model, key env var)
KNOWN_ENDPOINTS: dict[str, tuple[str, str, str]] = {
    "openrouter": ("https://openrouter.ai/api/v1", "anthropic/claude-sonnet-4", "OPENROUTER_API_KEY"),
    "openai": ("https://api.openai.com/v1", "gpt-4.1", "OPENAI_API_KEY"),
    "deepseek": ("https://api.deepseek.com/v1", "deepseek-chat", "DEEPSEEK_API_KEY"),
}

_LEADING_THINK = re.compile(r"^\s*(?:<think\b[^>]*>.*?</think>\s*)+", flags=re.IGNORECASE | re.DOTALL)
_THINK_TAG = re.compile(r"</?think\b[^>]*>", flags=re.IGNORECASE)


def strip_leading_think_blocks(text: str | None) -> str | None:
    """Drop reasoning blocks some models put before the answer.

    When the reasoning block is all there is, keep its text without the tags.
    """
    if not isinstance(text, str):
        return text
    head = _LEADING_THINK.match(text)
    if head is None:
        return text
    rest = text[head.end():].strip()
    return rest or _THINK_TAG.sub("", text).strip()


def _bare_key(value: str | None) -> str:
    key = (value or "").strip()
    if key[:7].lower() == "bearer ":
        key = key[7:].lstrip()
    return key


class OpenAIProvider(LLMProvider):
    def __init__(
        self,
        api_key: str | None = None,
        api_base: str | None = None,
        provider: str = "openrouter",
        default_model: str | None = None,
        max_retries: int = 3,
        timeout: float = 600.0,
    ):
        self.provider = provider.lower()
        known_base, known_model, key_variable = KNOWN_ENDPOINTS.get(
            self.provider, KNOWN_ENDPOINTS["openrouter"]
        )
        if self.provider not in KNOWN_ENDPOINTS:
            key_variable = "OPENAI_API_KEY"
        super().__init__(
            _bare_key(api_key or os.environ.get(key_variable, "")),
            api_base or known_base,
        )
        self._default_model = default_model or known_model
        # The SDK retries 408/429/5xx itself.
        self.client = AsyncOpenAI(
            api_key=self.api_key,
            base_url=self.api_base,
            max_retries=max_retries,
            timeout=timeout,
        )

    def get_default_model(self) -> str:
        return self._default_model

    def _request(self, messages: list[dict[str, Any]], model: str | None, **sampling: Any) -> dict[str, Any]:
        request: dict[str, Any] = {"model": model or self._default_model, "messages": messages}
        request.update({k: v for k, v in sampling.items() if v is not None})
        return request

    async def chat(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
        model: str | None = None,
        max_tokens: int = 4096,
        temperature: float = 0.7,
        top_p: float | None = None,
    ) -> LLMResponse:
        request = self._request(
            messages, model, max_tokens=max_tokens, temperature=temperature, top_p=top_p
        )
        if tools:
            request.update(tools=tools, tool_choice="auto")
        try:
            completion = await self.client.chat.completions.create(**request)
        except Exception as e:
            logger.error(f"{self.provider} completion failed: {e}")
            raise
        return self._parse_response(completion)

    async def stream_chat(
        self,
        messages: list[dict[str, Any]],
        model: str | None = None,
        max_tokens: int = 4096,
        temperature: float = 0.7,
        top_p: float | None = None,
    ) -> AsyncIterator[str]:
        request = self._request(
            messages, model, max_tokens=max_tokens, temperature=temperature, top_p=top_p
        )
        async for chunk in await self.client.chat.completions.create(stream=True, **request):
            if chunk.choices and chunk.choices[0].delta.content:
                yield chunk.choices[0].delta.content

    def _parse_response(self, completion: Any) -> LLMResponse:
        choice = completion.choices[0]
        message = choice.message

        calls: list[ToolCallRequest] = []
        for raw in message.tool_calls or []:
            try:
                arguments = json.loads(raw.function.arguments or "{}")
            except (json.JSONDecodeError, TypeError):
                logger.warning(f"Unreadable arguments for tool call {raw.function.name}, using {{}}")
                arguments = {}
            if not isinstance(arguments, dict):
                logger.warning(f"Non-object arguments for tool call {raw.function.name}, using {{}}")
                arguments = {}
            calls.append(ToolCallRequest(id=raw.id, name=raw.function.name, arguments=arguments))

        usage = completion.usage
        return LLMResponse(
            content=strip_leading_think_blocks(message.content),
            tool_calls=calls,
            finish_reason=choice.finish_reason or "stop",
            usage={
                key: getattr(usage, key) or 0
                for key in ("prompt_tokens", "completion_tokens", "total_tokens")
            } if usage else {},
        )
