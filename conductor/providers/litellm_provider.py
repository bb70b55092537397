"""Provider adapter on top of LiteLLM's router.

LiteLLM picks the upstream API from the model id prefix, so this adapter's
job is mostly naming: put the key where LiteLLM looks for it and give the
model id the prefix that selects the right upstream.
"""

import asyncio
import json
import os
from typing import Any, AsyncIterator

import litellm
from litellm import acompletion
from loguru import logger

from conductor.providers.base import LLMProvider, LLMResponse, ToolCallRequest

# Substrings of errors worth another attempt: throttling, gateway hiccups and
# truncated JSON bodies from overloaded upstreams.
RETRYABLE_HINTS = frozenset({
    "429", "500", "502", "503", "504",
    "rate limit", "overloaded", "timeout", "connection",
    "expecting value", "jsondecodeerror", "unable to get json response",
})

# Env var LiteLLM reads the key from, per built-in provider.
KEY_VARIABLES = {
    "anthropic": "ANTHROPIC_API_KEY",
    "deepseek": "DEEPSEEK_API_KEY",
    "gemini": "GEMINI_API_KEY",
    "openai": "OPENAI_API_KEY",
    "openrouter": "OPENROUTER_API_KEY",
}


def is_retryable(error: BaseException) -> bool:
    message = str(error).lower()
    return any(hint in message for hint in RETRYABLE_HINTS)


def _decode_arguments(raw: Any) -> dict[str, Any]:
    """Tool-call arguments as a dict. Anything else is kept under ``raw``."""
    if isinstance(raw, dict):
        return raw
    if raw is None or raw == "":
        return {}
    if isinstance(raw, str):
        try:
            decoded = json.loads(raw)
        except json.JSONDecodeError:
            return {"raw": raw}
        if isinstance(decoded, dict):
            return decoded
        return {} if decoded is None else {"raw": raw}
    return {"raw": raw}


class LiteLLMProvider(LLMProvider):
    """Multi-provider adapter. Failed calls come back as ``finish_reason="error"``."""

    def __init__(
        self,
        api_key: str | None = None,
        api_base: str | None = None,
        default_model: str = "anthropic/claude-sonnet-4-5",
        provider_name: str | None = None,
        max_attempts: int = 3,
    ):
        super().__init__(api_key, api_base)
        self.default_model = default_model
        self.provider_name = (provider_name or "").strip().lower() or None
        self.max_attempts = max(1, max_attempts)

        via_openrouter = (api_key or "").startswith("sk-or-") or "openrouter" in (api_base or "")
        self.is_openrouter = (
            self.provider_name == "openrouter" if self.provider_name else via_openrouter
        )
        # Any other explicit base is an OpenAI-compatible server (vLLM, LM Studio, ...)
        self.is_custom_endpoint = bool(api_base) and not self.is_openrouter
        self._export_key(api_key)
        litellm.suppress_debug_info = True

    def _export_key(self, api_key: str | None) -> None:
        if not api_key:
            return
        if self.is_openrouter:
            os.environ["OPENROUTER_API_KEY"] = api_key
            return
        variable = "OPENAI_API_KEY"
        if not self.is_custom_endpoint:
            variable = KEY_VARIABLES.get(self.provider_name or "", variable)
        os.environ.setdefault(variable, api_key)

    def _resolve_model(self, model: str | None) -> str:
        name = model or self.default_model
        if self.is_openrouter:
            prefix = "openrouter/"
        elif self.is_custom_endpoint:
            prefix = "hosted_vllm/"
        elif "gemini" in name.lower():
            prefix = "gemini/"
        else:
            return name
        return name if name.startswith(prefix) else prefix + name

    def _request(self, messages: list[dict[str, Any]], model: str | None, **sampling: Any) -> dict[str, Any]:
        request: dict[str, Any] = {"model": self._resolve_model(model), "messages": messages}
        request.update({k: v for k, v in sampling.items() if v is not None})
        if self.api_base:
            request["api_base"] = self.api_base
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
        """
        One completion, retried with exponential backoff on retryable errors.

        Anything that still fails is returned as an ``LLMResponse`` whose
        ``finish_reason`` is ``"error"`` and whose content names the cause.
        """
        request = self._request(
            messages, model, max_tokens=max_tokens, temperature=temperature, top_p=top_p
        )
        if tools:
            request.update(tools=tools, tool_choice="auto")

        attempt = 0
        while True:
            attempt += 1
            try:
                return self._parse_response(await acompletion(**request))
            except Exception as e:
                if attempt >= self.max_attempts or not is_retryable(e):
                    logger.error(f"LLM call failed after {attempt} attempt(s): {e}")
                    return LLMResponse(content=f"Error calling LLM: {e}", finish_reason="error")
                delay = 2 ** (attempt - 1)
                logger.warning(f"LLM call attempt {attempt}/{self.max_attempts} failed, retry in {delay}s: {e}")
                await asyncio.sleep(delay)

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
        async for chunk in await acompletion(stream=True, **request):
            choices = getattr(chunk, "choices", None) or []
            delta = getattr(choices[0], "delta", None) if choices else None
            text = getattr(delta, "content", None)
            if text:
                yield text

    def _parse_response(self, response: Any) -> LLMResponse:
        choices = getattr(response, "choices", None) or []
        if not choices:
            logger.warning("LiteLLM returned a completion without choices")
            return LLMResponse(content=None, finish_reason="error")
        choice = choices[0]
        message = choice.message

        calls: list[ToolCallRequest] = []
        for raw in getattr(message, "tool_calls", None) or []:
            function = getattr(raw, "function", None)
            if function is None or not getattr(function, "name", None):
                logger.warning(f"Ignoring tool call without a function name: {raw!r}")
                continue
            calls.append(ToolCallRequest(
                id=raw.id or f"call_{id(raw)}",
                name=function.name,
                arguments=_decode_arguments(function.arguments),
            ))

        usage = getattr(response, "usage", None)
        return LLMResponse(
            content=message.content,
            tool_calls=calls,
            finish_reason=choice.finish_reason or "stop",
            usage={
                key: getattr(usage, key) or 0
                for key in ("prompt_tokens", "completion_tokens", "total_tokens")
            } if usage else {},
        )

    def get_default_model(self) -> str:
        return self.default_model
