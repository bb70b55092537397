from __future__ import annotations

from types import SimpleNamespace
from typing import Any

import pytest

from conductor.providers import litellm_provider
from conductor.providers.base import LLMProvider, LLMResponse, ToolCallRequest
from conductor.providers.litellm_provider import LiteLLMProvider
from conductor.providers.openai_provider import OpenAIProvider, strip_leading_think_blocks


def _completion(content: str | None = None, tool_calls: list | None = None, finish_reason: str = "stop"):
    message = SimpleNamespace(content=content, tool_calls=tool_calls)
    return SimpleNamespace(
        choices=[SimpleNamespace(message=message, finish_reason=finish_reason)],
        usage=SimpleNamespace(prompt_tokens=3, completion_tokens=2, total_tokens=5),
    )


def _tc(call_id: str, name: str, arguments: Any):
    return SimpleNamespace(id=call_id, function=SimpleNamespace(name=name, arguments=arguments))


def test_strip_leading_think_block_with_answer() -> None:
    raw = "<think>internal reasoning</think>\nFinal answer."
    assert strip_leading_think_blocks(raw) == "Final answer."


def test_strip_multiple_leading_think_blocks_with_answer() -> None:
    raw = "<think>a</think>\n<think>b</think>\nFinal answer."
    assert strip_leading_think_blocks(raw) == "Final answer."


def test_unwrap_when_only_think_block_exists() -> None:
    assert strip_leading_think_blocks("<think>Only visible text</think>") == "Only visible text"


def test_preserve_non_think_content() -> None:
    assert strip_leading_think_blocks("No think tags here.") == "No think tags here."
    assert strip_leading_think_blocks(None) is None


def test_tool_call_request_renders_openai_entry() -> None:
    entry = ToolCallRequest(id="c1", name="search", arguments={"q": "é"}).to_openai()
    assert entry == {"id": "c1", "type": "function", "function": {"name": "search", "arguments": '{"q": "é"}'}}


def test_litellm_parse_response_decodes_tool_arguments() -> None:
    provider = LiteLLMProvider(default_model="openai/gpt-4o-mini")
    response = _completion(
        content="checking",
        tool_calls=[_tc("c1", "search", '{"q": "x"}'), _tc(None, "raw", "not json")],
        finish_reason="tool_calls",
    )

    parsed = provider._parse_response(response)

    assert parsed.content == "checking"
    assert parsed.finish_reason == "tool_calls"
    assert parsed.tool_calls[0].arguments == {"q": "x"}
    assert parsed.tool_calls[1].arguments == {"raw": "not json"}
    assert parsed.tool_calls[1].id.startswith("call_")
    assert parsed.usage["total_tokens"] == 5


def test_litellm_parse_response_without_choices_is_an_error() -> None:
    provider = LiteLLMProvider(default_model="openai/gpt-4o-mini")
    parsed = provider._parse_response(SimpleNamespace(choices=[]))
    assert parsed.finish_reason == "error"


def test_litellm_model_prefixes() -> None:
    assert LiteLLMProvider(provider_name="openrouter")._resolve_model("x/y") == "openrouter/x/y"
    assert LiteLLMProvider(api_base="http://localhost:8000/v1")._resolve_model("qwen") == "hosted_vllm/qwen"
    assert LiteLLMProvider(provider_name="gemini")._resolve_model("gemini-2.0-flash") == "gemini/gemini-2.0-flash"
    assert LiteLLMProvider(provider_name="anthropic")._resolve_model("anthropic/claude") == "anthropic/claude"


@pytest.mark.asyncio
async def test_litellm_retries_transient_errors(monkeypatch) -> None:
    attempts: list[dict] = []

    async def _fake_acompletion(**kwargs):
        attempts.append(kwargs)
        if len(attempts) == 1:
            raise RuntimeError("429 rate limit exceeded")
        return _completion(content="ok")

    monkeypatch.setattr(litellm_provider, "acompletion", _fake_acompletion)
    provider = LiteLLMProvider(default_model="openai/gpt-4o-mini", max_attempts=2)

    result = await provider.chat([{"role": "user", "content": "hi"}], top_p=0.9)

    assert result.content == "ok"
    assert len(attempts) == 2
    assert attempts[0]["top_p"] == 0.9
    assert "tools" not in attempts[0]


@pytest.mark.asyncio
async def test_litellm_permanent_error_becomes_error_response(monkeypatch) -> None:
    calls = 0

    async def _fake_acompletion(**kwargs):
        nonlocal calls
        calls += 1
        raise RuntimeError("invalid api key")

    monkeypatch.setattr(litellm_provider, "acompletion", _fake_acompletion)
    provider = LiteLLMProvider(default_model="openai/gpt-4o-mini")

    result = await provider.chat([{"role": "user", "content": "hi"}])

    assert calls == 1
    assert result.finish_reason == "error"
    assert "invalid api key" in result.content


@pytest.mark.asyncio
async def test_litellm_stream_yields_content_deltas(monkeypatch) -> None:
    async def _chunks():
        for text in ["Hel", None, "lo"]:
            yield SimpleNamespace(choices=[SimpleNamespace(delta=SimpleNamespace(content=text))])
        yield SimpleNamespace(choices=[])

    async def _fake_acompletion(**kwargs):
        assert kwargs["stream"] is True
        return _chunks()

    monkeypatch.setattr(litellm_provider, "acompletion", _fake_acompletion)
    provider = LiteLLMProvider(default_model="openai/gpt-4o-mini")

    chunks = [c async for c in provider.stream_chat([{"role": "user", "content": "hi"}])]
    assert chunks == ["Hel", "lo"]


def test_openai_parse_response_strips_think_and_bad_arguments() -> None:
    provider = OpenAIProvider(api_key="Bearer sk-test", provider="openai")
    response = _completion(
        content="<think>hmm</think> Done.",
        tool_calls=[_tc("c9", "run", "{broken")],
    )

    parsed = provider._parse_response(response)

    assert provider.api_key == "sk-test"
    assert parsed.content == "Done."
    assert parsed.tool_calls[0].arguments == {}


def test_litellm_non_object_arguments_are_wrapped() -> None:
    provider = LiteLLMProvider(default_model="openai/gpt-4o-mini")
    response = _completion(
        content=None,
        tool_calls=[_tc("c1", "a", "null"), _tc("c2", "b", "[1, 2]"), _tc("c3", "c", "7"), _tc("c4", "d", None)],
        finish_reason="tool_calls",
    )

    parsed = provider._parse_response(response)

    assert [c.arguments for c in parsed.tool_calls] == [{}, {"raw": "[1, 2]"}, {"raw": "7"}, {}]


def test_openai_non_object_arguments_become_empty() -> None:
    provider = OpenAIProvider(api_key="sk-test", provider="openai")
    response = _completion(content="ok", tool_calls=[_tc("c1", "a", "null"), _tc("c2", "b", "[]")])

    parsed = provider._parse_response(response)

    assert [c.arguments for c in parsed.tool_calls] == [{}, {}]


class _OneShot(LLMProvider):
    def __init__(self, response: LLMResponse):
        super().__init__()
        self.response = response

    async def chat(self, messages, tools=None, model=None, max_tokens=4096, temperature=0.7, top_p=None):
        return self.response

    def get_default_model(self) -> str:
        return "one-shot"


@pytest.mark.asyncio
async def test_default_stream_falls_back_to_single_chunk() -> None:
    provider = _OneShot(LLMResponse(content="whole answer"))
    assert [c async for c in provider.stream_chat([])] == ["whole answer"]


@pytest.mark.asyncio
async def test_default_stream_raises_on_error_response() -> None:
    provider = _OneShot(LLMResponse(content="Error calling LLM: down", finish_reason="error"))
    with pytest.raises(RuntimeError, match="down"):
        [c async for c in provider.stream_chat([])]
