"""LLM provider abstraction module."""

from conductor.providers.base import LLMProvider, LLMResponse, ToolCallRequest
from conductor.providers.litellm_provider import LiteLLMProvider
from conductor.providers.openai_provider import OpenAIProvider

__all__ = ["LLMProvider", "LLMResponse", "ToolCallRequest", "LiteLLMProvider", "OpenAIProvider"]
