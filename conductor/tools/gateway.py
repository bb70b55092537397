"""Tool invocation gateway used by the agent loop.

The loop only sees tool names, OpenAI schemas and string results. Whatever
goes wrong inside a tool is turned into text here so the model can react to
it on the next iteration.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any

from loguru import logger

from conductor.providers.base import ToolCallRequest
from conductor.tools.registry import ToolRegistry


@dataclass
class ToolCapability:
    """The set of tools enabled for one turn."""
    names: list[str] = field(default_factory=list)
    definitions: list[dict[str, Any]] = field(default_factory=list)

    def __bool__(self) -> bool:
        return bool(self.definitions)


class ToolGateway:
    def __init__(self, registry: ToolRegistry, timeout_seconds: float = 60.0):
        self.registry = registry
        self.timeout_seconds = timeout_seconds

    def list_available_tools(self) -> list[str]:
        return sorted(self.registry.get_available_tools())

    def create_tool_capability(self, names: list[str] | None) -> ToolCapability:
        """Resolve enabled tool names. None means every available tool."""
        available = self.registry.get_available_tools()
        if names is None:
            selected = sorted(available)
        else:
            missing = [n for n in names if n not in available]
            if missing:
                logger.warning(f"Ignoring unavailable tools: {', '.join(missing)}")
            selected = [n for n in names if n in available]
        return ToolCapability(
            names=selected,
            definitions=self.registry.get_definitions(tool_names=selected),
        )

    async def execute(self, call: ToolCallRequest, capability: ToolCapability | None = None) -> str:
        """Run one call. With ``capability``, tools outside it are refused."""
        try:
            arguments = call.arguments
            if not isinstance(arguments, dict):
                logger.warning(f"Tool '{call.name}' called with {type(arguments).__name__} arguments")
                return f"Tool execution error: arguments for '{call.name}' must be an object, got {type(arguments).__name__}"
            if capability is not None and call.name not in capability.names and call.name in self.registry:
                logger.warning(f"Refusing tool '{call.name}': not enabled for this turn")
                return f"Error: Tool '{call.name}' is not enabled for this turn"
            logger.info(f"Tool call: {call.name}({_preview(arguments)})")
            result = await asyncio.wait_for(
                self.registry.execute(call.name, arguments),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning(f"Tool '{call.name}' timed out after {self.timeout_seconds}s")
            return f"Tool execution error: '{call.name}' timed out after {self.timeout_seconds:g}s"
        except Exception as e:
            logger.exception(f"Tool '{call.name}' failed")
            return f"Tool execution error: {e}"
        return result if isinstance(result, str) else str(result)


def _preview(arguments: dict[str, Any], limit: int = 200) -> str:
    text = ", ".join(f"{k}={v!r}" for k, v in arguments.items())
    return text if len(text) <= limit else text[:limit] + "..."
