"""Name-indexed tool collection used by the tool gateway."""

from typing import Any, Iterable

from loguru import logger

from conductor.tools.base import Tool


class ToolRegistry:
    """Tools by name, grouped into toolsets.

    A tool's toolset is its class attribute unless ``register`` was given
    another one. Tools whose ``is_available()`` is false stay registered but
    are hidden from definitions by default.
    """

    def __init__(self):
        self._tools: dict[str, Tool] = {}
        self._groups: dict[str, str] = {}

    def register(self, tool: Tool, toolset: str | None = None) -> None:
        if tool.name in self._tools:
            logger.debug(f"Tool '{tool.name}' re-registered")
        self._tools[tool.name] = tool
        if toolset:
            self._groups[tool.name] = toolset
        else:
            self._groups.pop(tool.name, None)

    def unregister(self, name: str) -> None:
        self._tools.pop(name, None)
        self._groups.pop(name, None)

    def get(self, name: str) -> Tool | None:
        return self._tools.get(name)

    def get_toolset(self, name: str) -> str:
        tool = self._tools.get(name)
        if tool is None:
            return "unknown"
        return self._groups.get(name, tool.toolset)

    def _select(
        self,
        toolsets: Iterable[str] | None,
        tool_names: Iterable[str] | None,
        include_unavailable: bool,
    ) -> list[Tool]:
        groups = set(toolsets) if toolsets is not None else None
        names = set(tool_names) if tool_names is not None else None
        return [
            tool for name, tool in self._tools.items()
            if (include_unavailable or tool.is_available())
            and (groups is None or self.get_toolset(name) in groups)
            and (names is None or name in names)
        ]

    def get_definitions(
        self,
        toolsets: list[str] | None = None,
        tool_names: list[str] | None = None,
        include_unavailable: bool = False,
    ) -> list[dict[str, Any]]:
        """OpenAI function-calling schemas of the selected tools, in registration order."""
        return [tool.to_schema() for tool in self._select(toolsets, tool_names, include_unavailable)]

    def get_available_tools(self) -> dict[str, Tool]:
        return {tool.name: tool for tool in self._select(None, None, False)}

    async def execute(self, name: str, params: dict[str, Any]) -> str:
        """Run a tool. Every failure is reported as text, nothing is raised."""
        tool = self._tools.get(name)
        if tool is None:
            return f"Error: Tool '{name}' not found"
        problems = tool.validate_params(params)
        if problems:
            return f"Error: Invalid parameters for tool '{name}': " + "; ".join(problems)
        try:
            return await tool.execute(**params)
        except Exception as e:
            logger.exception(f"Tool '{name}' raised")
            return f"Error executing {name}: {e}"

    @property
    def tool_names(self) -> list[str]:
        return list(self._tools)

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: str) -> bool:
        return name in self._tools
