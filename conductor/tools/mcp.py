"""Tools served by MCP servers.

At startup every enabled server from ``tools.mcp.servers`` is asked for its
tool list, and each entry becomes an ``MCPRemoteTool`` in the registry.
A call opens its own short-lived client session, so a server that crashed
only fails the calls that reach it.
"""

from __future__ import annotations

import asyncio
import json
import os
import re
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

from loguru import logger
from mcp import ClientSession, StdioServerParameters
from mcp.client.stdio import stdio_client
from mcp.client.streamable_http import streamablehttp_client

from conductor.config.schema import MCPServerConfig
from conductor.tools.base import Tool
from conductor.tools.registry import ToolRegistry

_NAME_LIMIT = 64


def _tool_name(server: str, tool: str) -> str:
    """Registry name for a remote tool, within OpenAI's ``[a-zA-Z0-9_-]{1,64}``."""
    return re.sub(r"[^a-zA-Z0-9_-]+", "_", f"{server}__{tool}")[:_NAME_LIMIT]


def _build_stdio_params(server: MCPServerConfig) -> StdioServerParameters:
    return StdioServerParameters(
        command=server.command,
        args=[str(arg) for arg in server.args],
        env={**os.environ, **{str(k): str(v) for k, v in server.env.items()}},
        cwd=server.cwd.strip() or None,
    )


@asynccontextmanager
async def _open_mcp_streams(server: MCPServerConfig) -> AsyncIterator[tuple[Any, Any]]:
    if (server.transport or "stdio").strip().lower() == "http":
        if not server.url.strip():
            raise ValueError(f"MCP server '{server.name}' has no URL configured")
        headers = {k.strip(): str(v) for k, v in server.headers.items() if k.strip()}
        async with streamablehttp_client(
            url=server.url.strip(),
            headers=headers or None,
            timeout=server.timeout_seconds,
        ) as (read, write, _session_id):
            yield read, write
    else:
        if not server.command.strip():
            raise ValueError(f"MCP server '{server.name}' has no command configured")
        async with stdio_client(_build_stdio_params(server)) as (read, write):
            yield read, write


@asynccontextmanager
async def _session(server: MCPServerConfig) -> AsyncIterator[ClientSession]:
    async with _open_mcp_streams(server) as (read, write):
        async with ClientSession(read, write) as session:
            await asyncio.wait_for(session.initialize(), timeout=server.timeout_seconds)
            yield session


async def list_mcp_tools(server: MCPServerConfig) -> list[dict[str, Any]]:
    async with _session(server) as session:
        listing = await asyncio.wait_for(session.list_tools(), timeout=server.timeout_seconds)
    return [
        {
            "name": tool.name,
            "description": tool.description or "",
            "input_schema": tool.inputSchema or {},
        }
        for tool in listing.tools
    ]


async def call_mcp_tool(
    server: MCPServerConfig,
    tool_name: str,
    arguments: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Run one remote tool. Returns its text, structured output and error flag."""
    async with _session(server) as session:
        result = await asyncio.wait_for(
            session.call_tool(name=tool_name, arguments=arguments or {}),
            timeout=server.timeout_seconds,
        )

    texts = [part.text for part in result.content or [] if isinstance(getattr(part, "text", None), str)]
    payload: dict[str, Any] = {"server": server.name, "tool": tool_name, "is_error": bool(result.isError)}
    if "\n".join(texts).strip():
        payload["text"] = "\n".join(texts).strip()
    if result.structuredContent is not None:
        payload["structured_content"] = result.structuredContent
    return payload


class MCPRemoteTool(Tool):
    toolset = "mcp"

    def __init__(self, server: MCPServerConfig, info: dict[str, Any]):
        self.server = server
        self.remote_name: str = info["name"]
        self._name = _tool_name(server.name, self.remote_name)
        self._description = info.get("description") or f"{self.remote_name} on MCP server {server.name}"
        self._parameters = info.get("input_schema") or {"type": "object", "properties": {}}

    @property
    def name(self) -> str:
        return self._name

    @property
    def description(self) -> str:
        return self._description

    @property
    def parameters(self) -> dict[str, Any]:
        return self._parameters

    def is_available(self) -> bool:
        return self.server.enabled

    async def execute(self, **kwargs: Any) -> str:
        payload = await call_mcp_tool(self.server, self.remote_name, kwargs)
        if payload["is_error"]:
            return f"Error from {self._name}: {payload.get('text') or 'tool reported an error'}"
        if "text" in payload:
            return payload["text"]
        return json.dumps(payload.get("structured_content", payload), ensure_ascii=False)


async def load_mcp_tools(servers: list[MCPServerConfig]) -> list[MCPRemoteTool]:
    """Remote tools of every enabled server. A server that cannot be listed is skipped."""
    tools: list[MCPRemoteTool] = []
    for server in (s for s in servers if s.enabled):
        try:
            listed = await list_mcp_tools(server)
        except Exception as e:
            logger.error(f"MCP server '{server.name}' unavailable, skipping its tools: {e}")
            continue
        named = [MCPRemoteTool(server, info) for info in listed if info.get("name")]
        logger.info(f"MCP server '{server.name}': {len(named)} tool(s)")
        tools.extend(named)
    return tools


async def register_mcp_tools(registry: ToolRegistry, servers: list[MCPServerConfig]) -> int:
    tools = await load_mcp_tools(servers)
    for tool in tools:
        registry.register(tool)
    return len(tools)
