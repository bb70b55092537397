"""Agent tools and the gateway the loop calls them through."""

from conductor.tools.base import Tool
from conductor.tools.gateway import ToolCapability, ToolGateway
from conductor.tools.registry import ToolRegistry

__all__ = ["Tool", "ToolCapability", "ToolGateway", "ToolRegistry"]
