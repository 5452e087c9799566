"""Tools for the campaign assistant."""

from lorekeeper.tools.base import ToolContext, ToolDefinition, ToolResult
from lorekeeper.tools.registry import ToolsRegistry, build_tools_registry

__all__ = ["ToolContext", "ToolDefinition", "ToolResult", "ToolsRegistry", "build_tools_registry"]
