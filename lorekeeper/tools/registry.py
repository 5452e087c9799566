"""Tools registry: the callable tool set for one session and dispatch by name."""

from collections.abc import Iterable
from typing import Any

from pydantic import ValidationError

from lorekeeper.clients.backend import DataBackend
from lorekeeper.models.llm import LLMToolDefinition
from lorekeeper.services.proposals import ProposalTracker
from lorekeeper.services.work_items import WorkItemTracker
from lorekeeper.tools.base import ToolCategory, ToolContext, ToolDefinition, ToolResult
from lorekeeper.tools.campaign import create_campaign_tools
from lorekeeper.tools.proposals import create_proposal_tools
from lorekeeper.tools.work_items import create_work_item_tools
from lorekeeper.utils.logging import get_logger

logger = get_logger(__name__)


def format_validation_error(tool_name: str, error: ValidationError) -> str:
    """Human-readable list of schema violations for the model to correct."""
    lines = [f"Invalid input for {tool_name}:"]
    for detail in error.errors():
        location = ".".join(str(part) for part in detail["loc"]) or "input"
        lines.append(f"- {location}: {detail['msg']}")
    return "\n".join(lines)


class ToolsRegistry:
    """Registry for managing AI assistant tools."""

    def __init__(self, definitions: Iterable[ToolDefinition] = (), context: ToolContext | None = None):
        """Initialize the registry.

        Args:
            definitions: Tools to register
            context: Default context for calls that don't supply one
        """
        self._tools: dict[str, ToolDefinition] = {}
        self.context = context
        self.register(definitions)

    def register(self, definitions: Iterable[ToolDefinition]) -> "ToolsRegistry":
        """Register several tools, returning the registry."""
        for definition in definitions:
            self.register_tool(definition)
        return self

    def register_tool(self, tool: ToolDefinition) -> None:
        """Register a new tool in the registry."""
        if tool.name in self._tools:
            raise ValueError(f"Tool already registered: {tool.name}")
        self._tools[tool.name] = tool

    def get_tool_schemas(self) -> list[LLMToolDefinition]:
        """Model-facing tool schemas, in registration order."""
        return [
            LLMToolDefinition(name=tool.name, description=tool.description, input_schema=tool.get_json_schema())
            for tool in self._tools.values()
        ]

    def get_tool(self, name: str) -> ToolDefinition | None:
        return self._tools.get(name)

    def get_tool_names(self) -> list[str]:
        """Get list of all registered tool names."""
        return list(self._tools.keys())

    def has_tool(self, name: str) -> bool:
        """Check if a tool is registered."""
        return name in self._tools

    def category_of(self, name: str) -> ToolCategory:
        tool = self._tools.get(name)
        return tool.category if tool else "read"

    async def execute(self, name: str, raw_input: dict[str, Any], context: ToolContext | None = None) -> ToolResult:
        """Validate input and run a tool. Never raises; failures come back as unsuccessful results."""
        tool = self._tools.get(name)
        if tool is None:
            logger.warning(f"Unknown tool requested: {name}")
            return ToolResult.fail(f"Unknown tool: {name}")

        call_context = context or self.context
        if call_context is None:
            return ToolResult.fail(f"Tool {name} cannot run without a campaign context")

        try:
            parsed_input = tool.parse_input(raw_input)
        except ValidationError as e:
            logger.info(f"Rejected input for {name}: {e.error_count()} validation error(s)")
            return ToolResult.fail(format_validation_error(name, e))

        try:
            return await tool.handler(parsed_input, call_context)
        except Exception as e:
            logger.error(f"Tool {name} raised: {e}", exc_info=True)
            return ToolResult.fail(f"Tool {name} failed: {e}")


def build_tools_registry(
    backend: DataBackend,
    context: ToolContext,
    work_items: WorkItemTracker | None = None,
    proposals: ProposalTracker | None = None,
) -> ToolsRegistry:
    """Assemble the session tool set: read tools always, planning and proposal tools when trackers are given."""
    registry = ToolsRegistry(context=context)
    if work_items is not None:
        registry.register(create_work_item_tools(work_items))
    registry.register(create_campaign_tools(backend))
    if proposals is not None:
        registry.register(create_proposal_tools(backend, proposals))

    logger.debug(f"Built tools registry with {len(registry.get_tool_names())} tools")
    return registry
