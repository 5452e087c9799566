"""Tests for tool definitions and the tools registry."""

import pytest
from pydantic import BaseModel, Field

from lorekeeper.tools.base import ToolContext, ToolDefinition, ToolResult
from lorekeeper.tools.registry import ToolsRegistry, build_tools_registry


class EchoInput(BaseModel):
    text: str = Field(..., min_length=1)
    times: int = Field(default=1, ge=1)


async def echo(params: EchoInput, context: ToolContext) -> ToolResult:
    return ToolResult.ok(" ".join([params.text] * params.times), data={"campaign_id": context.campaign_id})


async def explode(params: EchoInput, context: ToolContext) -> ToolResult:
    raise RuntimeError("the tool broke")


def make_tool(name: str = "echo", handler=echo, category: str = "read") -> ToolDefinition:
    return ToolDefinition(
        name=name,
        description=f"{name} tool",
        input_schema_class=EchoInput,
        handler=handler,
        category=category,
    )


class TestToolsRegistry:
    """Tests for registration and dispatch."""

    @pytest.fixture
    def registry(self):
        return ToolsRegistry([make_tool(), make_tool("explode", explode, "write")], ToolContext(campaign_id="c1"))

    def test_schemas_in_registration_order(self, registry):
        """Test that model-facing schemas follow registration order."""
        schemas = registry.get_tool_schemas()

        assert [schema.name for schema in schemas] == ["echo", "explode"]
        assert schemas[0].description == "echo tool"
        assert schemas[0].input_schema["properties"]["text"]["type"] == "string"
        assert schemas[0].input_schema["required"] == ["text"]

    def test_duplicate_name_rejected(self, registry):
        """Test that registering a name twice raises."""
        with pytest.raises(ValueError, match="already registered"):
            registry.register_tool(make_tool())

    def test_lookup_helpers(self, registry):
        """Test name, presence and category lookups."""
        assert registry.get_tool_names() == ["echo", "explode"]
        assert registry.has_tool("echo")
        assert not registry.has_tool("missing")
        assert registry.get_tool("missing") is None
        assert registry.category_of("explode") == "write"
        assert registry.category_of("missing") == "read"

    @pytest.mark.asyncio
    async def test_execute_success(self, registry):
        """Test that valid input runs the handler with the default context."""
        result = await registry.execute("echo", {"text": "hi", "times": 2})

        assert result.success is True
        assert result.content == "hi hi"
        assert result.data == {"campaign_id": "c1"}

    @pytest.mark.asyncio
    async def test_execute_with_explicit_context(self, registry):
        """Test that a per-call context overrides the default."""
        result = await registry.execute("echo", {"text": "hi"}, ToolContext(campaign_id="c2"))

        assert result.data == {"campaign_id": "c2"}

    @pytest.mark.asyncio
    async def test_execute_unknown_tool(self, registry):
        """Test that unknown tools fail without raising."""
        result = await registry.execute("missing", {})

        assert result.success is False
        assert result.content == "Unknown tool: missing"

    @pytest.mark.asyncio
    async def test_execute_invalid_input(self, registry):
        """Test that schema violations list every offending field."""
        result = await registry.execute("echo", {"text": "", "times": 0})

        assert result.success is False
        assert result.content.splitlines()[0] == "Invalid input for echo:"
        assert "- text:" in result.content
        assert "- times:" in result.content

    @pytest.mark.asyncio
    async def test_execute_handler_exception(self, registry):
        """Test that a raising handler becomes a failed result."""
        result = await registry.execute("explode", {"text": "boom"})

        assert result.success is False
        assert result.content == "Tool explode failed: the tool broke"

    @pytest.mark.asyncio
    async def test_execute_without_context(self):
        """Test that a registry without any context refuses to run tools."""
        result = await ToolsRegistry([make_tool()]).execute("echo", {"text": "hi"})

        assert result.success is False
        assert "without a campaign context" in result.content


class TestSessionRegistry:
    """Tests for the assembled session tool set."""

    def test_full_tool_set(self, registry):
        """Test that planning, read and proposal tools are all registered."""
        assert registry.get_tool_names() == [
            "add_work_item",
            "update_work_item",
            "list_work_items",
            "search_entities",
            "get_entity",
            "get_relationships",
            "get_location_hierarchy",
            "get_timeline",
            "get_campaign_context",
            "get_page_context",
            "propose_create",
            "propose_update",
            "propose_patch",
            "propose_relationship",
        ]

    def test_categories(self, registry):
        """Test that tools carry the category that decides how they are surfaced."""
        assert registry.category_of("add_work_item") == "internal"
        assert registry.category_of("get_timeline") == "read"
        assert registry.category_of("propose_patch") == "write"

    def test_read_only_without_trackers(self, backend, context):
        """Test that only read tools are built when no trackers are given."""
        registry = build_tools_registry(backend, context)

        assert {registry.category_of(name) for name in registry.get_tool_names()} == {"read"}
        assert len(registry.get_tool_names()) == 7


class TestToolResult:
    """Tests for the tool result helpers."""

    def test_ok_and_fail(self):
        """Test the success and failure constructors."""
        assert ToolResult.ok("done", data=[1]) == ToolResult(success=True, content="done", data=[1])
        assert ToolResult.fail("nope") == ToolResult(success=False, content="nope", data=None)
