"""Base types and definitions for tools."""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Literal

from pydantic import BaseModel, Field

from lorekeeper.models.entities import PageContext

ToolCategory = Literal["read", "write", "internal"]


class ToolResult(BaseModel):
    """Outcome of a tool call: markdown for the model plus optional structured data for the UI."""

    success: bool
    content: str
    data: Any = None

    @classmethod
    def ok(cls, content: str, data: Any = None) -> "ToolResult":
        return cls(success=True, content=content, data=data)

    @classmethod
    def fail(cls, content: str, data: Any = None) -> "ToolResult":
        return cls(success=False, content=content, data=data)


@dataclass
class ToolContext:
    """Ambient data a tool handler needs but the model does not supply."""

    campaign_id: str
    page_context: PageContext | None = None


class FlavoredInput(BaseModel):
    """Input base for tools that show a status line while they run."""

    flavor: str | None = Field(
        default=None,
        max_length=50,
        description="Brief status text shown to the user while this tool runs (e.g., 'Finding connections...')",
    )


ToolHandler = Callable[[Any, ToolContext], Awaitable[ToolResult]]


@dataclass(frozen=True)
class ToolDefinition:
    """Definition of a tool available to the AI assistant."""

    name: str
    description: str
    input_schema_class: type[BaseModel]
    handler: ToolHandler
    category: ToolCategory = "read"

    def get_json_schema(self) -> dict[str, Any]:
        """Get JSON schema for this tool's input."""
        return self.input_schema_class.model_json_schema()

    def parse_input(self, raw_input: dict[str, Any]) -> BaseModel:
        """Parse and validate tool input."""
        return self.input_schema_class.model_validate(raw_input)
