"""Entity lookup tools: search_entities and get_entity."""

from typing import Any

from pydantic import Field

from lorekeeper.clients.backend import BackendError, DataBackend, EntityNotFoundError
from lorekeeper.models.entities import RICH_TEXT_FIELDS, EntityType, UpdatableEntityType
from lorekeeper.tools.base import FlavoredInput, ToolContext, ToolDefinition, ToolResult
from lorekeeper.utils.identifiers import invalid_id_message, is_uuid

# Bookkeeping columns that never help the model
_HIDDEN_FIELDS = frozenset({"id", "name", "title", "campaign_id", "created_at", "updated_at"})


def format_entity(entity_type: str, entity: dict[str, Any]) -> str:
    """Render an entity as frontmatter metadata followed by prose sections."""
    lines = ["---", f"type: {entity_type}", f"id: {entity.get('id')}"]
    if entity.get("name"):
        lines.append(f"name: {entity['name']}")
    elif entity.get("title"):
        lines.append(f"title: {entity['title']}")

    sections: list[tuple[str, str]] = []
    for field, value in entity.items():
        if field in _HIDDEN_FIELDS or value is None or value == "":
            continue
        if field in RICH_TEXT_FIELDS:
            sections.append((field, str(value)))
        elif isinstance(value, (str, int, float, bool)):
            lines.append(f"{field}: {value}")

    lines.append("---")
    lines.append("")
    for field, value in sections:
        lines.append(f"## {field.replace('_', ' ').title()}")
        lines.append(value)
        lines.append("")

    return "\n".join(lines).rstrip() + "\n"


async def fetch_entity(backend: DataBackend, entity_type: str, entity_id: str) -> dict[str, Any]:
    """Load one entity through the backend's get_<type> command."""
    return await backend.invoke(f"get_{entity_type}", {"id": entity_id})


class SearchEntitiesInput(FlavoredInput):
    """Input schema for search_entities."""

    query: str = Field(
        ...,
        min_length=1,
        description="Free-text search query (names, descriptions, notes)",
        examples=["Aldric", "obsidian tower"],
    )
    entity_types: list[EntityType] | None = Field(default=None, description="Restrict results to these entity types")
    limit: int = Field(default=20, ge=1, le=50, description="Maximum number of results")


class GetEntityInput(FlavoredInput):
    """Input schema for get_entity."""

    entity_type: UpdatableEntityType = Field(..., description="The type of entity")
    entity_id: str = Field(..., description="The entity's UUID. Use search_entities to find IDs by name.")


def create_search_entities_tool(backend: DataBackend) -> ToolDefinition:
    async def search_entities(params: SearchEntitiesInput, context: ToolContext) -> ToolResult:
        try:
            results = await backend.invoke(
                "search_entities",
                {
                    "campaign_id": context.campaign_id,
                    "query": params.query,
                    "entity_types": params.entity_types,
                    "limit": params.limit,
                },
            )
        except BackendError as e:
            return ToolResult.fail(f"Search failed: {e}")

        if not results:
            return ToolResult.ok(f'No results found for "{params.query}".', data=[])

        lines = []
        for i, result in enumerate(results, start=1):
            snippet = f": {result['snippet']}" if result.get("snippet") else ""
            lines.append(f"{i}. **{result['name']}** ({result['entity_type']}, id: {result['entity_id']}){snippet}")

        return ToolResult.ok(f'## Search Results for "{params.query}"\n\n' + "\n".join(lines), data=results)

    return ToolDefinition(
        name="search_entities",
        description=(
            "Search for entities (characters, locations, organizations, quests, etc.) in the campaign. "
            "Returns matching entities with their IDs and relevance snippets."
        ),
        input_schema_class=SearchEntitiesInput,
        handler=search_entities,
    )


def create_get_entity_tool(backend: DataBackend) -> ToolDefinition:
    async def get_entity(params: GetEntityInput, context: ToolContext) -> ToolResult:
        if not is_uuid(params.entity_id):
            return ToolResult.fail(invalid_id_message(params.entity_id))

        try:
            entity = await fetch_entity(backend, params.entity_type, params.entity_id)
        except EntityNotFoundError:
            return ToolResult.fail(
                f'Could not find {params.entity_type} with ID "{params.entity_id}". '
                "Use search_entities to find the correct ID."
            )
        except BackendError as e:
            return ToolResult.fail(f"Failed to get {params.entity_type}: {e}")

        return ToolResult.ok(format_entity(params.entity_type, entity), data=entity)

    return ToolDefinition(
        name="get_entity",
        description=(
            "Get the full details of a single entity by type and UUID, including descriptions, notes and secrets."
        ),
        input_schema_class=GetEntityInput,
        handler=get_entity,
    )
