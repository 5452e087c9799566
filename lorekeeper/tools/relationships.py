"""Connection tools: get_relationships and get_location_hierarchy."""

from typing import Any

from pydantic import Field

from lorekeeper.clients.backend import BackendError, DataBackend, EntityNotFoundError
from lorekeeper.models.entities import EntityType
from lorekeeper.tools.base import FlavoredInput, ToolContext, ToolDefinition, ToolResult
from lorekeeper.utils.identifiers import invalid_id_message, is_uuid
from lorekeeper.utils.logging import get_logger

logger = get_logger(__name__)


def format_relationships(relationships: list[dict[str, Any]], entity_id: str) -> str:
    """One bullet per relationship, arrowed from the perspective of `entity_id`."""
    if not relationships:
        return "*No relationships*"

    lines = []
    for relationship in relationships:
        outgoing = relationship["source_id"] == entity_id
        if relationship.get("is_bidirectional"):
            direction = "↔"
        else:
            direction = "→" if outgoing else "←"
        other_type = relationship["target_type"] if outgoing else relationship["source_type"]
        other_id = relationship["target_id"] if outgoing else relationship["source_id"]

        line = f"- **{relationship['relationship_type']}** {direction} {other_type} ({other_id})"
        if relationship.get("strength") is not None:
            line += f" [strength: {relationship['strength']}]"
        if relationship.get("description"):
            line += f"\n  {relationship['description']}"
        lines.append(line)
    return "\n".join(lines)


async def get_location_ancestors(backend: DataBackend, location: dict[str, Any]) -> list[dict[str, Any]]:
    """Parent chain of a location, top-level first."""
    ancestors: list[dict[str, Any]] = []
    seen = {location["id"]}
    current = location
    while current.get("parent_id") and current["parent_id"] not in seen:
        try:
            parent = await backend.invoke("get_location", {"id": current["parent_id"]})
        except EntityNotFoundError:
            logger.warning(f"Location {current['id']} points at missing parent {current['parent_id']}")
            break
        ancestors.insert(0, parent)
        seen.add(parent["id"])
        current = parent
    return ancestors


def format_location_hierarchy(
    location: dict[str, Any], ancestors: list[dict[str, Any]], children: list[dict[str, Any]]
) -> list[str]:
    def describe(loc: dict[str, Any]) -> str:
        location_type = f" ({loc['location_type']})" if loc.get("location_type") else ""
        return f"{loc['name']}{location_type}"

    lines: list[str] = []
    if ancestors:
        lines.append("### Ancestors (top to bottom)")
        for depth, ancestor in enumerate(ancestors):
            lines.append(f"{'  ' * depth}└─ **{describe(ancestor)}** [{ancestor['id']}]")
        lines.append(f"{'  ' * len(ancestors)}└─ **{describe(location)}** ← current")
    else:
        lines.append("*No parent locations (this is a top-level location)*")
    lines.append("")

    if children:
        lines.append("### Children")
        lines.extend(f"- **{describe(child)}** [{child['id']}]" for child in children)
    else:
        lines.append("*No child locations*")
    return lines


class GetRelationshipsInput(FlavoredInput):
    """Input schema for get_relationships."""

    entity_type: EntityType = Field(..., description="The type of entity")
    entity_id: str = Field(..., description="The entity's UUID. Use search_entities to find IDs by name.")


class GetLocationHierarchyInput(FlavoredInput):
    """Input schema for get_location_hierarchy."""

    location_id: str = Field(..., description="The location's UUID")


def create_get_relationships_tool(backend: DataBackend) -> ToolDefinition:
    async def get_relationships(params: GetRelationshipsInput, context: ToolContext) -> ToolResult:
        if not is_uuid(params.entity_id):
            return ToolResult.fail(invalid_id_message(params.entity_id))

        try:
            relationships = await backend.invoke(
                "get_entity_relationships", {"entity_type": params.entity_type, "entity_id": params.entity_id}
            )
        except BackendError as e:
            return ToolResult.fail(f"Failed to get relationships: {e}")

        if not relationships:
            return ToolResult.ok(f"No relationships found for {params.entity_type} {params.entity_id}.", data=[])

        return ToolResult.ok(
            f"## Relationships for {params.entity_type} {params.entity_id}\n\n"
            + format_relationships(relationships, params.entity_id),
            data=relationships,
        )

    return ToolDefinition(
        name="get_relationships",
        description="Get all relationships involving a specific entity. Shows how entities are connected.",
        input_schema_class=GetRelationshipsInput,
        handler=get_relationships,
    )


def create_get_location_hierarchy_tool(backend: DataBackend) -> ToolDefinition:
    async def get_location_hierarchy(params: GetLocationHierarchyInput, context: ToolContext) -> ToolResult:
        if not is_uuid(params.location_id):
            return ToolResult.fail(invalid_id_message(params.location_id))

        try:
            location = await backend.invoke("get_location", {"id": params.location_id})
            ancestors = await get_location_ancestors(backend, location)
            children = await backend.invoke(
                "get_location_children", {"campaign_id": context.campaign_id, "parent_id": params.location_id}
            )
        except BackendError as e:
            return ToolResult.fail(f"Failed to get location hierarchy: {e}")

        lines = [f"## Location Hierarchy for {location['name']}", ""]
        lines.extend(format_location_hierarchy(location, ancestors, children))
        return ToolResult.ok(
            "\n".join(lines), data={"location": location, "ancestors": ancestors, "children": children}
        )

    return ToolDefinition(
        name="get_location_hierarchy",
        description="Get the location hierarchy for a location: its parent chain and immediate children.",
        input_schema_class=GetLocationHierarchyInput,
        handler=get_location_hierarchy,
    )
